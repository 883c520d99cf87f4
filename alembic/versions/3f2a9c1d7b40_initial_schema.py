"""initial_schema

Revision ID: 3f2a9c1d7b40
Revises:
Create Date: 2026-10-18 09:12:41.207315

"""

from typing import Sequence, Union

import sqlalchemy as sa
import sqlmodel

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f2a9c1d7b40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Enum columns store member names, matching SQLModel's default mapping.
job_status = sa.Enum("PENDING", "GENERATED", "FAILED", name="jobstatus")
model_type = sa.Enum("MAN", "WOMAN", "OTHERS", name="modeltype")
ethnicity = sa.Enum(
    "WHITE",
    "BLACK",
    "ASIAN_AMERICAN",
    "EAST_ASIAN",
    "SOUTH_EAST_ASIAN",
    "SOUTH_ASIAN",
    "MIDDLE_EASTERN",
    "PACIFIC",
    "HISPANIC",
    name="ethnicity",
)
eye_color = sa.Enum("BROWN", "BLUE", "HAZEL", "GRAY", name="eyecolor")


def upgrade() -> None:
    """Create credit accounts, packs, training jobs and image generation jobs."""
    op.create_table(
        "credit_accounts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False),
        sa.Column("balance", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("balance >= 0", name="ck_credit_accounts_balance"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_credit_accounts_owner_id"), "credit_accounts", ["owner_id"], unique=True
    )

    op.create_table(
        "packs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False),
        sa.Column("description", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_packs_name"), "packs", ["name"], unique=True)

    op.create_table(
        "pack_prompts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("pack_id", sa.Uuid(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("prompt", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.ForeignKeyConstraint(["pack_id"], ["packs.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_pack_prompts_pack_id"), "pack_prompts", ["pack_id"], unique=False)

    op.create_table(
        "training_jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False),
        sa.Column(
            "external_tracking_id", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=True
        ),
        sa.Column("status", job_status, nullable=False),
        sa.Column("name", sqlmodel.sql.sqltypes.AutoString(length=100), nullable=False),
        sa.Column("type", model_type, nullable=False),
        sa.Column("age", sa.Integer(), nullable=False),
        sa.Column("ethnicity", ethnicity, nullable=False),
        sa.Column("eye_color", eye_color, nullable=False),
        sa.Column("bald", sa.Boolean(), nullable=False),
        sa.Column("zip_url", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("tensor_path", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("thumbnail_url", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("credits_charged", sa.Integer(), nullable=False),
        sa.Column("error_data", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_training_jobs_owner_id"), "training_jobs", ["owner_id"], unique=False)
    op.create_index(
        op.f("ix_training_jobs_external_tracking_id"),
        "training_jobs",
        ["external_tracking_id"],
        unique=True,
    )
    op.create_index(op.f("ix_training_jobs_status"), "training_jobs", ["status"], unique=False)

    op.create_table(
        "image_generation_jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False),
        sa.Column("model_id", sa.Uuid(), nullable=False),
        sa.Column("pack_id", sa.Uuid(), nullable=True),
        sa.Column("prompt", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column(
            "external_tracking_id", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=True
        ),
        sa.Column("status", job_status, nullable=False),
        sa.Column("image_url", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("credits_reserved", sa.Integer(), nullable=False),
        sa.Column("credits_charged", sa.Integer(), nullable=False),
        sa.Column("error_data", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["model_id"], ["training_jobs.id"]),
        sa.ForeignKeyConstraint(["pack_id"], ["packs.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_image_generation_jobs_owner_id"), "image_generation_jobs", ["owner_id"], unique=False
    )
    op.create_index(
        op.f("ix_image_generation_jobs_model_id"), "image_generation_jobs", ["model_id"], unique=False
    )
    op.create_index(
        op.f("ix_image_generation_jobs_pack_id"), "image_generation_jobs", ["pack_id"], unique=False
    )
    op.create_index(
        op.f("ix_image_generation_jobs_external_tracking_id"),
        "image_generation_jobs",
        ["external_tracking_id"],
        unique=True,
    )
    op.create_index(
        op.f("ix_image_generation_jobs_status"), "image_generation_jobs", ["status"], unique=False
    )
    # Sweep worker scans pending jobs by age
    op.create_index(
        "ix_image_generation_jobs_status_updated_at",
        "image_generation_jobs",
        ["status", "updated_at"],
        unique=False,
    )
    op.create_index(
        "ix_training_jobs_status_updated_at",
        "training_jobs",
        ["status", "updated_at"],
        unique=False,
    )


def downgrade() -> None:
    """Drop all tables and enum types."""
    op.drop_index("ix_training_jobs_status_updated_at", table_name="training_jobs")
    op.drop_index("ix_image_generation_jobs_status_updated_at", table_name="image_generation_jobs")
    op.drop_table("image_generation_jobs")
    op.drop_table("training_jobs")
    op.drop_table("pack_prompts")
    op.drop_table("packs")
    op.drop_table("credit_accounts")

    bind = op.get_bind()
    for enum_type in (eye_color, ethnicity, model_type, job_status):
        enum_type.drop(bind, checkfirst=True)
