"""Pack entities - named, ordered prompt collections for bulk generation."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from photoai.core.timezone import utc_now


class Pack(SQLModel, table=True):
    """Pack groups prompt templates that fan out into one generation job each."""

    __tablename__ = "packs"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str = Field(max_length=255, unique=True, index=True)
    description: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))


class PackPrompt(SQLModel, table=True):
    """A single prompt template inside a pack. Ordered by position.

    Table models skip validation on construction; prompts are checked with
    validate_prompt before they reach the repository.
    """

    __tablename__ = "pack_prompts"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    pack_id: UUID = Field(foreign_key="packs.id", index=True)
    position: int = Field(default=0, ge=0)
    prompt: str
