"""Job entities - training runs and image generations tracked through the executor."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from photoai.core.timezone import utc_now


class JobStatus(str, Enum):
    """Job lifecycle status."""

    PENDING = "pending"
    GENERATED = "generated"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.GENERATED, JobStatus.FAILED)

    def can_transition_to(self, target: "JobStatus") -> bool:
        """Check the transition table.

        pending -> pending | generated | failed. Terminal states have no exits.
        """
        return target in _TRANSITIONS[self]


_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PENDING, JobStatus.GENERATED, JobStatus.FAILED}),
    JobStatus.GENERATED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


class JobKind(str, Enum):
    """Which executor pipeline a job runs on."""

    TRAINING = "training"
    GENERATION = "generation"


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid job state transition."""

    pass


class ModelType(str, Enum):
    MAN = "Man"
    WOMAN = "Woman"
    OTHERS = "Others"


class Ethnicity(str, Enum):
    WHITE = "White"
    BLACK = "Black"
    ASIAN_AMERICAN = "Asian_American"
    EAST_ASIAN = "East_Asian"
    SOUTH_EAST_ASIAN = "South_East_Asian"
    SOUTH_ASIAN = "South_Asian"
    MIDDLE_EASTERN = "Middle_Eastern"
    PACIFIC = "Pacific"
    HISPANIC = "Hispanic"


class EyeColor(str, Enum):
    BROWN = "Brown"
    BLUE = "Blue"
    HAZEL = "Hazel"
    GRAY = "Gray"


def ensure_transition(current: JobStatus, target: JobStatus) -> None:
    """Validate a status change against the transition table.

    Raises:
        InvalidStateTransition: If the table has no edge from current to target
    """
    if not current.can_transition_to(target):
        raise InvalidStateTransition(
            f"Cannot transition from {current.value} to {target.value}. "
            f"Job must be in {JobStatus.PENDING.value} state."
        )


class TrainingJob(SQLModel, table=True):
    """A personalized model being trained from the owner's photos.

    Once generated, tensor_path points at the trained LoRA weights and the job
    can be referenced as the model for image generation.
    """

    __tablename__ = "training_jobs"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    owner_id: str = Field(max_length=255, index=True)
    # Assigned by the executor; empty until dispatch is acknowledged
    external_tracking_id: Optional[str] = Field(
        default=None, max_length=255, unique=True, index=True
    )
    status: JobStatus = Field(default=JobStatus.PENDING, index=True)

    # Model attributes supplied at submission
    name: str = Field(max_length=100)
    type: ModelType
    age: int = Field(ge=1, le=120)
    ethnicity: Ethnicity
    eye_color: EyeColor
    bald: bool = Field(default=False)
    zip_url: str

    # Results (set only on success)
    tensor_path: Optional[str] = Field(default=None)
    thumbnail_url: Optional[str] = Field(default=None)
    credits_charged: int = Field(default=0, ge=0)

    error_data: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_usable(self) -> bool:
        """True once training produced weights that generation can reference."""
        return self.status == JobStatus.GENERATED and bool(self.tensor_path)


class ImageGenerationJob(SQLModel, table=True):
    """A single image generated from a trained model, optionally as part of a pack."""

    __tablename__ = "image_generation_jobs"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    owner_id: str = Field(max_length=255, index=True)
    model_id: UUID = Field(foreign_key="training_jobs.id", index=True)
    pack_id: Optional[UUID] = Field(default=None, foreign_key="packs.id", index=True)
    prompt: str
    # Assigned by the executor; empty until dispatch is acknowledged
    external_tracking_id: Optional[str] = Field(
        default=None, max_length=255, unique=True, index=True
    )
    status: JobStatus = Field(default=JobStatus.PENDING, index=True)

    image_url: Optional[str] = Field(default=None)  # Set only on success
    credits_reserved: int = Field(default=0, ge=0)
    credits_charged: int = Field(default=0, ge=0)

    error_data: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal
