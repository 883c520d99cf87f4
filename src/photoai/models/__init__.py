"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from photoai.models.credit_account import CreditAccount
from photoai.models.job import (
    Ethnicity,
    EyeColor,
    ImageGenerationJob,
    InvalidStateTransition,
    JobKind,
    JobStatus,
    ModelType,
    TrainingJob,
)
from photoai.models.pack import Pack, PackPrompt

__all__ = [
    "CreditAccount",
    "TrainingJob",
    "ImageGenerationJob",
    "JobStatus",
    "JobKind",
    "InvalidStateTransition",
    "ModelType",
    "Ethnicity",
    "EyeColor",
    "Pack",
    "PackPrompt",
]
