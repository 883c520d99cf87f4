"""Repository layer for photoai backend.

Provides data access abstractions for all domain entities.
No base classes - each repository is self-contained.
"""

from photoai.repositories.credit_account import CreditAccountRepository
from photoai.repositories.image_job import ImageGenerationJobRepository
from photoai.repositories.pack import PackRepository
from photoai.repositories.training_job import TrainingJobRepository

__all__ = [
    "CreditAccountRepository",
    "TrainingJobRepository",
    "ImageGenerationJobRepository",
    "PackRepository",
]
