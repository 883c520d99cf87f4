"""Executor interface - the external asynchronous AI job runner.

The core only depends on this protocol. ReplicateExecutor implements it
against the Replicate API; tests supply an in-memory fake.
"""

from dataclasses import dataclass
from typing import Any, Protocol
from uuid import UUID

from photoai.models.job import JobKind


@dataclass(frozen=True)
class DispatchResult:
    """Acknowledgement of an accepted executor job."""

    tracking_id: str


@dataclass(frozen=True)
class ExecutorResult:
    """Current state of an executor job as reported by the provider."""

    status: str  # Raw provider status, normalized later by OutcomeStatus.from_wire
    payload: dict[str, Any] | None = None
    error: str | None = None


class Executor(Protocol):
    """Operations the job lifecycle needs from the provider.

    Dispatch calls receive the local job id so the provider's callback can be
    matched to the job even when the dispatch acknowledgement was lost.
    Implementations raise ExecutorTimeoutError when a dispatch may or may not
    have been accepted.
    """

    async def dispatch_training(self, zip_url: str, name: str, job_id: UUID) -> DispatchResult:
        """Start a training run on the archive at zip_url."""
        ...

    async def dispatch_generation(
        self, prompt: str, tensor_path: str, job_id: UUID
    ) -> DispatchResult:
        """Start an image generation with the trained weights at tensor_path."""
        ...

    async def fetch_result(self, tracking_id: str, kind: JobKind) -> ExecutorResult:
        """Poll the provider for a job's current state."""
        ...

    async def generate_preview(self, tensor_path: str) -> str:
        """Synchronously render a preview image and return its URL."""
        ...
