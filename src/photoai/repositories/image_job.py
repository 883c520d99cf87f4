"""ImageGenerationJob repository for photoai backend.

Provides data access methods for ImageGenerationJob entities.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from photoai.core.timezone import utc_now
from photoai.models.job import ImageGenerationJob, JobStatus, ensure_transition
from photoai.services.exceptions import DuplicateCallbackError


class ImageGenerationJobRepository:
    """Repository for ImageGenerationJob entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, job: ImageGenerationJob) -> ImageGenerationJob:
        """Persist new image generation job to database.

        Args:
            job: ImageGenerationJob entity to persist

        Returns:
            Persisted job with generated ID
        """
        self.session.add(job)
        await self.session.flush()
        return job

    async def add_all(self, jobs: list[ImageGenerationJob]) -> list[ImageGenerationJob]:
        """Persist a batch of jobs in one flush (pack fan-out)."""
        self.session.add_all(jobs)
        await self.session.flush()
        return jobs

    async def get_by_id(self, job_id: UUID) -> ImageGenerationJob | None:
        """Retrieve image generation job by UUID.

        Args:
            job_id: Job's unique identifier

        Returns:
            ImageGenerationJob if found, None otherwise
        """
        result = await self.session.execute(
            select(ImageGenerationJob).where(ImageGenerationJob.id == job_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_by_tracking_id(self, tracking_id: str) -> ImageGenerationJob | None:
        """Retrieve image generation job by the executor's tracking identifier."""
        result = await self.session.execute(
            select(ImageGenerationJob).where(
                ImageGenerationJob.external_tracking_id == tracking_id  # type: ignore[arg-type]
            )
        )
        return result.scalar_one_or_none()

    async def get_by_owner(self, owner_id: str, limit: int = 100) -> list[ImageGenerationJob]:
        """Retrieve an owner's jobs, newest first."""
        result = await self.session.execute(
            select(ImageGenerationJob)
            .where(ImageGenerationJob.owner_id == owner_id)  # type: ignore[arg-type]
            .order_by(ImageGenerationJob.created_at.desc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())

    async def transition(
        self, job: ImageGenerationJob, target: JobStatus, **values
    ) -> ImageGenerationJob:
        """Move a pending job to target status with a conditional UPDATE.

        Raises:
            DuplicateCallbackError: If the job is already terminal, or another writer
                moved it out of pending first
            InvalidStateTransition: If the transition table forbids the move
        """
        if job.is_terminal:
            raise DuplicateCallbackError(f"Image job {job.id} is already {job.status.value}")
        ensure_transition(job.status, target)

        result = await self.session.execute(
            update(ImageGenerationJob)
            .where(ImageGenerationJob.id == job.id)  # type: ignore[arg-type]
            .where(ImageGenerationJob.status == JobStatus.PENDING)  # type: ignore[arg-type]
            .values(status=target, updated_at=utc_now(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise DuplicateCallbackError(f"Image job {job.id} is no longer pending")

        await self.session.refresh(job)
        return job

    async def attach_tracking_id(self, job_id: UUID, tracking_id: str) -> bool:
        """Record the executor's tracking id on a job that has none yet."""
        result = await self.session.execute(
            update(ImageGenerationJob)
            .where(ImageGenerationJob.id == job_id)  # type: ignore[arg-type]
            .where(ImageGenerationJob.external_tracking_id.is_(None))  # type: ignore[union-attr]
            .values(external_tracking_id=tracking_id, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_stale_pending(
        self, older_than: datetime, limit: int = 20
    ) -> list[ImageGenerationJob]:
        """Retrieve pollable pending jobs not touched since older_than (oldest first)."""
        result = await self.session.execute(
            select(ImageGenerationJob)
            .where(ImageGenerationJob.status == JobStatus.PENDING)  # type: ignore[arg-type]
            .where(ImageGenerationJob.external_tracking_id.is_not(None))  # type: ignore[union-attr]
            .where(ImageGenerationJob.updated_at < older_than)  # type: ignore[arg-type]
            .order_by(ImageGenerationJob.updated_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_unconfirmed(
        self, created_before: datetime, limit: int = 20
    ) -> list[ImageGenerationJob]:
        """Retrieve pending jobs whose dispatch was never acknowledged."""
        result = await self.session.execute(
            select(ImageGenerationJob)
            .where(ImageGenerationJob.status == JobStatus.PENDING)  # type: ignore[arg-type]
            .where(ImageGenerationJob.external_tracking_id.is_(None))  # type: ignore[union-attr]
            .where(ImageGenerationJob.created_at < created_before)  # type: ignore[arg-type]
            .order_by(ImageGenerationJob.created_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())

    async def touch(self, job_ids: list[UUID]) -> None:
        """Bump updated_at on pending jobs so the sweep doesn't re-poll them immediately."""
        if not job_ids:
            return
        await self.session.execute(
            update(ImageGenerationJob)
            .where(ImageGenerationJob.id.in_(job_ids))  # type: ignore[attr-defined]
            .where(ImageGenerationJob.status == JobStatus.PENDING)  # type: ignore[arg-type]
            .values(updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
