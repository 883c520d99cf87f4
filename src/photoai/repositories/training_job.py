"""TrainingJob repository for photoai backend.

Provides data access methods for TrainingJob entities, including the
compare-and-set status write used by the completion reconciler.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from photoai.core.timezone import utc_now
from photoai.models.job import JobStatus, TrainingJob, ensure_transition
from photoai.services.exceptions import DuplicateCallbackError


class TrainingJobRepository:
    """Repository for TrainingJob entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, job: TrainingJob) -> TrainingJob:
        """Persist new training job to database.

        Args:
            job: TrainingJob entity to persist

        Returns:
            Persisted job with generated ID
        """
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_by_id(self, job_id: UUID) -> TrainingJob | None:
        """Retrieve training job by UUID.

        Args:
            job_id: Job's unique identifier

        Returns:
            TrainingJob if found, None otherwise
        """
        result = await self.session.execute(
            select(TrainingJob).where(TrainingJob.id == job_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_by_tracking_id(self, tracking_id: str) -> TrainingJob | None:
        """Retrieve training job by the executor's tracking identifier.

        Args:
            tracking_id: Identifier assigned by the executor at dispatch time

        Returns:
            TrainingJob if found, None otherwise
        """
        result = await self.session.execute(
            select(TrainingJob).where(TrainingJob.external_tracking_id == tracking_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_by_owner(self, owner_id: str, limit: int = 100) -> list[TrainingJob]:
        """Retrieve an owner's training jobs, newest first."""
        result = await self.session.execute(
            select(TrainingJob)
            .where(TrainingJob.owner_id == owner_id)  # type: ignore[arg-type]
            .order_by(TrainingJob.created_at.desc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())

    async def transition(self, job: TrainingJob, target: JobStatus, **values) -> TrainingJob:
        """Move a pending job to target status with a conditional UPDATE.

        The WHERE clause only matches rows still in pending state, so concurrent
        deliveries of the same callback produce exactly one terminal write.

        Args:
            job: TrainingJob entity (attached to this session)
            target: Status to move to
            **values: Extra columns written in the same statement (tensor_path, ...)

        Returns:
            The refreshed job

        Raises:
            DuplicateCallbackError: If the job is already terminal, or another writer
                moved it out of pending first
            InvalidStateTransition: If the transition table forbids the move
        """
        if job.is_terminal:
            raise DuplicateCallbackError(f"Training job {job.id} is already {job.status.value}")
        ensure_transition(job.status, target)

        result = await self.session.execute(
            update(TrainingJob)
            .where(TrainingJob.id == job.id)  # type: ignore[arg-type]
            .where(TrainingJob.status == JobStatus.PENDING)  # type: ignore[arg-type]
            .values(status=target, updated_at=utc_now(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise DuplicateCallbackError(f"Training job {job.id} is no longer pending")

        await self.session.refresh(job)
        return job

    async def attach_tracking_id(self, job_id: UUID, tracking_id: str) -> bool:
        """Record the executor's tracking id on a job that has none yet.

        Returns:
            True if the id was written, False if the job already carries one
        """
        result = await self.session.execute(
            update(TrainingJob)
            .where(TrainingJob.id == job_id)  # type: ignore[arg-type]
            .where(TrainingJob.external_tracking_id.is_(None))  # type: ignore[union-attr]
            .values(external_tracking_id=tracking_id, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_stale_pending(self, older_than: datetime, limit: int = 20) -> list[TrainingJob]:
        """Retrieve pollable pending jobs not touched since older_than (oldest first).

        Only jobs with a tracking id can be polled; see list_unconfirmed for the rest.

        Args:
            older_than: Cutoff for updated_at
            limit: Maximum number of jobs to return

        Returns:
            List of pending training jobs
        """
        result = await self.session.execute(
            select(TrainingJob)
            .where(TrainingJob.status == JobStatus.PENDING)  # type: ignore[arg-type]
            .where(TrainingJob.external_tracking_id.is_not(None))  # type: ignore[union-attr]
            .where(TrainingJob.updated_at < older_than)  # type: ignore[arg-type]
            .order_by(TrainingJob.updated_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_unconfirmed(self, created_before: datetime, limit: int = 20) -> list[TrainingJob]:
        """Retrieve pending jobs whose dispatch was never acknowledged."""
        result = await self.session.execute(
            select(TrainingJob)
            .where(TrainingJob.status == JobStatus.PENDING)  # type: ignore[arg-type]
            .where(TrainingJob.external_tracking_id.is_(None))  # type: ignore[union-attr]
            .where(TrainingJob.created_at < created_before)  # type: ignore[arg-type]
            .order_by(TrainingJob.created_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())

    async def touch(self, job_ids: list[UUID]) -> None:
        """Bump updated_at on pending jobs so the sweep doesn't re-poll them immediately."""
        if not job_ids:
            return
        await self.session.execute(
            update(TrainingJob)
            .where(TrainingJob.id.in_(job_ids))  # type: ignore[attr-defined]
            .where(TrainingJob.status == JobStatus.PENDING)  # type: ignore[arg-type]
            .values(updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
