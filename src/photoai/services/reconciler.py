"""Completion reconciler - applies executor outcomes to jobs and the ledger.

State machine per job:

    pending --(completed)--> generated
    pending --(error)------> failed
    pending --(other)------> pending

generated and failed are terminal. Every terminal write is a compare-and-set on
status = pending, so a callback delivered N times (even concurrently) produces
one state change and, for training, one charge. Later deliveries are reported
as duplicates and change nothing.

Callbacks are matched by tracking id, falling back to the job id carried in
the callback URL for jobs whose dispatch acknowledgement never arrived.
"""

from dataclasses import dataclass
from typing import Any
from uuid import UUID

import structlog

from photoai.models.job import (
    ImageGenerationJob,
    JobKind,
    JobStatus,
    TrainingJob,
)
from photoai.services.exceptions import (
    DuplicateCallbackError,
    InsufficientCreditsError,
    NotFoundError,
    PermanentExecutorError,
)
from photoai.services.executor.base import Executor
from photoai.services.ledger import Ledger
from photoai.services.outcomes import (
    GenerationOutcome,
    OutcomeStatus,
    TrainingOutcome,
    extract_training_artifact,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class ReconcileResult:
    """What a reconciliation did to the job."""

    status: JobStatus
    duplicate: bool = False

    @property
    def label(self) -> str:
        """Short status word for webhook responses."""
        if self.duplicate:
            return "duplicate"
        return {
            JobStatus.PENDING: "pending",
            JobStatus.GENERATED: "processed",
            JobStatus.FAILED: "failed",
        }[self.status]


def _error_data(reason: str, outcome_status: str, message: str | None = None) -> dict[str, Any]:
    data: dict[str, Any] = {"reason": reason, "executor_status": outcome_status}
    if message:
        data["message"] = message[:1000]
    return data


def _jobs(uow, kind: JobKind):
    return uow.training_jobs if kind == JobKind.TRAINING else uow.image_jobs


async def fail_generation_with_refund(
    uow, ledger: Ledger, job: ImageGenerationJob, error_data: dict[str, Any]
) -> int:
    """Fail a pending generation job and return its charge in the same transaction.

    Returns:
        Credits refunded

    Raises:
        DuplicateCallbackError: If the job already left pending (nothing refunded)
    """
    refund = job.credits_charged
    await uow.image_jobs.transition(job, JobStatus.FAILED, error_data=error_data, credits_charged=0)
    if refund > 0:
        await ledger.credit(uow, job.owner_id, refund)
    return refund


class CompletionReconciler:
    """Single entry point per job kind for asynchronous executor outcomes."""

    def __init__(
        self,
        uow_factory,
        executor: Executor,
        ledger: Ledger,
        train_model_credits: int,
        refund_failed_generations: bool = False,
    ):
        """Initialize reconciler.

        Args:
            uow_factory: Factory producing UnitOfWork instances
            executor: External executor (secondary result fetch and preview render)
            ledger: Credit ledger
            train_model_credits: Credits charged for a successful training run
            refund_failed_generations: Return IMAGE_GEN_COST to the owner when a
                generation job fails
        """
        self.uow_factory = uow_factory
        self.executor = executor
        self.ledger = ledger
        self.train_model_credits = train_model_credits
        self.refund_failed_generations = refund_failed_generations

    async def _locate(self, kind: JobKind, tracking_id: str, job_id: UUID | None):
        """Find the job a callback refers to.

        A job found only through job_id gets the tracking id recorded, so later
        deliveries and the pending sweep can address it normally.

        Raises:
            NotFoundError: No job matches, or job_id names a job dispatched
                under a different tracking id
        """
        async with await self.uow_factory() as uow:
            jobs = _jobs(uow, kind)
            job = await jobs.get_by_tracking_id(tracking_id)

            if job is None and job_id is not None:
                job = await jobs.get_by_id(job_id)
                if job is not None and job.external_tracking_id is None:
                    await jobs.attach_tracking_id(job.id, tracking_id)
                    await uow.session.refresh(job)
                    logger.info(
                        "reconcile.tracking_id_attached",
                        kind=kind.value,
                        job_id=str(job.id),
                        tracking_id=tracking_id,
                    )
                elif job is not None and job.external_tracking_id != tracking_id:
                    logger.warning(
                        "reconcile.tracking_id_mismatch",
                        kind=kind.value,
                        job_id=str(job.id),
                        tracking_id=tracking_id,
                        stored_tracking_id=job.external_tracking_id,
                    )
                    job = None

        if job is None:
            logger.warning("reconcile.job_not_found", kind=kind.value, tracking_id=tracking_id)
            raise NotFoundError(f"No {kind.value} job for tracking id {tracking_id}")
        return job

    # Training

    async def reconcile_training(
        self, tracking_id: str, outcome: TrainingOutcome, job_id: UUID | None = None
    ) -> ReconcileResult:
        """Apply a training outcome.

        Args:
            tracking_id: Executor tracking id from the callback
            outcome: Normalized outcome
            job_id: Local job id from the callback URL, if present

        Raises:
            NotFoundError: No training job carries this tracking id
            InsufficientCreditsError: Run completed but the owner cannot pay for it;
                the job stays pending and nothing is persisted
        """
        job: TrainingJob = await self._locate(JobKind.TRAINING, tracking_id, job_id)

        log = logger.bind(tracking_id=tracking_id, job_id=str(job.id), owner_id=job.owner_id)

        if job.is_terminal:
            log.info("reconcile.duplicate", status=job.status.value)
            return ReconcileResult(status=job.status, duplicate=True)

        if outcome.status == OutcomeStatus.ERROR:
            return await self._fail_training(
                job, _error_data("executor_error", outcome.raw_status, outcome.error)
            )

        if outcome.status == OutcomeStatus.IN_PROGRESS:
            log.info("reconcile.still_pending", executor_status=outcome.raw_status)
            return ReconcileResult(status=JobStatus.PENDING)

        try:
            return await self._complete_training(job, outcome)
        except DuplicateCallbackError:
            log.info("reconcile.duplicate", concurrent=True)
            return await self._current_training_status(job)
        except (InsufficientCreditsError, NotFoundError):
            raise
        except Exception as e:
            log.error(
                "reconcile.training_completion_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return await self._fail_training(
                job, _error_data(type(e).__name__, outcome.raw_status, str(e))
            )

    async def _resolve_artifact(self, job: TrainingJob, outcome: TrainingOutcome) -> str:
        """Take the artifact from the callback, or fetch it from the executor."""
        if outcome.artifact_url:
            return outcome.artifact_url

        logger.info("reconcile.fetching_artifact", tracking_id=job.external_tracking_id)
        result = await self.executor.fetch_result(job.external_tracking_id, JobKind.TRAINING)
        artifact = extract_training_artifact(result.payload)
        if not artifact:
            raise PermanentExecutorError(
                f"Completed training {job.external_tracking_id} reported no artifact"
            )
        return artifact

    async def _complete_training(self, job: TrainingJob, outcome: TrainingOutcome) -> ReconcileResult:
        artifact = await self._resolve_artifact(job, outcome)

        # Early balance check so an unpaid run never triggers a preview render.
        async with await self.uow_factory() as uow:
            balance = await self.ledger.get_balance(uow, job.owner_id)
        if balance < self.train_model_credits:
            logger.warning(
                "reconcile.training_unpaid",
                tracking_id=job.external_tracking_id,
                owner_id=job.owner_id,
                required=self.train_model_credits,
                available=balance,
            )
            raise InsufficientCreditsError(
                job.owner_id, required=self.train_model_credits, available=balance
            )

        thumbnail_url = await self.executor.generate_preview(artifact)

        try:
            async with await self.uow_factory() as uow:
                attached = await uow.training_jobs.get_by_id(job.id)
                if attached is None:
                    raise NotFoundError(f"Training job {job.id} disappeared")
                await uow.training_jobs.transition(
                    attached,
                    JobStatus.GENERATED,
                    tensor_path=artifact,
                    thumbnail_url=thumbnail_url,
                    credits_charged=self.train_model_credits,
                )
                # Same transaction as the state write: both land or neither does.
                await self.ledger.try_debit(uow, job.owner_id, self.train_model_credits)
        except DuplicateCallbackError:
            logger.info("reconcile.duplicate", tracking_id=job.external_tracking_id, concurrent=True)
            return await self._current_training_status(job)

        logger.info(
            "reconcile.training_generated",
            tracking_id=job.external_tracking_id,
            job_id=str(job.id),
            owner_id=job.owner_id,
            credits=self.train_model_credits,
        )
        return ReconcileResult(status=JobStatus.GENERATED)

    async def _fail_training(self, job: TrainingJob, error_data: dict[str, Any]) -> ReconcileResult:
        try:
            async with await self.uow_factory() as uow:
                attached = await uow.training_jobs.get_by_id(job.id)
                if attached is None:
                    raise NotFoundError(f"Training job {job.id} disappeared")
                await uow.training_jobs.transition(attached, JobStatus.FAILED, error_data=error_data)
        except DuplicateCallbackError:
            logger.info("reconcile.duplicate", tracking_id=job.external_tracking_id, concurrent=True)
            return await self._current_training_status(job)

        logger.info(
            "reconcile.training_failed",
            tracking_id=job.external_tracking_id,
            job_id=str(job.id),
            reason=error_data.get("reason"),
        )
        return ReconcileResult(status=JobStatus.FAILED)

    async def _current_training_status(self, job: TrainingJob) -> ReconcileResult:
        async with await self.uow_factory() as uow:
            current = await uow.training_jobs.get_by_id(job.id)
        status = current.status if current else JobStatus.FAILED
        return ReconcileResult(status=status, duplicate=True)

    # Generation

    async def reconcile_generation(
        self, tracking_id: str, outcome: GenerationOutcome, job_id: UUID | None = None
    ) -> ReconcileResult:
        """Apply a generation outcome. Credits were charged at submission.

        Raises:
            NotFoundError: No generation job carries this tracking id
        """
        job: ImageGenerationJob = await self._locate(JobKind.GENERATION, tracking_id, job_id)

        log = logger.bind(tracking_id=tracking_id, job_id=str(job.id), owner_id=job.owner_id)

        if job.is_terminal:
            log.info("reconcile.duplicate", status=job.status.value)
            return ReconcileResult(status=job.status, duplicate=True)

        if outcome.status == OutcomeStatus.IN_PROGRESS:
            log.info("reconcile.still_pending", executor_status=outcome.raw_status)
            return ReconcileResult(status=JobStatus.PENDING)

        if outcome.status == OutcomeStatus.COMPLETED and outcome.image_url:
            target = JobStatus.GENERATED
            values: dict[str, Any] = {"image_url": outcome.image_url}
        elif outcome.status == OutcomeStatus.COMPLETED:
            target = JobStatus.FAILED
            values = {"error_data": _error_data("missing_image_url", outcome.raw_status)}
        else:
            if outcome.image_url:
                # Error outcomes never carry a usable artifact.
                log.warning("reconcile.error_image_ignored", image_url=outcome.image_url)
            target = JobStatus.FAILED
            values = {"error_data": _error_data("executor_error", outcome.raw_status, outcome.error)}

        refund = self.refund_failed_generations and target == JobStatus.FAILED
        if refund:
            values["credits_charged"] = 0

        try:
            async with await self.uow_factory() as uow:
                attached = await uow.image_jobs.get_by_id(job.id)
                if attached is None:
                    raise NotFoundError(f"Image job {job.id} disappeared")
                await uow.image_jobs.transition(attached, target, **values)
                if refund and job.credits_charged > 0:
                    await self.ledger.credit(uow, job.owner_id, job.credits_charged)
        except DuplicateCallbackError:
            log.info("reconcile.duplicate", concurrent=True)
            return await self._current_image_status(job)

        log.info(
            "reconcile.image_" + target.value,
            refunded=job.credits_charged if refund else 0,
        )
        return ReconcileResult(status=target)

    async def _current_image_status(self, job: ImageGenerationJob) -> ReconcileResult:
        async with await self.uow_factory() as uow:
            current = await uow.image_jobs.get_by_id(job.id)
        status = current.status if current else JobStatus.FAILED
        return ReconcileResult(status=status, duplicate=True)

    # Unconfirmed dispatch

    async def expire_unconfirmed(self, kind: JobKind, job_id: UUID) -> ReconcileResult:
        """Fail a job whose dispatch was never acknowledged and never called back.

        Generation credits are returned in the same transaction. A job that
        gained a tracking id meanwhile is left to the normal sweep.

        Raises:
            NotFoundError: Unknown job id
        """
        async with await self.uow_factory() as uow:
            job = await _jobs(uow, kind).get_by_id(job_id)
            if job is None:
                raise NotFoundError(f"No {kind.value} job {job_id}")
            if job.external_tracking_id is not None or job.is_terminal:
                return ReconcileResult(status=job.status, duplicate=job.is_terminal)

            error_data = _error_data("dispatch_unconfirmed", JobStatus.PENDING.value)
            refunded = 0
            try:
                if kind == JobKind.TRAINING:
                    await uow.training_jobs.transition(job, JobStatus.FAILED, error_data=error_data)
                else:
                    refunded = await fail_generation_with_refund(uow, self.ledger, job, error_data)
            except DuplicateCallbackError:
                status = None
            else:
                status = JobStatus.FAILED

        if status is None:
            async with await self.uow_factory() as uow:
                current = await _jobs(uow, kind).get_by_id(job_id)
            return ReconcileResult(
                status=current.status if current else JobStatus.FAILED, duplicate=True
            )

        logger.warning(
            "reconcile.dispatch_unconfirmed_expired",
            kind=kind.value,
            job_id=str(job_id),
            refunded=refunded,
        )
        return ReconcileResult(status=JobStatus.FAILED)
