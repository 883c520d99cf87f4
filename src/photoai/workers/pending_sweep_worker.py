"""Pending sweep worker for jobs whose callbacks never arrived.

Polls for training and image jobs that have been pending longer than
SWEEP_MIN_AGE_SECONDS, asks the executor for their current state, and feeds
the answer through the CompletionReconciler exactly as a webhook would.
Because every terminal write is a compare-and-set, a sweep racing a late
webhook is harmless.

Jobs whose dispatch was never acknowledged have no tracking id to poll. Once
they are older than DISPATCH_UNCONFIRMED_SECONDS without a callback they are
failed and generation credits are refunded.

Polled jobs get their updated_at bumped so a job that is genuinely still
running is re-polled at most once per SWEEP_MIN_AGE_SECONDS.
"""

import asyncio
from datetime import timedelta

import structlog

from photoai.core.config import Settings
from photoai.core.timezone import utc_now
from photoai.models.job import JobKind
from photoai.services.exceptions import InsufficientCreditsError
from photoai.services.executor.base import Executor
from photoai.services.outcomes import GenerationOutcome, TrainingOutcome
from photoai.services.reconciler import CompletionReconciler

logger = structlog.get_logger()


async def sweep_once(
    uow_factory,
    executor: Executor,
    reconciler: CompletionReconciler,
    min_age_seconds: int,
    batch_size: int,
    unconfirmed_after_seconds: int | None = None,
) -> int:
    """Poll one batch of stale pending jobs of each kind.

    Args:
        uow_factory: Factory producing UnitOfWork instances
        executor: External executor to poll
        reconciler: Reconciler that applies the fetched outcomes
        min_age_seconds: Only jobs untouched for at least this long are polled
        batch_size: Maximum jobs per kind per sweep
        unconfirmed_after_seconds: Fail never-acknowledged jobs older than this;
            None skips them

    Returns:
        Number of jobs polled or expired
    """
    now = utc_now()
    cutoff = now - timedelta(seconds=min_age_seconds)

    async with await uow_factory() as uow:
        training_jobs = await uow.training_jobs.list_stale_pending(cutoff, limit=batch_size)
        image_jobs = await uow.image_jobs.list_stale_pending(cutoff, limit=batch_size)
        await uow.training_jobs.touch([job.id for job in training_jobs])
        await uow.image_jobs.touch([job.id for job in image_jobs])

    targets = [(JobKind.TRAINING, job.external_tracking_id) for job in training_jobs] + [
        (JobKind.GENERATION, job.external_tracking_id) for job in image_jobs
    ]

    expired = 0
    if unconfirmed_after_seconds is not None:
        expired = await _expire_unconfirmed(
            uow_factory, reconciler, now - timedelta(seconds=unconfirmed_after_seconds), batch_size
        )

    if not targets:
        return expired

    results = await asyncio.gather(
        *(_sweep_job(executor, reconciler, kind, tracking_id) for kind, tracking_id in targets),
        return_exceptions=True,
    )

    for (kind, tracking_id), result in zip(targets, results):
        if isinstance(result, InsufficientCreditsError):
            logger.info("sweep.training_unpaid", tracking_id=tracking_id)
        elif isinstance(result, Exception):
            logger.error(
                "sweep.job_failed",
                kind=kind.value,
                tracking_id=tracking_id,
                error=str(result),
                error_type=type(result).__name__,
            )

    logger.info("sweep.completed", polled=len(targets), expired=expired)
    return len(targets) + expired


async def _expire_unconfirmed(
    uow_factory, reconciler: CompletionReconciler, created_before, batch_size: int
) -> int:
    async with await uow_factory() as uow:
        training_jobs = await uow.training_jobs.list_unconfirmed(created_before, limit=batch_size)
        image_jobs = await uow.image_jobs.list_unconfirmed(created_before, limit=batch_size)

    targets = [(JobKind.TRAINING, job.id) for job in training_jobs] + [
        (JobKind.GENERATION, job.id) for job in image_jobs
    ]
    for kind, job_id in targets:
        try:
            await reconciler.expire_unconfirmed(kind, job_id)
        except Exception as e:
            logger.error(
                "sweep.expire_failed",
                kind=kind.value,
                job_id=str(job_id),
                error=str(e),
                error_type=type(e).__name__,
            )
    return len(targets)


async def _sweep_job(
    executor: Executor, reconciler: CompletionReconciler, kind: JobKind, tracking_id: str
) -> None:
    result = await executor.fetch_result(tracking_id, kind)

    if kind == JobKind.TRAINING:
        outcome = TrainingOutcome.from_wire(result.status, result.payload, result.error)
        reconciled = await reconciler.reconcile_training(tracking_id, outcome)
    else:
        outcome = GenerationOutcome.from_wire(result.status, result.payload, result.error)
        reconciled = await reconciler.reconcile_generation(tracking_id, outcome)

    logger.info(
        "sweep.job_reconciled",
        kind=kind.value,
        tracking_id=tracking_id,
        result=reconciled.label,
    )


async def run_pending_sweep_worker(
    uow_factory,
    executor: Executor,
    reconciler: CompletionReconciler,
    settings: Settings,
) -> None:
    """Main worker loop for the pending sweep.

    Args:
        uow_factory: Factory producing UnitOfWork instances
        executor: External executor to poll
        reconciler: Reconciler that applies the fetched outcomes
        settings: Application settings (interval, age threshold, batch size)
    """
    logger.info(
        "sweep.started",
        interval=settings.sweep_interval_seconds,
        min_age=settings.sweep_min_age_seconds,
        batch_size=settings.sweep_batch_size,
        unconfirmed_after=settings.dispatch_unconfirmed_seconds,
    )

    try:
        while True:
            try:
                await sweep_once(
                    uow_factory,
                    executor,
                    reconciler,
                    min_age_seconds=settings.sweep_min_age_seconds,
                    batch_size=settings.sweep_batch_size,
                    unconfirmed_after_seconds=settings.dispatch_unconfirmed_seconds,
                )
                await asyncio.sleep(settings.sweep_interval_seconds)

            except asyncio.CancelledError:
                raise

            except Exception as e:
                logger.error(
                    "sweep.error",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )
                await asyncio.sleep(5)

    except asyncio.CancelledError:
        logger.info("sweep.stopped")
        raise
