"""Job submission - validate, reserve credits, persist, dispatch.

Every job is persisted pending before the executor is called, so a request the
executor may have accepted is never lost:

1. Reserve: debit the ledger and insert the pending job(s) in one transaction.
   The conditional UPDATE serializes concurrent requests from the same owner.
2. Dispatch: call the executor with the local job id (bounded by its timeout).
3. Settle:
   - acknowledged: record the executor's tracking id on the job
   - timed out: leave the job pending; its callback or the pending sweep
     resolves it later
   - rejected: mark the job failed and refund its reservation in the same
     transaction, then let the error propagate

Training reserves nothing; its cost is debited by the CompletionReconciler
once the run succeeds.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

import structlog

from photoai.models.job import (
    Ethnicity,
    EyeColor,
    ImageGenerationJob,
    JobKind,
    JobStatus,
    ModelType,
    TrainingJob,
)
from photoai.services.exceptions import (
    DuplicateCallbackError,
    ExecutorError,
    ExecutorTimeoutError,
    NotFoundError,
    ValidationError,
)
from photoai.services.executor.base import DispatchResult, Executor
from photoai.services.ledger import Ledger
from photoai.services.reconciler import fail_generation_with_refund

logger = structlog.get_logger()

MAX_PROMPT_LENGTH = 1000


def validate_prompt(prompt: str) -> str:
    """Validate prompt text for image generation.

    Args:
        prompt: Text prompt from the owner

    Returns:
        Validated prompt (stripped of surrounding whitespace)

    Raises:
        ValidationError: If prompt is empty, not a string, or exceeds 1000 characters
    """
    if not isinstance(prompt, str):
        raise ValidationError(f"Prompt must be a string, got {type(prompt).__name__}")

    prompt = prompt.strip()
    if not prompt:
        raise ValidationError("Prompt cannot be empty")

    if len(prompt) > MAX_PROMPT_LENGTH:
        raise ValidationError(
            f"Prompt exceeds maximum length of {MAX_PROMPT_LENGTH} characters (got {len(prompt)})"
        )

    return prompt


@dataclass
class ModelAttributes:
    """Attributes describing the subject of a training run."""

    name: str
    type: ModelType
    age: int
    ethnicity: Ethnicity
    eye_color: EyeColor
    bald: bool = False

    def validate(self) -> None:
        """Raises ValidationError on missing or ill-typed attributes."""
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValidationError("Model name is required")
        if len(self.name) > 100:
            raise ValidationError("Model name must be at most 100 characters")
        if isinstance(self.age, bool) or not isinstance(self.age, int):
            raise ValidationError("Age must be an integer")
        if not 1 <= self.age <= 120:
            raise ValidationError("Age must be between 1 and 120")
        if not isinstance(self.bald, bool):
            raise ValidationError("Bald must be a boolean")
        for attr, enum_type in (
            ("type", ModelType),
            ("ethnicity", Ethnicity),
            ("eye_color", EyeColor),
        ):
            value = getattr(self, attr)
            try:
                setattr(self, attr, enum_type(value))
            except ValueError as e:
                raise ValidationError(f"Invalid {attr}: {value!r}") from e


@dataclass
class PackSubmission:
    """Result of a pack fan-out. jobs includes dispatches still awaiting acknowledgement."""

    jobs: list[ImageGenerationJob] = field(default_factory=list)
    failed_prompts: list[str] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return len(self.failed_prompts)


class JobSubmitter:
    """Accepts training and generation requests and hands them to the executor."""

    def __init__(
        self,
        uow_factory,
        executor: Executor,
        ledger: Ledger,
        image_gen_cost: int,
    ):
        """Initialize submitter.

        Args:
            uow_factory: Factory producing UnitOfWork instances
            executor: External executor
            ledger: Credit ledger
            image_gen_cost: Credits charged per generated image
        """
        self.uow_factory = uow_factory
        self.executor = executor
        self.ledger = ledger
        self.image_gen_cost = image_gen_cost

    async def _record_dispatch(self, kind: JobKind, job_id: UUID, dispatch: DispatchResult):
        """Store the tracking id of an acknowledged dispatch and return the fresh job."""
        async with await self.uow_factory() as uow:
            jobs = uow.training_jobs if kind == JobKind.TRAINING else uow.image_jobs
            attached = await jobs.attach_tracking_id(job_id, dispatch.tracking_id)
            job = await jobs.get_by_id(job_id)

        if not attached:
            # The callback arrived first and already recorded it.
            logger.info(
                "submission.tracking_id_already_set",
                kind=kind.value,
                job_id=str(job_id),
                tracking_id=dispatch.tracking_id,
            )
        return job

    async def _reject_dispatch(self, kind: JobKind, job_id: UUID, error: BaseException) -> None:
        """Fail a job whose dispatch was rejected; generation reservations are refunded."""
        error_data: dict[str, Any] = {
            "reason": "dispatch_rejected",
            "error_type": type(error).__name__,
            "message": str(error)[:1000],
        }
        refunded = 0
        try:
            async with await self.uow_factory() as uow:
                if kind == JobKind.TRAINING:
                    job = await uow.training_jobs.get_by_id(job_id)
                    await uow.training_jobs.transition(job, JobStatus.FAILED, error_data=error_data)
                else:
                    job = await uow.image_jobs.get_by_id(job_id)
                    refunded = await fail_generation_with_refund(uow, self.ledger, job, error_data)
        except DuplicateCallbackError:
            logger.info("submission.rejected_job_already_settled", kind=kind.value, job_id=str(job_id))
            return

        logger.warning(
            "submission.dispatch_rejected",
            kind=kind.value,
            job_id=str(job_id),
            refunded=refunded,
            error=str(error),
            error_type=type(error).__name__,
        )

    def _log_unconfirmed(self, kind: JobKind, job_id: UUID, error: ExecutorTimeoutError) -> None:
        logger.warning(
            "submission.dispatch_unconfirmed",
            kind=kind.value,
            job_id=str(job_id),
            error=str(error),
        )

    async def submit_training(
        self, owner_id: str, attributes: ModelAttributes, zip_url: str
    ) -> TrainingJob:
        """Persist a pending training job and dispatch it.

        No credits are charged here; a failed training run costs nothing. If the
        executor times out the job is returned pending without a tracking id.

        Raises:
            ValidationError: Missing or malformed attributes / archive URL
            ExecutorError: Dispatch rejected (the job is stored as failed)
        """
        attributes.validate()
        if not isinstance(zip_url, str) or not zip_url.strip():
            raise ValidationError("Source archive URL is required")

        async with await self.uow_factory() as uow:
            job = await uow.training_jobs.add(
                TrainingJob(
                    owner_id=owner_id,
                    name=attributes.name,
                    type=attributes.type,
                    age=attributes.age,
                    ethnicity=attributes.ethnicity,
                    eye_color=attributes.eye_color,
                    bald=attributes.bald,
                    zip_url=zip_url,
                )
            )

        try:
            dispatch = await self.executor.dispatch_training(zip_url, attributes.name, job.id)
        except ExecutorTimeoutError as e:
            self._log_unconfirmed(JobKind.TRAINING, job.id, e)
            return job
        except Exception as e:
            await self._reject_dispatch(JobKind.TRAINING, job.id, e)
            raise

        job = await self._record_dispatch(JobKind.TRAINING, job.id, dispatch)
        logger.info(
            "submission.training_dispatched",
            owner_id=owner_id,
            job_id=str(job.id),
            tracking_id=dispatch.tracking_id,
        )
        return job

    async def _load_usable_model(self, owner_id: str, model_id: UUID) -> TrainingJob:
        async with await self.uow_factory() as uow:
            model = await uow.training_jobs.get_by_id(model_id)

        if model is None or model.owner_id != owner_id:
            raise NotFoundError(f"Model {model_id} not found")
        if not model.is_usable:
            raise NotFoundError(f"Model {model_id} has no completed training artifact")
        return model

    async def submit_generation(self, owner_id: str, model_id: UUID, prompt: str) -> ImageGenerationJob:
        """Charge IMAGE_GEN_COST, persist the pending job, dispatch it.

        If the executor times out the job is returned pending (and charged)
        without a tracking id.

        Raises:
            ValidationError: Empty or oversized prompt
            NotFoundError: Model missing, owned by someone else, or not trained yet
            InsufficientCreditsError: Balance below IMAGE_GEN_COST (nothing charged)
            ExecutorError: Dispatch rejected (job failed, reservation refunded)
        """
        prompt = validate_prompt(prompt)
        model = await self._load_usable_model(owner_id, model_id)
        cost = self.image_gen_cost

        async with await self.uow_factory() as uow:
            await self.ledger.try_debit(uow, owner_id, cost)
            job = await uow.image_jobs.add(
                ImageGenerationJob(
                    owner_id=owner_id,
                    model_id=model.id,
                    prompt=prompt,
                    credits_reserved=cost,
                    credits_charged=cost,
                )
            )

        try:
            dispatch = await self.executor.dispatch_generation(prompt, model.tensor_path, job.id)  # type: ignore[arg-type]
        except ExecutorTimeoutError as e:
            self._log_unconfirmed(JobKind.GENERATION, job.id, e)
            return job
        except Exception as e:
            await self._reject_dispatch(JobKind.GENERATION, job.id, e)
            raise

        job = await self._record_dispatch(JobKind.GENERATION, job.id, dispatch)
        logger.info(
            "submission.generation_dispatched",
            owner_id=owner_id,
            job_id=str(job.id),
            model_id=str(model.id),
            tracking_id=dispatch.tracking_id,
            credits=cost,
        )
        return job

    async def submit_pack_generation(
        self, owner_id: str, model_id: UUID, pack_id: UUID
    ) -> PackSubmission:
        """Fan a pack's prompts out into one generation job each.

        The aggregate cost is debited once, in the transaction that persists the
        pending jobs. Dispatches run concurrently; a rejected dispatch fails its
        job and refunds that job's share (per-job compensation). Jobs whose
        dispatch timed out are returned pending.

        Raises:
            NotFoundError: Pack or model missing / model not trained
            ValidationError: Pack has no prompts
            InsufficientCreditsError: Balance below IMAGE_GEN_COST * N (nothing charged)
            ExecutorError: Every dispatch was rejected (full refund)
        """
        async with await self.uow_factory() as uow:
            pack = await uow.packs.get_by_id(pack_id)
            if pack is None:
                raise NotFoundError(f"Pack {pack_id} not found")
            prompts = [p.prompt for p in await uow.packs.list_prompts(pack_id)]

        if not prompts:
            raise ValidationError(f"Pack {pack_id} has no prompts")

        model = await self._load_usable_model(owner_id, model_id)
        total_cost = self.image_gen_cost * len(prompts)

        async with await self.uow_factory() as uow:
            await self.ledger.try_debit(uow, owner_id, total_cost)
            jobs = await uow.image_jobs.add_all(
                [
                    ImageGenerationJob(
                        owner_id=owner_id,
                        model_id=model.id,
                        pack_id=pack_id,
                        prompt=prompt,
                        credits_reserved=self.image_gen_cost,
                        credits_charged=self.image_gen_cost,
                    )
                    for prompt in prompts
                ]
            )

        results: list[Any] = await asyncio.gather(
            *(
                self.executor.dispatch_generation(job.prompt, model.tensor_path, job.id)  # type: ignore[arg-type]
                for job in jobs
            ),
            return_exceptions=True,
        )

        submitted: list[ImageGenerationJob] = []
        failures: list[tuple[str, BaseException]] = []
        for job, result in zip(jobs, results):
            if isinstance(result, DispatchResult):
                submitted.append(await self._record_dispatch(JobKind.GENERATION, job.id, result))
            elif isinstance(result, ExecutorTimeoutError):
                self._log_unconfirmed(JobKind.GENERATION, job.id, result)
                submitted.append(job)
            else:
                await self._reject_dispatch(JobKind.GENERATION, job.id, result)
                failures.append((job.prompt, result))

        if not submitted:
            first_error = failures[0][1]
            if isinstance(first_error, Exception):
                raise first_error
            raise ExecutorError("All pack dispatches failed")

        logger.info(
            "submission.pack_dispatched",
            owner_id=owner_id,
            pack_id=str(pack_id),
            model_id=str(model.id),
            dispatched=len(submitted),
            failed=len(failures),
        )
        return PackSubmission(jobs=submitted, failed_prompts=[prompt for prompt, _ in failures])
