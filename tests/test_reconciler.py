"""Completion reconciler tests.

Tests focus on applying executor outcomes exactly once:
- Successful training charges TRAIN_MODEL_CREDITS in the same write as the state change
- Unpaid training stays pending with nothing persisted
- Error outcomes fail the job and never store an artifact
- Duplicate (including concurrent) deliveries change nothing
- Jobs without an acknowledged dispatch are matched by job id or expired
"""

import asyncio
from uuid import UUID

import pytest

from photoai.models.job import ImageGenerationJob, JobKind, JobStatus
from photoai.services.exceptions import InsufficientCreditsError, NotFoundError
from photoai.services.executor.base import ExecutorResult
from photoai.services.outcomes import GenerationOutcome, TrainingOutcome
from photoai.services.reconciler import CompletionReconciler


def training_completed(artifact: str | None = "u1") -> TrainingOutcome:
    payload = {"artifactUrl": artifact} if artifact else {}
    return TrainingOutcome.from_wire("COMPLETED", payload)


async def load_training(uow_factory, job_id: UUID):
    async with await uow_factory() as uow:
        return await uow.training_jobs.get_by_id(job_id)


async def load_image(uow_factory, job_id: UUID):
    async with await uow_factory() as uow:
        return await uow.image_jobs.get_by_id(job_id)


@pytest.fixture
def make_image_job(uow_factory, trained_model):
    """Insert a pending generation job that was charged one credit."""

    async def _make(tracking_id: str | None = "gen-100", owner_id: str = "owner-1") -> ImageGenerationJob:
        model = await trained_model(owner_id=owner_id)
        async with await uow_factory() as uow:
            return await uow.image_jobs.add(
                ImageGenerationJob(
                    owner_id=owner_id,
                    model_id=model.id,
                    prompt="a portrait",
                    external_tracking_id=tracking_id,
                    credits_reserved=1,
                    credits_charged=1,
                )
            )

    return _make


class TestTrainingReconciliation:
    @pytest.mark.asyncio
    async def test_success_with_exact_balance(
        self, reconciler, executor, make_training_job, grant, balance_of, uow_factory
    ):
        job = await make_training_job(tracking_id="t-1")
        await grant("owner-1", 20)

        result = await reconciler.reconcile_training("t-1", training_completed("u1"))

        assert result.status == JobStatus.GENERATED
        assert result.label == "processed"
        stored = await load_training(uow_factory, job.id)
        assert stored.status == JobStatus.GENERATED
        assert stored.tensor_path == "u1"
        assert stored.thumbnail_url == executor.preview_url
        assert stored.credits_charged == 20
        assert executor.preview_calls == ["u1"]
        assert await balance_of("owner-1") == 0

    @pytest.mark.asyncio
    async def test_repeated_success_is_a_no_op(
        self, reconciler, make_training_job, grant, balance_of
    ):
        await make_training_job(tracking_id="t-1")
        await grant("owner-1", 20)

        await reconciler.reconcile_training("t-1", training_completed("u1"))
        repeat = await reconciler.reconcile_training("t-1", training_completed("u2"))

        assert repeat.duplicate is True
        assert repeat.label == "duplicate"
        assert await balance_of("owner-1") == 0

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_successes_charge_once(
        self, reconciler, make_training_job, grant, balance_of, uow_factory
    ):
        job = await make_training_job(tracking_id="t-1")
        await grant("owner-1", 100)

        results = await asyncio.gather(
            *(reconciler.reconcile_training("t-1", training_completed("u1")) for _ in range(5))
        )

        applied = [r for r in results if not r.duplicate]
        assert len(applied) == 1
        assert all(r.status == JobStatus.GENERATED for r in results)
        assert await balance_of("owner-1") == 80
        assert (await load_training(uow_factory, job.id)).credits_charged == 20

    @pytest.mark.asyncio
    async def test_delivery_arriving_mid_completion_is_duplicate(
        self, reconciler, executor, make_training_job, grant, balance_of, uow_factory
    ):
        """A delivery held in the preview render while another completes the job."""
        job = await make_training_job(tracking_id="t-1")
        await grant("owner-1", 100)
        gate = asyncio.Event()
        executor.preview_gate = gate

        held = asyncio.create_task(reconciler.reconcile_training("t-1", training_completed("u1")))
        for _ in range(200):
            if executor.preview_calls:
                break
            await asyncio.sleep(0.01)
        assert executor.preview_calls == ["u1"]

        second = await reconciler.reconcile_training("t-1", training_completed("u1"))
        gate.set()
        first = await held

        assert second.status == JobStatus.GENERATED
        assert second.duplicate is False
        assert first.status == JobStatus.GENERATED
        assert first.duplicate is True
        assert await balance_of("owner-1") == 80
        assert (await load_training(uow_factory, job.id)).credits_charged == 20

    @pytest.mark.asyncio
    async def test_insufficient_balance_leaves_job_pending(
        self, reconciler, executor, make_training_job, grant, balance_of, uow_factory
    ):
        job = await make_training_job(tracking_id="t-1")
        await grant("owner-1", 5)

        with pytest.raises(InsufficientCreditsError):
            await reconciler.reconcile_training("t-1", training_completed("u1"))

        stored = await load_training(uow_factory, job.id)
        assert stored.status == JobStatus.PENDING
        assert stored.tensor_path is None
        assert stored.thumbnail_url is None
        assert executor.preview_calls == []
        assert await balance_of("owner-1") == 5

    @pytest.mark.asyncio
    async def test_unpaid_training_completes_after_top_up(
        self, reconciler, make_training_job, grant, balance_of, uow_factory
    ):
        job = await make_training_job(tracking_id="t-1")
        await grant("owner-1", 5)
        with pytest.raises(InsufficientCreditsError):
            await reconciler.reconcile_training("t-1", training_completed("u1"))

        await grant("owner-1", 15)
        result = await reconciler.reconcile_training("t-1", training_completed("u1"))

        assert result.status == JobStatus.GENERATED
        assert (await load_training(uow_factory, job.id)).tensor_path == "u1"
        assert await balance_of("owner-1") == 0

    @pytest.mark.asyncio
    async def test_error_outcome_fails_without_charge(
        self, reconciler, make_training_job, grant, balance_of, uow_factory
    ):
        job = await make_training_job(tracking_id="t-1")
        await grant("owner-1", 20)

        outcome = TrainingOutcome.from_wire("ERROR", {"artifactUrl": "should-not-store"}, "GPU crashed")
        result = await reconciler.reconcile_training("t-1", outcome)

        assert result.status == JobStatus.FAILED
        stored = await load_training(uow_factory, job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.tensor_path is None
        assert stored.error_data["message"] == "GPU crashed"
        assert await balance_of("owner-1") == 20

        repeat = await reconciler.reconcile_training("t-1", outcome)
        assert repeat.duplicate is True
        assert repeat.status == JobStatus.FAILED
        assert await balance_of("owner-1") == 20

    @pytest.mark.asyncio
    async def test_success_after_failure_is_ignored(
        self, reconciler, make_training_job, grant, balance_of, uow_factory
    ):
        job = await make_training_job(tracking_id="t-1")
        await grant("owner-1", 20)

        await reconciler.reconcile_training("t-1", TrainingOutcome.from_wire("FAILED"))
        result = await reconciler.reconcile_training("t-1", training_completed("u1"))

        assert result.duplicate is True
        assert (await load_training(uow_factory, job.id)).status == JobStatus.FAILED
        assert await balance_of("owner-1") == 20

    @pytest.mark.asyncio
    async def test_in_progress_keeps_job_pending(self, reconciler, make_training_job, uow_factory):
        job = await make_training_job(tracking_id="t-1")

        result = await reconciler.reconcile_training("t-1", TrainingOutcome.from_wire("processing"))

        assert result.status == JobStatus.PENDING
        assert result.label == "pending"
        assert (await load_training(uow_factory, job.id)).status == JobStatus.PENDING

    @pytest.mark.asyncio
    async def test_missing_artifact_is_fetched_from_executor(
        self, reconciler, executor, make_training_job, grant, uow_factory
    ):
        job = await make_training_job(tracking_id="t-1")
        await grant("owner-1", 20)
        executor.results["t-1"] = ExecutorResult(
            status="succeeded", payload={"output": {"weights": "https://weights.test/fetched"}}
        )

        result = await reconciler.reconcile_training("t-1", training_completed(None))

        assert result.status == JobStatus.GENERATED
        assert executor.fetch_calls[0][0] == "t-1"
        assert (await load_training(uow_factory, job.id)).tensor_path == "https://weights.test/fetched"

    @pytest.mark.asyncio
    async def test_unresolvable_artifact_fails_job(
        self, reconciler, executor, make_training_job, grant, balance_of, uow_factory
    ):
        job = await make_training_job(tracking_id="t-1")
        await grant("owner-1", 20)
        executor.results["t-1"] = ExecutorResult(status="succeeded", payload={"output": None})

        result = await reconciler.reconcile_training("t-1", training_completed(None))

        assert result.status == JobStatus.FAILED
        stored = await load_training(uow_factory, job.id)
        assert stored.error_data["reason"] == "PermanentExecutorError"
        assert await balance_of("owner-1") == 20

    @pytest.mark.asyncio
    async def test_preview_failure_fails_job_without_charge(
        self, reconciler, executor, make_training_job, grant, balance_of, uow_factory
    ):
        job = await make_training_job(tracking_id="t-1")
        await grant("owner-1", 20)

        async def broken_preview(tensor_path: str) -> str:
            raise RuntimeError("renderer unavailable")

        executor.generate_preview = broken_preview

        result = await reconciler.reconcile_training("t-1", training_completed("u1"))

        assert result.status == JobStatus.FAILED
        assert (await load_training(uow_factory, job.id)).tensor_path is None
        assert await balance_of("owner-1") == 20

    @pytest.mark.asyncio
    async def test_unknown_tracking_id(self, reconciler):
        with pytest.raises(NotFoundError):
            await reconciler.reconcile_training("nope", training_completed("u1"))


class TestGenerationReconciliation:
    @pytest.mark.asyncio
    async def test_completed_stores_first_image(self, reconciler, make_image_job, uow_factory, balance_of):
        job = await make_image_job()
        outcome = GenerationOutcome.from_wire(
            "OK", {"images": [{"url": "https://img.test/1.png"}, {"url": "https://img.test/2.png"}]}
        )

        result = await reconciler.reconcile_generation("gen-100", outcome)

        assert result.status == JobStatus.GENERATED
        stored = await load_image(uow_factory, job.id)
        assert stored.image_url == "https://img.test/1.png"
        assert stored.credits_charged == 1
        assert await balance_of("owner-1") == 0

    @pytest.mark.asyncio
    async def test_error_never_stores_image_url(self, reconciler, make_image_job, uow_factory):
        job = await make_image_job()
        outcome = GenerationOutcome.from_wire(
            "ERROR", {"images": [{"url": "https://img.test/partial.png"}]}, "nsfw"
        )

        result = await reconciler.reconcile_generation("gen-100", outcome)

        assert result.status == JobStatus.FAILED
        stored = await load_image(uow_factory, job.id)
        assert stored.image_url is None
        assert stored.error_data["reason"] == "executor_error"

    @pytest.mark.asyncio
    async def test_completed_without_image_fails(self, reconciler, make_image_job, uow_factory):
        job = await make_image_job()

        result = await reconciler.reconcile_generation(
            "gen-100", GenerationOutcome.from_wire("COMPLETED", {"images": []})
        )

        assert result.status == JobStatus.FAILED
        assert (await load_image(uow_factory, job.id)).error_data["reason"] == "missing_image_url"

    @pytest.mark.asyncio
    async def test_duplicate_completion_is_a_no_op(self, reconciler, make_image_job, uow_factory):
        job = await make_image_job()
        first = GenerationOutcome.from_wire("succeeded", {"output": ["https://img.test/a.png"]})
        second = GenerationOutcome.from_wire("succeeded", {"output": ["https://img.test/b.png"]})

        await reconciler.reconcile_generation("gen-100", first)
        repeat = await reconciler.reconcile_generation("gen-100", second)

        assert repeat.duplicate is True
        assert (await load_image(uow_factory, job.id)).image_url == "https://img.test/a.png"

    @pytest.mark.asyncio
    async def test_failed_generation_keeps_charge_by_default(self, reconciler, make_image_job, balance_of):
        await make_image_job()

        await reconciler.reconcile_generation("gen-100", GenerationOutcome.from_wire("ERROR"))

        assert await balance_of("owner-1") == 0

    @pytest.mark.asyncio
    async def test_failed_generation_refund_when_enabled(
        self, uow_factory, executor, ledger, make_image_job, balance_of
    ):
        job = await make_image_job()
        refunding = CompletionReconciler(
            uow_factory=uow_factory,
            executor=executor,
            ledger=ledger,
            train_model_credits=20,
            refund_failed_generations=True,
        )

        await refunding.reconcile_generation("gen-100", GenerationOutcome.from_wire("ERROR"))
        await refunding.reconcile_generation("gen-100", GenerationOutcome.from_wire("ERROR"))

        assert await balance_of("owner-1") == 1
        assert (await load_image(uow_factory, job.id)).credits_charged == 0

    @pytest.mark.asyncio
    async def test_in_progress_keeps_pending(self, reconciler, make_image_job):
        await make_image_job()

        result = await reconciler.reconcile_generation("gen-100", GenerationOutcome.from_wire("IN_QUEUE"))

        assert result.status == JobStatus.PENDING

    @pytest.mark.asyncio
    async def test_unknown_tracking_id(self, reconciler):
        with pytest.raises(NotFoundError):
            await reconciler.reconcile_generation("nope", GenerationOutcome.from_wire("OK"))


class TestUnconfirmedDispatch:
    @pytest.mark.asyncio
    async def test_callback_job_id_attaches_tracking_id(
        self, reconciler, make_training_job, grant, balance_of, uow_factory
    ):
        job = await make_training_job(unconfirmed=True)
        await grant("owner-1", 20)

        result = await reconciler.reconcile_training("t-late", training_completed("u1"), job_id=job.id)

        assert result.status == JobStatus.GENERATED
        stored = await load_training(uow_factory, job.id)
        assert stored.external_tracking_id == "t-late"
        assert stored.tensor_path == "u1"
        assert await balance_of("owner-1") == 0

        repeat = await reconciler.reconcile_training("t-late", training_completed("u1"))
        assert repeat.duplicate is True

    @pytest.mark.asyncio
    async def test_job_id_of_job_with_other_tracking_id_is_not_found(
        self, reconciler, make_training_job, uow_factory
    ):
        job = await make_training_job(tracking_id="t-1")

        with pytest.raises(NotFoundError):
            await reconciler.reconcile_training("t-other", training_completed("u1"), job_id=job.id)

        assert (await load_training(uow_factory, job.id)).status == JobStatus.PENDING

    @pytest.mark.asyncio
    async def test_generation_callback_found_by_job_id(self, reconciler, make_image_job, uow_factory):
        job = await make_image_job(tracking_id=None)
        outcome = GenerationOutcome.from_wire("succeeded", {"output": ["https://img.test/a.png"]})

        result = await reconciler.reconcile_generation("pred-late", outcome, job_id=job.id)

        assert result.status == JobStatus.GENERATED
        stored = await load_image(uow_factory, job.id)
        assert stored.external_tracking_id == "pred-late"
        assert stored.image_url == "https://img.test/a.png"

    @pytest.mark.asyncio
    async def test_expiring_generation_refunds_charge(
        self, reconciler, make_image_job, balance_of, uow_factory
    ):
        job = await make_image_job(tracking_id=None)

        result = await reconciler.expire_unconfirmed(JobKind.GENERATION, job.id)
        repeat = await reconciler.expire_unconfirmed(JobKind.GENERATION, job.id)

        assert result.status == JobStatus.FAILED
        assert repeat.duplicate is True
        stored = await load_image(uow_factory, job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.credits_charged == 0
        assert stored.error_data["reason"] == "dispatch_unconfirmed"
        assert await balance_of("owner-1") == 1

    @pytest.mark.asyncio
    async def test_expiring_training_fails_job(self, reconciler, make_training_job, uow_factory):
        job = await make_training_job(unconfirmed=True)

        result = await reconciler.expire_unconfirmed(JobKind.TRAINING, job.id)

        assert result.status == JobStatus.FAILED
        assert (await load_training(uow_factory, job.id)).status == JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_acknowledged_job_is_not_expired(self, reconciler, make_image_job, balance_of):
        job = await make_image_job(tracking_id="gen-100")

        result = await reconciler.expire_unconfirmed(JobKind.GENERATION, job.id)

        assert result.status == JobStatus.PENDING
        assert await balance_of("owner-1") == 0
