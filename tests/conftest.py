"""pytest fixtures for photoai backend tests.

Provides:
- utc_timezone: Autouse fixture enforcing UTC timezone
- session_factory: Function-scoped database with a fresh schema
  (SQLite file via aiosqlite, or TEST_DATABASE_URL for PostgreSQL)
- uow_factory: Function-scoped UnitOfWork factory
- executor: In-memory executor recording dispatches
- submitter / reconciler: Services wired to the fixtures above
- client: httpx AsyncClient bound to the FastAPI app
"""

import asyncio
import itertools
import os
from datetime import datetime
from typing import Any, AsyncGenerator
from uuid import UUID

# Settings are read at import time by photoai.app
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./photoai-test.db")
os.environ.setdefault("SWEEP_ENABLED", "false")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

from photoai import models  # noqa: E402, F401
from photoai.core.database import setup_db_session  # noqa: E402
from photoai.models.job import (  # noqa: E402
    Ethnicity,
    EyeColor,
    JobKind,
    JobStatus,
    ModelType,
    TrainingJob,
)
from photoai.models.pack import Pack  # noqa: E402
from photoai.services.executor.base import DispatchResult, ExecutorResult  # noqa: E402
from photoai.services.ledger import Ledger  # noqa: E402
from photoai.services.object_storage import ObjectStorage  # noqa: E402
from photoai.services.reconciler import CompletionReconciler  # noqa: E402
from photoai.services.submitter import JobSubmitter  # noqa: E402
from photoai.uow import create_uow_factory  # noqa: E402

IMAGE_GEN_COST = 1
TRAIN_MODEL_CREDITS = 20


class FakeExecutor:
    """In-memory executor.

    Failures can be injected per prompt (generation_failures) or for every call
    (training_failure / generation_failure). fetch_result answers from `results`,
    defaulting to an in-progress status. A preview_gate event holds the next
    preview render until it is set.
    """

    def __init__(self):
        self._ids = itertools.count(1)
        self.training_dispatches: list[dict[str, Any]] = []
        self.generation_dispatches: list[dict[str, Any]] = []
        self.training_failure: Exception | None = None
        self.generation_failure: Exception | None = None
        self.generation_failures: dict[str, Exception] = {}
        self.results: dict[str, ExecutorResult] = {}
        self.fetch_calls: list[tuple[str, JobKind]] = []
        self.preview_calls: list[str] = []
        self.preview_url = "https://cdn.test/preview.png"
        self.preview_gate: asyncio.Event | None = None

    async def dispatch_training(self, zip_url: str, name: str, job_id: UUID) -> DispatchResult:
        if self.training_failure is not None:
            raise self.training_failure
        tracking_id = f"train-{next(self._ids)}"
        self.training_dispatches.append(
            {"zip_url": zip_url, "name": name, "job_id": job_id, "tracking_id": tracking_id}
        )
        return DispatchResult(tracking_id=tracking_id)

    async def dispatch_generation(self, prompt: str, tensor_path: str, job_id: UUID) -> DispatchResult:
        failure = self.generation_failures.get(prompt) or self.generation_failure
        if failure is not None:
            raise failure
        tracking_id = f"gen-{next(self._ids)}"
        self.generation_dispatches.append(
            {"prompt": prompt, "tensor_path": tensor_path, "job_id": job_id, "tracking_id": tracking_id}
        )
        return DispatchResult(tracking_id=tracking_id)

    async def fetch_result(self, tracking_id: str, kind: JobKind) -> ExecutorResult:
        self.fetch_calls.append((tracking_id, kind))
        return self.results.get(tracking_id, ExecutorResult(status="IN_PROGRESS"))

    async def generate_preview(self, tensor_path: str) -> str:
        self.preview_calls.append(tensor_path)
        gate, self.preview_gate = self.preview_gate, None
        if gate is not None:
            await gate.wait()
        return self.preview_url


class StubS3Client:
    """Minimal stand-in for a boto3 S3 client."""

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls: list[dict[str, Any]] = []

    def generate_presigned_url(self, ClientMethod, Params, ExpiresIn):
        self.calls.append({"method": ClientMethod, "params": Params, "expires_in": ExpiresIn})
        if self.error is not None:
            raise self.error
        return f"https://signed.test/{Params['Bucket']}/{Params['Key']}?X-Amz-Expires={ExpiresIn}"


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest_asyncio.fixture(scope="function")
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Provide a session factory over an empty schema.

    Each test gets its own SQLite file unless TEST_DATABASE_URL points at a
    PostgreSQL database, in which case tables are dropped and recreated.
    """
    db_url = os.environ.get("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'photoai.db'}"
    factory = setup_db_session(db_url, pool_size=20)
    engine = factory.kw["bind"]

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
        await conn.run_sync(SQLModel.metadata.create_all)

    yield factory

    await engine.dispose()


@pytest.fixture
def uow_factory(session_factory):
    """Provide function-scoped UnitOfWork factory."""
    return create_uow_factory(session_factory)


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def ledger() -> Ledger:
    return Ledger()


@pytest.fixture
def submitter(uow_factory, executor, ledger) -> JobSubmitter:
    return JobSubmitter(
        uow_factory=uow_factory,
        executor=executor,
        ledger=ledger,
        image_gen_cost=IMAGE_GEN_COST,
    )


@pytest.fixture
def reconciler(uow_factory, executor, ledger) -> CompletionReconciler:
    return CompletionReconciler(
        uow_factory=uow_factory,
        executor=executor,
        ledger=ledger,
        train_model_credits=TRAIN_MODEL_CREDITS,
    )


@pytest.fixture
def grant(uow_factory, ledger):
    """Add credits to an owner's account."""

    async def _grant(owner_id: str, amount: int) -> None:
        async with await uow_factory() as uow:
            await ledger.credit(uow, owner_id, amount)

    return _grant


@pytest.fixture
def balance_of(uow_factory, ledger):
    """Read an owner's current balance."""

    async def _balance_of(owner_id: str) -> int:
        async with await uow_factory() as uow:
            return await ledger.get_balance(uow, owner_id)

    return _balance_of


@pytest.fixture
def make_training_job(uow_factory):
    """Insert a training job directly (bypassing the executor)."""
    counter = itertools.count(1)

    async def _make(
        owner_id: str = "owner-1",
        status: JobStatus = JobStatus.PENDING,
        tensor_path: str | None = None,
        tracking_id: str | None = None,
        updated_at: datetime | None = None,
        created_at: datetime | None = None,
        unconfirmed: bool = False,
    ) -> TrainingJob:
        job = TrainingJob(
            owner_id=owner_id,
            external_tracking_id=None if unconfirmed else tracking_id or f"seed-train-{next(counter)}",
            status=status,
            name="alex",
            type=ModelType.MAN,
            age=30,
            ethnicity=Ethnicity.WHITE,
            eye_color=EyeColor.BROWN,
            bald=False,
            zip_url="https://bucket.test/uploads/owner-1/images.zip",
            tensor_path=tensor_path,
        )
        if updated_at is not None:
            job.updated_at = updated_at
        if created_at is not None:
            job.created_at = created_at
        async with await uow_factory() as uow:
            return await uow.training_jobs.add(job)

    return _make


@pytest.fixture
def trained_model(make_training_job):
    """Insert a generated (usable) model for an owner."""

    async def _trained(owner_id: str = "owner-1") -> TrainingJob:
        return await make_training_job(
            owner_id=owner_id,
            status=JobStatus.GENERATED,
            tensor_path="https://weights.test/lora.safetensors",
        )

    return _trained


@pytest.fixture
def make_pack(uow_factory):
    """Insert a pack with the given prompts."""
    counter = itertools.count(1)

    async def _make(prompts: list[str], name: str | None = None) -> Pack:
        async with await uow_factory() as uow:
            return await uow.packs.add(Pack(name=name or f"pack-{next(counter)}"), prompts)

    return _make


@pytest.fixture
def s3_client() -> StubS3Client:
    return StubS3Client()


@pytest.fixture
def storage(s3_client) -> ObjectStorage:
    return ObjectStorage(
        bucket="photoai-test",
        region="ap-south-1",
        access_key_id="test",
        secret_access_key="test",
        client=s3_client,
    )


@pytest.fixture
def app(session_factory, uow_factory, executor, storage):
    """FastAPI app with test state injected (lifespan is not run)."""
    from photoai.app import create_app

    app = create_app()
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.executor = executor
    app.state.storage = storage
    yield app
    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
