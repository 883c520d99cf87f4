"""FastAPI application factory."""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Callable, Coroutine

import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from photoai.api.routes import credits, generation, training, uploads, webhooks
from photoai.core import timezone  # noqa: F401  # sets TZ=UTC on import
from photoai.core.config import Settings, configure_logging
from photoai.core.database import setup_db_session
from photoai.services.executor import ReplicateExecutor
from photoai.services.ledger import Ledger
from photoai.services.object_storage import ObjectStorage
from photoai.services.reconciler import CompletionReconciler
from photoai.uow import create_uow_factory
from photoai.workers.pending_sweep_worker import run_pending_sweep_worker

logger = structlog.get_logger()


def create_resilient_worker(
    coro_func: Callable[..., Coroutine[Any, Any, None]],
    *args: Any,
    worker_name: str,
    shutdown_event: asyncio.Event,
) -> asyncio.Task:
    """Create a worker with automatic restart on failure.

    Args:
        coro_func: Worker coroutine function (e.g., run_pending_sweep_worker)
        *args: Arguments passed to coro_func on every (re)start
        worker_name: Human-readable worker name for logging
        shutdown_event: Event to signal graceful shutdown

    Returns:
        Initial task handle (will be auto-recreated on crash)
    """
    RESTART_DELAY = 1  # Fixed 1 second delay between restarts

    def on_worker_done(task: asyncio.Task):
        if shutdown_event.is_set():
            logger.info("worker.shutdown_complete", worker=worker_name)
            return

        if task.cancelled():
            logger.info("worker.cancelled", worker=worker_name)
            return

        exc = task.exception()
        if exc:
            logger.error(
                "worker.crashed",
                worker=worker_name,
                error=str(exc),
                error_type=type(exc).__name__,
                retry_in_seconds=RESTART_DELAY,
                exc_info=exc,
            )
        else:
            # Worker loops never return on their own
            logger.warning(
                "worker.stopped_unexpectedly",
                worker=worker_name,
                retry_in_seconds=RESTART_DELAY,
            )

        async def restart_worker():
            await asyncio.sleep(RESTART_DELAY)

            if shutdown_event.is_set():
                return

            logger.info("worker.restarting", worker=worker_name)
            new_task = asyncio.create_task(coro_func(*args))
            new_task.add_done_callback(on_worker_done)

        asyncio.create_task(restart_worker())

    task = asyncio.create_task(coro_func(*args))
    task.add_done_callback(on_worker_done)
    return task


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: Configure logging, build session/UoW factories, executor, object
      storage and reconciler, start the pending sweep worker
    - Shutdown: Stop the worker, dispose of the engine
    """
    settings = Settings()  # type: ignore[call-arg]

    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    executor = ReplicateExecutor.from_settings(settings)
    storage = ObjectStorage.from_settings(settings)
    reconciler = CompletionReconciler(
        uow_factory=uow_factory,
        executor=executor,
        ledger=Ledger(),
        train_model_credits=settings.train_model_credits,
        refund_failed_generations=settings.refund_failed_generations,
    )

    # Store in app.state for access in routes
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.executor = executor
    app.state.storage = storage

    shutdown_event = asyncio.Event()

    sweep_task = None
    if settings.sweep_enabled:
        sweep_task = create_resilient_worker(
            run_pending_sweep_worker,
            uow_factory,
            executor,
            reconciler,
            settings,
            worker_name="pending_sweep",
            shutdown_event=shutdown_event,
        )
    else:
        logger.info("startup.sweep_disabled")

    logger.info("application.startup", db_url=settings.database_url.split("@")[-1])

    yield

    logger.info("application.shutdown")
    shutdown_event.set()

    if sweep_task is not None:
        sweep_task.cancel()
        await asyncio.gather(sweep_task, return_exceptions=True)

    engine = session_factory.kw.get("bind")
    if engine is not None:
        await engine.dispose()


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="PhotoAI Backend API",
        description="Personalized image generation: model training, generation and credits",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers carry their own prefixes
    app.include_router(training.router)
    app.include_router(generation.router)
    app.include_router(credits.router)
    app.include_router(uploads.router)
    app.include_router(webhooks.router)

    @app.get("/health")
    async def health_check(response: Response):
        """Health check endpoint with database connectivity test.

        Returns:
            200: {"status": "healthy"} if database connection succeeds
            503: {"status": "unhealthy", "error": {...}} if database connection fails
        """
        try:
            async with app.state.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()

            logger.debug("health_check.success")
            return {"status": "healthy"}

        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                },
            }

    return app


# Create app instance for uvicorn
app = create_app()
