"""FastAPI dependencies for request validation and common operations.

This module provides reusable FastAPI dependencies for:
- Webhook signature validation
- Owner identity resolution
- Service construction (submitter, reconciler, ledger)
"""

from typing import Annotated, Callable

import structlog
from fastapi import Depends, Header, HTTPException, Request, status

from photoai.core.config import Settings
from photoai.services.executor.base import Executor
from photoai.services.ledger import Ledger
from photoai.services.object_storage import ObjectStorage
from photoai.services.reconciler import CompletionReconciler
from photoai.services.submitter import JobSubmitter
from photoai.services.webhook_signature import validate_webhook_signature
from photoai.uow import UnitOfWork

logger = structlog.get_logger()


def get_settings() -> Settings:
    """Get application settings instance.

    Returns:
        Settings instance loaded from environment variables.
    """
    return Settings()  # type: ignore[call-arg]  # Pydantic loads from env vars


def get_uow_factory(request: Request) -> Callable[[], UnitOfWork]:
    """Get UnitOfWork factory from app state.

    Example:
        >>> @router.post("/endpoint")
        >>> async def endpoint(uow_factory=Depends(get_uow_factory)):
        ...     async with await uow_factory() as uow:
        ...         await uow.training_jobs.get_by_id(model_id)
    """
    return request.app.state.uow_factory


def get_executor(request: Request) -> Executor:
    """Get the external executor from app state."""
    return request.app.state.executor


def get_storage(request: Request) -> ObjectStorage:
    """Get the object storage client from app state."""
    return request.app.state.storage


def get_ledger() -> Ledger:
    return Ledger()


def get_owner_id(x_user_id: Annotated[str | None, Header()] = None) -> str:
    """Resolve the authenticated owner.

    Authentication happens upstream (gateway / auth middleware), which forwards
    the resolved identity in the X-User-Id header.

    Raises:
        HTTPException: 401 Unauthorized if no identity was supplied
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    return x_user_id.strip()


def get_submitter(
    uow_factory=Depends(get_uow_factory),
    executor: Executor = Depends(get_executor),
    ledger: Ledger = Depends(get_ledger),
    settings: Settings = Depends(get_settings),
) -> JobSubmitter:
    return JobSubmitter(
        uow_factory=uow_factory,
        executor=executor,
        ledger=ledger,
        image_gen_cost=settings.image_gen_cost,
    )


def get_reconciler(
    uow_factory=Depends(get_uow_factory),
    executor: Executor = Depends(get_executor),
    ledger: Ledger = Depends(get_ledger),
    settings: Settings = Depends(get_settings),
) -> CompletionReconciler:
    return CompletionReconciler(
        uow_factory=uow_factory,
        executor=executor,
        ledger=ledger,
        train_model_credits=settings.train_model_credits,
        refund_failed_generations=settings.refund_failed_generations,
    )


async def verify_executor_webhook(
    request: Request,
    webhook_id: Annotated[str | None, Header()] = None,
    webhook_timestamp: Annotated[str | None, Header()] = None,
    webhook_signature: Annotated[str | None, Header()] = None,
    settings: Settings = Depends(get_settings),
) -> bytes:
    """Validate executor webhook signature before processing request.

    Reads the raw request body and validates the Standard Webhooks signature
    headers. Validation is skipped (with a warning) when no secret is
    configured, which Settings only permits in test environments.

    Returns:
        Raw request body bytes (for further processing by the endpoint)

    Raises:
        HTTPException: 401 Unauthorized if signature headers are missing or invalid
    """
    raw_body = await request.body()

    if not settings.executor_webhook_secret:
        logger.warning("webhook.signature_check_disabled")
        return raw_body

    if not webhook_id or not webhook_timestamp or not webhook_signature:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing webhook signature headers"
        )

    is_valid = validate_webhook_signature(
        raw_body=raw_body,
        webhook_id=webhook_id,
        timestamp=webhook_timestamp,
        signature_header=webhook_signature,
        secret=settings.executor_webhook_secret,
        tolerance_seconds=settings.webhook_tolerance_seconds,
    )

    if not is_valid:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature"
        )

    return raw_body
