"""Executor webhook endpoints.

The executor calls back when a training run or an image generation reaches a
status. Both endpoints accept the shapes the supported providers send:

- {"request_id", "status", "payload", "error"}   (queue-style providers)
- {"trackingId", "status", "payload"}
- {"id", "status", "output", "error"}            (Replicate prediction/training objects)

The optional job_id query parameter is the local job id the callback URL was
built with; it matches jobs whose dispatch acknowledgement never arrived.

Callbacks may be delivered more than once. Responses report what happened to
the job: processed, failed, pending or duplicate.
"""

import json
from typing import Any
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from photoai.api.dependencies import get_reconciler, verify_executor_webhook
from photoai.api.errors import service_error_to_http
from photoai.services.exceptions import InsufficientCreditsError, NotFoundError
from photoai.services.outcomes import GenerationOutcome, TrainingOutcome
from photoai.services.reconciler import CompletionReconciler, ReconcileResult

logger = structlog.get_logger()
router = APIRouter(prefix="/webhooks/executor", tags=["webhooks"])


class ExecutorCallback(BaseModel):
    """Normalized executor callback body."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    tracking_id: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("request_id", "trackingId", "tracking_id", "id")
    )
    status: str | None = None
    payload: dict[str, Any] | None = None
    output: Any = None
    error: Any = None

    def outcome_payload(self) -> dict[str, Any] | None:
        if self.payload is not None:
            return self.payload
        if self.output is not None:
            return {"output": self.output}
        return None

    def error_message(self) -> str | None:
        if self.error is None:
            return None
        if isinstance(self.error, str):
            return self.error
        return json.dumps(self.error, default=str)


def parse_callback(raw_body: bytes) -> ExecutorCallback:
    """Parse the raw webhook body.

    Raises:
        HTTPException: 400 Bad Request on invalid JSON or missing tracking id
    """
    try:
        data = json.loads(raw_body)
    except json.JSONDecodeError as e:
        logger.error("webhook.invalid_json", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid JSON payload: {str(e)}"
        )

    if not isinstance(data, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook payload must be a JSON object"
        )

    try:
        return ExecutorCallback.model_validate(data)
    except PydanticValidationError as e:
        logger.error("webhook.malformed", errors=e.errors(include_url=False))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Missing tracking id in payload"
        )


def _response(callback: ExecutorCallback, result: ReconcileResult) -> dict[str, Any]:
    return {
        "status": result.label,
        "tracking_id": callback.tracking_id,
        "job_status": result.status.value,
    }


@router.post("/train")
async def receive_training_webhook(
    raw_body: bytes = Depends(verify_executor_webhook),
    reconciler: CompletionReconciler = Depends(get_reconciler),
    job_id: UUID | None = Query(None),
):
    """Apply a training outcome.

    HTTP Status Codes:
        200: Outcome applied, still pending, or duplicate
        400: Malformed payload
        401: Bad signature
        402: Run completed but the owner cannot pay; job stays pending and the
            executor's retry (or the sweep worker) picks it up later
        404: Unknown tracking id (and no matching job_id)
    """
    callback = parse_callback(raw_body)
    logger.info("webhook.training_received", tracking_id=callback.tracking_id, status=callback.status)

    outcome = TrainingOutcome.from_wire(
        callback.status, callback.outcome_payload(), callback.error_message()
    )

    try:
        result = await reconciler.reconcile_training(callback.tracking_id, outcome, job_id=job_id)
    except (NotFoundError, InsufficientCreditsError) as e:
        raise service_error_to_http(e)

    return _response(callback, result)


@router.post("/image")
async def receive_image_webhook(
    raw_body: bytes = Depends(verify_executor_webhook),
    reconciler: CompletionReconciler = Depends(get_reconciler),
    job_id: UUID | None = Query(None),
):
    """Apply a generation outcome.

    HTTP Status Codes:
        200: Outcome applied, still pending, or duplicate
        400: Malformed payload
        401: Bad signature
        404: Unknown tracking id (and no matching job_id)
    """
    callback = parse_callback(raw_body)
    logger.info("webhook.image_received", tracking_id=callback.tracking_id, status=callback.status)

    outcome = GenerationOutcome.from_wire(
        callback.status, callback.outcome_payload(), callback.error_message()
    )

    try:
        result = await reconciler.reconcile_generation(callback.tracking_id, outcome, job_id=job_id)
    except NotFoundError as e:
        raise service_error_to_http(e)

    return _response(callback, result)
