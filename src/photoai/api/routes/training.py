"""Model training API endpoints.

- POST /api/ai/training - Dispatch a training run for the caller's photo archive
- GET /api/ai/models/{model_id} - Inspect a training job

Training is free to submit. The TRAIN_MODEL_CREDITS charge is applied when the
executor reports success (see CompletionReconciler).
"""

from datetime import datetime
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, status
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from photoai.api.dependencies import get_owner_id, get_submitter
from photoai.api.errors import api_error, service_error_to_http
from photoai.core.dependencies import get_uow
from photoai.models.job import Ethnicity, EyeColor, JobStatus, ModelType
from photoai.services.exceptions import ServiceError
from photoai.services.submitter import JobSubmitter, ModelAttributes
from photoai.uow import UnitOfWork

logger = structlog.get_logger()
router = APIRouter(prefix="/api/ai", tags=["training"])


# Request/Response Models


class TrainModelRequest(BaseModel):
    """Request model for a training run."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=100, description="Model name, used as trigger word")
    type: ModelType
    age: int = Field(..., ge=1, le=120)
    ethnicity: Ethnicity = Field(..., validation_alias=AliasChoices("ethnicity", "ethinicity"))
    eye_color: EyeColor = Field(..., validation_alias=AliasChoices("eye_color", "eyeColor"))
    bald: bool = False
    zip_url: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("zip_url", "zipUrl"),
        description="Object store URL of the uploaded photo archive",
    )


class TrainModelResponse(BaseModel):
    model_id: UUID
    # None while the executor has not acknowledged the dispatch
    tracking_id: str | None = None
    status: JobStatus


class TrainingJobResponse(BaseModel):
    """Public view of a training job."""

    id: UUID
    name: str
    status: JobStatus
    thumbnail_url: str | None
    credits_charged: int
    created_at: datetime
    updated_at: datetime


# Endpoints


@router.post("/training", response_model=TrainModelResponse, status_code=status.HTTP_202_ACCEPTED)
async def train_model(
    request: TrainModelRequest,
    owner_id: str = Depends(get_owner_id),
    submitter: JobSubmitter = Depends(get_submitter),
) -> TrainModelResponse:
    """Dispatch a training run and return immediately.

    Returns:
        The pending job id and the executor's tracking id (null if the
        executor timed out; the job is then settled by callback or sweep)

    Raises:
        HTTPException: 422 invalid attributes, 503 executor unavailable (retryable),
            502 executor rejected the request
    """
    attributes = ModelAttributes(
        name=request.name,
        type=request.type,
        age=request.age,
        ethnicity=request.ethnicity,
        eye_color=request.eye_color,
        bald=request.bald,
    )

    try:
        job = await submitter.submit_training(owner_id, attributes, request.zip_url)
    except ServiceError as e:
        logger.warning("training.submit_failed", owner_id=owner_id, code=e.code, error=str(e))
        raise service_error_to_http(e)

    return TrainModelResponse(model_id=job.id, tracking_id=job.external_tracking_id, status=job.status)


@router.get("/models/{model_id}", response_model=TrainingJobResponse)
async def get_model(
    model_id: UUID,
    owner_id: str = Depends(get_owner_id),
    uow: UnitOfWork = Depends(get_uow),
) -> TrainingJobResponse:
    """Return a training job owned by the caller.

    Raises:
        HTTPException: 404 if the job does not exist or belongs to someone else
    """
    job = await uow.training_jobs.get_by_id(model_id)
    if job is None or job.owner_id != owner_id:
        raise api_error(status.HTTP_404_NOT_FOUND, "not_found", f"Model {model_id} not found")

    return TrainingJobResponse(
        id=job.id,
        name=job.name,
        status=job.status,
        thumbnail_url=job.thumbnail_url,
        credits_charged=job.credits_charged,
        created_at=job.created_at,
        updated_at=job.updated_at,
    )
