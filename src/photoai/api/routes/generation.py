"""Image generation API endpoints.

- POST /api/ai/generate - One image from a prompt and a trained model
- POST /api/pack/generate - One image per prompt of a curated pack
- GET /api/ai/images/{image_id} - Inspect a generation job

Both submission endpoints charge IMAGE_GEN_COST per image up front. Credits of
dispatches that fail are refunded before the response is sent.
"""

from datetime import datetime
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, status
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from photoai.api.dependencies import get_owner_id, get_submitter
from photoai.api.errors import api_error, service_error_to_http
from photoai.core.dependencies import get_uow
from photoai.models.job import ImageGenerationJob, JobStatus
from photoai.services.exceptions import ServiceError
from photoai.services.submitter import JobSubmitter
from photoai.uow import UnitOfWork

logger = structlog.get_logger()
router = APIRouter(tags=["generation"])


# Request/Response Models


class GenerateImageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt: str = Field(..., description="Text prompt (1-1000 characters after trimming)")
    model_id: UUID = Field(..., validation_alias=AliasChoices("model_id", "modelId"))


class GeneratePackRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    model_id: UUID = Field(..., validation_alias=AliasChoices("model_id", "modelId"))
    pack_id: UUID = Field(..., validation_alias=AliasChoices("pack_id", "packId"))


class ImageJobResponse(BaseModel):
    """Public view of a generation job."""

    id: UUID
    model_id: UUID
    pack_id: UUID | None
    prompt: str
    status: JobStatus
    image_url: str | None
    credits_charged: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_job(cls, job: ImageGenerationJob) -> "ImageJobResponse":
        return cls(
            id=job.id,
            model_id=job.model_id,
            pack_id=job.pack_id,
            prompt=job.prompt,
            status=job.status,
            image_url=job.image_url,
            credits_charged=job.credits_charged,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


class GenerateImageResponse(BaseModel):
    image_id: UUID
    tracking_id: str | None = None
    status: JobStatus


class GeneratePackResponse(BaseModel):
    images: list[GenerateImageResponse]
    failed_count: int


# Endpoints


@router.post(
    "/api/ai/generate", response_model=GenerateImageResponse, status_code=status.HTTP_202_ACCEPTED
)
async def generate_image(
    request: GenerateImageRequest,
    owner_id: str = Depends(get_owner_id),
    submitter: JobSubmitter = Depends(get_submitter),
) -> GenerateImageResponse:
    """Charge and dispatch a single generation.

    Raises:
        HTTPException: 422 bad prompt, 404 unknown or untrained model,
            402 insufficient credits, 503 / 502 executor rejected the dispatch
            (job failed, credits refunded). A timeout returns 202 with a null
            tracking id.
    """
    try:
        job = await submitter.submit_generation(owner_id, request.model_id, request.prompt)
    except ServiceError as e:
        logger.warning("generation.submit_failed", owner_id=owner_id, code=e.code, error=str(e))
        raise service_error_to_http(e)

    return GenerateImageResponse(
        image_id=job.id, tracking_id=job.external_tracking_id, status=job.status
    )


@router.post(
    "/api/pack/generate", response_model=GeneratePackResponse, status_code=status.HTTP_202_ACCEPTED
)
async def generate_pack(
    request: GeneratePackRequest,
    owner_id: str = Depends(get_owner_id),
    submitter: JobSubmitter = Depends(get_submitter),
) -> GeneratePackResponse:
    """Fan a pack out into one generation per prompt.

    Partial dispatch failures still return 202; `failed_count` reports how many
    prompts were refunded.
    """
    try:
        submission = await submitter.submit_pack_generation(
            owner_id, request.model_id, request.pack_id
        )
    except ServiceError as e:
        logger.warning("pack.submit_failed", owner_id=owner_id, code=e.code, error=str(e))
        raise service_error_to_http(e)

    return GeneratePackResponse(
        images=[
            GenerateImageResponse(
                image_id=job.id, tracking_id=job.external_tracking_id, status=job.status
            )
            for job in submission.jobs
        ],
        failed_count=submission.failed_count,
    )


@router.get("/api/ai/images/{image_id}", response_model=ImageJobResponse)
async def get_image(
    image_id: UUID,
    owner_id: str = Depends(get_owner_id),
    uow: UnitOfWork = Depends(get_uow),
) -> ImageJobResponse:
    job = await uow.image_jobs.get_by_id(image_id)
    if job is None or job.owner_id != owner_id:
        raise api_error(status.HTTP_404_NOT_FOUND, "not_found", f"Image {image_id} not found")
    return ImageJobResponse.from_job(job)
