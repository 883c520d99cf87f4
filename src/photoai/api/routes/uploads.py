"""Pre-signed upload URL endpoint.

Clients PUT their training archive directly to the object store using the
returned URL, then submit `object_url` as `zip_url` to POST /api/ai/training.
"""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from photoai.api.dependencies import get_owner_id, get_storage
from photoai.api.errors import service_error_to_http
from photoai.services.exceptions import ServiceError
from photoai.services.object_storage import ObjectStorage

router = APIRouter(prefix="/api/uploads", tags=["uploads"])


class PresignedUrlResponse(BaseModel):
    upload_url: str
    object_url: str
    key: str
    expires_in: int


@router.get("/presigned-url", response_model=PresignedUrlResponse)
async def get_presigned_url(
    filename: str = Query("images.zip", min_length=1, max_length=255),
    content_type: str | None = Query(None, alias="contentType"),
    owner_id: str = Depends(get_owner_id),
    storage: ObjectStorage = Depends(get_storage),
) -> PresignedUrlResponse:
    """Issue a pre-signed PUT URL under the caller's upload prefix.

    Raises:
        HTTPException: 422 empty filename, 503 object store unavailable
    """
    try:
        upload = storage.presign_upload(owner_id, filename, content_type)
    except ServiceError as e:
        raise service_error_to_http(e)

    return PresignedUrlResponse(
        upload_url=upload.upload_url,
        object_url=upload.object_url,
        key=upload.key,
        expires_in=upload.expires_in,
    )
