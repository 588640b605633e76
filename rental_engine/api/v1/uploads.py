"""Upload relay API endpoints.

No ``X-User-ID`` here: possession of the session id is the only credential.
"""

from fastapi import APIRouter, File, UploadFile, status

from rental_engine.api.v1.dependencies import UploadRelayServiceDep
from rental_engine.schemas.common import SuccessResponse
from rental_engine.schemas.upload import (
    ImageUploadRequest,
    ImageUploadResponse,
    UploadPollResponse,
    UploadSessionCreate,
    UploadSessionResponse,
)

router = APIRouter()


@router.post(
    "/sessions",
    response_model=UploadSessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open an upload session",
)
async def create_session(
    relay: UploadRelayServiceDep,
    session_data: UploadSessionCreate | None = None,
) -> UploadSessionResponse:
    """Open a session; the consumer URL is rendered as a QR code by the client."""
    session = await relay.create_session(session_data.photo_slot if session_data else None)
    return UploadSessionResponse.model_validate(session)


@router.post(
    "/sessions/{session_id}/images",
    response_model=ImageUploadResponse,
    summary="Append an image reference",
)
async def upload_image(
    session_id: str,
    image_data: ImageUploadRequest,
    relay: UploadRelayServiceDep,
) -> ImageUploadResponse:
    count = await relay.upload(session_id, image_data.image_url)
    return ImageUploadResponse(count=count)


@router.post(
    "/sessions/{session_id}/files",
    response_model=ImageUploadResponse,
    summary="Upload an image file",
)
async def upload_file(
    session_id: str,
    relay: UploadRelayServiceDep,
    image: UploadFile = File(...),
) -> ImageUploadResponse:
    """Store the image in the blob directory and append its URL."""
    content = await image.read()
    count = await relay.store_file(session_id, image.filename, image.content_type, content)
    return ImageUploadResponse(count=count)


@router.get(
    "/sessions/{session_id}",
    response_model=UploadPollResponse,
    summary="Poll an upload session",
)
async def poll_session(
    session_id: str,
    relay: UploadRelayServiceDep,
) -> UploadPollResponse:
    """Images uploaded so far in arrival order; 404 once closed or expired."""
    snapshot = await relay.poll(session_id)
    return UploadPollResponse.model_validate(snapshot)


@router.delete(
    "/sessions/{session_id}",
    response_model=SuccessResponse,
    summary="Close an upload session",
)
async def close_session(
    session_id: str,
    relay: UploadRelayServiceDep,
) -> SuccessResponse:
    await relay.close(session_id)
    return SuccessResponse(message="Upload session closed")
