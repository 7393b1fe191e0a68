"""
Images Endpoint - Upload, Status, Delete

POST   /api/v1/images            - Upload an image and queue it for processing
GET    /api/v1/images/{task_id}  - Current task record
DELETE /api/v1/images/{task_id}  - Delete the task with all its blobs
"""

import posixpath
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, File, Response, UploadFile, status
from pydantic import BaseModel

from src.api.dependencies import get_image_service
from src.core.exceptions import ValidationError
from src.core.logging import get_logger
from src.modules.imagery.service import ImageService

logger = get_logger(__name__)
router = APIRouter()


# =============================================================================
# Response Schemas
# =============================================================================

class UploadResponse(BaseModel):
    """Response from upload endpoint."""
    task_id: str
    status: str = "PROCESSING"


class TaskResponse(BaseModel):
    """Task record response."""
    id: str
    status: str
    original_path: str
    requested_operations: List[str]
    processed_paths: Dict[str, str]
    created_at: Optional[str] = None


# =============================================================================
# Endpoints
# =============================================================================

@router.post("", response_model=UploadResponse, status_code=status.HTTP_202_ACCEPTED)
async def upload_image(
    image: UploadFile = File(...),
    service: ImageService = Depends(get_image_service)
):
    """
    Upload an image for processing.

    The image is stored, a PROCESSING task is recorded and a processing
    command is queued; the worker then writes resize, thumbnail and
    watermark variants.
    """
    extension = posixpath.splitext(image.filename or "")[1]
    if not extension:
        raise ValidationError("File must have an extension", details={"filename": image.filename})

    raw_bytes = await image.read()
    logger.debug("upload_received", filename=image.filename, size=len(raw_bytes))

    task_id = await service.submit(raw_bytes, extension)
    return UploadResponse(task_id=task_id)


@router.get("/{task_id}", response_model=TaskResponse)
async def get_image(
    task_id: str,
    service: ImageService = Depends(get_image_service)
):
    """Get the current task record, including derived blob paths."""
    task = await service.get_task(task_id)
    return TaskResponse(**task.to_response_dict())


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_image(
    task_id: str,
    service: ImageService = Depends(get_image_service)
):
    """Delete a task and its blobs. Unknown ids succeed."""
    await service.delete_task(task_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
