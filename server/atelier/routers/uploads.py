import asyncio

from fastapi import APIRouter, Depends, File, UploadFile, status

from atelier.core.config import settings
from atelier.services.errors import ValidationError
from atelier.utils.dependencies import get_current_user
from atelier.utils.storage import S3Storage, get_storage


router = APIRouter(prefix="/uploads", tags=["uploads"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def upload_attachment(file: UploadFile = File(...), current_user: dict = Depends(get_current_user), storage: S3Storage = Depends(get_storage)):
    mime_type = (file.content_type or "").split(";", 1)[0].strip().lower()
    if mime_type not in settings.allowed_mime_types:
        raise ValidationError(f"File type {mime_type or 'unknown'} is not allowed")
    max_bytes = settings.MAX_ATTACHMENT_MB * 1024 * 1024
    data = await file.read(max_bytes + 1)
    if len(data) > max_bytes:
        raise ValidationError(f"File is too large (max {settings.MAX_ATTACHMENT_MB}MB)")
    if not data:
        raise ValidationError("File is empty")
    # boto3 is sync
    return await asyncio.to_thread(
        storage.store_attachment, current_user["_id"], file.filename or "file.bin", data, mime_type
    )
