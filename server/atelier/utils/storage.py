import re
import uuid
from typing import Dict, Optional

import boto3
from botocore.exceptions import ClientError

from atelier.core.config import settings


def _safe_file_name(file_name: str) -> str:
    raw = str(file_name or "").strip() or "file.bin"
    return re.sub(r"[^A-Za-z0-9._-]+", "_", raw)


def build_object_key(prefix: str, file_name: str) -> str:
    safe_name = _safe_file_name(file_name)
    return f"{prefix.strip('/')}/{uuid.uuid4().hex}-{safe_name}"


class S3Storage:

    def __init__(self) -> None:
        self.bucket = settings.S3_BUCKET
        self.client = boto3.client(
            "s3",
            endpoint_url=settings.S3_ENDPOINT or None,
            aws_access_key_id=settings.S3_ACCESS_KEY or None,
            aws_secret_access_key=settings.S3_SECRET_KEY or None,
            region_name=settings.S3_REGION,
        )
        self._bucket_checked = False

    def ensure_bucket(self) -> None:
        if self._bucket_checked:
            return
        try:
            self.client.head_bucket(Bucket=self.bucket)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code not in {"404", "NoSuchBucket", "NotFound"}:
                raise
            kwargs: dict = {"Bucket": self.bucket}
            if settings.S3_REGION and settings.S3_REGION != "us-east-1":
                kwargs["CreateBucketConfiguration"] = {"LocationConstraint": settings.S3_REGION}
            self.client.create_bucket(**kwargs)
        self._bucket_checked = True

    def public_url(self, key: str) -> str:
        base = settings.S3_PUBLIC_BASE_URL.rstrip("/")
        if not base:
            base = f"{(settings.S3_ENDPOINT or 'https://s3.amazonaws.com').rstrip('/')}/{self.bucket}"
        return f"{base}/{key}"

    def put_object(self, key: str, data: bytes, mime_type: str) -> str:
        self.ensure_bucket()
        self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=mime_type)
        return self.public_url(key)

    def store_attachment(self, owner_id: str, file_name: str, data: bytes, mime_type: str) -> Dict[str, str]:
        key = build_object_key(f"messages/{owner_id}", file_name)
        url = self.put_object(key, data, mime_type)
        return {
            "attachment_url": url,
            "attachment_type": mime_type,
            "attachment_name": str(file_name or "").strip() or "file.bin",
        }


_storage: Optional[S3Storage] = None


def get_storage() -> S3Storage:
    global _storage
    if _storage is None:
        _storage = S3Storage()
    return _storage
