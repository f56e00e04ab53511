from __future__ import annotations

import logging
from functools import lru_cache
from io import BytesIO
from typing import Any, Protocol
from urllib.parse import quote, unquote, urlparse

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from cyberhr.settings import get_settings, get_storage_public_base_url

logger = logging.getLogger("cyberhr.storage")


class ObjectStoreError(Exception):
    def __init__(self, operation: str, bucket: str, path: str | None = None, detail: str | None = None):
        self.operation = operation
        self.bucket = bucket
        self.path = path
        self.detail = detail
        super().__init__(f"object store {operation} failed for {bucket}/{path or ''}")


class ObjectAlreadyExistsError(ObjectStoreError):
    def __init__(self, bucket: str, path: str):
        super().__init__("upload", bucket, path, detail="object already exists")


class ObjectStore(Protocol):
    def upload(self, bucket: str, path: str, data: bytes, *, content_type: str, upsert: bool) -> str: ...

    def get_public_url(self, bucket: str, path: str) -> str: ...

    def create_signed_url(self, bucket: str, path: str, ttl_seconds: int) -> str | None: ...

    def remove(self, bucket: str, paths: list[str]) -> None: ...


def path_from_public_url(url: str, bucket: str) -> str | None:
    """Return the object key inside ``bucket`` that a public URL points to."""
    parsed = urlparse(url)
    marker = f"/{bucket}/"
    if marker not in parsed.path:
        return None
    key = parsed.path.split(marker, 1)[1]
    return unquote(key) or None


class S3ObjectStore:
    def __init__(self, client: Any, public_base_url: str):
        self._client = client
        self._public_base_url = public_base_url.rstrip("/")

    def _exists(self, bucket: str, path: str) -> bool:
        try:
            self._client.head_object(Bucket=bucket, Key=path)
        except ClientError as exc:
            error_code = str(exc.response.get("Error", {}).get("Code", ""))
            if error_code in {"404", "NoSuchKey", "NotFound"}:
                return False
            raise ObjectStoreError("head", bucket, path, detail=error_code) from exc
        return True

    def upload(self, bucket: str, path: str, data: bytes, *, content_type: str, upsert: bool) -> str:
        if not upsert and self._exists(bucket, path):
            raise ObjectAlreadyExistsError(bucket, path)
        try:
            self._client.upload_fileobj(
                BytesIO(data),
                bucket,
                path,
                ExtraArgs={"ContentType": content_type},
            )
        except (BotoCoreError, ClientError) as exc:
            logger.warning(
                "object_upload_failed",
                extra={"bucket": bucket, "path": path, "error": str(exc)[:500]},
            )
            raise ObjectStoreError("upload", bucket, path, detail=exc.__class__.__name__) from exc
        logger.info(
            "object_uploaded",
            extra={"bucket": bucket, "path": path, "size": len(data), "content_type": content_type},
        )
        return path

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self._public_base_url}/{bucket}/{quote(path)}"

    def create_signed_url(self, bucket: str, path: str, ttl_seconds: int) -> str | None:
        try:
            url = self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": bucket, "Key": path},
                ExpiresIn=ttl_seconds,
            )
        except (BotoCoreError, ClientError) as exc:
            raise ObjectStoreError("sign", bucket, path, detail=exc.__class__.__name__) from exc
        return url or None

    def remove(self, bucket: str, paths: list[str]) -> None:
        if not paths:
            return
        try:
            response = self._client.delete_objects(
                Bucket=bucket,
                Delete={"Objects": [{"Key": path} for path in paths], "Quiet": True},
            )
        except (BotoCoreError, ClientError) as exc:
            raise ObjectStoreError("remove", bucket, ",".join(paths), detail=exc.__class__.__name__) from exc
        errors = response.get("Errors") or []
        if errors:
            first = errors[0]
            raise ObjectStoreError(
                "remove",
                bucket,
                str(first.get("Key") or ""),
                detail=str(first.get("Code") or "DeleteFailed"),
            )


@lru_cache
def get_object_store() -> ObjectStore:
    settings = get_settings()
    client = boto3.client(
        "s3",
        endpoint_url=settings.storage_endpoint_url,
        region_name=settings.storage_region,
        aws_access_key_id=settings.storage_access_key_id,
        aws_secret_access_key=settings.storage_secret_access_key,
    )
    return S3ObjectStore(client, get_storage_public_base_url())
