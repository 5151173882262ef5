import logging
from dataclasses import dataclass
from datetime import datetime

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import Request

from backoffice.core.config import Settings
from backoffice.core.errors import InvalidInput, UpstreamFailure

logger = logging.getLogger(__name__)

DELETE_BATCH_SIZE = 1000
MAX_SIGNED_URL_TTL = 3600


@dataclass(frozen=True)
class StoredObject:
    key: str
    size: int
    last_modified: datetime | None = None

    @property
    def name(self) -> str:
        return self.key.rstrip("/").rsplit("/", 1)[-1] or self.key


class ObjectStore:
    """Thin S3 wrapper. Created once per process and shared by reference."""

    def __init__(
        self,
        bucket: str,
        *,
        region: str | None = None,
        endpoint_url: str | None = None,
        client=None,
    ) -> None:
        self.bucket = (bucket or "").strip()
        if not self.bucket:
            logger.warning("S3_BUCKET_NAME is not set; storage operations will fail")
        self._client = client if client is not None else boto3.client("s3", region_name=region, endpoint_url=endpoint_url)

    @classmethod
    def from_settings(cls, settings: Settings, *, client=None) -> "ObjectStore":
        return cls(
            settings.s3_bucket,
            region=settings.s3_region,
            endpoint_url=settings.s3_endpoint_url,
            client=client,
        )

    def _require_bucket(self, action: str) -> None:
        if not self.bucket:
            logger.error("storage_error action=%s reason=bucket_not_configured", action)
            raise UpstreamFailure("Storage is not available")

    def _failure(self, action: str, key: str, exc: Exception) -> UpstreamFailure:
        code = ""
        if isinstance(exc, ClientError):
            code = str((exc.response.get("Error") or {}).get("Code") or "")
        logger.error("storage_error action=%s key=%s code=%s", action, key, code or "-", exc_info=exc)
        return UpstreamFailure("Storage operation failed")

    def put(self, key: str, body: bytes, content_type: str | None = None, metadata: dict[str, str] | None = None) -> str:
        self._require_bucket("put")
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=body,
                ContentType=(content_type or "application/octet-stream"),
                Metadata=metadata or {},
            )
        except (ClientError, BotoCoreError) as exc:
            raise self._failure("put", key, exc) from exc
        return key

    def list(self, prefix: str, max_keys: int = 50) -> list[StoredObject]:
        self._require_bucket("list")
        try:
            data = self._client.list_objects_v2(Bucket=self.bucket, Prefix=prefix, MaxKeys=max_keys)
        except (ClientError, BotoCoreError) as exc:
            raise self._failure("list", prefix, exc) from exc
        return [
            StoredObject(key=item["Key"], size=int(item.get("Size") or 0), last_modified=item.get("LastModified"))
            for item in data.get("Contents") or []
        ]

    def exists(self, key: str) -> bool:
        self._require_bucket("head")
        try:
            self._client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            code = str((exc.response.get("Error") or {}).get("Code") or "")
            if code in {"404", "NoSuchKey", "NotFound"}:
                return False
            raise self._failure("head", key, exc) from exc
        except BotoCoreError as exc:
            raise self._failure("head", key, exc) from exc
        return True

    def delete(self, key: str) -> None:
        self._require_bucket("delete")
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise self._failure("delete", key, exc) from exc

    def delete_prefix(self, prefix: str) -> int:
        if not prefix or not prefix.endswith("/"):
            raise InvalidInput("Prefix must end with '/'")
        self._require_bucket("delete_prefix")
        deleted = 0
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                keys = [{"Key": item["Key"]} for item in page.get("Contents") or []]
                for start in range(0, len(keys), DELETE_BATCH_SIZE):
                    batch = keys[start:start + DELETE_BATCH_SIZE]
                    self._client.delete_objects(Bucket=self.bucket, Delete={"Objects": batch, "Quiet": True})
                    deleted += len(batch)
        except (ClientError, BotoCoreError) as exc:
            raise self._failure("delete_prefix", prefix, exc) from exc
        return deleted

    def signed_download_url(self, key: str, expires_in: int = 600, filename: str | None = None) -> str:
        self._require_bucket("presign")
        ttl = max(1, min(int(expires_in or 600), MAX_SIGNED_URL_TTL))
        params: dict = {"Bucket": self.bucket, "Key": key}
        if filename:
            safe_name = filename.replace('"', "'")
            params["ResponseContentDisposition"] = f'attachment; filename="{safe_name}"'
        try:
            return str(self._client.generate_presigned_url(ClientMethod="get_object", Params=params, ExpiresIn=ttl))
        except (ClientError, BotoCoreError) as exc:
            raise self._failure("presign", key, exc) from exc


def get_object_store(request: Request) -> ObjectStore:
    return request.app.state.object_store
