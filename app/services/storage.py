import logging
import random
import re
import threading
import time
from dataclasses import dataclass

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from app.config import settings

logger = logging.getLogger(__name__)

_EXT_RE = re.compile(r"^[a-z0-9]{1,5}$")
_CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "gif": "image/gif",
    "mp4": "video/mp4",
    "webm": "video/webm",
}


class StorageError(RuntimeError):
    pass


@dataclass(frozen=True)
class StorageConfig:
    endpoint_url: str
    region: str
    bucket: str
    access_key: str
    secret_key: str
    cdn_base_url: str = ""

    @classmethod
    def from_settings(cls) -> "StorageConfig":
        return cls(
            endpoint_url=settings.s3_endpoint,
            region=settings.s3_region,
            bucket=settings.s3_bucket,
            access_key=settings.s3_access_key,
            secret_key=settings.s3_secret_key,
            cdn_base_url=settings.cdn_base_url,
        )

    def is_configured(self) -> bool:
        return bool(self.bucket and self.access_key and self.secret_key)


_clients: dict[str, object] = {}
_lock = threading.Lock()


def get_s3_client(config: StorageConfig):
    key = f"{config.endpoint_url}:{config.region}:{config.access_key}"
    if key in _clients:
        return _clients[key]
    with _lock:
        if key not in _clients:
            _clients[key] = boto3.client(
                "s3",
                endpoint_url=config.endpoint_url or None,
                region_name=config.region,
                aws_access_key_id=config.access_key,
                aws_secret_access_key=config.secret_key,
                config=BotoConfig(signature_version="s3v4", retries={"max_attempts": 3, "mode": "standard"}),
            )
            logger.debug("Created S3 client for %s", config.endpoint_url)
    return _clients[key]


def sanitize_extension(ext: str | None, default: str = "jpg") -> str:
    value = str(ext or "").strip().lower().lstrip(".")
    value = value.split("?", 1)[0]
    if value == "jpeg":
        value = "jpg"
    return value if _EXT_RE.match(value) else default


def extension_from_url(url: str, default: str = "jpg") -> str:
    tail = str(url or "").split("?", 1)[0].rsplit("/", 1)[-1]
    if "." not in tail:
        return default
    return sanitize_extension(tail.rsplit(".", 1)[-1], default)


def get_object_key(product_id: int | str, ext: str, now_ms: int | None = None, prefix: str = "products") -> str:
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = "".join(random.choices("abcdefghijklmnopqrstuvwxyz0123456789", k=6))
    return f"{prefix}/{product_id}/{now_ms}-{suffix}.{sanitize_extension(ext)}"


def get_public_url(key: str, config: StorageConfig | None = None) -> str:
    config = config or StorageConfig.from_settings()
    if config.cdn_base_url:
        return f"{config.cdn_base_url.rstrip('/')}/{key}"
    return f"{config.endpoint_url.rstrip('/')}/{config.bucket}/{key}"


def upload_bytes(key: str, body: bytes, content_type: str | None = None, config: StorageConfig | None = None) -> bool:
    config = config or StorageConfig.from_settings()
    if not config.is_configured():
        logger.warning("Object storage is not configured, skip upload of %s", key)
        return False
    ext = key.rsplit(".", 1)[-1]
    try:
        get_s3_client(config).put_object(
            Bucket=config.bucket,
            Key=key,
            Body=body,
            ContentType=content_type or _CONTENT_TYPES.get(ext, "application/octet-stream"),
            ACL="public-read",
        )
    except (BotoCoreError, ClientError) as exc:
        logger.warning("Upload of %s failed: %s", key, exc)
        return False
    return True


def delete_object(key: str, config: StorageConfig | None = None) -> None:
    config = config or StorageConfig.from_settings()
    if not config.is_configured() or not key:
        return
    try:
        get_s3_client(config).delete_object(Bucket=config.bucket, Key=key)
    except (BotoCoreError, ClientError) as exc:
        raise StorageError(f"Не удалось удалить объект {key}: {exc}") from exc
