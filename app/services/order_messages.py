import logging
from typing import Any

from app.models import ROLE_ADMIN, ROLE_GRUZCHIK, OrderItemMessage
from app.services import storage

logger = logging.getLogger(__name__)

ALLOWED_ATTACHMENT_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "video/mp4": "mp4",
    "video/webm": "webm",
}
MAX_ATTACHMENT_BYTES = 10 * 1024 * 1024


class AttachmentError(ValueError):
    pass


def sender_for_role(role: str | None) -> str:
    if role == ROLE_GRUZCHIK:
        return "gruzchik"
    if role == ROLE_ADMIN:
        return "admin"
    return "client"


def message_out(message: OrderItemMessage) -> dict[str, Any]:
    user = message.user
    return {
        "id": message.id,
        "text": message.text,
        "sender": sender_for_role(user.role),
        "sender_name": user.name or user.phone,
        "sender_id": user.id,
        "timestamp": message.created_at,
        "is_service": bool(message.is_service),
        "attachments": message.attachments or [],
    }


def validate_attachment(name: str, content_type: str | None, size: int) -> str:
    """Проверяет тип и размер вложения, возвращает расширение файла."""
    ext = ALLOWED_ATTACHMENT_TYPES.get(str(content_type or "").lower())
    if ext is None:
        raise AttachmentError(f"Тип файла {content_type} не поддерживается")
    if size > MAX_ATTACHMENT_BYTES:
        raise AttachmentError(f"Файл {name} слишком большой, максимум 10 МБ")
    return ext


def store_attachment(item_id: int, name: str, content_type: str, body: bytes) -> dict[str, Any]:
    ext = validate_attachment(name, content_type, len(body))
    key = storage.get_object_key(item_id, ext, prefix="order-items")
    if not storage.upload_bytes(key, body, content_type):
        raise storage.StorageError(f"Не удалось загрузить {key} в хранилище")
    logger.info("Stored attachment %s for order item %s", key, item_id)
    return {
        "type": content_type,
        "name": name,
        "size": len(body),
        "url": storage.get_public_url(key),
        "key": key,
    }
