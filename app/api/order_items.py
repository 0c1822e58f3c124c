from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.orders import _get_gruzchik_item
from app.db import get_db
from app.deps import get_admin_user, get_client_user, get_gruzchik_user
from app.models import (
    REPLACEMENT_ACCEPTED,
    REPLACEMENT_PENDING,
    REPLACEMENT_REJECTED,
    AuditLog,
    OrderItem,
    OrderItemMessage,
    OrderItemReplacement,
    User,
)
from app.schemas import (
    ItemMessageIn,
    ItemMessageOut,
    ItemMessagesOut,
    ItemMessageUpdateIn,
    MessageOut,
    ReplacementIn,
    ReplacementOut,
    ReplacementResponseIn,
    ReplacementUpdateIn,
)
from app.services import storage
from app.services.order_messages import AttachmentError, message_out, store_attachment, validate_attachment

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

ITEM_NOT_FOUND = "Позиция заказа не найдена"


# --- Админ: чат по позиции ---


@router.get("/admin/order-items/{item_id}/messages", response_model=ItemMessagesOut)
def admin_list_messages(item_id: int, admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    _ = admin
    return _messages_out(_get_item(db, item_id))


@router.post("/admin/order-items/{item_id}/messages", response_model=ItemMessageOut, status_code=201)
def admin_post_message(
    item_id: int,
    payload: ItemMessageIn,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    return _create_message(db, _get_item(db, item_id), admin, payload.text, payload.is_service, [])


@router.post("/admin/order-items/{item_id}/messages/upload", response_model=ItemMessageOut, status_code=201)
def admin_upload_message(
    item_id: int,
    text: str | None = Form(default=None),
    is_service: bool = Form(default=False),
    file: UploadFile | None = File(default=None),
    files: list[UploadFile] = File(default=[]),
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    item = _get_item(db, item_id)
    attachments = _store_uploads(item.id, [f for f in [file, *files] if f is not None and f.filename])
    return _create_message(db, item, admin, text, is_service, attachments)


@router.patch("/admin/order-items/{item_id}/messages/{message_id}", response_model=ItemMessageOut)
def admin_update_message(
    item_id: int,
    message_id: int,
    payload: ItemMessageUpdateIn,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    _ = admin
    message = _get_message(db, _get_item(db, item_id), message_id)
    text = payload.text.strip()
    if not text:
        raise HTTPException(status_code=400, detail="Текст сообщения обязателен")
    message.text = text
    db.commit()
    db.refresh(message)
    return message_out(message)


@router.delete("/admin/order-items/{item_id}/messages/{message_id}", response_model=MessageOut)
def admin_delete_message(
    item_id: int,
    message_id: int,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    item = _get_item(db, item_id)
    message = _get_message(db, item, message_id)
    item.messages.remove(message)
    db.add(AuditLog(user_id=admin.id, action="order_item_message_deleted", details=f"message={message_id}", entity_type="order_item", entity_id=str(item.id)))
    db.commit()
    return MessageOut(message="Сообщение удалено")


# --- Админ: предложение замены ---


@router.get("/admin/order-items/{item_id}/replacement", response_model=list[ReplacementOut])
def admin_list_replacements(item_id: int, admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    _ = admin
    return _get_item(db, item_id).replacements


@router.post("/admin/order-items/{item_id}/replacement", response_model=ReplacementOut, status_code=201)
def admin_propose_replacement(
    item_id: int,
    payload: ReplacementIn,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    image_url, image_key = _replacement_image(payload)
    if not image_url:
        raise HTTPException(status_code=400, detail="Нужно изображение замены")
    item = _get_item(db, item_id)
    if not item.order.user_id:
        raise HTTPException(status_code=400, detail="У заказа нет клиента")
    if any(r.status == REPLACEMENT_PENDING for r in item.replacements):
        raise HTTPException(status_code=409, detail="Предложение замены уже существует")

    comment = (payload.admin_comment or "").strip() or None
    replacement = OrderItemReplacement(
        admin_user_id=admin.id,
        client_user_id=item.order.user_id,
        status=REPLACEMENT_PENDING,
        image_url=image_url,
        image_key=image_key,
        admin_comment=comment,
    )
    item.replacements.append(replacement)
    # предложение дублируется в чат позиции
    item.messages.append(
        OrderItemMessage(
            user_id=admin.id,
            text=comment,
            attachments=[{"type": "image/jpeg", "name": image_key or "replacement.jpg", "url": image_url}],
        )
    )
    db.add(AuditLog(user_id=admin.id, action="replacement_proposed", details=f"item={item.id}", entity_type="order", entity_id=str(item.order_id)))
    db.commit()
    db.refresh(replacement)
    logger.info("Replacement %s proposed for order item %s", replacement.id, item.id)
    return replacement


@router.put("/admin/order-items/{item_id}/replacement", response_model=ReplacementOut)
def admin_update_replacement(
    item_id: int,
    payload: ReplacementUpdateIn,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    replacement = _get_own_pending_replacement(db, item_id, payload.replacement_id, admin)
    replacement.image_url, replacement.image_key = _replacement_image(payload)
    replacement.admin_comment = (payload.admin_comment or "").strip() or None
    db.commit()
    db.refresh(replacement)
    return replacement


@router.delete("/admin/order-items/{item_id}/replacement/{replacement_id}", response_model=MessageOut)
def admin_delete_replacement(
    item_id: int,
    replacement_id: int,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    replacement = _get_own_pending_replacement(db, item_id, replacement_id, admin)
    db.delete(replacement)
    db.commit()
    return MessageOut(message="Предложение замены удалено")


# --- Грузчик ---


@router.get("/gruzchik/order-items/{item_id}/messages", response_model=ItemMessagesOut)
def gruzchik_list_messages(item_id: int, user: User = Depends(get_gruzchik_user), db: Session = Depends(get_db)):
    return _messages_out(_get_gruzchik_item(db, item_id, user))


@router.post("/gruzchik/order-items/{item_id}/messages", response_model=ItemMessageOut, status_code=201)
def gruzchik_post_message(
    item_id: int,
    payload: ItemMessageIn,
    user: User = Depends(get_gruzchik_user),
    db: Session = Depends(get_db),
):
    return _create_message(db, _get_gruzchik_item(db, item_id, user), user, payload.text, payload.is_service, [])


@router.post("/gruzchik/order-items/{item_id}/messages/upload", response_model=ItemMessageOut, status_code=201)
def gruzchik_upload_message(
    item_id: int,
    text: str | None = Form(default=None),
    is_service: bool = Form(default=False),
    file: UploadFile | None = File(default=None),
    files: list[UploadFile] = File(default=[]),
    user: User = Depends(get_gruzchik_user),
    db: Session = Depends(get_db),
):
    item = _get_gruzchik_item(db, item_id, user)
    attachments = _store_uploads(item.id, [f for f in [file, *files] if f is not None and f.filename])
    return _create_message(db, item, user, text, is_service, attachments)


# --- Клиент ---


@router.get("/order-items/{item_id}/messages", response_model=ItemMessagesOut)
def client_list_messages(item_id: int, user: User = Depends(get_client_user), db: Session = Depends(get_db)):
    return _messages_out(_get_client_item(db, item_id, user))


@router.post("/order-items/{item_id}/messages", response_model=ItemMessageOut, status_code=201)
def client_post_message(
    item_id: int,
    payload: ItemMessageIn,
    user: User = Depends(get_client_user),
    db: Session = Depends(get_db),
):
    return _create_message(db, _get_client_item(db, item_id, user), user, payload.text, False, [])


@router.get("/order-items/{item_id}/replacement", response_model=list[ReplacementOut])
def client_list_replacements(item_id: int, user: User = Depends(get_client_user), db: Session = Depends(get_db)):
    item = _get_client_item(db, item_id, user)
    return [r for r in item.replacements if r.client_user_id == user.id]


@router.post("/order-items/{item_id}/replacement/response", response_model=ReplacementOut)
def client_respond_replacement(
    item_id: int,
    payload: ReplacementResponseIn,
    user: User = Depends(get_client_user),
    db: Session = Depends(get_db),
):
    status = payload.status.strip().lower()
    if status not in (REPLACEMENT_ACCEPTED, REPLACEMENT_REJECTED):
        raise HTTPException(status_code=400, detail="Некорректный статус")
    item = _get_client_item(db, item_id, user)
    replacement = db.scalar(
        select(OrderItemReplacement).where(
            OrderItemReplacement.order_item_id == item.id,
            OrderItemReplacement.client_user_id == user.id,
            OrderItemReplacement.status == REPLACEMENT_PENDING,
        )
    )
    if not replacement:
        raise HTTPException(status_code=404, detail="Нет ожидающего предложения замены")
    replacement.status = status
    replacement.client_comment = (payload.client_comment or "").strip() or None
    db.commit()
    db.refresh(replacement)
    logger.info("Replacement %s %s by user %s", replacement.id, status, user.id)
    return replacement


def _get_item(db: Session, item_id: int) -> OrderItem:
    item = db.get(OrderItem, item_id)
    if not item:
        raise HTTPException(status_code=404, detail=ITEM_NOT_FOUND)
    return item


def _get_client_item(db: Session, item_id: int, user: User) -> OrderItem:
    item = db.get(OrderItem, item_id)
    if not item or item.order.user_id != user.id:
        raise HTTPException(status_code=404, detail=ITEM_NOT_FOUND)
    return item


def _get_message(db: Session, item: OrderItem, message_id: int) -> OrderItemMessage:
    message = db.get(OrderItemMessage, message_id)
    if not message or message.order_item_id != item.id:
        raise HTTPException(status_code=404, detail="Сообщение не найдено")
    return message


def _get_own_pending_replacement(db: Session, item_id: int, replacement_id: int, admin: User) -> OrderItemReplacement:
    replacement = db.get(OrderItemReplacement, replacement_id)
    if (
        not replacement
        or replacement.order_item_id != item_id
        or replacement.admin_user_id != admin.id
        or replacement.status != REPLACEMENT_PENDING
    ):
        raise HTTPException(status_code=404, detail="Предложение замены не найдено или уже закрыто")
    return replacement


def _replacement_image(payload: ReplacementIn) -> tuple[str | None, str | None]:
    image_key = (payload.image_key or "").strip() or None
    image_url = (payload.image_url or "").strip() or None
    if not image_url and image_key:
        image_url = storage.get_public_url(image_key)
    return image_url, image_key


def _messages_out(item: OrderItem) -> ItemMessagesOut:
    return ItemMessagesOut(item_id=item.id, messages=[ItemMessageOut(**message_out(m)) for m in item.messages])


def _store_uploads(item_id: int, uploads: list[UploadFile]) -> list[dict]:
    if not uploads:
        raise HTTPException(status_code=400, detail="Файлы не переданы")
    files = [(upload.filename or "file", upload.content_type or "", upload.file.read()) for upload in uploads]
    try:
        for name, content_type, body in files:
            validate_attachment(name, content_type, len(body))
    except AttachmentError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    attachments = []
    for name, content_type, body in files:
        try:
            attachments.append(store_attachment(item_id, name, content_type, body))
        except storage.StorageError as exc:
            logger.warning("Attachment upload failed: %s", exc)
            raise HTTPException(status_code=502, detail="Не удалось загрузить файл") from exc
    return attachments


def _create_message(
    db: Session,
    item: OrderItem,
    user: User,
    text: str | None,
    is_service: bool,
    attachments: list[dict],
) -> dict:
    text = (text or "").strip() or None
    if not text and not attachments:
        raise HTTPException(status_code=400, detail="Нужен текст сообщения или вложение")
    message = OrderItemMessage(user_id=user.id, text=text, is_service=is_service, attachments=attachments or None)
    item.messages.append(message)
    db.commit()
    db.refresh(message)
    return message_out(message)
