from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import settings
from app.db import get_db
from app.deps import get_admin_user
from app.models import AuditLog, Order, OrderItem, Product, Purchase, PurchaseItem, User
from app.schemas import (
    MessageOut,
    OrderOut,
    ProductImageOut,
    PurchaseIn,
    PurchaseItemIn,
    PurchaseItemOut,
    PurchaseItemUpdateIn,
    PurchaseOut,
    PurchaseReorderIn,
)
from app.services.colors import same_color
from app.services.order_statuses import DEFAULT_ORDER_STATUS
from app.services.pricing import flush_new_order, old_price
from app.services.purchases import (
    apply_explicit_order,
    build_item_description,
    build_purchase_csv,
    content_disposition,
    needs_reindex,
    recalculate_indexes,
    select_item_images,
)

router = APIRouter(prefix="/api/admin/purchases")


@router.get("", response_model=list[PurchaseOut])
def list_purchases(admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    rows = db.scalars(
        select(Purchase).where(Purchase.created_by_id == admin.id).order_by(Purchase.created_at.desc(), Purchase.id.desc())
    ).all()
    return [_purchase_out(p, with_items=False) for p in rows]


@router.post("", response_model=PurchaseOut, status_code=201)
def create_purchase(payload: PurchaseIn, admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    name = " ".join(payload.name.split())
    if not name:
        raise HTTPException(status_code=400, detail="Название закупки обязательно")
    purchase = Purchase(name=name, created_by_id=admin.id)
    db.add(purchase)
    db.commit()
    db.refresh(purchase)
    return _purchase_out(purchase)


@router.get("/{purchase_id}", response_model=PurchaseOut)
def get_purchase(purchase_id: int, admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    purchase = _get_purchase(db, purchase_id, admin)
    if needs_reindex(purchase.items):
        recalculate_indexes(purchase.items)
        db.commit()
        db.refresh(purchase)
    return _purchase_out(purchase)


@router.patch("/{purchase_id}", response_model=PurchaseOut)
def rename_purchase(purchase_id: int, payload: PurchaseIn, admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    purchase = _get_purchase(db, purchase_id, admin)
    name = " ".join(payload.name.split())
    if not name:
        raise HTTPException(status_code=400, detail="Название закупки обязательно")
    purchase.name = name
    db.commit()
    db.refresh(purchase)
    return _purchase_out(purchase)


@router.delete("/{purchase_id}", response_model=MessageOut)
def delete_purchase(purchase_id: int, admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    purchase = _get_purchase(db, purchase_id, admin)
    db.delete(purchase)
    db.commit()
    return MessageOut(message="Закупка удалена")


@router.post("/{purchase_id}/items", response_model=PurchaseItemOut, status_code=201)
def add_purchase_item(
    purchase_id: int,
    payload: PurchaseItemIn,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    purchase = _get_purchase(db, purchase_id, admin)
    product = db.get(Product, payload.product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Товар не найден")
    color = (payload.color or "").strip() or None
    for existing in purchase.items:
        if existing.product_id == product.id and same_color(existing.color, color):
            raise HTTPException(status_code=400, detail="Этот цвет товара уже в закупке")

    price = float(product.price_pair or 0)
    item = PurchaseItem(
        product_id=product.id,
        name=product.name,
        description=build_item_description(product),
        price=price,
        old_price=old_price(price, settings.purchase_old_price_factor),
        color=color,
        sort_index=max((i.sort_index for i in purchase.items), default=0) + 1,
    )
    purchase.items.append(item)
    db.commit()
    db.refresh(item)
    return _item_out(item)


@router.put("/{purchase_id}/items/{item_id}", response_model=PurchaseOut)
def update_purchase_item(
    purchase_id: int,
    item_id: int,
    payload: PurchaseItemUpdateIn,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    purchase = _get_purchase(db, purchase_id, admin)
    item = _get_item(purchase, item_id)
    data = payload.model_dump(exclude_unset=True)
    if "name" in data and data["name"] is not None:
        name = " ".join(data["name"].split())
        if not name:
            raise HTTPException(status_code=400, detail="Название позиции обязательно")
        item.name = name
    if "description" in data and data["description"] is not None:
        item.description = data["description"]
    if "price" in data and data["price"] is not None:
        item.price = float(data["price"])
        item.old_price = old_price(item.price, settings.purchase_old_price_factor)
    if data.get("sort_index") is not None:
        recalculate_indexes(sorted(purchase.items, key=lambda i: i.sort_index), target_id=item.id, new_index=data["sort_index"])
    db.commit()
    db.refresh(purchase)
    return _purchase_out(purchase)


@router.delete("/{purchase_id}/items/{item_id}", response_model=PurchaseOut)
def delete_purchase_item(purchase_id: int, item_id: int, admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    purchase = _get_purchase(db, purchase_id, admin)
    item = _get_item(purchase, item_id)
    purchase.items.remove(item)
    recalculate_indexes(purchase.items)
    db.commit()
    db.refresh(purchase)
    return _purchase_out(purchase)


@router.post("/{purchase_id}/reorder", response_model=PurchaseOut)
def reorder_purchase(
    purchase_id: int,
    payload: PurchaseReorderIn,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    purchase = _get_purchase(db, purchase_id, admin)
    known = {i.id for i in purchase.items}
    unknown = [i for i in payload.item_ids if i not in known]
    if unknown:
        raise HTTPException(status_code=400, detail="Позиции не принадлежат закупке")
    apply_explicit_order(purchase.items, payload.item_ids)
    db.commit()
    db.refresh(purchase)
    return _purchase_out(purchase)


@router.post("/{purchase_id}/create-order", response_model=OrderOut, status_code=201)
def create_order_from_purchase(purchase_id: int, admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    purchase = _get_purchase(db, purchase_id, admin)
    if not purchase.items:
        raise HTTPException(status_code=400, detail="В закупке нет товаров")
    total = round(sum(float(i.price or 0) for i in purchase.items), 2)
    order = Order(
        user_id=admin.id,
        status=DEFAULT_ORDER_STATUS,
        subtotal=total,
        total=total,
        full_name=admin.name,
        phone=admin.phone,
        address="Закупка",
        comment=f"Создано из закупки: {purchase.name}",
    )
    for item in sorted(purchase.items, key=lambda i: i.sort_index):
        order.items.append(
            OrderItem(
                product_id=item.product_id,
                name=item.name,
                article=item.product.article if item.product else None,
                color=item.color,
                qty=1,
                price_box=item.price,
            )
        )
    flush_new_order(db, order)
    db.add(
        AuditLog(
            user_id=admin.id,
            action="purchase_order_created",
            details=f"purchase={purchase.id}",
            entity_type="order",
            entity_id=str(order.id),
        )
    )
    db.commit()
    db.refresh(order)
    return order


@router.get("/{purchase_id}/export")
def export_purchase(purchase_id: int, admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    purchase = _get_purchase(db, purchase_id, admin)
    body = build_purchase_csv(purchase.items)
    return Response(
        content=body.encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": content_disposition(f"{purchase.name}.csv")},
    )


def _get_purchase(db: Session, purchase_id: int, admin: User) -> Purchase:
    purchase = db.get(Purchase, purchase_id)
    if not purchase or purchase.created_by_id != admin.id:
        raise HTTPException(status_code=404, detail="Закупка не найдена")
    return purchase


def _get_item(purchase: Purchase, item_id: int) -> PurchaseItem:
    item = next((i for i in purchase.items if i.id == item_id), None)
    if item is None:
        raise HTTPException(status_code=404, detail="Позиция закупки не найдена")
    return item


def _item_out(item: PurchaseItem) -> PurchaseItemOut:
    out = PurchaseItemOut.model_validate(item)
    images = select_item_images(item.product.images, item.color) if item.product else []
    out.images = [ProductImageOut.model_validate(im) for im in images]
    return out


def _purchase_out(purchase: Purchase, with_items: bool = True) -> PurchaseOut:
    items = sorted(purchase.items, key=lambda i: i.sort_index)
    return PurchaseOut(
        id=purchase.id,
        name=purchase.name,
        created_at=purchase.created_at,
        updated_at=purchase.updated_at,
        items_count=len(items),
        total=round(sum(float(i.price or 0) for i in items), 2),
        items=[_item_out(i) for i in items] if with_items else [],
    )
