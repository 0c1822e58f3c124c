from __future__ import annotations

import math

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.db import get_db
from app.deps import get_admin_user, get_client_user, get_gruzchik_user
from app.models import ROLE_ADMIN, ROLE_GRUZCHIK, AuditLog, Order, OrderItem, Product, User
from app.schemas import (
    AdminOrderOut,
    AdminOrdersOut,
    AdminOrderUpdateIn,
    AvailabilityIn,
    ClientOrderIn,
    GruzchikItemProductOut,
    GruzchikOrderItemOut,
    GruzchikOrderOut,
    GruzchikOrdersOut,
    MessageOut,
    OrderItemAddIn,
    OrderItemOut,
    OrderOut,
    ProductImageOut,
    ProviderOut,
    PurchasedIn,
    UserOut,
)
from app.services.order_statuses import DEFAULT_ORDER_STATUS, get_order_status, is_valid_order_status
from app.services.phones import normalize_phone
from app.services.pricing import box_price, flush_new_order

router = APIRouter(prefix="/api")


@router.get("/admin/orders", response_model=AdminOrdersOut)
def admin_orders(status: str = "", admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    _ = admin
    stmt = select(Order)
    if status.strip():
        stmt = stmt.where(Order.status == status.strip())
    rows = db.scalars(stmt.order_by(Order.created_at.desc(), Order.id.desc()).limit(200)).all()
    gruzchiks = db.scalars(select(User).where(User.role == ROLE_GRUZCHIK).order_by(User.name, User.id)).all()
    return AdminOrdersOut(
        orders=[_admin_order_out(o) for o in rows],
        gruzchiks=[UserOut.model_validate(u) for u in gruzchiks],
    )


@router.get("/admin/orders/{order_id}", response_model=AdminOrderOut)
def admin_get_order(order_id: int, admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    _ = admin
    return _admin_order_out(_get_order(db, order_id))


@router.patch("/admin/orders/{order_id}", response_model=AdminOrderOut)
def admin_update_order(
    order_id: int,
    payload: AdminOrderUpdateIn,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    order = _get_order(db, order_id)
    data = payload.model_dump(exclude_unset=True)
    changes: list[str] = []

    if "status" in data and data["status"] is not None:
        if not is_valid_order_status(data["status"]):
            raise HTTPException(status_code=400, detail="Недопустимый статус заказа")
        if order.status != data["status"]:
            changes.append(f"status:{order.status}->{data['status']}")
        order.status = data["status"]

    if "payment" in data:
        order.payment = (data["payment"] or "").strip() or None
        changes.append("payment")

    if "gruzchik_id" in data:
        raw = data["gruzchik_id"]
        if raw is None or str(raw).strip() == "":
            order.gruzchik_id = None
        else:
            try:
                gruzchik_id = int(raw)
            except (TypeError, ValueError) as exc:
                raise HTTPException(status_code=400, detail="Некорректный грузчик") from exc
            gruzchik = db.get(User, gruzchik_id)
            if not gruzchik or gruzchik.role != ROLE_GRUZCHIK:
                raise HTTPException(status_code=400, detail="Пользователь не является грузчиком")
            order.gruzchik_id = gruzchik.id
        changes.append(f"gruzchik:{order.gruzchik_id}")

    if "label" in data:
        if order.user is None:
            raise HTTPException(status_code=400, detail="У заказа нет клиента для метки")
        order.user.label = (data["label"] or "").strip() or None
        changes.append("label")

    db.add(
        AuditLog(
            user_id=admin.id,
            action="order_updated",
            details=";".join(changes),
            entity_type="order",
            entity_id=str(order.id),
        )
    )
    db.commit()
    db.refresh(order)
    return _admin_order_out(order)


@router.post("/admin/orders/{order_id}/items", response_model=OrderItemOut, status_code=201)
def admin_add_order_item(
    order_id: int,
    payload: OrderItemAddIn,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    order = _get_order(db, order_id)
    product = db.get(Product, payload.product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Товар не найден")
    price = box_price(product.price_pair, product.sizes)
    item = OrderItem(
        order_id=order.id,
        product_id=product.id,
        name=product.name,
        article=product.article,
        color=payload.color,
        qty=payload.qty,
        price_box=price,
    )
    db.add(item)
    order.subtotal = round((order.subtotal or 0) + price * payload.qty, 2)
    order.total = round((order.total or 0) + price * payload.qty, 2)
    db.add(AuditLog(user_id=admin.id, action="order_item_added", details=f"product={product.id}", entity_type="order", entity_id=str(order.id)))
    db.commit()
    db.refresh(item)
    return item


@router.delete("/admin/orders/{order_id}/items/{item_id}", response_model=MessageOut)
def admin_delete_order_item(order_id: int, item_id: int, admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    order = _get_order(db, order_id)
    item = db.get(OrderItem, item_id)
    if not item or item.order_id != order.id:
        raise HTTPException(status_code=404, detail="Позиция заказа не найдена")
    amount = item.price_box * item.qty
    order.items.remove(item)
    order.subtotal = max(0.0, round((order.subtotal or 0) - amount, 2))
    order.total = max(0.0, round((order.total or 0) - amount, 2))
    db.add(AuditLog(user_id=admin.id, action="order_item_deleted", details=f"item={item_id}", entity_type="order", entity_id=str(order.id)))
    db.commit()
    return MessageOut(message="Позиция удалена")


@router.post("/orders", response_model=OrderOut, status_code=201)
def create_client_order(payload: ClientOrderIn, user: User = Depends(get_client_user), db: Session = Depends(get_db)):
    if not payload.items:
        raise HTTPException(status_code=400, detail="Заказ не содержит товаров")
    phone = normalize_phone(payload.phone)
    if not phone:
        raise HTTPException(status_code=400, detail="Телефон обязателен")

    lines: list[tuple[Product, int, str | None]] = []
    missing: list[str] = []
    for row in payload.items:
        product = None
        if row.product_id is not None:
            product = db.get(Product, row.product_id)
        elif row.slug:
            product = db.scalar(select(Product).where(Product.slug == row.slug))
        if not product or not product.is_active:
            missing.append(str(row.product_id or row.slug or "?"))
            continue
        lines.append((product, row.qty, row.color))
    if missing:
        raise HTTPException(status_code=400, detail=f"Товары не найдены: {', '.join(missing)}")

    order = Order(
        user_id=user.id,
        status=DEFAULT_ORDER_STATUS,
        full_name=(payload.full_name or "").strip() or user.name,
        phone=phone,
        address=payload.address,
        comment=payload.comment,
        transport_company_id=payload.transport_company_id,
    )
    total = 0.0
    for product, qty, color in lines:
        # клиентская коробка: по одной паре каждого размера
        sizes_count = len(product.sizes) if isinstance(product.sizes, list) else 0
        price = round(float(product.price_pair or 0) * max(1, sizes_count), 2)
        order.items.append(
            OrderItem(
                product_id=product.id,
                name=product.name,
                article=product.article,
                color=color,
                qty=qty,
                price_box=price,
            )
        )
        total += price * qty
    order.subtotal = round(total, 2)
    order.total = round(total, 2)
    flush_new_order(db, order)
    db.commit()
    db.refresh(order)
    return order


@router.get("/orders", response_model=list[OrderOut])
def list_client_orders(user: User = Depends(get_client_user), db: Session = Depends(get_db)):
    return db.scalars(select(Order).where(Order.user_id == user.id).order_by(Order.created_at.desc(), Order.id.desc())).all()


@router.get("/gruzchik/orders", response_model=GruzchikOrdersOut)
def gruzchik_orders(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    status: str = "",
    user: User = Depends(get_gruzchik_user),
    db: Session = Depends(get_db),
):
    stmt = select(Order).where(Order.gruzchik_id == user.id)
    if status.strip():
        stmt = stmt.where(Order.status == status.strip())
    total = db.scalar(select(func.count()).select_from(stmt.subquery())) or 0
    rows = db.scalars(stmt.order_by(Order.created_at.desc(), Order.id.desc()).offset((page - 1) * limit).limit(limit)).all()
    return GruzchikOrdersOut(
        orders=[_gruzchik_order_out(o) for o in rows],
        pagination={
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": math.ceil(total / limit) if total else 0,
        },
    )


@router.patch("/gruzchik/order-items/{item_id}/availability", response_model=OrderItemOut)
def gruzchik_set_availability(
    item_id: int,
    payload: AvailabilityIn,
    user: User = Depends(get_gruzchik_user),
    db: Session = Depends(get_db),
):
    item = _get_gruzchik_item(db, item_id, user)
    item.is_available = payload.is_available
    db.commit()
    db.refresh(item)
    return item


@router.patch("/gruzchik/order-items/{item_id}/purchased", response_model=OrderItemOut)
def gruzchik_set_purchased(
    item_id: int,
    payload: PurchasedIn,
    user: User = Depends(get_gruzchik_user),
    db: Session = Depends(get_db),
):
    item = _get_gruzchik_item(db, item_id, user)
    item.is_purchased = payload.is_purchased
    db.commit()
    db.refresh(item)
    return item


def _get_order(db: Session, order_id: int) -> Order:
    order = db.get(Order, order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Заказ не найден")
    return order


def _get_gruzchik_item(db: Session, item_id: int, user: User) -> OrderItem:
    item = db.get(OrderItem, item_id)
    if not item or (item.order.gruzchik_id != user.id and user.role != ROLE_ADMIN):
        raise HTTPException(status_code=404, detail="Позиция заказа не найдена")
    return item


def _admin_order_out(order: Order) -> AdminOrderOut:
    out = AdminOrderOut.model_validate(order)
    out.status_color = get_order_status(order.status).color
    return out


def _gruzchik_order_out(order: Order) -> GruzchikOrderOut:
    items = []
    for item in order.items:
        row = GruzchikOrderItemOut.model_validate(item)
        product = item.product
        if product is not None:
            row.product = GruzchikItemProductOut(
                id=product.id,
                name=product.name,
                article=product.article,
                images=[
                    ProductImageOut.model_validate(im)
                    for im in sorted(product.images, key=lambda im: (not im.is_primary, im.sort))
                    if im.is_active
                ],
                provider=ProviderOut.model_validate(product.provider) if product.provider else None,
            )
        items.append(row)
    return GruzchikOrderOut(
        id=order.id,
        order_number=order.order_number,
        status=order.status,
        total=order.total,
        created_at=order.created_at,
        items=items,
    )
