import logging
import time
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models import Order

logger = logging.getLogger(__name__)

ORDER_NUMBER_START = 10000
_PAIR_COUNT_KEYS = ("count", "quantity", "stock", "qty")


def total_pairs(sizes: Any) -> int:
    """Сумма пар по размерной сетке коробки, минимум 1."""
    total = 0
    if isinstance(sizes, list):
        for row in sizes:
            if not isinstance(row, dict):
                continue
            for key in _PAIR_COUNT_KEYS:
                value = row.get(key)
                if value is None:
                    continue
                try:
                    total += max(0, int(value))
                except (TypeError, ValueError):
                    pass
                break
    return total if total > 0 else 1


def box_price(price_pair: float | None, sizes: Any) -> float:
    return round(float(price_pair or 0) * total_pairs(sizes), 2)


def old_price(price: float, factor: float) -> float:
    return round(float(price or 0) * factor, 2)


def markup_price(buy_price: float | None, factor: float) -> float:
    if not buy_price or buy_price <= 0:
        return 0.0
    return round(float(buy_price) * factor, 2)


def generate_order_number(db: Session) -> str:
    highest = ORDER_NUMBER_START - 1
    for raw in db.scalars(select(Order.order_number)).all():
        if raw and str(raw).isdigit():
            highest = max(highest, int(raw))
    return str(highest + 1)


def suffixed_order_number(number: str, now_ms: int | None = None) -> str:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{number}-{str(now_ms)[-4:]}"


def flush_new_order(db: Session, order: Order, now_ms: int | None = None) -> Order:
    """Присваивает заказу следующий номер и сохраняет его.

    Заказ должен быть первым изменением в транзакции: при гонке за номер
    транзакция откатывается, и заказ записывается повторно с суффиксом.
    """
    order.order_number = generate_order_number(db)
    db.add(order)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        order.order_number = suffixed_order_number(generate_order_number(db), now_ms)
        logger.warning("Order number collision, retrying as %s", order.order_number)
        db.add(order)
        db.flush()
    return order
