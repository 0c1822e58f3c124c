from dataclasses import dataclass


@dataclass(frozen=True)
class OrderStatus:
    value: str
    label: str
    color: str
    description: str


ORDER_STATUSES: tuple[OrderStatus, ...] = (
    OrderStatus("Новый", "Новый", "blue", "Заказ только что создан"),
    OrderStatus("Наличие", "Наличие", "yellow", "Проверка наличия у поставщиков"),
    OrderStatus("Проверено", "Проверено", "teal", "Наличие проверено"),
    OrderStatus("Согласование", "Согласование", "orange", "Согласование замен и цен с клиентом"),
    OrderStatus("Согласован", "Согласован", "lime", "Клиент подтвердил состав заказа"),
    OrderStatus("Купить", "Купить", "purple", "Товар нужно выкупить у поставщика"),
    OrderStatus("Куплен", "Куплен", "indigo", "Товар выкуплен"),
    OrderStatus("Отправить", "Отправить", "cyan", "Заказ нужно отправить"),
    OrderStatus("Готов к отправке", "Готов к отправке", "sky", "Заказ упакован"),
    OrderStatus("Отправлен", "Отправлен", "emerald", "Заказ передан в транспортную компанию"),
    OrderStatus("Выполнен", "Выполнен", "green", "Заказ выполнен"),
    OrderStatus("Отменен", "Отменен", "red", "Заказ отменен"),
)

DEFAULT_ORDER_STATUS = ORDER_STATUSES[0].value

_BY_VALUE = {status.value: status for status in ORDER_STATUSES}


def get_order_status(value: str | None) -> OrderStatus:
    status = _BY_VALUE.get(str(value or ""))
    if status:
        return status
    return OrderStatus(str(value or ""), str(value or ""), "gray", "Unknown status")


def is_valid_order_status(value: str | None) -> bool:
    return str(value or "") in _BY_VALUE


def order_status_options() -> list[dict[str, str]]:
    return [
        {"value": s.value, "label": s.label, "color": s.color, "description": s.description}
        for s in ORDER_STATUSES
    ]
