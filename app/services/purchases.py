from typing import Any, Sequence
from urllib.parse import quote

from app.models import Product, ProductImage, PurchaseItem
from app.services.colors import same_color

CSV_TITLE = "Файл выгрузки на сайт покупок"
CSV_HEADER = ("Наименование", "Артикул", "Цена, руб.", "Старая цена, руб", "Описание", "Размеры", "Изображение")
CSV_DELIMITER = ";"


def recalculate_indexes(items: Sequence[Any], target_id: int | None = None, new_index: int | None = None) -> list[Any]:
    """Перенумеровывает позиции закупки 1..N.

    С target_id и new_index элемент переносится на позицию new_index
    (сверху ограничена N), остальные сдвигаются. Без них или при
    new_index <= 0 позиции упорядочиваются по текущему sort_index
    (устойчиво) и нумеруются заново.
    Возвращает список в новом порядке; sort_index меняется на месте.
    """
    ordered = list(items)
    target = None
    if target_id is not None and new_index is not None and int(new_index) > 0:
        target = next((item for item in ordered if item.id == target_id), None)

    if target is not None:
        ordered.remove(target)
        position = min(int(new_index) - 1, len(ordered))
        ordered.insert(position, target)
    else:
        ordered.sort(key=lambda item: item.sort_index if item.sort_index is not None else 0)

    for i, item in enumerate(ordered, start=1):
        item.sort_index = i
    return ordered


def apply_explicit_order(items: Sequence[Any], item_ids: list[int]) -> list[Any]:
    by_id = {item.id: item for item in items}
    ordered = [by_id[i] for i in item_ids if i in by_id]
    seen = {item.id for item in ordered}
    ordered.extend(item for item in sorted(items, key=lambda x: x.sort_index or 0) if item.id not in seen)
    for i, item in enumerate(ordered, start=1):
        item.sort_index = i
    return ordered


def needs_reindex(items: Sequence[Any]) -> bool:
    indexes = sorted(item.sort_index for item in items)
    return indexes != list(range(1, len(items) + 1))


def format_sizes(sizes: Any) -> str:
    if not sizes:
        return ""
    if isinstance(sizes, dict):
        return ",".join(str(k) for k, v in sizes.items() if v is True or v == 1)
    if isinstance(sizes, list):
        out: list[str] = []
        for row in sizes:
            if isinstance(row, dict):
                if row.get("size") not in (None, ""):
                    out.append(str(row["size"]))
            elif isinstance(row, (str, int, float)) and str(row).strip():
                out.append(str(row).strip())
        return ",".join(out)
    return str(sizes)


def _format_price(value: float | None) -> str:
    value = float(value or 0)
    return str(int(value)) if value.is_integer() else f"{value:.2f}"


def build_item_description(product: Product) -> str:
    parts: list[str] = []
    if product.description:
        parts.append(product.description.strip())
    if product.material:
        parts.append(f"Материал: {product.material}")
    sizes = format_sizes(product.sizes)
    if sizes:
        parts.append(f"Размеры: {sizes}")
    parts.append(f"Цена за пару: {_format_price(product.price_pair)} руб.")
    return "\n".join(parts)


def select_item_images(images: Sequence[ProductImage], color: str | None) -> list[ProductImage]:
    ordered = sorted(images, key=lambda im: (not im.is_primary, im.sort, im.id or 0))
    if color:
        return [im for im in ordered if same_color(im.color, color)]
    primary = next((im for im in ordered if im.is_primary), ordered[0] if ordered else None)
    if primary is None:
        return []
    if primary.color:
        return [im for im in ordered if same_color(im.color, primary.color)]
    uncolored = [im for im in ordered if not im.color]
    return uncolored or [primary]


def escape_csv_value(value: Any) -> str:
    text = "" if value is None else str(value)
    if any(ch in text for ch in ('"', ",", "\n", CSV_DELIMITER)):
        return '"' + text.replace('"', '""') + '"'
    return text


def build_purchase_csv(items: Sequence[PurchaseItem]) -> str:
    lines = [CSV_TITLE, CSV_DELIMITER.join(CSV_HEADER)]
    for item in sorted(items, key=lambda x: x.sort_index):
        product = item.product
        images = select_item_images(product.images if product else [], item.color)
        row = (
            item.name,
            product.article if product else "",
            _format_price(item.price),
            _format_price(item.old_price),
            item.description,
            format_sizes(product.sizes if product else None),
            ",".join(im.url for im in images),
        )
        lines.append(CSV_DELIMITER.join(escape_csv_value(v) for v in row))
    return "\ufeff" + "\n".join(lines) + "\n"


def content_disposition(filename: str) -> str:
    ascii_name = filename.encode("ascii", "ignore").decode("ascii").strip().replace('"', "")
    if not ascii_name.lower().endswith(".csv") or ascii_name.startswith("."):
        ascii_name = "purchase.csv"
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(filename)}"
