"""Импорт товара со страницы агрегатора.

Шаги: загрузка HTML (Playwright или готовый HTML) -> разбор -> поставщик ->
загрузка фото в хранилище -> анализ фото и текста моделью -> подбор категории
-> создание неактивного товара с фотографиями.
"""

import base64
import json
import logging
import random
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import settings
from app.models import Category, Product, ProductImage, Provider
from app.services import storage
from app.services.aggregator_fetch import FetchError, download_image, fetch_aggregator_page
from app.services.aggregator_parser import ParsedAggregatorPage, parse_aggregator_html
from app.services.categories import get_leaf_categories, load_category_tree
from app.services.colors import STANDARD_COLORS, normalize_color
from app.services.llm import LLMError, chat_json
from app.services.mappers import infer_gender_from_sizes, map_gender, map_season, sizes_from_labels
from app.services.pricing import markup_price
from app.services.slugs import make_slug, unique_slug

logger = logging.getLogger(__name__)

UNKNOWN_PROVIDER = "Неизвестный поставщик"
SUCCESS_MESSAGE = "Товар успешно создан из агрегатора"
TIMEOUT_MESSAGE = "Превышено время ожидания ответа от AI. Попробуйте еще раз."
ANALYSIS_FAILED_MESSAGE = "Ошибка при анализе товара. Попробуйте еще раз."

ANALYSIS_PROMPT = (
    "Ты помощник оптового магазина обуви. По фото и описанию товара верни JSON "
    'с полями: "name" (короткое название на русском, без бренда поставщика), '
    '"description" (2-4 предложения для карточки товара), "material", '
    '"gender" (FEMALE или MALE), "season" (SPRING, SUMMER, AUTUMN или WINTER), '
    '"color" (основной цвет одним словом на русском), "price" (цена за пару числом или 0).'
)
COLOR_PROMPT = (
    "Определи основной цвет обуви на фото. Верни JSON вида {\"color\": \"...\"}, "
    "где значение одно из: " + ", ".join(STANDARD_COLORS) + "."
)
CATEGORY_PROMPT = (
    "Выбери наиболее подходящую категорию каталога для товара. "
    'Верни JSON вида {"category_id": <id>} только из списка ниже.'
)


class AggregatorImportError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass
class UploadedImage:
    url: str
    key: str
    color: str | None = None


@dataclass
class ImportResult:
    product: Product | None = None
    parsed: ParsedAggregatorPage | None = None
    test: bool = False
    warnings: list[str] = field(default_factory=list)


def load_html(data_id: str | None, html: str | None) -> tuple[str, bytes | None]:
    if html and html.strip():
        return html, None
    if not data_id or not str(data_id).strip():
        raise AggregatorImportError("data-id обязателен", 400)
    try:
        page = fetch_aggregator_page(str(data_id))
    except FetchError as exc:
        raise AggregatorImportError(str(exc), 502) from exc
    return page.html, page.screenshot


def upsert_provider(db: Session, parsed: ParsedAggregatorPage) -> Provider:
    provider = None
    if parsed.provider_link:
        provider = db.scalar(select(Provider).where(Provider.link == parsed.provider_link))
        if provider is not None:
            if parsed.provider_name:
                provider.name = parsed.provider_name
            if parsed.provider_location:
                provider.location = parsed.provider_location
            return provider
    name = parsed.provider_name or UNKNOWN_PROVIDER
    provider = db.scalar(select(Provider).where(Provider.name == name))
    if provider is not None:
        if parsed.provider_link and not provider.link:
            provider.link = parsed.provider_link
        if parsed.provider_location and not provider.location:
            provider.location = parsed.provider_location
        return provider
    provider = Provider(name=name, link=parsed.provider_link, location=parsed.provider_location)
    db.add(provider)
    db.flush()
    return provider


def upload_image(url: str, prefix: str) -> tuple[UploadedImage, bytes, str]:
    body, content_type = download_image(url)
    ext = storage.extension_from_url(url, default="webp")
    key = storage.get_object_key(prefix, ext)
    if not storage.upload_bytes(key, body, content_type):
        raise storage.StorageError(f"Не удалось загрузить {key} в хранилище")
    return UploadedImage(url=storage.get_public_url(key), key=key), body, content_type


def analyze_product(parsed: ParsedAggregatorPage, image_bytes: bytes, content_type: str) -> tuple[dict[str, Any], str]:
    data_url = f"data:{content_type};base64,{base64.b64encode(image_bytes).decode('ascii')}"
    user_text = "\n".join(
        part
        for part in (
            f"Описание поставщика: {parsed.text}" if parsed.text else "",
            f"Метки: {', '.join(parsed.labels)}" if parsed.labels else "",
            f"Размеры: {', '.join(parsed.sizes)}" if parsed.sizes else "",
            f"Цена: {parsed.price}" if parsed.price else "",
        )
        if part
    )
    messages = [
        {"role": "system", "content": ANALYSIS_PROMPT},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": user_text or "Описание отсутствует"},
                {"type": "image_url", "image_url": {"url": data_url}},
            ],
        },
    ]
    reply = chat_json(messages, model=settings.llm_vision_model, temperature=0.5, max_tokens=2000)
    return reply, user_text


def analyze_image_color(image_url: str) -> str | None:
    messages = [
        {"role": "system", "content": COLOR_PROMPT},
        {"role": "user", "content": [{"type": "image_url", "image_url": {"url": image_url}}]},
    ]
    try:
        reply = chat_json(messages, model=settings.llm_vision_model, temperature=0.2, max_tokens=100)
    except LLMError as exc:
        logger.warning("Color analysis failed for %s: %s", image_url, exc)
        return None
    return normalize_color(reply.get("color"))


def pick_category(db: Session, analysis: dict[str, Any]) -> Category:
    leaves = get_leaf_categories(load_category_tree(db, active_only=True))
    leaf_ids = {leaf["id"] for leaf in leaves}
    if leaves:
        listing = "\n".join(f"{leaf['id']}: {leaf['url_path']} ({leaf['name']})" for leaf in leaves)
        product_text = f"{analysis.get('name', '')}. {analysis.get('description', '')}"
        messages = [
            {"role": "system", "content": f"{CATEGORY_PROMPT}\n{listing}"},
            {"role": "user", "content": product_text},
        ]
        try:
            reply = chat_json(messages, model=settings.llm_text_model, temperature=0.2, max_tokens=200)
            chosen = int(reply.get("category_id"))
        except (LLMError, TypeError, ValueError) as exc:
            logger.warning("Category selection failed: %s", exc)
            chosen = None
        if chosen in leaf_ids:
            return db.get(Category, chosen)
        logger.info("Model picked non-leaf category %s, falling back", chosen)

    fallback = db.scalar(
        select(Category).where(Category.is_active.is_(True)).order_by(Category.sort, Category.id).limit(1)
    )
    if fallback is None:
        raise AggregatorImportError("Нет доступных категорий для товара", 400)
    return fallback


def resolve_buy_price(analysis: dict[str, Any], parsed: ParsedAggregatorPage) -> float | None:
    try:
        llm_price = float(analysis.get("price") or 0)
    except (TypeError, ValueError):
        llm_price = 0
    if llm_price > 0:
        return llm_price
    if parsed.price and parsed.price > 0:
        return float(parsed.price)
    return None


def generate_article() -> str:
    return str(random.randint(100000, 999999))


def describe_llm_error(exc: LLMError) -> AggregatorImportError:
    message = str(exc)
    lowered = message.lower()
    if "timeout" in lowered or "timed out" in lowered or "deadline" in lowered:
        return AggregatorImportError(TIMEOUT_MESSAGE, 504)
    if exc.status_code == 400 or "400" in message:
        return AggregatorImportError(ANALYSIS_FAILED_MESSAGE, 502)
    return AggregatorImportError(message, 502)


def import_from_aggregator(db: Session, data_id: str | None = None, html: str | None = None, test: bool = False) -> ImportResult:
    if test and settings.is_production:
        raise AggregatorImportError("Тестовый режим недоступен в production", 403)

    raw_html, screenshot = load_html(data_id, html)
    parsed = parse_aggregator_html(raw_html)
    logger.info("Parsed aggregator page: %d images, %d sizes", len(parsed.images), len(parsed.sizes))
    if test:
        return ImportResult(parsed=parsed, test=True)
    if not parsed.text and not parsed.images:
        raise AggregatorImportError("Не удалось извлечь данные из HTML", 400)

    provider = upsert_provider(db, parsed)
    if not parsed.images:
        raise AggregatorImportError("Не найдено изображений для анализа", 400)

    prefix = f"ag-{data_id or secrets.token_hex(4)}"
    try:
        first, first_bytes, first_type = upload_image(parsed.images[0], prefix)
    except FetchError as exc:
        raise AggregatorImportError(f"Не удалось скачать изображение: {exc}", 400) from exc
    except storage.StorageError as exc:
        raise AggregatorImportError(f"Не удалось загрузить изображение в хранилище: {exc}", 500) from exc

    try:
        analysis, request_text = analyze_product(parsed, first_bytes, first_type)
    except LLMError as exc:
        raise describe_llm_error(exc) from exc
    logger.info("Product analysis received: %s", analysis.get("name"))

    uploaded = [first]
    result = ImportResult(parsed=parsed)
    for url in parsed.images[1:]:
        try:
            image, _, _ = upload_image(url, prefix)
        except (FetchError, storage.StorageError) as exc:
            logger.warning("Skip image %s: %s", url, exc)
            result.warnings.append(url)
            continue
        uploaded.append(image)

    for index, image in enumerate(uploaded):
        image.color = analyze_image_color(image.url)
        if image.color is None and index == 0:
            image.color = normalize_color(analysis.get("color"))

    sizes = sizes_from_labels(parsed.sizes)
    gender = map_gender(analysis.get("gender")) if analysis.get("gender") else (infer_gender_from_sizes(sizes) or map_gender(None))
    category = pick_category(db, analysis)
    buy_price = resolve_buy_price(analysis, parsed)
    name = str(analysis.get("name") or "").strip() or (parsed.text[:80] if parsed.text else "Обувь")

    product = Product(
        slug=unique_slug(db, Product, make_slug(name), attempts=1000),
        name=name,
        article=generate_article(),
        category_id=category.id,
        provider_id=provider.id,
        buy_price=buy_price,
        price_pair=markup_price(buy_price, settings.aggregator_markup_factor),
        currency="RUB",
        material=analysis.get("material") or None,
        gender=gender,
        season=map_season(analysis.get("season")),
        description=analysis.get("description") or parsed.text or None,
        sizes=sizes,
        is_active=False,
        active_updated_at=datetime.utcnow(),
        source="AG",
        ag_labels=parsed.labels or None,
        gpt_request=request_text,
        gpt_response=json.dumps(analysis, ensure_ascii=False),
    )
    db.add(product)
    db.flush()

    for index, image in enumerate(uploaded):
        db.add(
            ProductImage(
                product_id=product.id,
                url=image.url,
                key=image.key,
                alt=name,
                color=image.color,
                sort=index,
                is_primary=index == 0,
                is_active=True,
            )
        )

    if screenshot:
        key = storage.get_object_key(product.id, "png")
        if storage.upload_bytes(key, screenshot, "image/png"):
            product.source_screenshot_key = key
            product.source_screenshot_url = storage.get_public_url(key)

    db.commit()
    db.refresh(product)
    logger.info("Created product %s from aggregator", product.id)
    result.product = product
    return result
