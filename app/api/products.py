from __future__ import annotations

import logging
import math
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

from app.db import get_db
from app.deps import get_admin_user
from app.models import (
    AuditLog,
    Category,
    DraftProduct,
    OrderItem,
    Product,
    ProductImage,
    ProductVideo,
    Provider,
    PurchaseItem,
    User,
)
from app.schemas import (
    AggregatorImportIn,
    AggregatorImportOut,
    ColorActivationIn,
    ColorActivationOut,
    DraftBatchOut,
    DraftIdsIn,
    DraftOut,
    DraftResultOut,
    ImageGroupOut,
    MessageOut,
    ProductCreateIn,
    ProductDetailOut,
    ProductImageIn,
    ProductImageOut,
    ProductImageUpdateIn,
    ProductListOut,
    ProductPageOut,
    ProductUpdateIn,
    ProductVideoIn,
    ProductVideoOut,
)
from app.services.colors import normalize_color, same_color
from app.services.product_import import AggregatorImportError, generate_article, import_from_aggregator
from app.services.slugs import SlugError, make_slug, unique_slug

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

DRAFT_STATUSES = ("pending", "approved", "rejected", "converted")
NON_NULL_PRODUCT_FIELDS = ("name", "slug", "category_id", "price_pair", "measurement_unit", "is_active")


@router.get("/admin/products", response_model=ProductListOut)
def admin_products(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=200),
    search: str = "",
    category_id: int | None = None,
    is_active: bool | None = None,
    source: str = "",
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    _ = admin
    stmt = select(Product)
    needle = search.strip()
    if needle:
        pattern = f"%{needle.lower()}%"
        stmt = stmt.where(or_(func.lower(Product.name).like(pattern), Product.article.like(f"%{needle}%")))
    if category_id is not None:
        stmt = stmt.where(Product.category_id == category_id)
    if is_active is not None:
        stmt = stmt.where(Product.is_active.is_(is_active))
    if source.strip():
        stmt = stmt.where(Product.source == source.strip().upper())

    total = db.scalar(select(func.count()).select_from(stmt.subquery())) or 0
    rows = db.scalars(
        stmt.order_by(Product.created_at.desc(), Product.id.desc()).offset((page - 1) * page_size).limit(page_size)
    ).all()
    return ProductListOut(
        products=[_product_out(p) for p in rows],
        pagination=ProductPageOut(
            page=page,
            page_size=page_size,
            total=total,
            total_pages=math.ceil(total / page_size) if total else 0,
        ),
    )


@router.post("/admin/products", response_model=ProductDetailOut, status_code=201)
def admin_create_product(payload: ProductCreateIn, admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    name = " ".join(payload.name.split())
    if not name:
        raise HTTPException(status_code=400, detail="Название товара обязательно")
    _require_category(db, payload.category_id)
    _require_provider(db, payload.provider_id)
    data = payload.model_dump(exclude={"slug", "name", "article"})
    product = Product(
        **data,
        name=name,
        slug=_product_slug(db, payload.slug or name),
        article=(payload.article or "").strip() or generate_article(),
        source="MANUAL",
        active_updated_at=datetime.utcnow(),
    )
    db.add(product)
    db.flush()
    db.add(AuditLog(user_id=admin.id, action="product_created", entity_type="product", entity_id=str(product.id)))
    db.commit()
    db.refresh(product)
    return _product_out(product)


@router.post("/admin/products/parse-aggregator", response_model=AggregatorImportOut, status_code=201)
def admin_parse_aggregator(payload: AggregatorImportIn, admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    try:
        result = import_from_aggregator(db, data_id=payload.data_id, html=payload.html, test=payload.test)
    except AggregatorImportError as exc:
        db.rollback()
        logger.warning("Aggregator import failed (%s): %s", exc.status_code, exc.message)
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc

    if result.test:
        return JSONResponse(status_code=200, content={"test": True, "parsed_data": result.parsed.as_dict()})

    product = result.product
    db.add(
        AuditLog(
            user_id=admin.id,
            action="product_imported",
            details=f"data_id={payload.data_id or ''}",
            entity_type="product",
            entity_id=str(product.id),
        )
    )
    db.commit()
    db.refresh(product)
    return AggregatorImportOut(
        product_id=product.id,
        product=_product_out(product),
        message="Товар успешно создан из агрегатора",
        skipped_images=result.warnings,
    )


@router.get("/admin/products/{product_id}", response_model=ProductDetailOut)
def admin_get_product(product_id: int, admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    _ = admin
    return _product_out(_get_product(db, product_id))


@router.patch("/admin/products/{product_id}", response_model=ProductDetailOut)
def admin_update_product(
    product_id: int,
    payload: ProductUpdateIn,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    product = _get_product(db, product_id)
    data = {
        k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None or k not in NON_NULL_PRODUCT_FIELDS
    }
    if not data:
        raise HTTPException(status_code=400, detail="No fields to update")
    if "category_id" in data:
        _require_category(db, data["category_id"])
    if "provider_id" in data:
        _require_provider(db, data["provider_id"])
    if "slug" in data:
        data["slug"] = _product_slug(db, data["slug"] or product.name, exclude_id=product.id)
    if "name" in data:
        data["name"] = " ".join(str(data["name"] or "").split()) or product.name

    for field, value in data.items():
        setattr(product, field, value)
    product.active_updated_at = datetime.utcnow()
    db.add(
        AuditLog(
            user_id=admin.id,
            action="product_updated",
            details=",".join(sorted(data.keys())),
            entity_type="product",
            entity_id=str(product.id),
        )
    )
    db.commit()
    db.refresh(product)
    return _product_out(product)


@router.delete("/admin/products/{product_id}", response_model=MessageOut)
def admin_delete_product(product_id: int, admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    product = _get_product(db, product_id)
    if db.scalar(select(OrderItem.id).where(OrderItem.product_id == product.id).limit(1)):
        raise HTTPException(status_code=400, detail="Товар используется в заказах, удаление невозможно")
    db.execute(delete(PurchaseItem).where(PurchaseItem.product_id == product.id))
    db.delete(product)
    db.add(AuditLog(user_id=admin.id, action="product_deleted", entity_type="product", entity_id=str(product_id)))
    db.commit()
    return MessageOut(message="Товар удален")


@router.patch("/admin/products/{product_id}/colors/{color}", response_model=ColorActivationOut)
def admin_toggle_color(
    product_id: int,
    color: str,
    payload: ColorActivationIn,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    _ = admin
    if not isinstance(payload.is_active, bool):
        raise HTTPException(status_code=400, detail="is_active должен быть true или false")
    product = _get_product(db, product_id)
    updated = 0
    for image in product.images:
        if same_color(image.color, color):
            image.is_active = payload.is_active
            updated += 1
    product.active_updated_at = datetime.utcnow()
    db.commit()
    return ColorActivationOut(color=color, is_active=payload.is_active, updated=updated)


@router.get("/admin/products/{product_id}/image-groups", response_model=list[ImageGroupOut])
def admin_image_groups(product_id: int, admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    _ = admin
    product = _get_product(db, product_id)
    groups: dict[str, ImageGroupOut] = {}
    uncolored: list[ProductImageOut] = []
    for image in _sorted_images(product.images):
        out = ProductImageOut.model_validate(image)
        if not image.color:
            uncolored.append(out)
            continue
        key = image.color.strip().lower()
        if key not in groups:
            groups[key] = ImageGroupOut(color=image.color, images=[])
        groups[key].images.append(out)
    result = list(groups.values())
    if uncolored:
        result.append(ImageGroupOut(color=None, images=uncolored))
    return result


@router.post("/admin/products/{product_id}/images", response_model=ProductImageOut, status_code=201)
def admin_add_image(product_id: int, payload: ProductImageIn, admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    _ = admin
    product = _get_product(db, product_id)
    if not payload.url.strip():
        raise HTTPException(status_code=400, detail="URL изображения обязателен")
    is_primary = payload.is_primary or not product.images
    if is_primary:
        for existing in product.images:
            existing.is_primary = False
    image = ProductImage(
        product_id=product.id,
        url=payload.url.strip(),
        key=payload.key,
        alt=payload.alt or product.name,
        color=normalize_color(payload.color) or (payload.color or None),
        sort=max((im.sort for im in product.images), default=-1) + 1,
        is_primary=is_primary,
        is_active=True,
    )
    db.add(image)
    db.commit()
    db.refresh(image)
    return image


@router.patch("/admin/images/{image_id}", response_model=ProductImageOut)
def admin_update_image(image_id: int, payload: ProductImageUpdateIn, admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    _ = admin
    image = db.get(ProductImage, image_id)
    if not image:
        raise HTTPException(status_code=404, detail="Изображение не найдено")
    data = payload.model_dump(exclude_unset=True)
    if data.get("is_primary"):
        for sibling in image.product.images:
            sibling.is_primary = sibling.id == image.id
    elif data.get("is_primary") is False and image.is_primary:
        raise HTTPException(status_code=400, detail="Назначьте другое главное изображение")
    if "color" in data:
        image.color = normalize_color(data["color"]) or (data["color"] or None)
    for field in ("alt", "sort", "is_active"):
        if field in data and data[field] is not None:
            setattr(image, field, data[field])
    db.commit()
    db.refresh(image)
    return image


@router.delete("/admin/images/{image_id}", response_model=MessageOut)
def admin_delete_image(image_id: int, admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    _ = admin
    image = db.get(ProductImage, image_id)
    if not image:
        raise HTTPException(status_code=404, detail="Изображение не найдено")
    product = image.product
    was_primary = image.is_primary
    product.images.remove(image)
    db.flush()
    if was_primary and product.images:
        min(product.images, key=lambda im: (im.sort, im.id)).is_primary = True
    db.commit()
    return MessageOut(message="Изображение удалено")


@router.post("/admin/products/{product_id}/videos", response_model=ProductVideoOut, status_code=201)
def admin_add_video(product_id: int, payload: ProductVideoIn, admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    _ = admin
    product = _get_product(db, product_id)
    if not payload.url.strip():
        raise HTTPException(status_code=400, detail="URL видео обязателен")
    video = ProductVideo(
        product_id=product.id,
        url=payload.url.strip(),
        alt=payload.alt,
        duration=payload.duration,
        sort=max((v.sort for v in product.videos), default=-1) + 1,
    )
    db.add(video)
    db.commit()
    db.refresh(video)
    return video


@router.delete("/admin/videos/{video_id}", response_model=MessageOut)
def admin_delete_video(video_id: int, admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    _ = admin
    video = db.get(ProductVideo, video_id)
    if not video:
        raise HTTPException(status_code=404, detail="Видео не найдено")
    db.delete(video)
    db.commit()
    return MessageOut(message="Видео удалено")


@router.get("/admin/drafts", response_model=list[DraftOut])
def admin_drafts(status: str = "", admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    _ = admin
    stmt = select(DraftProduct)
    if status.strip():
        if status.strip() not in DRAFT_STATUSES:
            raise HTTPException(status_code=400, detail="Неизвестный статус черновика")
        stmt = stmt.where(DraftProduct.status == status.strip())
    return db.scalars(stmt.order_by(DraftProduct.created_at.desc(), DraftProduct.id.desc()).limit(500)).all()


@router.post("/admin/drafts/approve", response_model=DraftBatchOut)
def admin_approve_drafts(payload: DraftIdsIn, admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    ids = _require_ids(payload.ids)
    fallback_category_id = payload.category_id
    if fallback_category_id is not None:
        _require_category(db, fallback_category_id)
    else:
        root = db.scalar(
            select(Category)
            .where(Category.parent_id.is_(None), Category.is_active.is_(True))
            .order_by(Category.sort, Category.id)
            .limit(1)
        )
        if not root:
            raise HTTPException(status_code=400, detail="No root category found")
        fallback_category_id = root.id

    results = []
    for draft_id in ids:
        draft = db.get(DraftProduct, draft_id)
        if not draft:
            results.append(DraftResultOut(id=draft_id, ok=False, error="Черновик не найден"))
            continue
        if draft.status == "converted":
            results.append(DraftResultOut(id=draft_id, ok=False, status=draft.status, error="Черновик уже в каталоге"))
            continue
        if draft.category_id is None or payload.category_id is not None:
            draft.category_id = fallback_category_id
        draft.status = "approved"
        results.append(DraftResultOut(id=draft_id, ok=True, status=draft.status))
    db.add(AuditLog(user_id=admin.id, action="drafts_approved", details=",".join(map(str, ids)), entity_type="draft"))
    db.commit()
    return DraftBatchOut(results=results)


@router.post("/admin/drafts/reject", response_model=DraftBatchOut)
def admin_reject_drafts(payload: DraftIdsIn, admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    ids = _require_ids(payload.ids)
    results = []
    for draft_id in ids:
        draft = db.get(DraftProduct, draft_id)
        if not draft:
            results.append(DraftResultOut(id=draft_id, ok=False, error="Черновик не найден"))
            continue
        if draft.status == "converted":
            results.append(DraftResultOut(id=draft_id, ok=False, status=draft.status, error="Черновик уже в каталоге"))
            continue
        draft.status = "rejected"
        results.append(DraftResultOut(id=draft_id, ok=True, status=draft.status))
    db.add(AuditLog(user_id=admin.id, action="drafts_rejected", details=",".join(map(str, ids)), entity_type="draft"))
    db.commit()
    return DraftBatchOut(results=results)


@router.post("/admin/drafts/convert-to-catalog", response_model=DraftBatchOut)
def admin_convert_drafts(payload: DraftIdsIn, admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    ids = _require_ids(payload.ids)
    results = []
    for draft_id in ids:
        draft = db.get(DraftProduct, draft_id)
        if not draft:
            results.append(DraftResultOut(id=draft_id, ok=False, error="Черновик не найден"))
            continue
        if draft.status != "approved":
            results.append(DraftResultOut(id=draft_id, ok=False, status=draft.status, error="Черновик не одобрен"))
            continue
        if draft.category_id is None:
            results.append(DraftResultOut(id=draft_id, ok=False, status=draft.status, error="Не указана категория"))
            continue

        product = Product(
            slug=_product_slug(db, draft.name),
            name=draft.name,
            article=generate_article(),
            category_id=draft.category_id,
            provider_id=draft.provider_id,
            price_pair=draft.price_pair or 0,
            material=draft.material,
            gender=draft.gender,
            season=draft.season,
            description=draft.description,
            sizes=draft.sizes,
            is_active=False,
            active_updated_at=datetime.utcnow(),
            source="WA",
        )
        db.add(product)
        db.flush()
        active_images = [im for im in draft.images if im.is_active]
        for index, image in enumerate(active_images):
            db.add(
                ProductImage(
                    product_id=product.id,
                    url=image.url,
                    key=image.key,
                    alt=draft.name,
                    color=image.color,
                    sort=index,
                    is_primary=index == 0,
                )
            )
        draft.status = "converted"
        draft.product_id = product.id
        results.append(DraftResultOut(id=draft_id, ok=True, status=draft.status, product_id=product.id))
    db.add(AuditLog(user_id=admin.id, action="drafts_converted", details=",".join(map(str, ids)), entity_type="draft"))
    db.commit()
    return DraftBatchOut(results=results)


def _sorted_images(images: list[ProductImage]) -> list[ProductImage]:
    return sorted(images, key=lambda im: (not im.is_primary, im.sort, im.id))


def _product_out(product: Product) -> ProductDetailOut:
    out = ProductDetailOut.model_validate(product)
    out.images = [ProductImageOut.model_validate(im) for im in _sorted_images(product.images)]
    return out


def _get_product(db: Session, product_id: int) -> Product:
    product = db.get(Product, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Товар не найден")
    return product


def _require_category(db: Session, category_id: int | None) -> None:
    if category_id is None or not db.get(Category, category_id):
        raise HTTPException(status_code=404, detail="Категория не найдена")


def _require_provider(db: Session, provider_id: int | None) -> None:
    if provider_id is not None and not db.get(Provider, provider_id):
        raise HTTPException(status_code=404, detail="Поставщик не найден")


def _require_ids(ids: list[int]) -> list[int]:
    clean = list(dict.fromkeys(int(x) for x in ids or []))
    if not clean:
        raise HTTPException(status_code=400, detail="Не переданы идентификаторы")
    return clean


def _product_slug(db: Session, raw: str, exclude_id: int | None = None) -> str:
    try:
        return unique_slug(db, Product, make_slug(raw), exclude_id=exclude_id, attempts=1000)
    except SlugError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
