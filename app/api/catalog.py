from __future__ import annotations

import math

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from app.db import get_db
from app.deps import get_admin_user
from app.models import AuditLog, Category, Product, ProductImage, User
from app.schemas import (
    CategoryIn,
    CategoryOut,
    CategoryTreeOut,
    MessageOut,
    ProductDetailOut,
    ProductListOut,
    ProductPageOut,
)
from app.services.categories import (
    build_path,
    capitalize_name,
    descendant_ids,
    is_descendant,
    load_category_tree,
    make_segment,
    next_sort,
    rebuild_descendant_paths,
    url_path,
)
from app.services.slugs import SlugError, make_slug, unique_slug

router = APIRouter(prefix="/api")


@router.get("/admin/categories", response_model=CategoryTreeOut)
def admin_categories(admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    _ = admin
    return CategoryTreeOut(items=load_category_tree(db))


@router.post("/admin/categories", response_model=CategoryOut, status_code=201)
def admin_create_category(payload: CategoryIn, admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    name = capitalize_name(payload.name or "")
    if not name:
        raise HTTPException(status_code=400, detail="Название категории обязательно")
    parent = _get_parent(db, payload.parent_id)
    segment = make_segment(payload.url_segment, name)
    if not segment:
        raise HTTPException(status_code=400, detail="Не удалось построить адрес категории")
    path = build_path(parent, segment)
    if db.scalar(select(Category.id).where(Category.path == path)):
        raise HTTPException(status_code=400, detail="Категория с таким адресом уже существует")

    category = Category(
        name=name,
        slug=_category_slug(db, payload.slug, parent, name),
        path=path,
        parent_id=parent.id if parent else None,
        sort=payload.sort if payload.sort is not None else next_sort(db, parent.id if parent else None),
        is_active=True if payload.is_active is None else payload.is_active,
        seo_title=payload.seo_title,
        seo_description=payload.seo_description,
    )
    db.add(category)
    db.flush()
    db.add(AuditLog(user_id=admin.id, action="category_created", details=path, entity_type="category", entity_id=str(category.id)))
    db.commit()
    db.refresh(category)
    return category


@router.patch("/admin/categories/{category_id}", response_model=CategoryOut)
def admin_update_category(
    category_id: int,
    payload: CategoryIn,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    category = db.get(Category, category_id)
    if not category:
        raise HTTPException(status_code=404, detail="Категория не найдена")
    data = payload.model_dump(exclude_unset=True)

    parent = category.parent
    if "parent_id" in data:
        new_parent_id = data["parent_id"]
        if new_parent_id == category.id:
            raise HTTPException(status_code=400, detail="Категория не может быть родителем самой себя")
        if new_parent_id is not None and is_descendant(db, category.id, new_parent_id):
            raise HTTPException(status_code=400, detail="Нельзя переместить категорию в её потомка")
        parent = _get_parent(db, new_parent_id)
        category.parent_id = parent.id if parent else None

    name = category.name
    if "name" in data:
        name = capitalize_name(data["name"] or "")
        if not name:
            raise HTTPException(status_code=400, detail="Название категории обязательно")
        category.name = name

    if {"parent_id", "url_segment", "name"} & data.keys():
        current_segment = category.path.rsplit("/", 1)[-1]
        if data.get("url_segment") or "name" in data:
            segment = make_segment(data.get("url_segment"), name)
        else:
            segment = current_segment
        path = build_path(parent, segment)
        if path != category.path:
            if db.scalar(select(Category.id).where(Category.path == path, Category.id != category.id)):
                raise HTTPException(status_code=400, detail="Категория с таким адресом уже существует")
            category.path = path
            db.flush()
            rebuild_descendant_paths(db, category)

    if data.get("slug") or "parent_id" in data:
        category.slug = _category_slug(db, data.get("slug"), parent, name, exclude_id=category.id)
    for field in ("sort", "is_active", "seo_title", "seo_description"):
        if field in data and data[field] is not None:
            setattr(category, field, data[field])

    db.add(AuditLog(user_id=admin.id, action="category_updated", entity_type="category", entity_id=str(category.id)))
    db.commit()
    db.refresh(category)
    return category


@router.delete("/admin/categories/{category_id}", response_model=MessageOut)
def admin_delete_category(category_id: int, admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    category = db.get(Category, category_id)
    if not category:
        raise HTTPException(status_code=404, detail="Категория не найдена")
    if db.scalar(select(Category.id).where(Category.parent_id == category.id).limit(1)):
        raise HTTPException(status_code=400, detail="Нельзя удалить категорию с подкатегориями")
    if db.scalar(select(Product.id).where(Product.category_id == category.id).limit(1)):
        raise HTTPException(status_code=400, detail="Нельзя удалить категорию с товарами")
    db.delete(category)
    db.add(AuditLog(user_id=admin.id, action="category_deleted", entity_type="category", entity_id=str(category_id)))
    db.commit()
    return MessageOut(message="Категория удалена")


@router.get("/categories/tree", response_model=CategoryTreeOut)
def public_category_tree(db: Session = Depends(get_db)):
    return CategoryTreeOut(items=load_category_tree(db, active_only=True))


@router.get("/catalog", response_model=ProductListOut)
def public_catalog(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=24, ge=1, le=100),
    category_path: str = "",
    search: str = "",
    gender: str = "",
    season: str = "",
    color: str = "",
    db: Session = Depends(get_db),
):
    stmt = select(Product).where(Product.is_active.is_(True))
    if category_path.strip():
        wanted = category_path.strip().strip("/")
        category = db.scalar(select(Category).where(or_(Category.path == wanted, Category.path == f"obuv/{wanted}")))
        if not category or not category.is_active:
            raise HTTPException(status_code=404, detail="Категория не найдена")
        stmt = stmt.where(Product.category_id.in_(descendant_ids(db, category)))
    if search.strip():
        pattern = f"%{search.strip().lower()}%"
        stmt = stmt.where(or_(func.lower(Product.name).like(pattern), Product.article.like(pattern)))
    if gender.strip():
        stmt = stmt.where(Product.gender == gender.strip().upper())
    if season.strip():
        stmt = stmt.where(Product.season == season.strip().upper())
    if color.strip():
        stmt = stmt.where(
            Product.images.any(
                (func.lower(ProductImage.color) == color.strip().lower()) & ProductImage.is_active.is_(True)
            )
        )

    total = db.scalar(select(func.count()).select_from(stmt.subquery())) or 0
    rows = db.scalars(stmt.order_by(Product.created_at.desc(), Product.id.desc()).offset((page - 1) * page_size).limit(page_size)).all()
    return ProductListOut(
        products=[public_product_out(p) for p in rows],
        pagination=ProductPageOut(
            page=page,
            page_size=page_size,
            total=total,
            total_pages=math.ceil(total / page_size) if total else 0,
        ),
    )


@router.get("/catalog/{slug}", response_model=ProductDetailOut)
def public_product(slug: str, db: Session = Depends(get_db)):
    product = db.scalar(select(Product).where(Product.slug == slug, Product.is_active.is_(True)))
    if not product:
        raise HTTPException(status_code=404, detail="Товар не найден")
    return public_product_out(product)


def public_product_out(product: Product) -> ProductDetailOut:
    out = ProductDetailOut.model_validate(product)
    out.images = [im for im in sorted(out.images, key=lambda im: (not im.is_primary, im.sort)) if im.is_active]
    out.videos = [v for v in out.videos if v.is_active]
    out.buy_price = None
    out.category = out.category.model_copy(update={"path": url_path(out.category.path)}) if out.category else None
    return out


def _get_parent(db: Session, parent_id: int | None) -> Category | None:
    if parent_id is None:
        return None
    parent = db.get(Category, parent_id)
    if not parent:
        raise HTTPException(status_code=404, detail="Родительская категория не найдена")
    return parent


def _category_slug(db: Session, raw_slug: str | None, parent: Category | None, name: str, exclude_id: int | None = None) -> str:
    base = make_slug(raw_slug) if raw_slug and raw_slug.strip() else make_slug(parent.slug if parent else None, name)
    try:
        return unique_slug(db, Category, base, exclude_id=exclude_id)
    except SlugError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
