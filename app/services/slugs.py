from slugify import slugify
from sqlalchemy import select
from sqlalchemy.orm import Session


class SlugError(ValueError):
    pass


def make_slug(*parts: str | None) -> str:
    return slugify(" ".join(str(p) for p in parts if p), lowercase=True)


def unique_slug(db: Session, model, base: str, exclude_id: int | None = None, attempts: int = 100) -> str:
    """Возвращает base или base-1..base-N, не занятый другой записью модели."""
    base = base or "item"
    for n in range(0, attempts + 1):
        candidate = base if n == 0 else f"{base}-{n}"
        stmt = select(model.id).where(model.slug == candidate)
        if exclude_id is not None:
            stmt = stmt.where(model.id != exclude_id)
        if db.scalar(stmt) is None:
            return candidate
    raise SlugError("Не удалось подобрать уникальный slug")
