from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models import Category, Product
from app.services.slugs import make_slug

ROOT_PATH_PREFIX = "obuv/"


def capitalize_name(name: str) -> str:
    value = " ".join(str(name or "").split())
    if not value:
        return ""
    return value[0].upper() + value[1:].lower()


def make_segment(url_segment: str | None, name: str) -> str:
    return make_slug(url_segment) if url_segment and url_segment.strip() else make_slug(name)


def build_path(parent: Category | None, segment: str) -> str:
    return f"{parent.path}/{segment}" if parent else segment


def url_path(path: str) -> str:
    if path.startswith(ROOT_PATH_PREFIX):
        return path[len(ROOT_PATH_PREFIX):]
    return path


def is_descendant(db: Session, ancestor_id: int, candidate_id: int) -> bool:
    """True, если candidate_id лежит в поддереве ancestor_id."""
    current = db.get(Category, candidate_id)
    seen: set[int] = set()
    while current is not None and current.id not in seen:
        if current.parent_id == ancestor_id:
            return True
        seen.add(current.id)
        current = db.get(Category, current.parent_id) if current.parent_id else None
    return False


def rebuild_descendant_paths(db: Session, category: Category) -> None:
    for child in db.scalars(select(Category).where(Category.parent_id == category.id)).all():
        child.path = build_path(category, child.path.rsplit("/", 1)[-1])
        rebuild_descendant_paths(db, child)


def next_sort(db: Session, parent_id: int | None) -> int:
    stmt = select(func.max(Category.sort))
    stmt = stmt.where(Category.parent_id.is_(None)) if parent_id is None else stmt.where(Category.parent_id == parent_id)
    current = db.scalar(stmt)
    return int(current or 0) + 100


def load_category_tree(db: Session, active_only: bool = False) -> list[dict[str, Any]]:
    stmt = select(Category)
    if active_only:
        stmt = stmt.where(Category.is_active.is_(True))
    categories = db.scalars(stmt).all()
    count_stmt = select(Product.category_id, func.count(Product.id)).group_by(Product.category_id)
    if active_only:
        count_stmt = count_stmt.where(Product.is_active.is_(True))
    counts = {cid: int(n) for cid, n in db.execute(count_stmt).all()}
    return build_category_tree(categories, counts)


def build_category_tree(categories, direct_counts: dict[int, int]) -> list[dict[str, Any]]:
    nodes: dict[int, dict[str, Any]] = {}
    for c in categories:
        nodes[c.id] = {
            "id": c.id,
            "name": c.name,
            "slug": c.slug,
            "path": c.path,
            "url_path": url_path(c.path),
            "segment": c.path.rsplit("/", 1)[-1],
            "parent_id": c.parent_id,
            "sort": c.sort,
            "is_active": c.is_active,
            "direct_product_count": direct_counts.get(c.id, 0),
            "total_product_count": 0,
            "children": [],
        }

    # узел с отфильтрованным родителем выпадает вместе с поддеревом
    roots: list[dict[str, Any]] = []
    for node in nodes.values():
        if node["parent_id"] is None:
            roots.append(node)
        elif node["parent_id"] in nodes:
            nodes[node["parent_id"]]["children"].append(node)

    def finalize(node: dict[str, Any]) -> int:
        node["children"].sort(key=lambda n: (n["sort"], n["name"]))
        node["total_product_count"] = node["direct_product_count"] + sum(finalize(ch) for ch in node["children"])
        return node["total_product_count"]

    for root in roots:
        finalize(root)
    roots.sort(key=lambda n: (n["sort"], n["name"]))
    return roots


def get_leaf_categories(tree: list[dict[str, Any]]) -> list[dict[str, Any]]:
    leaves: list[dict[str, Any]] = []

    def walk(nodes: list[dict[str, Any]]) -> None:
        for node in nodes:
            if node["children"]:
                walk(node["children"])
            else:
                leaves.append(node)

    walk(tree)
    return leaves


def descendant_ids(db: Session, category: Category) -> list[int]:
    rows = db.scalars(
        select(Category.id).where((Category.id == category.id) | Category.path.like(f"{category.path}/%"))
    ).all()
    return list(rows)
