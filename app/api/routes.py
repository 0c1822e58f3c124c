from __future__ import annotations

import math

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from app.auth import create_access_token, get_password_hash, placeholder_password_hash, verify_password
from app.config import settings
from app.db import get_db
from app.deps import get_admin_user, get_current_user
from app.models import ROLE_ADMIN, ROLE_PROVIDER, ROLES, AuditLog, Order, Product, Provider, User
from app.schemas import (
    AdminUserCreateIn,
    AdminUserRoleIn,
    AdminUserRowOut,
    AdminUsersOut,
    LoginRequest,
    OrderStatusOut,
    PaginationOut,
    ProviderIn,
    ProviderOut,
    TokenResponse,
    UserLabelIn,
    UserOut,
)
from app.services.order_statuses import order_status_options
from app.services.phones import normalize_phone, parse_admin_phones

router = APIRouter(prefix="/api")


@router.post("/auth/login", response_model=TokenResponse)
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    user = _authenticate(db, payload.phone, payload.password)
    return TokenResponse(access_token=create_access_token(user.id, user.role), user=UserOut.model_validate(user))


@router.post("/auth/token", response_model=TokenResponse)
def login_form(form: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    user = _authenticate(db, form.username, form.password)
    return TokenResponse(access_token=create_access_token(user.id, user.role), user=UserOut.model_validate(user))


@router.get("/auth/me", response_model=UserOut)
def me(user: User = Depends(get_current_user)):
    return user


@router.get("/order-statuses", response_model=list[OrderStatusOut])
def order_statuses():
    return [OrderStatusOut(**row) for row in order_status_options()]


@router.get("/admin/users", response_model=AdminUsersOut)
def admin_users(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    search: str = "",
    role: str = "",
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    _ = admin
    stmt = select(User)
    needle = search.strip().lower()
    if needle:
        pattern = f"%{needle}%"
        stmt = stmt.where(or_(func.lower(User.name).like(pattern), User.phone.like(pattern)))
    role_code = role.strip().lower()
    if role_code:
        stmt = stmt.where(User.role == role_code)

    total = db.scalar(select(func.count()).select_from(stmt.subquery())) or 0
    rows = db.scalars(stmt.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * limit).limit(limit)).all()

    counts: dict[int, int] = {}
    if rows:
        counts = {
            uid: int(n)
            for uid, n in db.execute(
                select(Order.user_id, func.count(Order.id))
                .where(Order.user_id.in_([u.id for u in rows]))
                .group_by(Order.user_id)
            ).all()
        }
    users = []
    for u in rows:
        item = AdminUserRowOut.model_validate(u)
        item.orders_count = counts.get(u.id, 0)
        users.append(item)
    return AdminUsersOut(
        users=users,
        pagination=PaginationOut(page=page, limit=limit, total=total, pages=math.ceil(total / limit) if total else 0),
    )


@router.post("/admin/users", response_model=UserOut, status_code=201)
def admin_create_user(payload: AdminUserCreateIn, admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    phone = normalize_phone(payload.phone)
    role = _validate_role(payload.role)
    if not phone:
        raise HTTPException(status_code=400, detail="Телефон и роль обязательны")
    if db.scalar(select(User).where(User.phone == phone)):
        raise HTTPException(status_code=400, detail="Пользователь с таким телефоном уже существует")
    if payload.provider_id is not None and not db.get(Provider, payload.provider_id):
        raise HTTPException(status_code=404, detail="Поставщик не найден")

    user = User(
        phone=phone,
        name=(payload.name or "").strip() or None,
        role=role,
        provider_id=payload.provider_id,
        hashed_password=placeholder_password_hash(),
    )
    db.add(user)
    db.flush()
    db.add(AuditLog(user_id=admin.id, action="user_created", details=f"role={role}", entity_type="user", entity_id=str(user.id)))
    db.commit()
    db.refresh(user)
    return user


@router.get("/admin/users/{user_id}", response_model=UserOut)
def admin_get_user(user_id: int, admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    _ = admin
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="Пользователь не найден")
    return user


@router.patch("/admin/users/{user_id}", response_model=UserOut)
def admin_set_role(user_id: int, payload: AdminUserRoleIn, admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    target = db.get(User, user_id)
    if not target:
        raise HTTPException(status_code=404, detail="Пользователь не найден")
    role = _validate_role(payload.role)
    if target.id == admin.id and role != ROLE_ADMIN:
        raise HTTPException(status_code=400, detail="Нельзя снять роль администратора с самого себя")
    previous = target.role
    target.role = role
    db.add(
        AuditLog(
            user_id=admin.id,
            action="user_role_changed",
            details=f"{previous}->{role}",
            entity_type="user",
            entity_id=str(target.id),
        )
    )
    db.commit()
    db.refresh(target)
    return target


@router.patch("/admin/users/{user_id}/label", response_model=UserOut)
def admin_set_label(user_id: int, payload: UserLabelIn, admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    _ = admin
    target = db.get(User, user_id)
    if not target:
        raise HTTPException(status_code=404, detail="Пользователь не найден")
    target.label = (payload.label or "").strip() or None
    db.commit()
    db.refresh(target)
    return target


@router.get("/admin/providers", response_model=list[ProviderOut])
def admin_providers(admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    _ = admin
    counts = {
        pid: int(n)
        for pid, n in db.execute(select(Product.provider_id, func.count(Product.id)).group_by(Product.provider_id)).all()
        if pid is not None
    }
    out = []
    for provider in db.scalars(select(Provider).order_by(Provider.name)).all():
        item = ProviderOut.model_validate(provider)
        item.products_count = counts.get(provider.id, 0)
        out.append(item)
    return out


@router.post("/admin/providers", response_model=ProviderOut, status_code=201)
def admin_create_provider(payload: ProviderIn, admin: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    name = " ".join(payload.name.split())
    if not name:
        raise HTTPException(status_code=400, detail="Название поставщика обязательно")
    if db.scalar(select(Provider).where(Provider.name == name)):
        raise HTTPException(status_code=400, detail="Поставщик с таким названием уже существует")
    provider = Provider(
        name=name,
        phone=normalize_phone(payload.phone) or None,
        place=payload.place,
        location=payload.location,
        link=payload.link,
    )
    db.add(provider)
    db.flush()
    db.add(AuditLog(user_id=admin.id, action="provider_created", entity_type="provider", entity_id=str(provider.id)))
    db.commit()
    db.refresh(provider)
    return provider


def _validate_role(raw: str | None) -> str:
    role = str(raw or "").strip().lower()
    if role not in ROLES:
        raise HTTPException(status_code=400, detail="Недопустимая роль")
    return role


def _authenticate(db: Session, raw_phone: str, password: str) -> User:
    phone = normalize_phone(raw_phone)
    if not phone or not password:
        raise HTTPException(status_code=400, detail="Телефон и пароль обязательны")

    user = db.scalar(select(User).where(User.phone == phone))
    provider = db.scalar(select(Provider).where(Provider.phone == phone))
    if not user:
        if not provider:
            raise HTTPException(status_code=401, detail="Неверный телефон или пароль")
        user = User(
            phone=phone,
            name=provider.name,
            role=ROLE_PROVIDER,
            provider_id=provider.id,
            hashed_password=get_password_hash(password),
        )
        db.add(user)
        db.flush()
        db.add(AuditLog(user_id=user.id, action="provider_user_created", entity_type="provider", entity_id=str(provider.id)))
    elif not verify_password(password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Неверный телефон или пароль")

    if phone in parse_admin_phones(settings.admin_phones):
        user.role = ROLE_ADMIN
    elif provider and user.provider_id is None and user.role != ROLE_ADMIN:
        user.provider_id = provider.id
        user.role = ROLE_PROVIDER
    db.commit()
    db.refresh(user)
    return user
