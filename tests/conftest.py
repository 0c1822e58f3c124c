import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.auth import create_access_token, get_password_hash
from app.db import Base, get_db
from app.main import app
from app.models import Category, Product, ProductImage, Provider, User


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def _make_user(db, phone: str, role: str, name: str | None = None, password: str = "secret") -> User:
    user = User(phone=phone, name=name, role=role, hashed_password=get_password_hash(password))
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}


@pytest.fixture
def admin(db):
    return _make_user(db, "+79990000001", "admin", name="Админ")


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture
def make_user(db):
    def factory(phone: str, role: str = "client", name: str | None = None, password: str = "secret") -> User:
        return _make_user(db, phone, role, name=name, password=password)

    return factory


@pytest.fixture
def category(db):
    root = Category(name="Обувь", slug="obuv", path="obuv", sort=100)
    db.add(root)
    db.flush()
    leaf = Category(name="Кроссовки", slug="obuv-krossovki", path="obuv/krossovki", parent_id=root.id, sort=100)
    db.add(leaf)
    db.commit()
    db.refresh(leaf)
    return leaf


@pytest.fixture
def make_product(db, category):
    counter = {"n": 0}

    def factory(**overrides) -> Product:
        counter["n"] += 1
        n = counter["n"]
        images = overrides.pop("images", [])
        data = {
            "slug": f"product-{n}",
            "name": f"Товар {n}",
            "article": f"A{n:05d}",
            "category_id": category.id,
            "price_pair": 1000,
            "sizes": [{"size": "36", "count": 2}, {"size": "37", "count": 3}],
            "is_active": True,
        }
        data.update(overrides)
        product = Product(**data)
        db.add(product)
        db.flush()
        for index, image in enumerate(images):
            db.add(ProductImage(product_id=product.id, sort=index, **image))
        db.commit()
        db.refresh(product)
        return product

    return factory


@pytest.fixture
def provider(db):
    row = Provider(name="Садовод 12", phone="+79995554433", location="Корпус А", link="https://tk-sad.ru/provider/12")
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


@pytest.fixture
def headers_for():
    return auth_headers
