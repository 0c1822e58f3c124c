from sqlalchemy import create_engine, text
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from app.config import settings
from app.services.phones import parse_admin_phones


class Base(DeclarativeBase):
    pass


connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}
engine = create_engine(settings.database_url, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def run_lightweight_migrations(bind=None):
    bind = bind or engine
    if not str(bind.url).startswith("sqlite"):
        return

    with bind.begin() as conn:
        product_cols = {row[1] for row in conn.execute(text("PRAGMA table_info(products)"))}
        if product_cols and "measurement_unit" not in product_cols:
            conn.execute(text("ALTER TABLE products ADD COLUMN measurement_unit VARCHAR(20) DEFAULT 'PAIRS'"))
        if product_cols and "ag_labels" not in product_cols:
            conn.execute(text("ALTER TABLE products ADD COLUMN ag_labels TEXT"))
        if product_cols and "source_screenshot_key" not in product_cols:
            conn.execute(text("ALTER TABLE products ADD COLUMN source_screenshot_key VARCHAR(500)"))
            conn.execute(text("ALTER TABLE products ADD COLUMN source_screenshot_url VARCHAR(1000)"))

        image_cols = {row[1] for row in conn.execute(text("PRAGMA table_info(product_images)"))}
        if image_cols and "is_active" not in image_cols:
            conn.execute(text("ALTER TABLE product_images ADD COLUMN is_active BOOLEAN DEFAULT 1"))

        order_item_cols = {row[1] for row in conn.execute(text("PRAGMA table_info(order_items)"))}
        if order_item_cols and "is_purchased" not in order_item_cols:
            conn.execute(text("ALTER TABLE order_items ADD COLUMN is_purchased BOOLEAN"))


def ensure_admin_phones(bind=None):
    bind = bind or engine
    phones = parse_admin_phones(settings.admin_phones)
    if not phones:
        return
    with bind.begin() as conn:
        for phone in phones:
            conn.execute(text("UPDATE users SET role='admin' WHERE phone=:phone"), {"phone": phone})
