from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class LoginRequest(BaseModel):
    phone: str
    password: str


class ProviderBriefOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    phone: str
    name: str | None = None
    role: str
    label: str | None = None
    provider_id: int | None = None
    provider: ProviderBriefOut | None = None
    created_at: datetime | None = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserOut | None = None


class MessageOut(BaseModel):
    message: str


class PaginationOut(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class AdminUserRowOut(UserOut):
    orders_count: int = 0


class AdminUsersOut(BaseModel):
    users: list[AdminUserRowOut]
    pagination: PaginationOut


class AdminUserCreateIn(BaseModel):
    phone: str
    role: str
    name: str | None = None
    provider_id: int | None = None


class AdminUserRoleIn(BaseModel):
    role: str


class UserLabelIn(BaseModel):
    label: str | None = None


class ProviderIn(BaseModel):
    name: str
    phone: str | None = None
    place: str | None = None
    location: str | None = None
    link: str | None = None


class ProviderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    phone: str | None = None
    place: str | None = None
    location: str | None = None
    link: str | None = None
    products_count: int = 0


class CategoryIn(BaseModel):
    name: str | None = None
    parent_id: int | None = None
    url_segment: str | None = None
    slug: str | None = None
    sort: int | None = None
    is_active: bool | None = None
    seo_title: str | None = None
    seo_description: str | None = None


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    slug: str
    path: str
    parent_id: int | None = None
    sort: int
    is_active: bool


class CategoryTreeOut(BaseModel):
    ok: bool = True
    items: list[dict[str, Any]]


class ProductImageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    url: str
    key: str | None = None
    alt: str | None = None
    color: str | None = None
    sort: int = 0
    is_primary: bool = False
    is_active: bool = True


class ProductVideoOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    url: str
    alt: str | None = None
    sort: int = 0
    duration: int | None = None
    is_active: bool = True


class CategoryBriefOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    path: str


class ProductOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    slug: str
    name: str
    article: str | None = None
    category_id: int
    provider_id: int | None = None
    price_pair: float
    buy_price: float | None = None
    currency: str
    material: str | None = None
    gender: str | None = None
    season: str | None = None
    description: str | None = None
    sizes: list | dict | None = None
    pairs_per_box: int | None = None
    measurement_unit: str
    is_active: bool
    active_updated_at: datetime | None = None
    availability_checked_at: datetime | None = None
    source: str
    ag_labels: list | None = None
    source_screenshot_url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ProductDetailOut(ProductOut):
    images: list[ProductImageOut] = []
    videos: list[ProductVideoOut] = []
    category: CategoryBriefOut | None = None
    provider: ProviderBriefOut | None = None


class ProductPageOut(BaseModel):
    page: int
    page_size: int
    total: int
    total_pages: int


class ProductListOut(BaseModel):
    products: list[ProductDetailOut]
    pagination: ProductPageOut


class ProductCreateIn(BaseModel):
    name: str
    category_id: int
    price_pair: float = Field(default=0, ge=0)
    buy_price: float | None = Field(default=None, ge=0)
    slug: str | None = None
    article: str | None = None
    provider_id: int | None = None
    material: str | None = None
    gender: str | None = None
    season: str | None = None
    description: str | None = None
    sizes: list | dict | None = None
    pairs_per_box: int | None = None
    measurement_unit: str = "PAIRS"
    is_active: bool = True


class ProductUpdateIn(BaseModel):
    name: str | None = None
    slug: str | None = None
    article: str | None = None
    category_id: int | None = None
    provider_id: int | None = None
    price_pair: float | None = Field(default=None, ge=0)
    buy_price: float | None = Field(default=None, ge=0)
    material: str | None = None
    gender: str | None = None
    season: str | None = None
    description: str | None = None
    sizes: list | dict | None = None
    pairs_per_box: int | None = None
    measurement_unit: str | None = None
    is_active: bool | None = None
    availability_checked_at: datetime | None = None


class ColorActivationIn(BaseModel):
    is_active: Any = None


class ColorActivationOut(BaseModel):
    color: str
    is_active: bool
    updated: int


class ImageGroupOut(BaseModel):
    color: str | None = None
    images: list[ProductImageOut]


class ProductImageIn(BaseModel):
    url: str
    key: str | None = None
    alt: str | None = None
    color: str | None = None
    is_primary: bool = False


class ProductImageUpdateIn(BaseModel):
    color: str | None = None
    alt: str | None = None
    sort: int | None = None
    is_primary: bool | None = None
    is_active: bool | None = None


class ProductVideoIn(BaseModel):
    url: str
    alt: str | None = None
    duration: int | None = None


class DraftImageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    url: str
    color: str | None = None
    sort: int = 0
    is_active: bool = True


class DraftOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str | None = None
    material: str | None = None
    gender: str | None = None
    season: str | None = None
    price_pair: float | None = None
    sizes: list | dict | None = None
    category_id: int | None = None
    provider_id: int | None = None
    status: str
    product_id: int | None = None
    images: list[DraftImageOut] = []
    created_at: datetime | None = None


class DraftIdsIn(BaseModel):
    ids: list[int] = []
    category_id: int | None = None


class DraftResultOut(BaseModel):
    id: int
    ok: bool
    status: str | None = None
    product_id: int | None = None
    error: str | None = None


class DraftBatchOut(BaseModel):
    results: list[DraftResultOut]


class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    name: str
    article: str | None = None
    color: str | None = None
    qty: int
    price_box: float
    is_available: bool | None = None
    is_purchased: bool | None = None


class ItemMessageIn(BaseModel):
    text: str | None = None
    is_service: bool = False


class ItemMessageUpdateIn(BaseModel):
    text: str


class ItemMessageOut(BaseModel):
    id: int
    text: str | None = None
    sender: str
    sender_name: str
    sender_id: int
    timestamp: datetime
    is_service: bool = False
    attachments: list[dict[str, Any]] = []


class ItemMessagesOut(BaseModel):
    item_id: int
    messages: list[ItemMessageOut]


class ReplacementIn(BaseModel):
    image_url: str | None = None
    image_key: str | None = None
    admin_comment: str | None = None


class ReplacementUpdateIn(ReplacementIn):
    replacement_id: int


class ReplacementResponseIn(BaseModel):
    status: str
    client_comment: str | None = None


class ReplacementUserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str | None = None
    phone: str


class ReplacementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_item_id: int
    status: str
    image_url: str | None = None
    image_key: str | None = None
    admin_comment: str | None = None
    client_comment: str | None = None
    created_at: datetime
    admin_user: ReplacementUserOut
    client_user: ReplacementUserOut


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_number: str
    user_id: int | None = None
    gruzchik_id: int | None = None
    status: str
    payment: str | None = None
    subtotal: float
    total: float
    full_name: str | None = None
    phone: str | None = None
    address: str | None = None
    comment: str | None = None
    transport_company_id: int | None = None
    created_at: datetime | None = None
    items: list[OrderItemOut] = []


class AdminOrderOut(OrderOut):
    user: UserOut | None = None
    gruzchik: UserOut | None = None
    status_color: str = "gray"


class AdminOrdersOut(BaseModel):
    orders: list[AdminOrderOut]
    gruzchiks: list[UserOut]


class AdminOrderUpdateIn(BaseModel):
    status: str | None = None
    payment: str | None = None
    gruzchik_id: int | str | None = None
    label: str | None = None


class OrderItemAddIn(BaseModel):
    product_id: int
    qty: int = Field(default=1, ge=1)
    color: str | None = None


class ClientOrderItemIn(BaseModel):
    product_id: int | None = None
    slug: str | None = None
    qty: int = Field(default=1, ge=1)
    color: str | None = None


class ClientOrderIn(BaseModel):
    items: list[ClientOrderItemIn]
    full_name: str | None = None
    phone: str
    address: str | None = None
    comment: str | None = None
    transport_company_id: int | None = None


class GruzchikItemProductOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    article: str | None = None
    images: list[ProductImageOut] = []
    provider: ProviderOut | None = None


class GruzchikOrderItemOut(OrderItemOut):
    product: GruzchikItemProductOut | None = None


class GruzchikOrderOut(BaseModel):
    id: int
    order_number: str
    status: str
    total: float
    created_at: datetime | None = None
    items: list[GruzchikOrderItemOut]


class GruzchikOrdersOut(BaseModel):
    orders: list[GruzchikOrderOut]
    pagination: dict[str, int]


class AvailabilityIn(BaseModel):
    is_available: bool | None = None


class PurchasedIn(BaseModel):
    is_purchased: bool | None = None


class PurchaseIn(BaseModel):
    name: str


class PurchaseItemIn(BaseModel):
    product_id: int
    color: str | None = None


class PurchaseItemUpdateIn(BaseModel):
    name: str | None = None
    description: str | None = None
    price: float | None = Field(default=None, ge=0)
    sort_index: int | None = Field(default=None, ge=1)


class PurchaseReorderIn(BaseModel):
    item_ids: list[int]


class PurchaseItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    name: str
    description: str
    price: float
    old_price: float
    color: str | None = None
    sort_index: int
    images: list[ProductImageOut] = []


class PurchaseOut(BaseModel):
    id: int
    name: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
    items_count: int = 0
    total: float = 0
    items: list[PurchaseItemOut] = []


class AggregatorImportIn(BaseModel):
    data_id: str | None = None
    html: str | None = None
    test: bool = False


class AggregatorImportOut(BaseModel):
    product_id: int
    product: ProductDetailOut
    message: str
    skipped_images: list[str] = []


class OrderStatusOut(BaseModel):
    value: str
    label: str
    color: str
    description: str
