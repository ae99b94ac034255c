"""
Pydantic schemas for API request/response models.

Field names are snake_case in Python and camelCase on the wire.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model that reads ORM objects and speaks camelCase JSON."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# Catalog


class UserRead(CamelModel):
    id: str = Field(..., description="Subject id from the auth provider")
    name: Optional[str] = Field(default=None, description="Display name")
    role: str = Field(..., description="User role")
    created_at: Optional[datetime] = Field(default=None, description="Creation timestamp")


class UserSummary(CamelModel):
    id: str
    name: Optional[str] = None


class TagRead(CamelModel):
    id: str = Field(..., description="Tag ID")
    name: str = Field(..., description="Lowercase tag name")


class TagWithCount(TagRead):
    product_count: int = Field(default=0, description="Number of tagged products")


class ProductSummary(CamelModel):
    id: str
    name: str
    price: float
    thumbnail: Optional[str] = None


class TagDetail(TagWithCount):
    products: List[ProductSummary] = Field(default_factory=list)


class ProductRead(CamelModel):
    id: str = Field(..., description="Product ID")
    name: str = Field(..., description="Product name")
    price: float = Field(..., description="Price in IDR")
    thumbnail: Optional[str] = Field(default=None, description="Thumbnail public URL")
    gallery_urls: List[str] = Field(default_factory=list, description="Gallery public URLs")
    tags: List[TagRead] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProductWithCount(ProductRead):
    order_count: int = Field(default=0, description="Number of orders for this product")


class SyncUserRequest(CamelModel):
    sub: Optional[str] = Field(default=None, description="Subject id from the auth provider")
    name: Optional[str] = Field(default=None, description="Display name for new users")


class SyncUserResponse(CamelModel):
    user: UserRead
    is_new_user: bool


class CreateTagsRequest(CamelModel):
    tags: Optional[str] = Field(
        default=None, description="Comma-separated tag names, e.g. 'rustic, floral'"
    )


class CreateTagsResponse(CamelModel):
    message: str
    tags: List[TagRead]


class UpdateTagRequest(CamelModel):
    name: Optional[str] = Field(default=None, description="New tag name")


class DeleteTagResponse(CamelModel):
    message: str
    id: str
    products_affected: int


# Orders


class OrderRead(CamelModel):
    """An order with its product (and tags) and its user."""

    id: str = Field(..., description="Order ID, also the payment reference")
    user_id: str
    product_id: str
    status: str = Field(..., description="pending, diterima or dibatalkan")
    wedding_info: Dict[str, Any] = Field(default_factory=dict)
    snap_token: Optional[str] = None
    image_url: Optional[str] = Field(default=None, description="First uploaded image")
    image_urls: List[str] = Field(default_factory=list, description="All uploaded images")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    product: Optional[ProductRead] = None
    user: Optional[UserSummary] = None


class OrderUpdateRequest(CamelModel):
    """Partial order update; absent fields are left alone."""

    status: Optional[str] = Field(default=None, description="pending, diterima or dibatalkan")
    wedding_info: Optional[Dict[str, Any]] = None
    snap_token: Optional[str] = None

    model_config = ConfigDict(
        json_schema_extra={"examples": [{"status": "diterima"}]},
    )


class DeleteResponse(CamelModel):
    message: str
    id: str


# Payments


class CreateTransactionRequest(CamelModel):
    order_id: Optional[str] = Field(default=None, description="Order ID to create")
    product_id: Optional[str] = Field(default=None, description="Product being bought")
    user_id: Optional[str] = Field(default=None, description="Buying user")
    wedding_info: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "orderId": "ORDER-1718000000",
                    "productId": "3f0c8a52-4d1e-4b8e-9a61-6d2f4c1e9b10",
                    "userId": "google-oauth2|1234567890",
                    "weddingInfo": {"bride": "Ayu", "groom": "Budi"},
                }
            ]
        },
    )


class CreateTransactionResponse(CamelModel):
    session: Dict[str, Any] = Field(..., description="Snap session (token, redirect_url)")
    order: OrderRead


class NotificationResponse(CamelModel):
    message: str
    order: OrderRead


class TransactionStatusResponse(CamelModel):
    gateway_status: Dict[str, Any] = Field(..., description="Live status from the gateway")
    order: OrderRead


# Monitoring


class HealthCheckResponse(BaseModel):
    """Response schema for health check."""

    status: str = Field(..., description="Overall health status")
    checks: Dict[str, Dict[str, Any]] = Field(..., description="Individual component checks")
