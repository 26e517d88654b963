"""
Pydantic Schemas for Request/Response Validation

Request models describe what a caller may submit; response models are the
read projections handed back to the HTTP layer (or any other caller).
Monetary fields are Decimal end to end and serialize as strings.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from dinenow.core.clock import ensure_utc
from dinenow.models import ItemSize, OrderStatus, SpiceLevel


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class CustomerRef(BaseModel):
    """Opaque external identity of the ordering customer."""
    telegram_id: int = Field(..., gt=0, examples=[123456789])
    name: str = Field(..., min_length=1, max_length=100, examples=["Sokha Chan"])

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        cleaned = v.strip()
        if not cleaned:
            raise ValueError("Customer name must not be blank")
        return cleaned


class OrderItemCreate(BaseModel):
    """Single line in an order."""
    menu_item_id: uuid.UUID
    variant_id: uuid.UUID
    quantity: int = Field(..., ge=1, examples=[2])
    spice_level: Optional[SpiceLevel] = Field(None, examples=["mild"])
    notes: Optional[str] = Field(None, max_length=200)


class OrderCreate(BaseModel):
    """Request schema for creating a new order."""
    table_id: uuid.UUID
    customer: CustomerRef
    items: List[OrderItemCreate] = Field(..., min_length=1)
    notes: Optional[str] = Field(None, max_length=500)


class OrderStatusUpdate(BaseModel):
    status: OrderStatus = Field(..., examples=["confirmed"])
    notes: Optional[str] = Field(None, max_length=500)


class VariantCreate(BaseModel):
    size: ItemSize
    name: Optional[str] = Field(None, max_length=50)
    name_kh: Optional[str] = Field(None, max_length=50)
    price: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2, examples=["4.50"])
    is_available: bool = True
    is_default: bool = False
    sort_order: int = Field(default=0, ge=0)


class MenuItemCreate(BaseModel):
    """Register a menu item together with its variants."""
    category_id: uuid.UUID
    name: str = Field(..., min_length=1, max_length=100)
    name_kh: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = None
    description_kh: Optional[str] = None
    image_url: Optional[str] = None
    preparation_time_minutes: int = Field(default=15, ge=5, le=120)
    is_available: bool = True
    sort_order: int = Field(default=0, ge=0)
    variants: List[VariantCreate] = Field(..., min_length=1)


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class TableSummary(BaseModel):
    id: uuid.UUID
    number: str

    class Config:
        from_attributes = True


class RestaurantSummary(BaseModel):
    id: uuid.UUID
    name: str
    name_kh: Optional[str] = None

    class Config:
        from_attributes = True


class VariantResponse(BaseModel):
    id: uuid.UUID
    menu_item_id: uuid.UUID
    size: ItemSize
    name: Optional[str] = None
    name_kh: Optional[str] = None
    price: Decimal
    is_available: bool
    is_default: bool
    sort_order: int

    class Config:
        from_attributes = True


class MenuItemSummary(BaseModel):
    id: uuid.UUID
    name: str
    name_kh: Optional[str] = None
    preparation_time_minutes: int

    class Config:
        from_attributes = True


class MenuItemResponse(BaseModel):
    id: uuid.UUID
    category_id: uuid.UUID
    restaurant_id: uuid.UUID
    name: str
    name_kh: Optional[str] = None
    description: Optional[str] = None
    description_kh: Optional[str] = None
    image_url: Optional[str] = None
    preparation_time_minutes: int
    is_available: bool
    is_active: bool
    sort_order: int
    variants: List[VariantResponse] = []

    class Config:
        from_attributes = True


class MenuCategoryResponse(BaseModel):
    id: uuid.UUID
    name: str
    name_kh: Optional[str] = None
    description: Optional[str] = None
    description_kh: Optional[str] = None
    sort_order: int
    items: List[MenuItemResponse] = []


class RestaurantMenuResponse(BaseModel):
    restaurant: RestaurantSummary
    categories: List[MenuCategoryResponse]


class OrderItemResponse(BaseModel):
    id: uuid.UUID
    menu_item_id: uuid.UUID
    variant_id: uuid.UUID
    quantity: int
    spice_level: Optional[SpiceLevel] = None
    notes: Optional[str] = None
    unit_price: Decimal
    subtotal: Decimal
    menu_item: Optional[MenuItemSummary] = None
    variant: Optional[VariantResponse] = None

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    """Response schema for a single order."""
    id: uuid.UUID
    order_number: str
    customer_telegram_id: int
    customer_name: str
    restaurant_id: uuid.UUID
    table_id: uuid.UUID
    status: OrderStatus
    total_amount: Decimal
    estimated_preparation_minutes: int
    actual_preparation_minutes: Optional[int] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    confirmed_at: Optional[datetime] = None
    ready_at: Optional[datetime] = None
    served_at: Optional[datetime] = None
    table: Optional[TableSummary] = None

    @field_validator("created_at", "updated_at", "confirmed_at", "ready_at", "served_at")
    @classmethod
    def as_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    class Config:
        from_attributes = True


class OrderWithItemsResponse(OrderResponse):
    restaurant: Optional[RestaurantSummary] = None
    items: List[OrderItemResponse] = []


class KitchenLoadResponse(BaseModel):
    restaurant_id: uuid.UUID
    current_orders: int
    average_preparation_time: int
    last_updated: Optional[datetime] = None
    load_level: str = "normal"

    @field_validator("last_updated")
    @classmethod
    def as_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)


class KitchenStatusResponse(BaseModel):
    """
    Customer-facing view of the kitchen.

    orders_by_status always lists every active status, zero included.
    estimated_wait_minutes is the queue delay plus one average preparation.
    """
    restaurant_id: uuid.UUID
    active_orders: int
    orders_by_status: Dict[OrderStatus, int]
    average_preparation_time: int
    estimated_wait_minutes: int
    load_level: str
    last_updated: Optional[datetime] = None

    @field_validator("last_updated")
    @classmethod
    def as_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)


class OrderStatsResponse(BaseModel):
    """Order totals for a restaurant over [date_from, date_to)."""
    restaurant_id: uuid.UUID
    date_from: datetime
    date_to: datetime
    total_orders: int
    cancelled_orders: int
    total_revenue: Decimal
    average_order_value: Decimal


class PopularVariantResponse(BaseModel):
    menu_item_id: uuid.UUID
    variant_id: uuid.UUID
    name: str
    size: ItemSize
    total_quantity: int
    total_revenue: Decimal
    order_count: int


class RestaurantAnalyticsResponse(BaseModel):
    stats: OrderStatsResponse
    popular_variants: List[PopularVariantResponse]


class VariantPriceResponse(BaseModel):
    menu_item_id: uuid.UUID
    variant_id: uuid.UUID
    size: ItemSize
    price: Decimal


class MenuItemStateResponse(BaseModel):
    """State of a menu item (and optionally one variant) after a toggle."""
    menu_item_id: uuid.UUID
    variant_id: Optional[uuid.UUID] = None
    is_available: bool
    is_active: bool


class OrderCreateResponse(BaseModel):
    """Response after successfully creating an order."""
    success: bool = True
    message: str = "Order placed successfully!"
    data: OrderWithItemsResponse


class OrderListResponse(BaseModel):
    """Response for listing multiple orders."""
    page: int
    limit: int
    orders: List[OrderResponse]


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    redis: str
    kitchen_recompute_mode: str
    timestamp: datetime
