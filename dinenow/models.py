"""
SQLAlchemy Database Models

Relational schema for table ordering:
- Restaurants, tables and a two-locale menu (categories, items, variants)
- Orders with their line items, priced against variants at order time
- One kitchen load snapshot per restaurant (derived cache)
"""

import enum
import uuid

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from dinenow.core.clock import utcnow
from dinenow.database import Base


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    SERVED = "served"
    CANCELLED = "cancelled"


ACTIVE_ORDER_STATUSES = (OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PREPARING)

# Orders the restaurant has taken on; these count toward sales figures
ACCEPTED_ORDER_STATUSES = (
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.SERVED,
)


class SpiceLevel(str, enum.Enum):
    NONE = "none"
    MILD = "mild"
    MEDIUM = "medium"
    SPICY = "spicy"
    VERY_SPICY = "very_spicy"


class ItemSize(str, enum.Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class Restaurant(Base):
    __tablename__ = "restaurants"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False, index=True)
    name_kh = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)
    description_kh = Column(Text, nullable=True)
    address = Column(Text, nullable=True)
    phone_number = Column(String(20), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    tables = relationship("Table", back_populates="restaurant")
    categories = relationship("MenuCategory", back_populates="restaurant")

    def __repr__(self):
        return f"<Restaurant {self.name}>"


class Table(Base):
    __tablename__ = "tables"
    __table_args__ = (
        UniqueConstraint("restaurant_id", "number", name="restaurant_table_unique"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(
        Uuid, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    number = Column(String(10), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    restaurant = relationship("Restaurant", back_populates="tables")

    def __repr__(self):
        return f"<Table {self.number}>"


class MenuCategory(Base):
    __tablename__ = "menu_categories"
    __table_args__ = (
        Index("menu_categories_sort_order_idx", "restaurant_id", "sort_order"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(
        Uuid, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String(100), nullable=False)
    name_kh = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)
    description_kh = Column(Text, nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    restaurant = relationship("Restaurant", back_populates="categories")
    items = relationship("MenuItem", back_populates="category")


class MenuItem(Base):
    """
    A dish on the menu. Prices live on its variants.
    """
    __tablename__ = "menu_items"
    __table_args__ = (
        Index("menu_items_sort_order_idx", "category_id", "sort_order"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    category_id = Column(
        Uuid, ForeignKey("menu_categories.id", ondelete="CASCADE"), nullable=False, index=True
    )
    restaurant_id = Column(
        Uuid, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # =========================================================================
    # DISPLAY (two locales)
    # =========================================================================
    name = Column(String(100), nullable=False, index=True)
    name_kh = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)
    description_kh = Column(Text, nullable=True)
    image_url = Column(Text, nullable=True)

    # =========================================================================
    # KITCHEN & AVAILABILITY
    # =========================================================================
    preparation_time_minutes = Column(Integer, nullable=False, default=15)
    is_available = Column(Boolean, nullable=False, default=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    category = relationship("MenuCategory", back_populates="items")
    variants = relationship(
        "MenuItemVariant",
        back_populates="menu_item",
        order_by="MenuItemVariant.sort_order",
    )

    def __repr__(self):
        return f"<MenuItem {self.name}>"


class MenuItemVariant(Base):
    """
    A purchasable size of a menu item with its own price.

    Referenced variants are never deleted; they are retired by
    flipping is_available off.
    """
    __tablename__ = "menu_item_variants"
    __table_args__ = (
        UniqueConstraint("menu_item_id", "size", name="menu_item_size_unique"),
        Index(
            "menu_item_variants_one_default_idx",
            "menu_item_id",
            unique=True,
            postgresql_where=text("is_default"),
            sqlite_where=text("is_default"),
        ),
        Index("menu_item_variants_sort_order_idx", "menu_item_id", "sort_order"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    menu_item_id = Column(
        Uuid, ForeignKey("menu_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    size = Column(
        Enum(ItemSize, name="item_size", values_callable=_enum_values),
        nullable=False,
    )
    name = Column(String(50), nullable=True)
    name_kh = Column(String(50), nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)
    is_default = Column(Boolean, nullable=False, default=False)
    sort_order = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    menu_item = relationship("MenuItem", back_populates="variants")

    def __repr__(self):
        return f"<MenuItemVariant {self.size.value} {self.price}>"


class Order(Base):
    """
    Main Order table.

    Tracks the lifecycle from placement to service. Each lifecycle
    timestamp is written exactly once, by the matching status transition.
    """
    __tablename__ = "orders"
    __table_args__ = (
        Index("orders_status_restaurant_idx", "status", "restaurant_id"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # =========================================================================
    # CUSTOMER (opaque external identity)
    # =========================================================================
    customer_telegram_id = Column(BigInteger, nullable=False, index=True)
    customer_name = Column(String(100), nullable=False)

    # =========================================================================
    # LOCATION
    # =========================================================================
    restaurant_id = Column(Uuid, ForeignKey("restaurants.id"), nullable=False, index=True)
    table_id = Column(Uuid, ForeignKey("tables.id"), nullable=False, index=True)

    # =========================================================================
    # ORDER DETAILS
    # =========================================================================
    order_number = Column(String(20), nullable=False, unique=True)
    status = Column(
        Enum(OrderStatus, name="order_status", values_callable=_enum_values),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True,
    )
    total_amount = Column(Numeric(10, 2), nullable=False)
    notes = Column(Text, nullable=True)

    # =========================================================================
    # KITCHEN TIMING
    # =========================================================================
    estimated_preparation_minutes = Column(Integer, nullable=False)
    actual_preparation_minutes = Column(Integer, nullable=True)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), index=True
    )
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    ready_at = Column(DateTime(timezone=True), nullable=True)
    served_at = Column(DateTime(timezone=True), nullable=True)

    restaurant = relationship("Restaurant")
    table = relationship("Table")
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="OrderItem.position",
    )

    def __repr__(self):
        return f"<Order {self.order_number} - {self.status.value}>"


class OrderItem(Base):
    """
    One line of an order. Unit price is copied from the variant when the
    order is placed so later price changes never touch existing orders.
    """
    __tablename__ = "order_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id = Column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    menu_item_id = Column(Uuid, ForeignKey("menu_items.id"), nullable=False, index=True)
    variant_id = Column(Uuid, ForeignKey("menu_item_variants.id"), nullable=False)
    position = Column(Integer, nullable=False, default=0)

    quantity = Column(Integer, nullable=False, default=1)
    spice_level = Column(
        Enum(SpiceLevel, name="spice_level", values_callable=_enum_values),
        nullable=True,
        default=SpiceLevel.NONE,
    )
    notes = Column(Text, nullable=True)
    unit_price = Column(Numeric(10, 2), nullable=False)
    subtotal = Column(Numeric(10, 2), nullable=False)

    order = relationship("Order", back_populates="items")
    menu_item = relationship("MenuItem")
    variant = relationship("MenuItemVariant")


class KitchenLoad(Base):
    """
    Current kitchen load for one restaurant.

    Derived from order history and rebuilt on demand; treat it as a cache.
    """
    __tablename__ = "kitchen_loads"

    restaurant_id = Column(
        Uuid, ForeignKey("restaurants.id", ondelete="CASCADE"), primary_key=True
    )
    current_orders = Column(Integer, nullable=False, default=0)
    average_preparation_time = Column(Integer, nullable=False)
    last_updated = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self):
        return f"<KitchenLoad {self.restaurant_id} orders={self.current_orders}>"
