import enum
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime, ForeignKey, Integer, Text, UniqueConstraint
from sqlmodel import Column, SQLModel, Field, Relationship, String
from atelier.common.utils import now


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    CUSTOMER = "customer"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(sa_column=Column(String(320), nullable=False, unique=True, index=True))
    name: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    password_hash: str = Field(sa_column=Column(Text(), nullable=False))
    role: str = Field(default=UserRole.CUSTOMER.value,
        sa_column=Column(String(20), nullable=False, default=UserRole.CUSTOMER.value))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now, onupdate=now))

    cart: Optional["Cart"] = Relationship(back_populates="user", sa_relationship_kwargs={"uselist": False})  # user -> cart (1:1)
    orders: List["Order"] = Relationship(back_populates="user")


# ---------------------------------------------------------------- catalog

class Category(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(sa_column=Column(String(128), nullable=False, unique=True))
    slug: str = Field(sa_column=Column(String(160), nullable=False, unique=True, index=True))
    description: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    image_url: Optional[str] = Field(default=None, sa_column=Column(String(1024), nullable=True))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now))

    products: List["Product"] = Relationship(back_populates="category")


class Size(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(sa_column=Column(String(64), nullable=False, unique=True))
    value: str = Field(sa_column=Column(String(64), nullable=False))


class Color(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(sa_column=Column(String(64), nullable=False, unique=True))
    value: str = Field(sa_column=Column(String(32), nullable=False))  # hex code


class Product(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(sa_column=Column(String(255), nullable=False))
    slug: str = Field(sa_column=Column(String(280), nullable=False, unique=True, index=True))
    description: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    price: int = Field(sa_column=Column(Integer, nullable=False))  # minor units
    compare_price: Optional[int] = Field(default=None, sa_column=Column(Integer, nullable=True))
    sku: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True, unique=True))
    category_id: Optional[int] = Field(default=None,
        sa_column=Column(ForeignKey("category.id", ondelete="SET NULL"), index=True, nullable=True))
    in_stock: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    images: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False, default=list))
    features: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False, default=list))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now, onupdate=now))

    __table_args__ = (CheckConstraint("price >= 0", name="ck_product_price_non_negative"),)

    category: Optional["Category"] = Relationship(back_populates="products")
    variations: List["Variation"] = Relationship(back_populates="product",
                                                 sa_relationship_kwargs={"cascade": "all, delete-orphan",
                                                                         "order_by": "Variation.id"})


class Variation(SQLModel, table=True):
    """A purchasable unit. ``quantity`` is mutated only through the inventory ledger."""
    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(sa_column=Column(ForeignKey("product.id", ondelete="CASCADE"), index=True, nullable=False))
    size_id: Optional[int] = Field(default=None, sa_column=Column(ForeignKey("size.id"), nullable=True))
    color_id: Optional[int] = Field(default=None, sa_column=Column(ForeignKey("color.id"), nullable=True))
    quantity: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    image_url: Optional[str] = Field(default=None, sa_column=Column(String(1024), nullable=True))

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_variation_quantity_non_negative"),
        UniqueConstraint("product_id", "size_id", "color_id", name="uq_variation_product_size_color"),
    )

    product: "Product" = Relationship(back_populates="variations")
    size: Optional["Size"] = Relationship()
    color: Optional["Color"] = Relationship()


# ---------------------------------------------------------------- cart

class Cart(SQLModel, table=True):
    """Owned by exactly one identity: a user id or an anonymous session key."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: Optional[int] = Field(default=None,
        sa_column=Column(ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=True))
    session_key: Optional[str] = Field(default=None, sa_column=Column(String(128), unique=True, nullable=True))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now, onupdate=now))

    __table_args__ = (
        CheckConstraint("(user_id IS NULL) <> (session_key IS NULL)", name="ck_cart_single_owner"),
    )

    user: Optional["User"] = Relationship(back_populates="cart")
    lines: List["CartLine"] = Relationship(back_populates="cart",
                                           sa_relationship_kwargs={"cascade": "all, delete-orphan",
                                                                   "order_by": "CartLine.id", "passive_deletes": True})


class CartLine(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    cart_id: int = Field(sa_column=Column(ForeignKey("cart.id", ondelete="CASCADE"), index=True, nullable=False))
    variation_id: int = Field(sa_column=Column(ForeignKey("variation.id"), index=True, nullable=False))
    quantity: int = Field(sa_column=Column(Integer, nullable=False))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now))

    __table_args__ = (
        UniqueConstraint("cart_id", "variation_id", name="uq_cartline_cart_variation"),
        CheckConstraint("quantity > 0", name="ck_cartline_quantity_positive"),
    )

    cart: "Cart" = Relationship(back_populates="lines")
    variation: "Variation" = Relationship()


# ---------------------------------------------------------------- orders

class Order(SQLModel, table=True):
    __tablename__ = "orders"

    id: Optional[int] = Field(default=None, primary_key=True)
    order_number: str = Field(sa_column=Column(String(40), nullable=False, unique=True, index=True))
    user_id: int = Field(sa_column=Column(ForeignKey("users.id"), index=True, nullable=False))
    status: str = Field(default=OrderStatus.PENDING.value,
        sa_column=Column(String(20), nullable=False, default=OrderStatus.PENDING.value, index=True))
    payment_status: str = Field(default=PaymentStatus.PENDING.value,
        sa_column=Column(String(20), nullable=False, default=PaymentStatus.PENDING.value))
    payment_method: str = Field(sa_column=Column(String(32), nullable=False))
    shipping_method: str = Field(sa_column=Column(String(32), nullable=False))
    shipping_address: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))

    # money columns, minor units, frozen at checkout
    subtotal: int = Field(sa_column=Column(Integer, nullable=False))
    shipping_cost: int = Field(sa_column=Column(Integer, nullable=False))
    tax: int = Field(sa_column=Column(Integer, nullable=False))
    discount: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    final_amount: int = Field(sa_column=Column(Integer, nullable=False))

    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now, index=True))
    updated_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now, onupdate=now))

    user: "User" = Relationship(back_populates="orders")
    lines: List["OrderLine"] = Relationship(back_populates="order",
                                            sa_relationship_kwargs={"cascade": "all, delete-orphan",
                                                                    "order_by": "OrderLine.id", "passive_deletes": True})


class OrderLine(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = Field(sa_column=Column(ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False))
    variation_id: int = Field(sa_column=Column(ForeignKey("variation.id"), index=True, nullable=False))
    product_name: str = Field(sa_column=Column(String(255), nullable=False))  # snapshot
    quantity: int = Field(sa_column=Column(Integer, nullable=False))
    unit_price: int = Field(sa_column=Column(Integer, nullable=False))  # price at purchase time
    line_total: int = Field(sa_column=Column(Integer, nullable=False))

    __table_args__ = (CheckConstraint("quantity > 0", name="ck_orderline_quantity_positive"),)

    order: "Order" = Relationship(back_populates="lines")
    variation: "Variation" = Relationship()
