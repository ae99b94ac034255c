"""SQLAlchemy database models for the invitation shop."""
import enum
import uuid
from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    String,
    Table,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class OrderStatus(str, enum.Enum):
    """Order lifecycle states, stored by their text value."""

    PENDING = "pending"
    ACCEPTED = "diterima"
    CANCELLED = "dibatalkan"

    @classmethod
    def values(cls) -> List[str]:
        return [member.value for member in cls]


def _uuid_str() -> str:
    return str(uuid.uuid4())


product_tags = Table(
    "product_tags",
    Base.metadata,
    Column("product_id", String(36), ForeignKey("products.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", String(36), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class User(Base):
    """
    Shop customers.

    The primary key is the subject issued by the external auth provider,
    so rows are created on first sync rather than by registration.
    """

    __tablename__ = "users"
    # Load server-side timestamps back at flush time; async sessions cannot lazy-load them
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(50), nullable=False, default="customer")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )

    orders: Mapped[List["Order"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        """String representation of User."""
        return f"<User(id={self.id}, role={self.role})>"


class Tag(Base):
    """Catalog tags. Names are unique and always lowercase."""

    __tablename__ = "tags"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)

    products: Mapped[List["Product"]] = relationship(
        secondary=product_tags, back_populates="tags"
    )

    def __repr__(self) -> str:
        """String representation of Tag."""
        return f"<Tag(id={self.id}, name={self.name})>"


class Product(Base):
    """
    Invitation products.

    Image columns hold public object-store URLs; the assets themselves live
    in the product images bucket.
    """

    __tablename__ = "products"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    thumbnail: Mapped[str | None] = mapped_column(Text, nullable=True)
    gallery_urls: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=func.now(),
        onupdate=func.now(),
    )

    tags: Mapped[List[Tag]] = relationship(
        secondary=product_tags, back_populates="products", lazy="selectin"
    )
    orders: Mapped[List["Order"]] = relationship(
        back_populates="product", cascade="all, delete-orphan"
    )

    __table_args__ = (CheckConstraint("price >= 0", name="non_negative_price"),)

    def __repr__(self) -> str:
        """String representation of Product."""
        return f"<Product(id={self.id}, name={self.name}, price={self.price})>"


class Order(Base):
    """
    Customer orders.

    The id is supplied by the caller and doubles as the payment gateway's
    transaction reference.
    """

    __tablename__ = "orders"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[str] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=OrderStatus.PENDING.value, index=True
    )
    wedding_info: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    snap_token: Mapped[str | None] = mapped_column(String(255), nullable=True)
    image_urls: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=func.now(),
        onupdate=func.now(),
    )

    user: Mapped[User] = relationship(back_populates="orders", lazy="selectin")
    product: Mapped[Product] = relationship(back_populates="orders", lazy="selectin")

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'diterima', 'dibatalkan')",
            name="valid_order_status",
        ),
        Index("idx_orders_user_status", "user_id", "status"),
    )

    @property
    def image_url(self) -> str | None:
        """First uploaded image, for clients that only show one."""
        return self.image_urls[0] if self.image_urls else None

    def __repr__(self) -> str:
        """String representation of Order."""
        return (
            f"<Order(id={self.id}, user_id={self.user_id}, "
            f"product_id={self.product_id}, status={self.status})>"
        )
