"""SQLAlchemy database models for the referral checkout system."""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Table,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


link_products = Table(
    "link_products",
    Base.metadata,
    Column("link_id", ForeignKey("links.id", ondelete="CASCADE"), primary_key=True),
    Column("product_id", ForeignKey("products.id", ondelete="CASCADE"), primary_key=True),
)


class User(Base):
    """
    Platform user.

    Admins and ambassadors share this table; ``is_ambassador`` is the role flag.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    first_name: Mapped[str] = mapped_column(String(255), nullable=False)
    last_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password: Mapped[Optional[bytes]] = mapped_column(LargeBinary, nullable=True)
    is_ambassador: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, index=True
    )

    @property
    def name(self) -> str:
        """Display name used as the leaderboard member."""
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        """String representation of User."""
        return f"<User(id={self.id}, email={self.email}, ambassador={self.is_ambassador})>"


class Product(Base):
    """Catalog product. Prices are copied onto order items at checkout."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    image: Mapped[str] = mapped_column(String(1024), nullable=False, default="")
    price: Mapped[float] = mapped_column(Float, nullable=False)

    __table_args__ = (CheckConstraint("price >= 0", name="non_negative_price"),)

    def __repr__(self) -> str:
        """String representation of Product."""
        return f"<Product(id={self.id}, title={self.title}, price={self.price})>"


class Link(Base):
    """Referral link owned by a user and scoped to a set of products."""

    __tablename__ = "links"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    user: Mapped[User] = relationship(lazy="raise")
    products: Mapped[List[Product]] = relationship(secondary=link_products, lazy="raise")

    def __repr__(self) -> str:
        """String representation of Link."""
        return f"<Link(id={self.id}, code={self.code}, user_id={self.user_id})>"


class Order(Base):
    """
    Checkout order placed through a referral link.

    ``transaction_id`` holds the checkout session id and is assigned once,
    right before the creating transaction commits. ``complete`` only ever
    moves from false to true.
    """

    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    transaction_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    code: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    ambassador_email: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str] = mapped_column(String(255), nullable=False)
    last_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[str] = mapped_column(String(255), nullable=False)
    city: Mapped[str] = mapped_column(String(255), nullable=False)
    country: Mapped[str] = mapped_column(String(255), nullable=False)
    zip: Mapped[str] = mapped_column(String(32), nullable=False)
    complete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )

    order_items: Mapped[List["OrderItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="raise",
    )

    __table_args__ = (
        Index("idx_orders_user_complete", "user_id", "complete"),
        Index("idx_orders_code_complete", "code", "complete"),
    )

    @property
    def name(self) -> str:
        """Buyer full name."""
        return f"{self.first_name} {self.last_name}"

    def get_total(self) -> float:
        """Sum of ``price * quantity`` over the loaded items."""
        return sum(item.price * item.quantity for item in self.order_items)

    def __repr__(self) -> str:
        """String representation of Order."""
        return (
            f"<Order(id={self.id}, code={self.code}, "
            f"transaction_id={self.transaction_id}, complete={self.complete})>"
        )


class OrderItem(Base):
    """Line item with a price snapshot and its persisted revenue split."""

    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_title: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    admin_revenue: Mapped[float] = mapped_column(Float, nullable=False)
    ambassador_revenue: Mapped[float] = mapped_column(Float, nullable=False)

    order: Mapped[Order] = relationship(back_populates="order_items", lazy="raise")

    __table_args__ = (CheckConstraint("quantity >= 1", name="positive_quantity"),)

    def __repr__(self) -> str:
        """String representation of OrderItem."""
        return (
            f"<OrderItem(id={self.id}, order_id={self.order_id}, "
            f"title={self.product_title}, quantity={self.quantity})>"
        )
