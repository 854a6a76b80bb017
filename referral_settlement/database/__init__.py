"""Database package for the settlement service."""
from .connection import close_db, get_db, get_session_factory, init_db
from .models import Base, Link, Order, OrderItem, Product, User

__all__ = [
    "Base",
    "Link",
    "Order",
    "OrderItem",
    "Product",
    "User",
    "close_db",
    "get_db",
    "get_session_factory",
    "init_db",
]
