"""Database package for weinvite."""
from .connection import close_db, create_engine, create_session_factory, get_db, init_db
from .models import Base, Order, OrderStatus, Product, Tag, User

__all__ = [
    "Base",
    "Order",
    "OrderStatus",
    "Product",
    "Tag",
    "User",
    "close_db",
    "create_engine",
    "create_session_factory",
    "get_db",
    "init_db",
]
