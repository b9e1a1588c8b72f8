"""ORM models package exports."""

from app.models.order import Order
from app.models.record import SessionRecord

__all__ = [
    "Order",
    "SessionRecord",
]
