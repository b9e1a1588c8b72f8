"""SQLAlchemy metadata registry import for Alembic."""

from app.models import Order, SessionRecord
from app.models.base import Base

__all__ = ["Base", "Order", "SessionRecord"]
