"""Order aggregate ORM model."""

from sqlalchemy import JSON, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, CreatedAtMixin
from app.schema.kinds import OrderStatus


class Order(Base, CreatedAtMixin):
    """Single structured result of a completed session.

    The primary key doubles as the uniqueness condition for the one-time
    create performed by the aggregator.
    """

    __tablename__ = "orders"

    session_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    external_id: Mapped[str | None] = mapped_column(String(255), index=True, nullable=True)
    status: Mapped[str] = mapped_column(String(32), default=OrderStatus.COMPLETED.value, nullable=False)
    record_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    model_name: Mapped[str] = mapped_column(String(128), nullable=False)
    prompt_version: Mapped[str] = mapped_column(String(64), nullable=False)
    extracted_data: Mapped[dict[str, object]] = mapped_column(JSON, default=dict, nullable=False)
