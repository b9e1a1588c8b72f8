"""Order aggregate store services."""

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.order import Order
from app.services.records import RecordStoreError

logger = logging.getLogger(__name__)


def get_order(db: Session, session_id: str) -> Order | None:
    """Return the order for a session, if one was created."""

    try:
        return db.get(Order, session_id)
    except SQLAlchemyError as exc:
        raise RecordStoreError(f"Failed to load order for session {session_id}") from exc


def list_orders(db: Session, *, limit: int = 50, offset: int = 0) -> list[Order]:
    """Return orders newest first."""

    stmt = (
        select(Order)
        .order_by(Order.created_at.desc(), Order.session_id.asc())
        .limit(limit)
        .offset(offset)
    )
    try:
        return list(db.scalars(stmt).all())
    except SQLAlchemyError as exc:
        raise RecordStoreError("Failed to list orders") from exc


def create_order_if_absent(db: Session, order: Order) -> bool:
    """Insert ``order`` only if no order exists for its session.

    The primary key on ``orders.session_id`` makes the insert atomic: of any
    number of concurrent callers exactly one commits. Returns ``False`` when
    another writer already holds the key.
    """

    db.add(order)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if get_order(db, order.session_id) is not None:
            logger.info("orders.conditional_create_conflict session_id=%s", order.session_id)
            return False
        raise RecordStoreError(f"Failed to create order for session {order.session_id}") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise RecordStoreError(f"Failed to create order for session {order.session_id}") from exc
    return True
