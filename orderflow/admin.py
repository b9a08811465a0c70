import math
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload
from starlette.concurrency import run_in_threadpool

from orderflow.errors import NotFound
from orderflow.log import get_logger
from orderflow.models import Order, OrderStatus, PaymentStatus
from orderflow.realtime import ConnectionRegistry, ORDER_UPDATE_EVENT, timestamp

logger = get_logger("admin")

STATUS_MESSAGES = {
    OrderStatus.PENDING: "⏳ Your order is pending.",
    OrderStatus.PROCESSING: "🔄 Your order is being processed.",
    OrderStatus.SHIPPED: "🚚 Your order has been shipped!",
    OrderStatus.DELIVERED: "✅ Your order has been delivered!",
}


def _load_with_owner(db: Session, order_id: str) -> Optional[Order]:
    return db.query(Order).options(joinedload(Order.user)).filter(Order.id == order_id).first()


def set_order_status(db: Session, order_id: str, new_status: OrderStatus) -> Order:
    order = _load_with_owner(db, order_id)
    if not order:
        raise NotFound("Order not found")

    order.order_status = new_status
    db.commit()
    logger.info("order_status_updated", order_id=order_id, order_status=new_status.value)
    # Reload with the owner so callers never lazy-load outside this thread
    return _load_with_owner(db, order_id)


async def update_order_status(db: Session, order_id: str, new_status: OrderStatus,
                              notifier: ConnectionRegistry) -> Order:
    """Set the fulfilment status. Payment status is left untouched."""
    order = await run_in_threadpool(set_order_status, db, order_id, new_status)

    await notifier.notify_user(order.user_id, ORDER_UPDATE_EVENT, {
        "orderId": order.id,
        "orderStatus": order.order_status.value,
        "paymentStatus": order.payment_status.value,
        "message": STATUS_MESSAGES[new_status],
        "timestamp": timestamp(),
    })
    return order


def list_orders(db: Session, page: int = 1, limit: int = 20,
                status: Optional[OrderStatus] = None,
                payment_status: Optional[PaymentStatus] = None) -> dict:
    query = db.query(Order)
    if status:
        query = query.filter(Order.order_status == status)
    if payment_status:
        query = query.filter(Order.payment_status == payment_status)

    total = query.count()
    orders = (
        query.options(joinedload(Order.user))
        .order_by(Order.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "data": orders,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": math.ceil(total / limit),
        },
    }


def get_order_stats(db: Session) -> dict:
    counts = dict(
        db.query(Order.order_status, func.count(Order.id)).group_by(Order.order_status).all()
    )
    revenue = (
        db.query(func.coalesce(func.sum(Order.total_amount), 0))
        .filter(Order.payment_status == PaymentStatus.PAID)
        .scalar()
    )
    return {
        "total": sum(counts.values()),
        "pending": counts.get(OrderStatus.PENDING, 0),
        "processing": counts.get(OrderStatus.PROCESSING, 0),
        "shipped": counts.get(OrderStatus.SHIPPED, 0),
        "delivered": counts.get(OrderStatus.DELIVERED, 0),
        "totalRevenue": float(revenue or 0),
    }


def delete_order(db: Session, order_id: str) -> None:
    order = db.get(Order, order_id)
    if not order:
        raise NotFound("Order not found")
    db.delete(order)
    db.commit()
    logger.warning("order_deleted", order_id=order_id)
