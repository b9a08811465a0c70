"""Order ledger: creation, total computation and owner-scoped reads.

Payment status is never written here. The webhook reconciler is its only writer.
"""
from decimal import Decimal, InvalidOperation

from sqlalchemy.orm import Session, joinedload

from orderflow import stripe_service
from orderflow.config import settings
from orderflow.errors import InvalidOrder, NotFound
from orderflow.log import get_logger
from orderflow.models import Order, PaymentMethod

logger = get_logger("orders")

CENT = Decimal("0.01")


def _field(item, name):
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


def normalize_items(items) -> list:
    """Validate raw line items and return them as JSON-ready dicts."""
    if not items:
        raise InvalidOrder("At least one item is required")
    if len(items) > settings.MAX_ITEMS_PER_ORDER:
        raise InvalidOrder(f"Maximum {settings.MAX_ITEMS_PER_ORDER} items allowed per order")

    normalized = []
    for item in items:
        title = _field(item, "title")
        quantity = _field(item, "quantity")
        try:
            price = Decimal(str(_field(item, "price")))
        except InvalidOperation:
            raise InvalidOrder("Price must be positive")

        if not title:
            raise InvalidOrder("Item title is required")
        if not price.is_finite() or price <= 0:
            raise InvalidOrder("Price must be positive")
        if price != price.quantize(CENT):
            raise InvalidOrder("Price must have at most 2 decimal places")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidOrder("Quantity must be positive integer")

        normalized.append({"title": title, "price": price, "quantity": quantity})
    return normalized


def compute_total(items) -> Decimal:
    return sum((item["price"] * item["quantity"] for item in items), Decimal("0"))


def create_order(db: Session, owner_id: str, items):
    items = normalize_items(items)
    total = compute_total(items)
    if total <= 0:
        raise InvalidOrder("Invalid order total amount")

    order = Order(
        user_id=owner_id,
        items=[{**item, "price": float(item["price"])} for item in items],
        total_amount=total,
        payment_method=PaymentMethod.STRIPE,
    )
    db.add(order)
    db.commit()
    db.refresh(order)
    logger.info("order_created", order_id=order.id, user_id=owner_id, total=str(total))

    try:
        intent = stripe_service.create_intent(order.id, total, owner_id)
    except Exception:
        # Compensating delete: no order is kept without an intent reference
        db.delete(order)
        db.commit()
        logger.warning("order_rolled_back", order_id=order.id, reason="payment_intent_failed")
        raise

    order.stripe_payment_intent_id = intent.payment_intent_id
    db.commit()
    db.refresh(order)

    return order, intent


def get_orders_for_owner(db: Session, owner_id: str):
    return (
        db.query(Order)
        .filter(Order.user_id == owner_id)
        .order_by(Order.created_at.desc())
        .all()
    )


def get_order_by_id(db: Session, order_id: str, owner_id: str) -> Order:
    order = db.query(Order).filter(Order.id == order_id, Order.user_id == owner_id).first()
    if not order:
        raise NotFound("Order not found")
    return order


def get_order_by_id_admin(db: Session, order_id: str) -> Order:
    order = (
        db.query(Order)
        .options(joinedload(Order.user))
        .filter(Order.id == order_id)
        .first()
    )
    if not order:
        raise NotFound("Order not found")
    return order


def get_payment_status(db: Session, order_id: str) -> dict:
    order = db.get(Order, order_id)
    if not order:
        raise NotFound("Order not found")
    return {
        "id": order.id,
        "paymentStatus": order.payment_status.value,
        "paymentMethod": order.payment_method.value,
        "totalAmount": float(order.total_amount),
        "createdAt": order.created_at.isoformat(),
    }
