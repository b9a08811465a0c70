"""Stripe webhook reconciliation.

Signature verification happens on the raw request body. Known payment events
are applied to the matching order with a single keyed update; replays converge
on the same terminal state, so no deduplication ledger is kept.
"""
import enum
from dataclasses import dataclass
from typing import Optional

import stripe
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from orderflow.config import settings
from orderflow.errors import InvalidPayload, SignatureInvalid
from orderflow.log import get_logger
from orderflow.models import Order, OrderStatus, PaymentStatus
from orderflow.realtime import ConnectionRegistry, ORDER_UPDATE_EVENT, timestamp

logger = get_logger("webhooks")


class GatewayEventKind(enum.Enum):
    PAYMENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_FAILED = "payment_intent.payment_failed"
    UNRECOGNIZED = None


TARGET_STATUS = {
    GatewayEventKind.PAYMENT_SUCCEEDED: PaymentStatus.PAID,
    GatewayEventKind.PAYMENT_FAILED: PaymentStatus.FAILED,
}

PAYMENT_MESSAGES = {
    PaymentStatus.PAID: "💰 Payment successful! Your order is now being processed.",
    PaymentStatus.FAILED: "❌ Payment failed. Please try again or contact support.",
}


def _field(obj, name):
    # stripe.Event is no longer a dict subclass in recent SDKs
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


@dataclass(frozen=True)
class GatewayEvent:
    id: Optional[str]
    type: str
    kind: GatewayEventKind
    payment_intent_id: Optional[str]

    @classmethod
    def from_stripe(cls, event) -> "GatewayEvent":
        event_type = _field(event, "type") or "unknown"
        try:
            kind = GatewayEventKind(event_type)
        except ValueError:
            kind = GatewayEventKind.UNRECOGNIZED
        data_object = _field(_field(event, "data"), "object")
        return cls(
            id=_field(event, "id"),
            type=event_type,
            kind=kind,
            payment_intent_id=_field(data_object, "id"),
        )


def verify_event(signature: Optional[str], raw_body: bytes):
    if not signature:
        logger.error("webhook_signature_missing")
        raise SignatureInvalid("Missing stripe signature")
    try:
        return stripe.Webhook.construct_event(raw_body, signature, settings.STRIPE_WEBHOOK_SECRET)
    except ValueError as e:
        logger.error("webhook_payload_invalid", error=str(e))
        raise InvalidPayload("Invalid payload")
    except stripe.SignatureVerificationError as e:
        logger.error("webhook_signature_invalid", error=str(e))
        raise SignatureInvalid(f"Webhook signature verification failed: {e}")


def apply_payment_status(db: Session, payment_intent_id: str, status: PaymentStatus) -> Optional[Order]:
    """Set the payment outcome on the order owning ``payment_intent_id``.

    Returns the updated order, or None when no order carries that intent.
    """
    order = db.query(Order).filter(Order.stripe_payment_intent_id == payment_intent_id).first()
    if not order:
        logger.error("webhook_order_not_found", payment_intent_id=payment_intent_id)
        return None

    values = {Order.payment_status: status}
    if status == PaymentStatus.PAID:
        values[Order.order_status] = OrderStatus.PROCESSING
    db.query(Order).filter(Order.id == order.id).update(values, synchronize_session=False)
    db.commit()
    db.refresh(order)

    logger.info("order_payment_status_updated", order_id=order.id, payment_status=status.value)
    return order


async def handle_event(db: Session, signature: Optional[str], raw_body: bytes,
                       notifier: ConnectionRegistry) -> dict:
    event = GatewayEvent.from_stripe(verify_event(signature, raw_body))
    logger.info("webhook_received", event_id=event.id, event_type=event.type)

    if event.kind is GatewayEventKind.UNRECOGNIZED:
        logger.warning("webhook_event_ignored", event_type=event.type)
        return {"received": True}

    if not event.payment_intent_id:
        logger.error("webhook_intent_missing", event_id=event.id, event_type=event.type)
        return {"received": True}

    status = TARGET_STATUS[event.kind]
    try:
        order = await run_in_threadpool(apply_payment_status, db, event.payment_intent_id, status)
    except Exception as e:
        logger.error("webhook_update_failed", payment_intent_id=event.payment_intent_id, error=str(e))
        raise

    if order is not None:
        await notifier.notify_user(order.user_id, ORDER_UPDATE_EVENT, {
            "orderId": order.id,
            "paymentStatus": order.payment_status.value,
            "orderStatus": order.order_status.value,
            "message": PAYMENT_MESSAGES[status],
            "timestamp": timestamp(),
        })

    return {"received": True}
