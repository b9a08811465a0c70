import time
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

import stripe

from orderflow.config import settings
from orderflow.errors import GatewayUnavailable
from orderflow.log import get_logger

logger = get_logger("stripe_service")

stripe.api_key = settings.STRIPE_SECRET_KEY
stripe.max_network_retries = 0          # retries are handled below with a fixed backoff
stripe.default_http_client = stripe.RequestsClient(timeout=settings.GATEWAY_TIMEOUT_SECONDS)

# Worth another attempt; anything else (card, auth, invalid request) is final
RETRYABLE_ERRORS = (stripe.APIConnectionError, stripe.RateLimitError)


@dataclass
class PaymentIntentResult:
    client_secret: str
    payment_intent_id: str


def to_minor_units(amount) -> int:
    """Convert a decimal currency amount to integer cents, rounding half up."""
    cents = Decimal(str(amount)) * 100
    return int(cents.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def create_intent(order_id: str, amount, owner_id: str) -> PaymentIntentResult:
    attempts = settings.GATEWAY_MAX_RETRIES + 1
    minor_units = to_minor_units(amount)

    for attempt in range(1, attempts + 1):
        try:
            intent = stripe.PaymentIntent.create(
                amount=minor_units,
                currency=settings.STRIPE_CURRENCY,
                automatic_payment_methods={"enabled": True},
                metadata={"orderId": order_id, "userId": owner_id},
                idempotency_key=f"order-{order_id}",
            )
        except RETRYABLE_ERRORS as e:
            logger.warning("payment_intent_retry", order_id=order_id, attempt=attempt, error=str(e))
            if attempt == attempts:
                raise GatewayUnavailable(f"Payment gateway unavailable: {e}") from e
            time.sleep(settings.GATEWAY_RETRY_BACKOFF_SECONDS)
        except stripe.StripeError as e:
            logger.error("payment_intent_failed", order_id=order_id, error=str(e),
                         error_type=type(e).__name__)
            raise GatewayUnavailable(f"Payment gateway error: {e}") from e
        else:
            logger.info("payment_intent_created", order_id=order_id,
                        payment_intent_id=intent.id, amount=minor_units)
            return PaymentIntentResult(client_secret=intent.client_secret, payment_intent_id=intent.id)
