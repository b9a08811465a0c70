from decimal import Decimal

import pytest
import stripe

from orderflow import orders, stripe_service
from orderflow.errors import GatewayUnavailable, InvalidOrder, NotFound
from orderflow.models import Order, OrderStatus, PaymentStatus
from orderflow.schemas import OrderItem


def _item(title="A", price="10.00", quantity=2):
    return {"title": title, "price": price, "quantity": quantity}


def test_total_is_sum_of_price_times_quantity():
    items = orders.normalize_items([_item(price="10.00", quantity=2), _item(price="0.10", quantity=3)])

    assert orders.compute_total(items) == Decimal("20.30")


def test_normalize_accepts_pydantic_items():
    items = orders.normalize_items([OrderItem(title="A", price=Decimal("4.99"), quantity=1)])

    assert items == [{"title": "A", "price": Decimal("4.99"), "quantity": 1}]


@pytest.mark.parametrize("bad", [
    [],
    [_item(price="0")],
    [_item(price="-1")],
    [_item(quantity=0)],
    [_item(quantity=1.5)],
    [_item(quantity=True)],
    [_item(title="")],
    [_item(price=None)],
    [_item()] * 51,
])
def test_invalid_items_rejected(bad):
    with pytest.raises(InvalidOrder):
        orders.normalize_items(bad)


def test_fifty_items_allowed():
    assert len(orders.normalize_items([_item()] * 50)) == 50


@pytest.mark.parametrize("amount, cents", [
    (Decimal("20.00"), 2000),
    (Decimal("0.005"), 1),
    (Decimal("19.994"), 1999),
    (Decimal("19.995"), 2000),
    (10.1, 1010),
])
def test_to_minor_units_rounds_half_up(amount, cents):
    assert stripe_service.to_minor_units(amount) == cents


def test_create_order_persists_pending_order(db, mocker):
    intent = mocker.Mock(id="pi_abc", client_secret="cs_abc")
    create = mocker.patch("stripe.PaymentIntent.create", return_value=intent)

    order, result = orders.create_order(db, "user-1", [_item()])

    assert result.payment_intent_id == "pi_abc"
    assert result.client_secret == "cs_abc"
    assert order.payment_status == PaymentStatus.PENDING
    assert order.order_status == OrderStatus.PENDING
    assert order.stripe_payment_intent_id == "pi_abc"
    assert order.total_amount == Decimal("20.00")
    assert create.call_args.kwargs["idempotency_key"] == f"order-{order.id}"


def test_create_order_rolls_back_when_gateway_fails(db, mocker):
    mocker.patch("stripe.PaymentIntent.create", side_effect=stripe.AuthenticationError("bad key"))

    with pytest.raises(GatewayUnavailable):
        orders.create_order(db, "user-1", [_item()])

    assert db.query(Order).count() == 0


def test_gateway_retries_transient_errors(mocker):
    intent = mocker.Mock(id="pi_retry", client_secret="cs_retry")
    create = mocker.patch("stripe.PaymentIntent.create",
                          side_effect=[stripe.APIConnectionError("timeout"), intent])

    result = stripe_service.create_intent("order-1", Decimal("5.00"), "user-1")

    assert result.payment_intent_id == "pi_retry"
    assert create.call_count == 2
    assert create.call_args.kwargs["amount"] == 500


def test_gateway_gives_up_after_fixed_retries(mocker, monkeypatch):
    from orderflow.config import settings
    monkeypatch.setattr(settings, "GATEWAY_MAX_RETRIES", 2)
    create = mocker.patch("stripe.PaymentIntent.create",
                          side_effect=stripe.RateLimitError("slow down"))

    with pytest.raises(GatewayUnavailable):
        stripe_service.create_intent("order-1", Decimal("5.00"), "user-1")

    assert create.call_count == 3


def test_gateway_does_not_retry_card_errors(mocker):
    create = mocker.patch("stripe.PaymentIntent.create",
                          side_effect=stripe.InvalidRequestError("bad amount", "amount"))

    with pytest.raises(GatewayUnavailable):
        stripe_service.create_intent("order-1", Decimal("5.00"), "user-1")

    assert create.call_count == 1


def test_get_order_by_id_checks_owner(db, seed_order):
    seed_order()

    assert orders.get_order_by_id(db, "order-1", "user-1").id == "order-1"
    with pytest.raises(NotFound):
        orders.get_order_by_id(db, "order-1", "user-2")


@pytest.mark.parametrize("price", ["0.333", "10.001", "1e-3"])
def test_sub_cent_prices_rejected(price):
    with pytest.raises(InvalidOrder):
        orders.normalize_items([_item(price=price, quantity=3)])


def test_trailing_zero_prices_accepted():
    items = orders.normalize_items([_item(price="1.500", quantity=2)])

    assert orders.compute_total(items) == Decimal("3.00")


def test_stored_total_matches_computed_total(db, mocker):
    mocker.patch("stripe.PaymentIntent.create",
                 return_value=mocker.Mock(id="pi_cents", client_secret="cs_cents"))
    items = [_item(price="0.33", quantity=3), _item(price="19.99", quantity=1)]

    order, _ = orders.create_order(db, "user-1", items)

    computed = orders.compute_total(orders.normalize_items(items))
    assert computed == Decimal("20.98")
    assert order.total_amount == computed
