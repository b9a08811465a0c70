from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from orderflow import admin, orders
from orderflow.auth import TokenUser, verify_token, require_admin
from orderflow.database import get_db
from orderflow.models import OrderStatus, PaymentStatus
from orderflow.realtime import ConnectionRegistry, get_registry
from orderflow.schemas import (
    CreateOrderRequest,
    OrderOut,
    OrderWithUserOut,
    UpdateOrderStatusRequest,
    dump,
)

router = APIRouter()


def success(message: str, data=None) -> dict:
    body = {"success": True, "message": message}
    if data is not None:
        body["data"] = data
    return body


@router.post("/api/orders", status_code=201)
def create_order_api(
    request: CreateOrderRequest,
    user: TokenUser = Depends(verify_token),
    db: Session = Depends(get_db),
):
    order, intent = orders.create_order(db, user.user_id, request.items)
    return success("Order created successfully", {
        "order": dump(OrderOut.model_validate(order)),
        "payment": {
            "clientSecret": intent.client_secret,
            "paymentIntentId": intent.payment_intent_id,
        },
    })


@router.get("/api/orders")
def list_my_orders(user: TokenUser = Depends(verify_token), db: Session = Depends(get_db)):
    result = orders.get_orders_for_owner(db, user.user_id)
    return success("Orders retrieved successfully", [dump(OrderOut.model_validate(o)) for o in result])


@router.get("/api/orders/{order_id}")
def get_my_order(order_id: str, user: TokenUser = Depends(verify_token), db: Session = Depends(get_db)):
    order = orders.get_order_by_id(db, order_id, user.user_id)
    return success("Order retrieved successfully", dump(OrderOut.model_validate(order)))


@router.get("/api/payment/status/{order_id}")
def payment_status(order_id: str, auth=Depends(require_admin), db: Session = Depends(get_db)):
    return success("Payment status retrieved", orders.get_payment_status(db, order_id))


@router.get("/api/admin/orders")
def admin_list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[OrderStatus] = None,
    payment_status: Optional[PaymentStatus] = Query(None, alias="paymentStatus"),
    auth=Depends(require_admin),
    db: Session = Depends(get_db),
):
    result = admin.list_orders(db, page, limit, status, payment_status)
    result["data"] = [dump(OrderWithUserOut.model_validate(o)) for o in result["data"]]
    return success("Orders retrieved successfully", result)


@router.get("/api/admin/orders/{order_id}")
def admin_get_order(order_id: str, auth=Depends(require_admin), db: Session = Depends(get_db)):
    order = orders.get_order_by_id_admin(db, order_id)
    return success("Order retrieved successfully", dump(OrderWithUserOut.model_validate(order)))


@router.patch("/api/admin/orders/{order_id}/status")
async def admin_update_order_status(
    order_id: str,
    request: UpdateOrderStatusRequest,
    auth=Depends(require_admin),
    db: Session = Depends(get_db),
    notifier: ConnectionRegistry = Depends(get_registry),
):
    order = await admin.update_order_status(db, order_id, request.order_status, notifier)
    return success("Order status updated successfully and user notified",
                   dump(OrderWithUserOut.model_validate(order)))


@router.get("/api/admin/stats")
def admin_stats(auth=Depends(require_admin), db: Session = Depends(get_db)):
    return success("Order statistics retrieved successfully", admin.get_order_stats(db))


@router.delete("/api/admin/orders/{order_id}")
def admin_delete_order(order_id: str, auth=Depends(require_admin), db: Session = Depends(get_db)):
    admin.delete_order(db, order_id)
    return success("Order deleted successfully")
