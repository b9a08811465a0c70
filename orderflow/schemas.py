from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from orderflow.config import settings
from orderflow.models import OrderStatus, PaymentMethod, PaymentStatus


class OrderItem(BaseModel):
    title: str = Field(min_length=1)
    price: Decimal = Field(gt=0, decimal_places=2)
    quantity: int = Field(gt=0, strict=True)


class CreateOrderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items: List[OrderItem] = Field(min_length=1, max_length=settings.MAX_ITEMS_PER_ORDER)
    payment_method: Literal["stripe"] = Field(alias="paymentMethod")


class UpdateOrderStatusRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_status: OrderStatus = Field(alias="orderStatus")


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: str
    user_id: str = Field(serialization_alias="userId")
    items: list
    total_amount: Decimal = Field(serialization_alias="totalAmount")
    payment_method: PaymentMethod = Field(serialization_alias="paymentMethod")
    payment_status: PaymentStatus = Field(serialization_alias="paymentStatus")
    order_status: OrderStatus = Field(serialization_alias="orderStatus")
    stripe_payment_intent_id: Optional[str] = Field(None, serialization_alias="stripePaymentIntentId")
    created_at: datetime = Field(serialization_alias="createdAt")
    updated_at: datetime = Field(serialization_alias="updatedAt")

    @field_serializer("total_amount")
    def _total_as_number(self, value: Decimal) -> float:
        return float(value)


class OrderWithUserOut(OrderOut):
    user: Optional[UserSummary] = None


def dump(model: BaseModel) -> dict:
    return model.model_dump(mode="json", by_alias=True)
