import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Numeric, DateTime, JSON, Enum
from sqlalchemy.orm import relationship

from orderflow.database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class Role(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class PaymentMethod(str, enum.Enum):
    STRIPE = "STRIPE"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    role = Column(Enum(Role, native_enum=False), nullable=False, default=Role.USER)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    orders = relationship(
        "Order", primaryjoin="foreign(Order.user_id) == User.id", back_populates="user"
    )


class Order(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    # No FK constraint: owners come from bearer tokens issued by the auth service
    user_id = Column(String, index=True, nullable=False)
    items = Column(JSON, nullable=False)                 # [{title, price, quantity}]
    total_amount = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(Enum(PaymentMethod, native_enum=False), nullable=False,
                            default=PaymentMethod.STRIPE)
    payment_status = Column(Enum(PaymentStatus, native_enum=False), nullable=False,
                            default=PaymentStatus.PENDING, index=True)
    order_status = Column(Enum(OrderStatus, native_enum=False), nullable=False,
                          default=OrderStatus.PENDING, index=True)
    stripe_payment_intent_id = Column(String, unique=True, index=True, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    user = relationship(
        "User", primaryjoin="foreign(Order.user_id) == User.id", back_populates="orders"
    )
