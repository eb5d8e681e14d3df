from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field
from atelier.schema.full_schema import OrderStatus, PaymentStatus


class ShippingAddressIn(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=128)
    line1: str = Field(..., min_length=1)
    line2: Optional[str] = None
    city: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=1, max_length=20)
    country: str = Field("RU", min_length=2, max_length=2)
    phone: Optional[str] = Field(None, max_length=20)


class CheckoutIn(BaseModel):
    shipping_address: ShippingAddressIn
    shipping_method: str = Field("standard", min_length=1, max_length=32)
    payment_method: str = Field(..., min_length=1, max_length=32)


class StatusUpdateIn(BaseModel):
    status: OrderStatus


class PaymentStatusUpdateIn(BaseModel):
    payment_status: PaymentStatus


class OrderFilter(BaseModel):
    status: Optional[OrderStatus] = None
    user_id: Optional[int] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)
