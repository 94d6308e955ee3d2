from datetime import datetime
from typing import List, Optional

from pydantic import Field, field_validator, model_validator

from shared.order_status import STATUS_LABELS, OrderStatus, StatusHistoryEntry
from shared.schemas import Brief, WireModel


class Order(WireModel):
    """Canonical order as seen by storefront code, after normalization."""

    id: str
    tier: str
    briefs: List[Brief] = Field(default_factory=list)
    status: OrderStatus
    created_at: datetime
    updated_at: Optional[datetime] = None
    subtotal: int
    handling_fee: int
    unique_code: int
    total_amount: int
    status_history: List[StatusHistoryEntry] = Field(default_factory=list)
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_telegram: Optional[str] = None
    customer_address: Optional[str] = None
    order_number: Optional[str] = None
    version: Optional[int] = None
    paid_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @model_validator(mode="after")
    def total_matches_components(self):
        if self.total_amount != self.subtotal + self.handling_fee + self.unique_code:
            raise ValueError("totalAmount does not equal subtotal + handlingFee + uniqueCode")
        return self


class OrderLineItem(WireModel):
    id: str
    name: str
    quantity: int = 1
    price: Optional[int] = None


class OrderDetails(WireModel):
    """Tracking snapshot; a superset of Order with shipping and timeline data."""

    id: str
    order_number: Optional[str] = None
    tier: Optional[str] = None
    briefs: List[Brief] = Field(default_factory=list)
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    shipping_address: Optional[str] = None
    subtotal: Optional[int] = None
    handling_fee: Optional[int] = None
    unique_code: Optional[int] = None
    total_amount: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    estimated_delivery: Optional[datetime] = None
    current_status: str
    status_history: List[StatusHistoryEntry] = Field(default_factory=list)
    items: List[OrderLineItem] = Field(default_factory=list)
    version: Optional[int] = None


class OrderUpdate(WireModel):
    """Payload of an ``order_update`` push message."""

    id: str
    status: str
    updated_at: datetime
    version: Optional[int] = None

    @field_validator("status")
    @classmethod
    def known_status(cls, v: str) -> str:
        # older backends still push the english codes
        if v not in STATUS_LABELS:
            raise ValueError(f"unknown order status: {v}")
        return v
