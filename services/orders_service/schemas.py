from pydantic import Field, field_validator, model_validator
from typing import Optional, List
from datetime import datetime

from shared.order_status import StatusHistoryEntry
from shared.schemas import CustomerInfo, OrderCreatePayload, StatusUpdate, WireModel
from shared.security_config import sanitize_input

BRIEF_TEXT_FIELDS = ("product_name", "brief_details")


class OrderCreate(OrderCreatePayload):
    @field_validator("customer_name", "customer_email")
    @classmethod
    def sanitize_customer(cls, v):
        return sanitize_input(v)

    @model_validator(mode="after")
    def sanitize_briefs(self):
        for brief in self.briefs:
            for field in BRIEF_TEXT_FIELDS:
                setattr(brief, field, sanitize_input(getattr(brief, field)))
        return self


class CustomerInfoUpdate(CustomerInfo):
    @field_validator("name", "telegram", "address")
    @classmethod
    def sanitize_text(cls, v):
        return sanitize_input(v)


class OrderStatusUpdate(StatusUpdate):
    @field_validator("notes")
    @classmethod
    def sanitize_notes(cls, v):
        return sanitize_input(v)


class BriefResponse(WireModel):
    instance_id: str
    product_id: str
    product_name: str
    tier: str
    brief_details: str
    width: Optional[float] = None
    height: Optional[float] = None
    unit: Optional[str] = None
    google_drive_asset_links: Optional[str] = None


class OrderResponse(WireModel):
    id: str
    order_number: str
    tier: str
    briefs: List[BriefResponse]
    status: str
    subtotal: int
    handling_fee: int
    unique_code: int
    total_amount: int
    status_history: List[StatusHistoryEntry]
    customer_name: str = ""
    customer_email: str = ""
    customer_phone: Optional[str] = None
    customer_telegram: Optional[str] = None
    customer_address: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class OrderItemResponse(WireModel):
    id: str
    name: str
    quantity: int = 1


class OrderDetailsResponse(OrderResponse):
    current_status: str
    shipping_address: Optional[str] = None
    items: List[OrderItemResponse] = Field(default_factory=list)
