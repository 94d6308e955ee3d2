import secrets
import uuid
from datetime import datetime, timezone
from typing import Optional, List
from pydantic import BaseModel, Field, field_validator

from shared.order_status import INITIAL_STATUS, StatusHistoryEntry, utcnow


def new_order_id() -> str:
    return str(uuid.uuid4())


def new_order_number(now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    return f"ORD-{now.strftime('%Y%m%d%H%M%S')}-{secrets.token_hex(2).upper()}"


class BriefDB(BaseModel):
    instance_id: str
    product_id: str
    product_name: str
    tier: str
    brief_details: str
    width: Optional[float] = None
    height: Optional[float] = None
    unit: Optional[str] = None
    google_drive_asset_links: Optional[str] = None


class OrderDB(BaseModel):
    id: str = Field(default_factory=new_order_id, alias="_id")
    order_number: str = Field(default_factory=new_order_number)
    tier: str
    briefs: List[BriefDB]
    status: str = INITIAL_STATUS.value
    subtotal: int
    handling_fee: int
    unique_code: int
    total_amount: int
    status_history: List[StatusHistoryEntry] = []
    customer_name: str = ""
    customer_email: str = ""
    customer_phone: Optional[str] = None
    customer_telegram: Optional[str] = None
    customer_address: Optional[str] = None
    version: int = 1
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @field_validator("created_at", "updated_at", "paid_at", "completed_at", "cancelled_at")
    @classmethod
    def assume_utc(cls, v):
        # MongoDB hands back naive UTC datetimes
        return v.replace(tzinfo=timezone.utc) if v is not None and v.tzinfo is None else v

    class Config:
        populate_by_name = True

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True)
