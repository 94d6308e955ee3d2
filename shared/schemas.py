"""Shared validation schemas for carts, briefs, customers and new orders.

Both the storefront client and the orders service validate against these
models, so a payload accepted by one side is accepted by the other. Wire
names are camelCase; Python attributes are snake_case.
"""
import re
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, Field, TypeAdapter, AnyHttpUrl, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from shared.order_status import INITIAL_STATUS, OrderStatus
from shared.utils import ValidationException, settings

BRIEF_MIN_LENGTH = 10
BRIEF_TOO_SHORT_MESSAGE = f"Brief harus diisi minimal {BRIEF_MIN_LENGTH} karakter."

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_url_adapter = TypeAdapter(AnyHttpUrl)

M = TypeVar("M", bound=BaseModel)


def _blank_to_none(value: Any) -> Any:
    # The browser cart stores unset numeric inputs as ''
    if isinstance(value, str) and not value.strip():
        return None
    return value


class WireModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Dimensions(WireModel):
    width: Optional[float] = Field(None, gt=0)
    height: Optional[float] = Field(None, gt=0)
    unit: Optional[str] = None

    @field_validator("width", "height", "unit", mode="before")
    @classmethod
    def blank_values(cls, v):
        return _blank_to_none(v)


class CartItem(WireModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    price: int = Field(..., ge=0)
    promo_price: Optional[int] = Field(None, ge=0)
    tier: str = Field(..., min_length=1)
    instance_id: Optional[str] = None
    brief_details: Optional[str] = None
    google_drive_asset_links: Optional[str] = None
    dimensions: Optional[Dimensions] = None

    @model_validator(mode="before")
    @classmethod
    def lift_flat_dimensions(cls, data):
        # Older carts keep width/height/unit at the top level
        if isinstance(data, dict) and "dimensions" not in data:
            flat = {k: data[k] for k in ("width", "height", "unit") if k in data}
            if any(_blank_to_none(v) is not None for v in flat.values()):
                data = {k: v for k, v in data.items() if k not in flat}
                data["dimensions"] = flat
        return data

    @property
    def effective_price(self) -> int:
        return self.promo_price if self.promo_price is not None else self.price


class Brief(WireModel):
    instance_id: str = Field(..., min_length=1)
    product_id: str = Field(..., min_length=1)
    product_name: str = Field(..., min_length=1)
    tier: str = Field(..., min_length=1)
    brief_details: str
    width: Optional[float] = Field(None, gt=0)
    height: Optional[float] = Field(None, gt=0)
    unit: Optional[str] = None
    google_drive_asset_links: Optional[str] = None

    @field_validator("brief_details")
    @classmethod
    def brief_long_enough(cls, v: str) -> str:
        if len(v.strip()) < BRIEF_MIN_LENGTH:
            raise ValueError(BRIEF_TOO_SHORT_MESSAGE)
        return v

    @field_validator("width", "height", "unit", mode="before")
    @classmethod
    def blank_values(cls, v):
        return _blank_to_none(v)

    @field_validator("google_drive_asset_links", mode="before")
    @classmethod
    def drive_link_is_url(cls, v):
        v = _blank_to_none(v)
        if v is None:
            return None
        try:
            _url_adapter.validate_python(v)
        except PydanticValidationError:
            raise ValueError("URL Google Drive tidak valid.")
        return v


class CustomerInfo(WireModel):
    name: str
    phone: str
    telegram: str
    email: Optional[str] = None
    address: Optional[str] = None

    @field_validator("name", "telegram")
    @classmethod
    def at_least_three(cls, v: str, info) -> str:
        if len(v.strip()) < 3:
            label = "Nama" if info.field_name == "name" else "Username Telegram"
            raise ValueError(f"{label} harus minimal 3 karakter")
        return v.strip()

    @field_validator("phone")
    @classmethod
    def phone_digits(cls, v: str) -> str:
        if len(v.strip()) < 10:
            raise ValueError("Nomor telepon harus minimal 10 digit")
        return v.strip()

    @field_validator("email", mode="before")
    @classmethod
    def email_shape(cls, v):
        v = _blank_to_none(v)
        if v is not None and not EMAIL_PATTERN.match(v.strip()):
            raise ValueError("Alamat email tidak valid")
        return v.strip() if v else v

    @field_validator("address", mode="before")
    @classmethod
    def address_length(cls, v):
        v = _blank_to_none(v)
        if v is not None and len(v.strip()) < 10:
            raise ValueError("Alamat harus minimal 10 karakter")
        return v


class OrderCreatePayload(WireModel):
    tier: str = Field(..., min_length=1)
    briefs: List[Brief] = Field(..., min_length=1)
    subtotal: int = Field(..., ge=0)
    handling_fee: int = Field(..., ge=0)
    unique_code: int = Field(..., ge=settings.UNIQUE_CODE_MIN, le=settings.UNIQUE_CODE_MAX)
    total_amount: int = Field(..., ge=0)
    status: OrderStatus = INITIAL_STATUS
    customer_name: str = ""
    customer_email: str = ""

    @field_validator("status")
    @classmethod
    def starts_awaiting_payment(cls, v: OrderStatus) -> OrderStatus:
        if v != INITIAL_STATUS:
            raise ValueError(f"Pesanan baru harus berstatus '{INITIAL_STATUS.value}'")
        return v

    @model_validator(mode="after")
    def check_invariants(self):
        expected = self.subtotal + self.handling_fee + self.unique_code
        if self.total_amount != expected:
            raise ValueError(
                f"totalAmount {self.total_amount} tidak sama dengan subtotal + handlingFee + uniqueCode ({expected})"
            )
        instance_ids = [b.instance_id for b in self.briefs]
        if len(set(instance_ids)) != len(instance_ids):
            raise ValueError("instanceId brief harus unik dalam satu pesanan")
        foreign = {b.tier for b in self.briefs if b.tier != self.tier}
        if foreign:
            raise ValueError(f"Brief dengan tier {sorted(foreign)} tidak sesuai dengan tier pesanan '{self.tier}'")
        return self


class StatusUpdate(WireModel):
    status: OrderStatus
    notes: Optional[str] = None


def validation_errors(exc: PydanticValidationError) -> List[Dict[str, Any]]:
    return [
        {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]}
        for err in exc.errors(include_url=False, include_context=False, include_input=False)
    ]


def validate_model(model: Type[M], data: Any, message: str = "Data tidak valid.", context: Optional[Dict[str, Any]] = None) -> M:
    """Validate ``data`` as ``model`` and convert failures to ValidationException."""
    if isinstance(data, model):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump(by_alias=True)
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationException(message, context={**(context or {}), "errors": validation_errors(e)})
