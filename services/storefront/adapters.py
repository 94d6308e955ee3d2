"""Normalization of order payloads received from the order store.

Historical backends disagree on field names (``paidAt`` vs ``paid_at``,
``customer`` vs ``customerName``, ...). Every payload goes through
``normalize_order`` / ``normalize_order_details`` / ``normalize_order_update``
before business code reads it; nothing else inspects raw wire dicts.
"""
import logging
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from pydantic import ValidationError as PydanticValidationError

from shared.order_status import StatusHistory
from shared.schemas import validation_errors
from shared.utils import InternalServerException

from .models import Order, OrderDetails, OrderUpdate

logger = logging.getLogger("storefront.adapters")

FieldMap = Dict[str, Tuple[str, ...]]

# canonical attribute -> accepted wire names, first match wins
ORDER_FIELDS: FieldMap = {
    "id": ("id", "_id", "orderId", "order_id"),
    "order_number": ("orderNumber", "order_number"),
    "tier": ("tier",),
    "briefs": ("briefs",),
    "status": ("status", "currentStatus", "current_status"),
    "created_at": ("createdAt", "created_at"),
    "updated_at": ("updatedAt", "updated_at"),
    "subtotal": ("subtotal", "subTotal", "sub_total"),
    "handling_fee": ("handlingFee", "handling_fee"),
    "unique_code": ("uniqueCode", "unique_code"),
    "total_amount": ("totalAmount", "total_amount"),
    "status_history": ("statusHistory", "status_history"),
    "customer_name": ("customerName", "customer_name", "customer"),
    "customer_email": ("customerEmail", "customer_email"),
    "customer_phone": ("customerPhone", "customer_phone"),
    "customer_telegram": ("customerTelegram", "customer_telegram"),
    "customer_address": ("customerAddress", "customer_address"),
    "version": ("version",),
    "paid_at": ("paidAt", "paid_at"),
    "completed_at": ("completedAt", "completed_at"),
    "cancelled_at": ("cancelledAt", "cancelled_at"),
}

DETAILS_FIELDS: FieldMap = {
    **{k: v for k, v in ORDER_FIELDS.items() if k not in ("status", "customer_address")},
    "current_status": ("currentStatus", "current_status", "status"),
    "shipping_address": ("shippingAddress", "shipping_address", "customerAddress", "customer_address"),
    "estimated_delivery": (
        "estimatedDelivery",
        "estimated_delivery",
        "estimatedCompletion",
        "estimated_completion",
    ),
    "items": ("items",),
}

BRIEF_FIELDS: FieldMap = {
    "instance_id": ("instanceId", "instance_id"),
    "product_id": ("productId", "product_id"),
    "product_name": ("productName", "product_name"),
    "tier": ("tier",),
    "brief_details": ("briefDetails", "brief_details"),
    "width": ("width",),
    "height": ("height",),
    "unit": ("unit",),
    "google_drive_asset_links": ("googleDriveAssetLinks", "google_drive_asset_links"),
}

HISTORY_FIELDS: FieldMap = {
    "status": ("status",),
    "timestamp": ("timestamp", "createdAt", "created_at", "changedAt", "changed_at"),
    "description": ("description",),
    "notes": ("notes",),
}

ITEM_FIELDS: FieldMap = {
    "id": ("id", "_id"),
    "name": ("name", "itemName", "item_name"),
    "quantity": ("quantity",),
    "price": ("price", "unitPrice", "unit_price"),
}

UPDATE_FIELDS: FieldMap = {
    "id": ("id", "orderId", "order_id"),
    "status": ("status",),
    "updated_at": ("updated_at", "updatedAt"),
    "version": ("version",),
}


def canonicalize(raw: Mapping[str, Any], fields: FieldMap) -> Dict[str, Any]:
    """Project ``raw`` onto canonical names using the first alias present."""
    canonical = {}
    for name, aliases in fields.items():
        for alias in aliases:
            if alias in raw and raw[alias] is not None:
                canonical[name] = raw[alias]
                break
    return canonical


def _canonical_history(raw: Any) -> list:
    if isinstance(raw, Mapping):
        return list(StatusHistory.from_wire(raw))
    return [canonicalize(entry, HISTORY_FIELDS) for entry in raw or () if isinstance(entry, Mapping)]


def _canonical_list(raw: Any, fields: FieldMap) -> list:
    if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)):
        return []
    return [canonicalize(item, fields) for item in raw if isinstance(item, Mapping)]


def _ensure_mapping(raw: Any, kind: str) -> Mapping[str, Any]:
    if not isinstance(raw, Mapping):
        raise InternalServerException(
            "Data pesanan di server tidak valid.",
            context={"kind": kind, "received": type(raw).__name__},
        )
    return raw


def normalize_order(raw: Any) -> Order:
    raw = _ensure_mapping(raw, "order")
    data = canonicalize(raw, ORDER_FIELDS)
    try:
        data["briefs"] = _canonical_list(data.get("briefs"), BRIEF_FIELDS)
        data["status_history"] = _canonical_history(data.get("status_history"))
        return Order.model_validate(data)
    except PydanticValidationError as e:
        logger.error("Order payload failed normalization", extra={"order_id": data.get("id")})
        raise InternalServerException(
            "Data pesanan di server tidak valid.",
            context={"order_id": data.get("id"), "errors": validation_errors(e)},
        )


def normalize_order_details(raw: Any) -> OrderDetails:
    raw = _ensure_mapping(raw, "order_details")
    data = canonicalize(raw, DETAILS_FIELDS)
    try:
        data["briefs"] = _canonical_list(data.get("briefs"), BRIEF_FIELDS)
        data["items"] = _canonical_list(data.get("items"), ITEM_FIELDS)
        history = StatusHistory.from_wire(_canonical_history(data.get("status_history")))
        # newest first, the way the timeline renders it
        data["status_history"] = sorted(history.entries, key=lambda e: e.timestamp, reverse=True)
        return OrderDetails.model_validate(data)
    except PydanticValidationError as e:
        logger.error("Order details payload failed normalization", extra={"order_id": data.get("id")})
        raise InternalServerException(
            "Data pesanan di server tidak valid.",
            context={"order_id": data.get("id"), "errors": validation_errors(e)},
        )


def normalize_order_update(raw: Any) -> Optional[OrderUpdate]:
    """Return the update, or None when the payload is not a usable order update."""
    if not isinstance(raw, Mapping):
        return None
    try:
        return OrderUpdate.model_validate(canonicalize(raw, UPDATE_FIELDS))
    except PydanticValidationError:
        logger.warning("Ignoring malformed order_update payload", extra={"order_id": raw.get("id")})
        return None
