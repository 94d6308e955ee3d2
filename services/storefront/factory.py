import logging
import random
import time
from typing import Callable, Dict, Optional, Sequence, Set, Tuple

from shared.order_status import INITIAL_STATUS
from shared.schemas import BRIEF_MIN_LENGTH, Brief, CartItem, OrderCreatePayload, validate_model
from shared.utils import settings

from .cart import CartInput, group_cart_by_tier

logger = logging.getLogger("storefront.factory")

BRIEF_PLACEHOLDER = "Detail brief akan dilengkapi oleh pelanggan."
DEFAULT_UNIT = "px"


class OrderFactory:
    """Turns one tier group of cart items into a validated order-creation payload."""

    def __init__(
        self,
        handling_fee: Optional[int] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.handling_fee = settings.HANDLING_FEE if handling_fee is None else handling_fee
        self.rng = rng or random.Random()
        self.clock = clock or time.time

    def unique_code(self) -> int:
        return self.rng.randint(settings.UNIQUE_CODE_MIN, settings.UNIQUE_CODE_MAX)

    def price(self, items: Sequence[CartItem]) -> Tuple[int, int, int, int]:
        """Return (subtotal, handling_fee, unique_code, total_amount)."""
        subtotal = sum(item.effective_price for item in items)
        code = self.unique_code()
        return subtotal, self.handling_fee, code, subtotal + self.handling_fee + code

    def _instance_id(self, item: CartItem, taken: Set[str]) -> str:
        base = item.instance_id or f"{item.id}-{int(self.clock() * 1000)}"
        candidate, n = base, 1
        while candidate in taken:
            candidate = f"{base}-{n}"
            n += 1
        taken.add(candidate)
        return candidate

    def build_brief(self, item: CartItem, taken: Optional[Set[str]] = None) -> Brief:
        details = (item.brief_details or "").strip()
        if len(details) < BRIEF_MIN_LENGTH:
            details = BRIEF_PLACEHOLDER

        dims = item.dimensions
        data = {
            "instance_id": self._instance_id(item, taken if taken is not None else set()),
            "product_id": item.id,
            "product_name": item.name,
            "tier": item.tier,
            "brief_details": details,
            "width": dims.width if dims else None,
            "height": dims.height if dims else None,
            "unit": dims.unit if dims and dims.unit else DEFAULT_UNIT,
            "google_drive_asset_links": item.google_drive_asset_links,
        }
        return validate_model(
            Brief,
            data,
            message=f"Brief untuk produk '{item.name}' tidak valid.",
            context={"tier": item.tier, "item_id": item.id},
        )

    def build_payload(self, tier: str, items: Sequence[CartItem]) -> OrderCreatePayload:
        taken: Set[str] = set()
        briefs = [self.build_brief(item, taken) for item in items]
        subtotal, handling_fee, unique_code, total_amount = self.price(items)

        payload = {
            "tier": tier,
            "briefs": [b.to_wire() for b in briefs],
            "subtotal": subtotal,
            "handlingFee": handling_fee,
            "uniqueCode": unique_code,
            "totalAmount": total_amount,
            "status": INITIAL_STATUS.value,
            "customerName": "",
            "customerEmail": "",
        }
        order = validate_model(
            OrderCreatePayload,
            payload,
            message=f"Data pesanan untuk tier '{tier}' tidak valid.",
            context={"tier": tier},
        )
        logger.debug("Built order payload", extra={"tier": tier})
        return order

    def build_payloads(self, cart: Sequence[CartInput]) -> Dict[str, OrderCreatePayload]:
        """Group the cart and build every tier payload; raises before anything is sent."""
        return {tier: self.build_payload(tier, items) for tier, items in group_cart_by_tier(cart).items()}

