import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, MutableMapping, Optional, Sequence, Union

from shared.schemas import CartItem, validate_model
from shared.utils import ValidationException

logger = logging.getLogger("storefront.cart")

EMPTY_CART_MESSAGE = "Keranjang tidak boleh kosong"
REQUIRED_ITEM_FIELDS = ("id", "name", "price", "tier")

CART_STORAGE_KEY = "cart"

CartInput = Union[CartItem, Mapping[str, Any]]


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _describe_item(index: int, item: Mapping[str, Any]) -> str:
    label = item.get("id") or item.get("name")
    return f"item #{index + 1}" + (f" ({label})" if label else "")


def validate_cart_item(index: int, item: CartInput) -> CartItem:
    """Check mandatory fields of one cart item, all at once."""
    if isinstance(item, CartItem):
        return item
    if not isinstance(item, Mapping):
        raise ValidationException(
            f"Item keranjang #{index + 1} tidak valid.",
            context={"index": index, "received": type(item).__name__},
        )

    missing = [name for name in REQUIRED_ITEM_FIELDS if _is_blank(item.get(name))]
    if missing:
        raise ValidationException(
            f"Item keranjang {_describe_item(index, item)} tidak lengkap: {', '.join(missing)} wajib diisi.",
            context={"index": index, "item_id": item.get("id"), "missing_fields": missing},
        )
    return validate_model(
        CartItem,
        item,
        message=f"Item keranjang {_describe_item(index, item)} tidak valid.",
        context={"index": index, "item_id": item.get("id")},
    )


def group_cart_by_tier(cart: Sequence[CartInput]) -> Dict[str, List[CartItem]]:
    """Partition the cart into tier groups, keeping first-seen tier and item order."""
    if not cart:
        raise ValidationException(EMPTY_CART_MESSAGE, context={"cart": []})

    groups: Dict[str, List[CartItem]] = {}
    for index, raw in enumerate(cart):
        item = validate_cart_item(index, raw)
        groups.setdefault(item.tier, []).append(item)
    return groups


@dataclass(frozen=True)
class CartSnapshot:
    version: int
    items: List[Dict[str, Any]] = field(default_factory=list)


CartListener = Callable[[CartSnapshot], None]


class CartStore:
    """Session-scoped cart persisted as a JSON array under a single key.

    ``storage`` is any str -> str mapping (a browser-session bridge, or a
    dict in tests). An empty cart removes the key rather than storing ``[]``.
    Writes bump a version counter and are published to subscribers so other
    tabs can converge; a remote snapshot wins only if its version is newer.
    """

    def __init__(self, storage: Optional[MutableMapping[str, str]] = None, key: str = CART_STORAGE_KEY):
        self.storage = storage if storage is not None else {}
        self.key = key
        self.version_key = f"{key}:version"
        self._listeners: List[CartListener] = []

    @property
    def version(self) -> int:
        try:
            return int(self.storage.get(self.version_key, 0))
        except (TypeError, ValueError):
            return 0

    def load(self) -> List[CartItem]:
        raw = self.storage.get(self.key)
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable cart from session storage")
            self.storage.pop(self.key, None)
            return []
        if not isinstance(data, list):
            return []
        return [validate_cart_item(i, item) for i, item in enumerate(data)]

    def save(self, items: Sequence[CartInput]) -> CartSnapshot:
        validated = [validate_cart_item(i, item) for i, item in enumerate(items)]
        payload = [item.to_wire() for item in validated]
        return self._write(self.version + 1, payload, notify=True)

    def add(self, item: CartInput) -> CartSnapshot:
        return self.save([*self.load(), item])

    def remove(self, instance_id: str) -> CartSnapshot:
        return self.save([i for i in self.load() if i.instance_id != instance_id])

    def clear(self) -> CartSnapshot:
        return self.save([])

    def subscribe(self, listener: CartListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def apply_remote(self, snapshot: CartSnapshot) -> bool:
        """Adopt a snapshot written by another tab if it is strictly newer."""
        if snapshot.version <= self.version:
            return False
        self._write(snapshot.version, list(snapshot.items), notify=False)
        return True

    def _write(self, version: int, payload: List[Dict[str, Any]], notify: bool) -> CartSnapshot:
        if payload:
            self.storage[self.key] = json.dumps(payload)
        else:
            self.storage.pop(self.key, None)
        self.storage[self.version_key] = str(version)

        snapshot = CartSnapshot(version=version, items=payload)
        if notify:
            for listener in list(self._listeners):
                listener(snapshot)
        return snapshot
