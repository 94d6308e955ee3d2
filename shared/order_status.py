"""Order statuses, the legal-transition table and the status history log."""
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, field_validator

from shared.utils import IllegalTransitionException, ValidationException, settings

logger = logging.getLogger("order-status")


class OrderStatus(str, Enum):
    MENUNGGU_PEMBAYARAN = "Menunggu Pembayaran"
    PEMBAYARAN_DIVERIFIKASI = "Pembayaran Sedang Diverifikasi"
    PESANAN_DITERIMA = "Pesanan Diterima"
    BRIEF_DITINJAU = "Brief Sedang Ditinjau"
    DESAIN_DIKERJAKAN = "Desain Sedang Dikerjakan"
    PESANAN_SELESAI = "Pesanan Selesai"
    DIBATALKAN = "Dibatalkan"


INITIAL_STATUS = OrderStatus.MENUNGGU_PEMBAYARAN
TERMINAL_STATUSES = frozenset({OrderStatus.PESANAN_SELESAI, OrderStatus.DIBATALKAN})

ALLOWED_TRANSITIONS: Dict[OrderStatus, frozenset] = {
    OrderStatus.MENUNGGU_PEMBAYARAN: frozenset({
        OrderStatus.PEMBAYARAN_DIVERIFIKASI,
        OrderStatus.DIBATALKAN,
    }),
    OrderStatus.PEMBAYARAN_DIVERIFIKASI: frozenset({
        OrderStatus.PESANAN_DITERIMA,
        # payment proof rejected, back to waiting
        OrderStatus.MENUNGGU_PEMBAYARAN,
        OrderStatus.DIBATALKAN,
    }),
    OrderStatus.PESANAN_DITERIMA: frozenset({
        OrderStatus.BRIEF_DITINJAU,
        OrderStatus.DIBATALKAN,
    }),
    OrderStatus.BRIEF_DITINJAU: frozenset({
        OrderStatus.DESAIN_DIKERJAKAN,
        OrderStatus.DIBATALKAN,
    }),
    OrderStatus.DESAIN_DIKERJAKAN: frozenset({
        # revision round
        OrderStatus.BRIEF_DITINJAU,
        OrderStatus.PESANAN_SELESAI,
        OrderStatus.DIBATALKAN,
    }),
    OrderStatus.PESANAN_SELESAI: frozenset(),
    OrderStatus.DIBATALKAN: frozenset(),
}

# Labels for the customer-facing timeline. Legacy english codes still show up
# in push payloads from older backends.
STATUS_LABELS: Dict[str, str] = {
    **{s.value: s.value for s in OrderStatus},
    "pending": "Menunggu",
    "processing": "Diproses",
    "shipped": "Dikirim",
    "delivered": "Selesai",
    "completed": "Selesai",
    "cancelled": "Dibatalkan",
}


def status_label(status: Union[str, OrderStatus]) -> str:
    value = status.value if isinstance(status, OrderStatus) else str(status)
    return STATUS_LABELS.get(value, "Unknown")


def coerce_status(value: Union[str, OrderStatus]) -> OrderStatus:
    """Return the enum member for ``value`` or raise ValidationException."""
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(value)
    except ValueError:
        raise ValidationException(
            "Status pesanan tidak valid.",
            context={"status": value, "allowed": [s.value for s in OrderStatus]},
        )


class StatusStateMachine:
    """Single authority on which status changes are legal.

    In strict mode an illegal transition raises IllegalTransitionException.
    Lenient mode keeps the historical behaviour of accepting any enumerated
    target and only logs the violation.
    """

    def __init__(self, strict: Optional[bool] = None):
        self.strict = settings.STRICT_STATUS_TRANSITIONS if strict is None else strict

    @staticmethod
    def allowed_targets(current: Union[str, OrderStatus]) -> frozenset:
        return ALLOWED_TRANSITIONS[coerce_status(current)]

    @staticmethod
    def is_terminal(status: Union[str, OrderStatus]) -> bool:
        return coerce_status(status) in TERMINAL_STATUSES

    def can_transition(self, current: Union[str, OrderStatus], target: Union[str, OrderStatus]) -> bool:
        return coerce_status(target) in self.allowed_targets(current)

    def ensure_transition(
        self,
        current: Union[str, OrderStatus],
        target: Union[str, OrderStatus],
        order_id: Optional[str] = None,
    ) -> OrderStatus:
        current_status = coerce_status(current)
        target_status = coerce_status(target)
        if target_status in ALLOWED_TRANSITIONS[current_status]:
            return target_status

        context = {
            "order_id": order_id,
            "current_status": current_status.value,
            "target_status": target_status.value,
        }
        if self.strict:
            raise IllegalTransitionException(
                f"Status tidak dapat diubah dari '{current_status.value}' ke '{target_status.value}'.",
                context=context,
            )
        logger.warning(
            "Illegal status transition accepted in lenient mode",
            extra={"order_id": order_id, "previous_status": current_status.value, "status": target_status.value},
        )
        return target_status


class StatusHistoryEntry(BaseModel):
    status: str
    timestamp: datetime
    description: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StatusHistory:
    """Append-only, chronologically ordered record of status changes.

    Re-entering a status adds a new entry; earlier entries are never touched.
    """

    def __init__(self, entries: Iterable[StatusHistoryEntry] = ()):
        self._entries: List[StatusHistoryEntry] = list(entries)

    @classmethod
    def from_wire(cls, raw: Any) -> "StatusHistory":
        """Build from a list of entries or from the legacy ``{status: timestamp}`` map."""
        if not raw:
            return cls()
        if isinstance(raw, Mapping):
            entries = [StatusHistoryEntry(status=status, timestamp=ts) for status, ts in raw.items()]
            entries.sort(key=lambda e: e.timestamp)
            return cls(entries)
        return cls(
            entry if isinstance(entry, StatusHistoryEntry) else StatusHistoryEntry.model_validate(entry)
            for entry in raw
        )

    def append(
        self,
        status: Union[str, OrderStatus],
        timestamp: Optional[datetime] = None,
        description: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> StatusHistoryEntry:
        value = status.value if isinstance(status, OrderStatus) else status
        entry = StatusHistoryEntry(
            status=value,
            timestamp=timestamp or utcnow(),
            description=description,
            notes=notes,
        )
        self._entries.append(entry)
        return entry

    @property
    def entries(self) -> Tuple[StatusHistoryEntry, ...]:
        return tuple(self._entries)

    @property
    def latest(self) -> Optional[StatusHistoryEntry]:
        return self._entries[-1] if self._entries else None

    def visits(self, status: Union[str, OrderStatus]) -> List[StatusHistoryEntry]:
        value = status.value if isinstance(status, OrderStatus) else status
        return [e for e in self._entries if e.status == value]

    def to_list(self) -> List[Dict[str, Any]]:
        return [e.model_dump(mode="json", exclude_none=True) for e in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)
