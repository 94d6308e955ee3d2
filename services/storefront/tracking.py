"""Push channel to the order store and the customer-facing order tracker."""
import asyncio
import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import websockets
from websockets.exceptions import WebSocketException

from shared.order_status import StatusHistoryEntry, status_label
from shared.utils import AppException, NotFoundException, settings

from .adapters import normalize_order_update
from .client import OrderRepositoryClient
from .models import OrderDetails, OrderUpdate

logger = logging.getLogger("storefront.tracking")

EMPTY_QUERY_MESSAGE = "Masukkan nomor pesanan atau email"
NOT_FOUND_MESSAGE = "Pesanan tidak ditemukan. Silakan periksa kembali nomor pesanan atau email Anda."
CONNECTION_ERROR_MESSAGE = "Terjadi kesalahan koneksi. Silakan coba lagi."

ORDER_UPDATE = "order_update"


class ConnectionState(str, Enum):
    CONNECTED = "connected"
    CONNECTING = "connecting"
    DISCONNECTED = "disconnected"


MessageListener = Callable[[Dict[str, Any]], Any]
StateListener = Callable[[ConnectionState], Any]


class PushChannel:
    """WebSocket subscription to ``{type, data, timestamp}`` envelopes.

    Reconnects with exponential backoff (``min(base * 2**n, max_delay)``) up
    to ``max_attempts`` consecutive failures; a successful connect resets the
    counter. ``close()`` stops the loop for good.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        connect: Optional[Callable[..., Any]] = None,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.url = url or settings.ORDERS_WS_URL
        self.connect = connect or websockets.connect
        self.max_attempts = settings.PUSH_MAX_RECONNECT_ATTEMPTS if max_attempts is None else max_attempts
        self.base_delay = settings.PUSH_RECONNECT_BASE_DELAY if base_delay is None else base_delay
        self.max_delay = settings.PUSH_RECONNECT_MAX_DELAY if max_delay is None else max_delay
        self.sleep = sleep

        self._state = ConnectionState.DISCONNECTED
        self._listeners: List[MessageListener] = []
        self._state_listeners: List[StateListener] = []
        self._socket = None
        self._closed = False

    @property
    def state(self) -> ConnectionState:
        return self._state

    def subscribe(self, listener: MessageListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    def on_state_change(self, listener: StateListener) -> Callable[[], None]:
        self._state_listeners.append(listener)
        return lambda: self._state_listeners.remove(listener) if listener in self._state_listeners else None

    def reconnect_delay(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        self._state = state
        logger.info("Push channel state changed", extra={"connection_state": state.value})
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Connection state listener failed")

    def dispatch(self, frame: Any) -> Optional[Dict[str, Any]]:
        """Decode one frame and hand it to subscribers; bad frames are dropped."""
        try:
            message = json.loads(frame)
        except (TypeError, ValueError):
            logger.warning("Dropping undecodable push frame")
            return None
        if not isinstance(message, dict) or not isinstance(message.get("type"), str):
            logger.warning("Dropping push frame without a message type")
            return None
        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception:
                logger.exception("Push subscriber failed")
        return message

    async def run(self) -> None:
        attempt = 0
        while not self._closed:
            self._set_state(ConnectionState.CONNECTING)
            try:
                async with self.connect(self.url) as socket:
                    self._socket = socket
                    self._set_state(ConnectionState.CONNECTED)
                    attempt = 0
                    async for frame in socket:
                        self.dispatch(frame)
            except (OSError, asyncio.TimeoutError, WebSocketException) as e:
                logger.warning(
                    "Push channel connection lost",
                    extra={"attempt": attempt, "connection_state": self._state.value, "error_code": type(e).__name__},
                )
            finally:
                self._socket = None
                self._set_state(ConnectionState.DISCONNECTED)

            if self._closed:
                break
            if attempt >= self.max_attempts:
                logger.error("Push channel giving up after reconnect attempts", extra={"attempt": attempt})
                break
            delay = self.reconnect_delay(attempt)
            attempt += 1
            await self.sleep(delay)

    async def close(self) -> None:
        self._closed = True
        if self._socket is not None:
            await self._socket.close()


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class OrderTracker:
    """Holds the order currently shown on the tracking page.

    The snapshot comes from a REST lookup; push updates for the same order are
    folded into it when they are newer than what is already displayed.
    """

    def __init__(self, client: OrderRepositoryClient, channel: Optional[PushChannel] = None):
        self.client = client
        self.channel = channel
        self.order: Optional[OrderDetails] = None
        self.error: Optional[str] = None
        self.loading = False

        self._search_seq = 0
        self._closed = False
        self._last_version: Optional[int] = None
        self._last_updated_at: Optional[datetime] = None
        self._unsubscribe = channel.subscribe(self.handle_message) if channel else None

    @property
    def connection_state(self) -> ConnectionState:
        return self.channel.state if self.channel else ConnectionState.DISCONNECTED

    async def search(self, query: str) -> Optional[OrderDetails]:
        query = (query or "").strip()
        if not query:
            self.error = EMPTY_QUERY_MESSAGE
            return None

        self._search_seq += 1
        seq = self._search_seq
        self.loading = True
        self.error = None

        details, error = None, None
        try:
            details = await self.client.track_order(query)
        except NotFoundException:
            error = NOT_FOUND_MESSAGE
        except AppException as e:
            logger.warning("Order lookup failed", extra={"error_code": e.error_code})
            error = CONNECTION_ERROR_MESSAGE

        if self._closed or seq != self._search_seq:
            logger.debug("Discarding stale lookup response")
            return None

        self.loading = False
        self.error = error
        self.order = details
        self._last_version = details.version if details else None
        self._last_updated_at = _aware(details.updated_at) if details else None
        return details

    def _is_newer(self, update: OrderUpdate) -> bool:
        if update.version is not None and self._last_version is not None:
            return update.version > self._last_version
        if update.version is not None or self._last_updated_at is None:
            return True
        return _aware(update.updated_at) > self._last_updated_at

    def handle_message(self, message: Any) -> bool:
        """Apply an ``order_update`` for the displayed order; returns True if applied."""
        if self._closed or self.order is None:
            return False
        if not isinstance(message, dict) or message.get("type") != ORDER_UPDATE:
            return False

        update = normalize_order_update(message.get("data"))
        if update is None or update.id != self.order.id:
            return False
        if not self._is_newer(update):
            logger.debug(
                "Ignoring stale order update",
                extra={"order_id": update.id, "status": update.status},
            )
            return False

        entry = StatusHistoryEntry(
            status=update.status,
            timestamp=update.updated_at,
            description=f"Status diperbarui menjadi {status_label(update.status)}",
        )
        self.order = self.order.model_copy(update={
            "current_status": update.status,
            "status_history": [entry, *self.order.status_history],
            "updated_at": update.updated_at,
            "version": update.version if update.version is not None else self.order.version,
        })
        if update.version is not None:
            self._last_version = update.version
        self._last_updated_at = _aware(update.updated_at)

        logger.info("Applied order update", extra={"order_id": update.id, "status": update.status})
        return True

    async def close(self) -> None:
        self._closed = True
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        if self.channel:
            await self.channel.close()
