import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Union
from urllib.parse import quote

import httpx

from shared.order_status import OrderStatus, StatusStateMachine, coerce_status
from shared.schemas import CustomerInfo, OrderCreatePayload, StatusUpdate, validate_model
from shared.utils import (
    InternalServerException, NotFoundException, ValidationException, build_exception, settings
)

from .adapters import normalize_order, normalize_order_details
from .models import Order, OrderDetails

logger = logging.getLogger("storefront.client")

ORDERS_PATH = "/api/orders"


def _error_message(body: Any) -> Optional[str]:
    if not isinstance(body, Mapping):
        return None
    for key in ("error", "detail", "message"):
        value = body.get(key)
        if isinstance(value, str) and value:
            return value
        if isinstance(value, list) and value:
            # FastAPI request-validation detail
            first = value[0]
            return first.get("msg") if isinstance(first, Mapping) else str(first)
    return None


class OrderRepositoryClient:
    """Async client over the order store REST API.

    Every response is normalized before it is returned, and every failure is
    re-raised as one of ValidationException, NotFoundException,
    IllegalTransitionException, ConcurrentUpdateException or
    InternalServerException.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        state_machine: Optional[StatusStateMachine] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        request_id: Optional[str] = None,
    ):
        self.base_url = (base_url or settings.ORDERS_API_URL).rstrip("/")
        self.state_machine = state_machine or StatusStateMachine()
        self.request_id = request_id
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout if timeout is not None else settings.REQUEST_TIMEOUT,
            transport=transport,
        )

    async def __aenter__(self) -> "OrderRepositoryClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
        order_id: Optional[str] = None,
    ) -> Any:
        headers = {"X-Request-ID": self.request_id} if self.request_id else None
        start_time = time.time()
        try:
            resp = await self._http.request(method, path, json=json, params=params, headers=headers)
        except httpx.RequestError as e:
            logger.error(
                "Order store unreachable",
                extra={"method": method, "path": path, "order_id": order_id},
            )
            raise InternalServerException(
                "Gagal terhubung ke server pesanan.",
                context={"order_id": order_id, "path": path, "originalError": str(e)},
            )

        duration = (time.time() - start_time) * 1000
        logger.debug(
            "Order store call completed",
            extra={
                "method": method,
                "path": path,
                "status_code": resp.status_code,
                "duration_ms": round(duration, 2),
                "order_id": order_id,
            },
        )

        try:
            body = resp.json() if resp.content else None
        except ValueError:
            body = None

        if resp.is_success and not (isinstance(body, Mapping) and body.get("success") is False):
            if isinstance(body, Mapping) and "data" in body:
                return body["data"]
            return body

        message = _error_message(body)
        if resp.status_code == 404 and order_id:
            message = f"Pesanan dengan ID {order_id} tidak ditemukan."
        error_code = body.get("error_code") if isinstance(body, Mapping) else None
        context = {"order_id": order_id, "status_code": resp.status_code}
        if isinstance(body, Mapping) and body.get("details"):
            context["details"] = body["details"]

        exc = build_exception(
            message or f"Server pesanan mengembalikan status {resp.status_code}.",
            status_code=resp.status_code,
            error_code=error_code,
            context=context,
        )
        logger.warning(
            "Order store rejected request",
            extra={"method": method, "path": path, "status_code": resp.status_code, "error_code": exc.error_code},
        )
        raise exc

    @staticmethod
    def _require_id(order_id: str) -> str:
        if not order_id or not str(order_id).strip():
            raise ValidationException("ID Pesanan wajib diisi.")
        return str(order_id).strip()

    async def create_order(self, payload: Union[OrderCreatePayload, Mapping[str, Any]]) -> Order:
        order = validate_model(OrderCreatePayload, payload, message="Data pesanan tidak valid.")
        data = await self._request("POST", ORDERS_PATH, json=order.to_wire())
        created = normalize_order(data)
        logger.info("Order created", extra={"order_id": created.id, "tier": created.tier})
        return created

    async def get_order_by_id(self, order_id: str) -> Optional[Order]:
        order_id = self._require_id(order_id)
        try:
            data = await self._request("GET", f"{ORDERS_PATH}/{quote(order_id)}", order_id=order_id)
        except NotFoundException:
            return None
        return normalize_order(data)

    async def get_all_orders(self, limit: int = 100, offset: int = 0) -> List[Order]:
        data = await self._request("GET", ORDERS_PATH, params={"limit": limit, "offset": offset})
        if data is None:
            return []
        if not isinstance(data, list):
            raise InternalServerException(
                "Data pesanan di server tidak valid.",
                context={"received": type(data).__name__},
            )
        return [normalize_order(item) for item in data]

    async def update_order_status(
        self,
        order_id: str,
        status: Union[str, OrderStatus],
        notes: Optional[str] = None,
    ) -> None:
        order_id = self._require_id(order_id)
        target = coerce_status(status)

        if self.state_machine.strict:
            current = await self.get_order_by_id(order_id)
            if current is None:
                raise NotFoundException(
                    f"Pesanan dengan ID {order_id} tidak ditemukan.",
                    context={"order_id": order_id},
                )
            self.state_machine.ensure_transition(current.status, target, order_id=order_id)

        update = StatusUpdate(status=target, notes=notes)
        await self._request(
            "PUT",
            f"{ORDERS_PATH}/{quote(order_id)}/status",
            json=update.to_wire(),
            order_id=order_id,
        )
        logger.info("Order status updated", extra={"order_id": order_id, "status": target.value})

    async def update_customer_info(self, order_id: str, customer: Union[CustomerInfo, Mapping[str, Any]]) -> None:
        order_id = self._require_id(order_id)
        info = validate_model(
            CustomerInfo,
            customer,
            message="Data pelanggan tidak valid.",
            context={"order_id": order_id},
        )
        await self._request("PUT", f"{ORDERS_PATH}/{quote(order_id)}", json=info.to_wire(), order_id=order_id)

    async def delete_order(self, order_id: str) -> None:
        order_id = self._require_id(order_id)
        await self._request("DELETE", f"{ORDERS_PATH}/{quote(order_id)}", order_id=order_id)
        logger.info("Order deleted", extra={"order_id": order_id})

    async def track_order(self, query: str) -> OrderDetails:
        """Look up an order by id, order number or customer email."""
        query = (query or "").strip()
        if not query:
            raise ValidationException("Masukkan nomor pesanan atau email")
        data = await self._request("GET", f"{ORDERS_PATH}/{quote(query, safe='@')}")
        return normalize_order_details(data)
