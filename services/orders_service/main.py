from contextlib import asynccontextmanager
from typing import Awaitable, Callable, List, Optional

from fastapi import FastAPI, Query, Request, WebSocket, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from shared.utils import (
    settings, SuccessResponse, ErrorResponse, HealthResponse,
    AppException, ConcurrentUpdateException, NotFoundException, ValidationException, InternalServerException
)
from shared.logging_config import setup_logging, RequestLoggingMiddleware, get_request_id
from shared.security_config import setup_rate_limiting, SecurityHeadersMiddleware, limiter
from shared.order_status import INITIAL_STATUS, OrderStatus, StatusHistory, StatusStateMachine, utcnow

from .hub import OrderUpdateHub
from .models import OrderDB, BriefDB
from .schemas import (
    OrderCreate, CustomerInfoUpdate, OrderStatusUpdate, OrderResponse, OrderDetailsResponse
)
from .store import OrderStore, MongoOrderStore

SERVICE_NAME = "orders-service"
MAX_WRITE_ATTEMPTS = 3

# Setup Logging
logger = setup_logging(SERVICE_NAME, settings.LOG_LEVEL)

# Status -> timestamp field stamped when the order enters it
STATUS_TIMESTAMPS = {
    OrderStatus.PESANAN_DITERIMA: "paid_at",
    OrderStatus.PESANAN_SELESAI: "completed_at",
    OrderStatus.DIBATALKAN: "cancelled_at",
}


def order_not_found(order_id: str) -> NotFoundException:
    return NotFoundException(f"Pesanan dengan ID {order_id} tidak ditemukan.", context={"order_id": order_id})


def to_response(order: OrderDB) -> OrderResponse:
    return OrderResponse.model_validate(order.model_dump())


def to_details(order: OrderDB) -> OrderDetailsResponse:
    data = order.model_dump()
    data.update(
        current_status=order.status,
        shipping_address=order.customer_address,
        items=[{"id": b.instance_id, "name": b.product_name, "quantity": 1} for b in order.briefs],
    )
    return OrderDetailsResponse.model_validate(data)


def error_response(exc: AppException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(exc.to_response()),
        headers=exc.headers,
    )


def create_app(store: Optional[OrderStore] = None, state_machine: Optional[StatusStateMachine] = None) -> FastAPI:
    store = store or MongoOrderStore()
    state_machine = state_machine or StatusStateMachine()
    hub = OrderUpdateHub()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await store.init()
        yield
        await store.close()

    app = FastAPI(title="Orders Service", lifespan=lifespan)
    app.state.store = store
    app.state.hub = hub

    # Security Setup
    setup_rate_limiting(app)
    app.add_middleware(SecurityHeadersMiddleware)

    # Middleware
    app.add_middleware(RequestLoggingMiddleware, service_name=SERVICE_NAME)

    # CORS Configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Error handlers ---
    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException):
        if exc.status_code >= 500:
            logger.error(exc.message, extra={"request_id": get_request_id(request), "error_code": exc.error_code})
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
            for err in exc.errors()
        ]
        return error_response(ValidationException("Data tidak valid.", context={"errors": errors}))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        body = ErrorResponse(error=str(exc.detail), error_code=f"E_HTTP_{exc.status_code}")
        return JSONResponse(status_code=exc.status_code, content=body.model_dump(), headers=exc.headers)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(
            "Unhandled error",
            exc_info=(type(exc), exc, exc.__traceback__),
            extra={"request_id": get_request_id(request), "path": request.url.path},
        )
        return error_response(InternalServerException())

    # --- Helpers ---
    async def mutate(order_id: str, change: Callable[[OrderDB], Awaitable[None]]) -> OrderDB:
        """Read-modify-write with a version check, retried on concurrent writes."""
        for attempt in range(MAX_WRITE_ATTEMPTS):
            order = await store.get(order_id)
            if order is None:
                raise order_not_found(order_id)
            expected = order.version
            await change(order)
            order.version = expected + 1
            order.updated_at = utcnow()
            if await store.replace(order, expected_version=expected):
                return order
            logger.warning("Concurrent order write, retrying", extra={"order_id": order_id, "attempt": attempt})
        raise ConcurrentUpdateException(context={"order_id": order_id})

    # --- Endpoints ---
    @app.get("/api/orders", response_model=SuccessResponse[List[OrderResponse]])
    @limiter.limit(settings.RATE_LIMIT)
    async def list_orders(
        request: Request,
        limit: int = Query(100, ge=1, le=100),
        offset: int = Query(0, ge=0),
        status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    ):
        orders = await store.list(
            limit=limit, offset=offset, status=status_filter.value if status_filter else None
        )
        return SuccessResponse(data=[to_response(o) for o in orders])

    @app.get("/api/orders/{query}", response_model=SuccessResponse[OrderDetailsResponse])
    @limiter.limit(settings.RATE_LIMIT)
    async def get_order(request: Request, query: str):
        """Resolve an order by id, then order number, then latest order for an email."""
        query = query.strip()
        order = await store.get(query) or await store.find_by_number(query)
        if order is None and "@" in query:
            order = await store.find_latest_by_email(query)
        if order is None:
            raise NotFoundException("Pesanan tidak ditemukan.", context={"query": query})
        return SuccessResponse(data=to_details(order))

    @app.post(
        "/api/orders",
        response_model=SuccessResponse[OrderResponse],
        status_code=status.HTTP_201_CREATED,
    )
    @limiter.limit(settings.RATE_LIMIT)
    async def create_order(request: Request, payload: OrderCreate):
        now = utcnow()
        history = StatusHistory()
        history.append(INITIAL_STATUS, timestamp=now, description="Pesanan dibuat")

        order = OrderDB(
            tier=payload.tier,
            briefs=[BriefDB(**b.model_dump()) for b in payload.briefs],
            status=INITIAL_STATUS.value,
            subtotal=payload.subtotal,
            handling_fee=payload.handling_fee,
            unique_code=payload.unique_code,
            total_amount=payload.total_amount,
            status_history=list(history),
            customer_name=payload.customer_name,
            customer_email=payload.customer_email,
            created_at=now,
            updated_at=now,
        )
        await store.insert(order)
        logger.info(
            "Order created",
            extra={"order_id": order.id, "order_number": order.order_number, "tier": order.tier},
        )
        return SuccessResponse(data=to_response(order), message="Pesanan berhasil dibuat")

    @app.put("/api/orders/{order_id}", response_model=SuccessResponse[OrderResponse])
    @limiter.limit(settings.RATE_LIMIT)
    async def update_customer_info(request: Request, order_id: str, customer: CustomerInfoUpdate):
        async def change(order: OrderDB):
            order.customer_name = customer.name
            order.customer_phone = customer.phone
            order.customer_telegram = customer.telegram
            if customer.email:
                order.customer_email = customer.email
            if customer.address:
                order.customer_address = customer.address

        order = await mutate(order_id, change)
        logger.info("Customer info updated", extra={"order_id": order_id})
        return SuccessResponse(data=to_response(order), message="Data pelanggan diperbarui")

    @app.put("/api/orders/{order_id}/status", response_model=SuccessResponse[OrderResponse])
    @limiter.limit(settings.RATE_LIMIT)
    async def update_order_status(request: Request, order_id: str, update: OrderStatusUpdate):
        previous = {}

        async def change(order: OrderDB):
            target = state_machine.ensure_transition(order.status, update.status, order_id=order_id)
            previous["status"] = order.status
            history = StatusHistory(order.status_history)
            history.append(target, description=f"Status diubah menjadi {target.value}", notes=update.notes)
            order.status = target.value
            order.status_history = list(history)
            stamp = STATUS_TIMESTAMPS.get(target)
            if stamp:
                setattr(order, stamp, history.latest.timestamp)

        order = await mutate(order_id, change)
        logger.info(
            "Order status updated",
            extra={"order_id": order_id, "status": order.status, "previous_status": previous.get("status")},
        )
        await hub.publish_order(order)
        return SuccessResponse(data=to_response(order), message="Status pesanan diperbarui")

    @app.delete("/api/orders/{order_id}", response_model=SuccessResponse[dict])
    @limiter.limit(settings.RATE_LIMIT)
    async def delete_order(request: Request, order_id: str):
        if not await store.delete(order_id):
            raise order_not_found(order_id)
        logger.info("Order deleted", extra={"order_id": order_id})
        return SuccessResponse(message="Pesanan dihapus")

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        db_status = "connected" if await store.ping() else "disconnected"
        if db_status != "connected":
            raise AppException(
                status.HTTP_503_SERVICE_UNAVAILABLE,
                "Service Unhealthy",
                error_code="E_SERVICE_UNAVAILABLE",
                context={"database": db_status},
            )
        return HealthResponse(
            service=SERVICE_NAME,
            status="healthy",
            timestamp=utcnow(),
            version="1.0.0",
            database=db_status,
            dependencies={"websocket_clients": len(hub.clients)},
        )

    @app.websocket("/ws")
    async def order_updates(websocket: WebSocket):
        await hub.listen(websocket)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("services.orders_service.main:app", host="0.0.0.0", port=8003)
