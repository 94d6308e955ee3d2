import asyncio
import logging
from typing import Any, Dict, Set

from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect

from shared.order_status import utcnow

from .models import OrderDB

logger = logging.getLogger("orders-service.hub")


def order_update_message(order: OrderDB) -> Dict[str, Any]:
    return {
        "type": "order_update",
        "data": {
            "id": order.id,
            "status": order.status,
            "updated_at": (order.updated_at or order.created_at).isoformat(),
            "version": order.version,
            "total_amount": order.total_amount,
            "customer": order.customer_name,
        },
        "timestamp": utcnow().isoformat(),
    }


class OrderUpdateHub:
    """Fan-out of order updates to every connected WebSocket client."""

    def __init__(self):
        self.clients: Set[WebSocket] = set()
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self.clients.add(websocket)
        logger.info("WebSocket client connected", extra={"client_count": len(self.clients)})
        await websocket.send_json({"type": "connected", "data": {}, "timestamp": utcnow().isoformat()})

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self.clients.discard(websocket)
        logger.info("WebSocket client disconnected", extra={"client_count": len(self.clients)})

    async def broadcast(self, message: Dict[str, Any]) -> int:
        """Send ``message`` to all clients; returns how many received it."""
        async with self._lock:
            clients = list(self.clients)

        delivered = 0
        for websocket in clients:
            try:
                await websocket.send_json(message)
                delivered += 1
            except (WebSocketDisconnect, RuntimeError):
                await self.disconnect(websocket)
        return delivered

    async def publish_order(self, order: OrderDB) -> int:
        delivered = await self.broadcast(order_update_message(order))
        logger.info(
            "Broadcast order update",
            extra={"order_id": order.id, "status": order.status, "client_count": delivered},
        )
        return delivered

    async def listen(self, websocket: WebSocket) -> None:
        """Keep a client registered until it goes away; inbound frames are ignored."""
        await self.connect(websocket)
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            await self.disconnect(websocket)
