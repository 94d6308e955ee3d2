import logging
import re
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorClient

from shared.utils import get_db_client, settings

from .models import OrderDB

logger = logging.getLogger("orders-service.store")


class OrderStore(ABC):
    """Persistence for orders.

    ``replace`` is a compare-and-swap on ``version``: it only writes when the
    stored document still carries ``expected_version``.
    """

    async def init(self) -> None:
        pass

    async def close(self) -> None:
        pass

    @abstractmethod
    async def ping(self) -> bool: ...

    @abstractmethod
    async def insert(self, order: OrderDB) -> OrderDB: ...

    @abstractmethod
    async def get(self, order_id: str) -> Optional[OrderDB]: ...

    @abstractmethod
    async def find_by_number(self, order_number: str) -> Optional[OrderDB]: ...

    @abstractmethod
    async def find_latest_by_email(self, email: str) -> Optional[OrderDB]: ...

    @abstractmethod
    async def list(self, limit: int = 100, offset: int = 0, status: Optional[str] = None) -> List[OrderDB]: ...

    @abstractmethod
    async def replace(self, order: OrderDB, expected_version: int) -> bool: ...

    @abstractmethod
    async def delete(self, order_id: str) -> bool: ...


class MongoOrderStore(OrderStore):
    """Orders in the ``orders`` collection; the client is opened on ``init``."""

    def __init__(
        self,
        url: str = settings.MONGO_URL,
        db_name: str = settings.MONGO_DB,
        client: Optional[AsyncIOMotorClient] = None,
    ):
        self.url = url
        self.db_name = db_name
        self.client = client
        self.collection = client[db_name].orders if client is not None else None

    async def init(self) -> None:
        if self.client is None:
            self.client = get_db_client(self.url)
            self.collection = self.client[self.db_name].orders
        await self.collection.create_index("order_number", unique=True)
        await self.collection.create_index("customer_email")

    async def close(self) -> None:
        if self.client is not None:
            self.client.close()

    async def ping(self) -> bool:
        if self.client is None:
            return False
        try:
            await self.client.admin.command("ping")
            return True
        except Exception:
            logger.exception("MongoDB ping failed")
            return False

    async def insert(self, order: OrderDB) -> OrderDB:
        await self.collection.insert_one(order.to_document())
        return order

    async def _find_one(self, query: dict, **kwargs) -> Optional[OrderDB]:
        doc = await self.collection.find_one(query, **kwargs)
        return OrderDB(**doc) if doc else None

    async def get(self, order_id: str) -> Optional[OrderDB]:
        return await self._find_one({"_id": order_id})

    async def find_by_number(self, order_number: str) -> Optional[OrderDB]:
        return await self._find_one({"order_number": order_number})

    async def find_latest_by_email(self, email: str) -> Optional[OrderDB]:
        query = {"customer_email": {"$regex": f"^{re.escape(email)}$", "$options": "i"}}
        return await self._find_one(query, sort=[("created_at", -1)])

    async def list(self, limit: int = 100, offset: int = 0, status: Optional[str] = None) -> List[OrderDB]:
        query = {"status": status} if status else {}
        cursor = self.collection.find(query).sort("created_at", -1).skip(offset).limit(limit)
        return [OrderDB(**doc) async for doc in cursor]

    async def replace(self, order: OrderDB, expected_version: int) -> bool:
        result = await self.collection.replace_one(
            {"_id": order.id, "version": expected_version},
            order.to_document(),
        )
        return result.modified_count == 1

    async def delete(self, order_id: str) -> bool:
        result = await self.collection.delete_one({"_id": order_id})
        return result.deleted_count == 1


class InMemoryOrderStore(OrderStore):
    """Dict-backed store for tests and local runs without MongoDB."""

    def __init__(self):
        self.orders: Dict[str, OrderDB] = {}

    async def ping(self) -> bool:
        return True

    async def insert(self, order: OrderDB) -> OrderDB:
        self.orders[order.id] = order.model_copy(deep=True)
        return order

    async def get(self, order_id: str) -> Optional[OrderDB]:
        order = self.orders.get(order_id)
        return order.model_copy(deep=True) if order else None

    async def find_by_number(self, order_number: str) -> Optional[OrderDB]:
        for order in self.orders.values():
            if order.order_number == order_number:
                return order.model_copy(deep=True)
        return None

    async def find_latest_by_email(self, email: str) -> Optional[OrderDB]:
        matches = [o for o in self.orders.values() if o.customer_email and o.customer_email.lower() == email.lower()]
        if not matches:
            return None
        return max(matches, key=lambda o: o.created_at).model_copy(deep=True)

    async def list(self, limit: int = 100, offset: int = 0, status: Optional[str] = None) -> List[OrderDB]:
        orders = [o for o in self.orders.values() if not status or o.status == status]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return [o.model_copy(deep=True) for o in orders[offset:offset + limit]]

    async def replace(self, order: OrderDB, expected_version: int) -> bool:
        current = self.orders.get(order.id)
        if current is None or current.version != expected_version:
            return False
        self.orders[order.id] = order.model_copy(deep=True)
        return True

    async def delete(self, order_id: str) -> bool:
        return self.orders.pop(order_id, None) is not None
