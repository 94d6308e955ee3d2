from .cart import CartStore, group_cart_by_tier
from .checkout import (
    CheckoutFailurePolicy,
    cancel_orders,
    confirm_payment,
    create_multiple_orders_from_cart,
    delete_orders,
    update_customer_info,
)
from .client import OrderRepositoryClient
from .factory import OrderFactory
from .models import Order, OrderDetails, OrderUpdate
from .tracking import ConnectionState, OrderTracker, PushChannel

__all__ = [
    "CartStore",
    "CheckoutFailurePolicy",
    "ConnectionState",
    "Order",
    "OrderDetails",
    "OrderFactory",
    "OrderRepositoryClient",
    "OrderTracker",
    "OrderUpdate",
    "PushChannel",
    "cancel_orders",
    "confirm_payment",
    "create_multiple_orders_from_cart",
    "delete_orders",
    "group_cart_by_tier",
    "update_customer_info",
]
