"""Multi-order checkout and batch operations over the order store.

A checkout validates every tier payload before the first network call, then
persists tiers one at a time in first-seen order. When a later tier fails,
the configured failure policy decides what happens to the orders that were
already created in the same batch.
"""
import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Sequence, Union

from shared.order_status import OrderStatus
from shared.schemas import CustomerInfo
from shared.utils import AppException, InternalServerException, NotFoundException, ValidationException, settings

from .cart import CartInput
from .client import OrderRepositoryClient
from .factory import OrderFactory

logger = logging.getLogger("storefront.checkout")


class CheckoutFailurePolicy(str, Enum):
    COMPENSATE = "compensate"
    BEST_EFFORT = "best_effort"


def _resolve_policy(policy: Union[str, CheckoutFailurePolicy, None]) -> CheckoutFailurePolicy:
    value = policy if policy is not None else settings.CHECKOUT_FAILURE_POLICY
    try:
        return CheckoutFailurePolicy(value)
    except ValueError:
        raise ValidationException(
            "Kebijakan kegagalan checkout tidak dikenal.",
            context={"policy": str(value), "allowed": [p.value for p in CheckoutFailurePolicy]},
        )


def _as_app_exception(exc: BaseException) -> AppException:
    if isinstance(exc, AppException):
        return exc
    return InternalServerException(context={"originalError": str(exc)})


async def _settle(ids: Sequence[str], operation: Callable[[str], Awaitable[Any]]) -> List[Any]:
    """Run ``operation`` for every id concurrently and wait for all to settle.

    Raises the first failure in input order once everything has finished.
    """
    results = await asyncio.gather(*(operation(order_id) for order_id in ids), return_exceptions=True)
    for order_id, result in zip(ids, results):
        if isinstance(result, BaseException):
            logger.error(
                "Batch operation failed",
                extra={"order_id": order_id, "order_ids": list(ids)},
            )
            raise _as_app_exception(result)
    return results


async def create_multiple_orders_from_cart(
    cart: Sequence[CartInput],
    client: OrderRepositoryClient,
    factory: Optional[OrderFactory] = None,
    policy: Union[str, CheckoutFailurePolicy, None] = None,
) -> List[str]:
    """Create one order per tier in ``cart``; returns ids in first-seen tier order."""
    policy = _resolve_policy(policy)
    payloads = (factory or OrderFactory()).build_payloads(cart)

    created: List[str] = []
    for tier, payload in payloads.items():
        try:
            order = await client.create_order(payload)
        except Exception as e:
            failure = _as_app_exception(e)
            failure.context.setdefault("tier", tier)
            failure.context["created_order_ids"] = list(created)
            logger.error(
                "Checkout failed while creating tier order",
                extra={"tier": tier, "order_ids": list(created), "error_code": failure.error_code},
            )
            if policy is CheckoutFailurePolicy.COMPENSATE and created:
                failure.context["compensated_order_ids"] = await _compensate(client, created)
            if failure is e:
                raise
            raise failure from e
        created.append(order.id)

    logger.info("Checkout completed", extra={"order_ids": created})
    return created


async def _compensate(client: OrderRepositoryClient, created: List[str]) -> List[str]:
    results = await asyncio.gather(*(client.delete_order(i) for i in created), return_exceptions=True)
    removed = []
    for order_id, result in zip(created, results):
        if isinstance(result, BaseException):
            logger.error("Could not roll back checkout order", extra={"order_id": order_id})
        else:
            removed.append(order_id)
    return removed


async def cancel_orders(order_ids: Sequence[str], client: OrderRepositoryClient) -> None:
    """Move every order to ``Dibatalkan``; the records are kept."""
    await _settle(order_ids, lambda i: client.update_order_status(i, OrderStatus.DIBATALKAN))


async def delete_orders(order_ids: Sequence[str], client: OrderRepositoryClient) -> None:
    await _settle(order_ids, client.delete_order)


async def confirm_payment(order_ids: Sequence[str], client: OrderRepositoryClient) -> int:
    """Mark orders as awaiting payment verification and return the amount due."""
    if not order_ids:
        raise ValidationException("Daftar ID Pesanan tidak boleh kosong.")

    orders = await _settle(order_ids, client.get_order_by_id)
    for order_id, order in zip(order_ids, orders):
        if order is None:
            raise NotFoundException(
                f"Pesanan dengan ID {order_id} tidak ditemukan saat konfirmasi.",
                context={"order_id": order_id},
            )

    await _settle(
        order_ids,
        lambda i: client.update_order_status(i, OrderStatus.PEMBAYARAN_DIVERIFIKASI),
    )
    total = sum(order.total_amount for order in orders)
    logger.info("Payment confirmation submitted", extra={"order_ids": list(order_ids)})
    return total


async def update_customer_info(
    order_id: str,
    customer: Union[CustomerInfo, Mapping[str, Any]],
    client: OrderRepositoryClient,
) -> None:
    await client.update_customer_info(order_id, customer)
