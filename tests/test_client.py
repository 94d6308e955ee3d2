import json

import httpx
import pytest

from services.storefront.client import OrderRepositoryClient
from shared.order_status import StatusStateMachine
from shared.utils import (
    ConcurrentUpdateException,
    IllegalTransitionException,
    InternalServerException,
    NotFoundException,
    ValidationException,
)

ORDER = {
    "id": "abc",
    "tier": "basic",
    "briefs": [],
    "status": "Menunggu Pembayaran",
    "createdAt": "2024-05-01T10:00:00Z",
    "subtotal": 100000,
    "handlingFee": 2500,
    "uniqueCode": 111,
    "totalAmount": 102611,
}


def mock_client(handler, strict=True):
    return OrderRepositoryClient(
        base_url="http://orders.test",
        transport=httpx.MockTransport(handler),
        state_machine=StatusStateMachine(strict=strict),
    )


@pytest.mark.asyncio
async def test_missing_order_is_none():
    def handler(request):
        return httpx.Response(404, json={"success": False, "error": "Pesanan tidak ditemukan."})

    async with mock_client(handler) as client:
        assert await client.get_order_by_id("nope") is None


@pytest.mark.asyncio
async def test_empty_id_is_validation_error():
    async with mock_client(lambda r: httpx.Response(200)) as client:
        with pytest.raises(ValidationException):
            await client.get_order_by_id("  ")


@pytest.mark.asyncio
async def test_update_status_of_unknown_order_is_not_found():
    calls = []

    def handler(request):
        calls.append((request.method, request.url.path))
        return httpx.Response(404, json={"success": False, "error": "Pesanan tidak ditemukan."})

    async with mock_client(handler) as client:
        with pytest.raises(NotFoundException) as exc:
            await client.update_order_status("nonexistent-id", "Pesanan Selesai")

    assert "nonexistent-id" in exc.value.message
    assert calls == [("GET", "/api/orders/nonexistent-id")]


@pytest.mark.asyncio
async def test_lenient_client_relies_on_server_not_found():
    def handler(request):
        assert request.method == "PUT"
        return httpx.Response(404, json={"success": False, "error": "not here"})

    async with mock_client(handler, strict=False) as client:
        with pytest.raises(NotFoundException) as exc:
            await client.update_order_status("nonexistent-id", "Pesanan Selesai")
    assert exc.value.message == "Pesanan dengan ID nonexistent-id tidak ditemukan."


@pytest.mark.asyncio
async def test_illegal_transition_is_caught_before_put():
    methods = []

    def handler(request):
        methods.append(request.method)
        return httpx.Response(200, json={"success": True, "data": ORDER})

    async with mock_client(handler) as client:
        with pytest.raises(IllegalTransitionException):
            await client.update_order_status("abc", "Pesanan Selesai")
    assert methods == ["GET"]


@pytest.mark.asyncio
async def test_invalid_status_never_hits_network():
    def handler(request):
        raise AssertionError("no request expected")

    async with mock_client(handler) as client:
        with pytest.raises(ValidationException):
            await client.update_order_status("abc", "Dikirim")


@pytest.mark.asyncio
async def test_status_update_sends_enum_value():
    sent = {}

    def handler(request):
        if request.method == "PUT":
            sent.update(json.loads(request.content))
        return httpx.Response(200, json={"success": True, "data": ORDER})

    async with mock_client(handler) as client:
        await client.update_order_status("abc", "Pembayaran Sedang Diverifikasi", notes="transfer BCA")
    assert sent == {"status": "Pembayaran Sedang Diverifikasi", "notes": "transfer BCA"}


@pytest.mark.asyncio
async def test_error_code_in_body_decides_exception_kind():
    def handler(request):
        return httpx.Response(500, json={"success": False, "error": "nope", "error_code": "E_ILLEGAL_TRANSITION"})

    async with mock_client(handler, strict=False) as client:
        with pytest.raises(IllegalTransitionException):
            await client.update_order_status("abc", "Dibatalkan")


@pytest.mark.asyncio
async def test_lost_write_race_is_retryable_not_illegal():
    def handler(request):
        return httpx.Response(409, json={
            "success": False,
            "error": "Pesanan sedang diubah oleh proses lain. Silakan coba lagi.",
            "error_code": "E_CONCURRENT_UPDATE",
        })

    async with mock_client(handler, strict=False) as client:
        with pytest.raises(ConcurrentUpdateException) as exc:
            await client.update_order_status("abc", "Dibatalkan")
    assert exc.value.error_code == "E_CONCURRENT_UPDATE"
    assert not isinstance(exc.value, IllegalTransitionException)


@pytest.mark.asyncio
async def test_success_false_envelope_is_an_error():
    def handler(request):
        return httpx.Response(200, json={"success": False, "error": "Data tidak valid"})

    async with mock_client(handler) as client:
        with pytest.raises(ValidationException):
            await client.get_all_orders()


@pytest.mark.asyncio
async def test_transport_failure_is_internal_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with mock_client(handler) as client:
        with pytest.raises(InternalServerException) as exc:
            await client.get_all_orders()
    assert exc.value.status_code == 500


@pytest.mark.asyncio
async def test_undecodable_order_is_internal_error():
    def handler(request):
        return httpx.Response(200, content=b"<html>oops</html>")

    async with mock_client(handler) as client:
        with pytest.raises(InternalServerException):
            await client.get_order_by_id("abc")


@pytest.mark.asyncio
async def test_customer_info_is_validated_client_side():
    def handler(request):
        raise AssertionError("no request expected")

    async with mock_client(handler) as client:
        with pytest.raises(ValidationException) as exc:
            await client.update_customer_info("abc", {"name": "Bu", "phone": "0812", "telegram": "@b"})
    assert len(exc.value.context["errors"]) == 3


@pytest.mark.asyncio
async def test_track_order_requires_query():
    async with mock_client(lambda r: httpx.Response(200)) as client:
        with pytest.raises(ValidationException) as exc:
            await client.track_order("")
    assert exc.value.message == "Masukkan nomor pesanan atau email"
