import random

import pytest

from services.storefront.cart import group_cart_by_tier
from services.storefront.factory import BRIEF_PLACEHOLDER, OrderFactory
from shared.order_status import INITIAL_STATUS
from shared.utils import ValidationException


def make_factory(seed=7, handling_fee=2500):
    return OrderFactory(handling_fee=handling_fee, rng=random.Random(seed), clock=lambda: 1700000000.0)


def test_pricing_invariant_holds_per_tier(cart):
    payloads = make_factory().build_payloads(cart)

    basic, premium = payloads["basic"], payloads["premium"]
    assert basic.subtotal == 150000 + 50000
    assert premium.subtotal == 175000
    for payload in payloads.values():
        assert payload.handling_fee == 2500
        assert 100 <= payload.unique_code <= 999
        assert payload.total_amount == payload.subtotal + payload.handling_fee + payload.unique_code
        assert payload.status is INITIAL_STATUS
        assert payload.customer_name == ""


def test_unique_code_stays_in_range():
    factory = OrderFactory(rng=random.Random(1))
    codes = {factory.unique_code() for _ in range(2000)}
    assert min(codes) >= 100
    assert max(codes) <= 999


def test_short_brief_gets_placeholder(cart):
    payload = make_factory().build_payloads(cart)["basic"]
    details = {b.product_id: b.brief_details for b in payload.briefs}
    assert details["kartu"] == BRIEF_PLACEHOLDER
    assert details["logo"] == "Logo minimalis untuk kedai kopi."


def test_missing_instance_ids_are_generated_unique(cart):
    items = [dict(cart[0], instanceId=None), dict(cart[0], instanceId=None), dict(cart[2], instanceId=None)]
    payload = make_factory().build_payload("basic", group_cart_by_tier(items)["basic"])

    ids = [b.instance_id for b in payload.briefs]
    assert ids == ["logo-1700000000000", "logo-1700000000000-1", "kartu-1700000000000"]


def test_brief_dimensions_and_default_unit(cart):
    payloads = make_factory().build_payloads(cart)
    poster = payloads["premium"].briefs[0]
    logo = payloads["basic"].briefs[0]
    assert (poster.width, poster.height, poster.unit) == (297, 420, "mm")
    assert logo.unit == "px"


def test_bad_asset_link_fails_whole_tier(cart):
    bad = dict(cart[0], googleDriveAssetLinks="not a link")
    with pytest.raises(ValidationException) as exc:
        make_factory().build_payloads([bad, cart[2]])
    assert exc.value.context["tier"] == "basic"


def test_payload_wire_shape(cart):
    wire = make_factory().build_payloads(cart)["premium"].to_wire()
    assert set(wire) >= {
        "tier", "briefs", "subtotal", "handlingFee", "uniqueCode", "totalAmount", "status",
        "customerName", "customerEmail",
    }
    assert wire["status"] == "Menunggu Pembayaran"
    assert wire["briefs"][0]["instanceId"] == "poster-1"
