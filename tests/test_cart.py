import json

import pytest

from services.storefront.cart import CartSnapshot, CartStore, group_cart_by_tier
from shared.utils import ValidationException


def test_groups_partition_cart_in_first_seen_order(cart):
    groups = group_cart_by_tier(cart)

    assert list(groups) == ["basic", "premium"]
    assert [i.id for i in groups["basic"]] == ["logo", "kartu"]
    assert sum(len(items) for items in groups.values()) == len(cart)
    for tier, items in groups.items():
        assert all(item.tier == tier for item in items)


def test_empty_cart_is_rejected():
    with pytest.raises(ValidationException) as exc:
        group_cart_by_tier([])
    assert "Keranjang tidak boleh kosong" in exc.value.message


def test_missing_fields_are_reported_together(cart):
    broken = dict(cart[1], name="", tier=None)
    with pytest.raises(ValidationException) as exc:
        group_cart_by_tier([cart[0], broken])

    assert exc.value.context["index"] == 1
    assert exc.value.context["item_id"] == "poster"
    assert exc.value.context["missing_fields"] == ["name", "tier"]
    assert "poster" in exc.value.message


def test_flat_dimensions_are_lifted(cart):
    poster = group_cart_by_tier([cart[1]])["premium"][0]
    assert poster.dimensions.width == 297
    assert poster.dimensions.unit == "mm"
    assert poster.effective_price == 175000


def test_store_round_trip_and_version(cart):
    storage = {}
    store = CartStore(storage)

    store.add(cart[0])
    snapshot = store.add(cart[1])

    assert snapshot.version == 2
    assert [i.id for i in store.load()] == ["logo", "poster"]
    assert json.loads(storage["cart"])[0]["instanceId"] == "logo-1"


def test_emptying_cart_removes_key(cart):
    storage = {}
    store = CartStore(storage)
    store.add(cart[0])

    store.remove("logo-1")

    assert "cart" not in storage
    assert store.load() == []
    assert store.version == 2


def test_subscribers_see_every_write(cart):
    store = CartStore({})
    seen = []
    unsubscribe = store.subscribe(seen.append)

    store.add(cart[0])
    store.clear()
    unsubscribe()
    store.add(cart[1])

    assert [s.version for s in seen] == [1, 2]
    assert seen[-1].items == []


def test_remote_snapshot_applies_only_when_newer(cart):
    storage = {}
    store = CartStore(storage)
    store.add(cart[0])
    store.add(cart[1])

    assert not store.apply_remote(CartSnapshot(version=2, items=[]))
    assert len(store.load()) == 2

    assert store.apply_remote(CartSnapshot(version=3, items=[]))
    assert "cart" not in storage
    assert store.version == 3


def test_unreadable_storage_is_discarded():
    storage = {"cart": "{not json"}
    store = CartStore(storage)
    assert store.load() == []
    assert "cart" not in storage
