"""Tests for the cart store."""
import json
from decimal import Decimal

import pytest

from schemas import CartItem
from services.cart_service import CartStore
from conftest import make_product

KEY = "moon-night-cart:test-client"


def test_add_new_product_snapshots_price(cart):
    item = cart.add(make_product("p1", price="49.99"), 2)

    assert item.unit_price == Decimal("49.99")
    assert item.quantity == 2
    assert cart.count() == 2


def test_add_existing_product_increments_quantity(cart):
    product = make_product("p1")
    cart.add(product)
    cart.add(product, 3)

    assert len(cart.items) == 1
    assert cart.items[0].quantity == 4


def test_add_rejects_quantity_below_one(cart):
    with pytest.raises(ValueError):
        cart.add(make_product("p1"), 0)
    assert cart.count() == 0


def test_price_change_does_not_touch_existing_line(cart):
    cart.add(make_product("p1", price="10"))
    cart.add(make_product("p1", price="99"))

    assert cart.items[0].unit_price == Decimal("10")
    assert cart.total() == Decimal("20")


def test_remove_absent_product_is_noop(cart):
    cart.add(make_product("p1"))
    cart.remove("missing")

    assert cart.count() == 1


def test_set_quantity_zero_removes(cart):
    cart.add(make_product("p1"))
    assert cart.set_quantity("p1", 0) is None
    assert cart.items == []


def test_set_quantity_unknown_product(cart):
    with pytest.raises(LookupError):
        cart.set_quantity("missing", 2)


def test_total_keeps_full_precision(cart):
    cart.add(make_product("p1", price="0.1"), 3)
    cart.add(make_product("p2", price="0.005"))

    assert cart.total() == Decimal("0.305")
    assert cart.display_total() == Decimal("0.31")


def test_set_all_merges_duplicates(cart):
    cart.set_all([
        CartItem(product_id="p1", name="A", unit_price=Decimal("5"), quantity=1),
        CartItem(product_id="p1", name="A", unit_price=Decimal("5"), quantity=2),
    ])

    assert len(cart.items) == 1
    assert cart.count() == 3


def test_snapshot_lines(cart):
    cart.add(make_product("p1"), 2)
    cart.add(make_product("p2"))

    assert [line.model_dump() for line in cart.snapshot()] == [
        {"id": "p1", "quantity": 2},
        {"id": "p2", "quantity": 1},
    ]


def test_cart_survives_restart(storage, cart):
    cart.add(make_product("p1", price="12.5"), 2)
    cart.add(make_product("p2", price="3"))

    restored = CartStore.hydrate(storage, KEY)

    assert [i.model_dump() for i in restored.items] == [i.model_dump() for i in cart.items]
    assert restored.total() == Decimal("28")


def test_malformed_entry_hydrates_empty(storage):
    storage.data[KEY] = "{not json"
    assert CartStore.hydrate(storage, KEY).items == []

    storage.data[KEY] = json.dumps({"product_id": "p1"})
    assert CartStore.hydrate(storage, KEY).items == []


def test_storage_failure_does_not_break_cart(storage, cart):
    storage.failing = True

    cart.add(make_product("p1"))

    assert cart.count() == 1
    assert CartStore.hydrate(storage, KEY).items == []


def test_clear_persists_empty_cart(storage, cart):
    cart.add(make_product("p1"))
    cart.clear()

    assert json.loads(storage.data[KEY]) == []
