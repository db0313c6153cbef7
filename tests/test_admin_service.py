"""Tests for admin operations."""
import pytest

from schemas import ProductCreate, ProductUpdate, TournamentCreate, TournamentStatus
from services.admin_service import AdminService
from services.gateway_service import GatewayUnavailable
from conftest import make_profile

ADMIN = make_profile("admin-1", role="admin")


def seed_orders(gateway):
    gateway.seed("products", {"id": "p1", "name": "Valorant Account", "price_dh": "100", "category": "Accounts"})
    gateway.seed(
        "orders",
        {"id": "ord-a", "user_id": "u1", "product_id": "p1", "status": "pending", "created_at": "2024-01-01T00:00:00Z"},
        {"id": "ord-b", "user_id": "u2", "product_id": "p1", "status": "completed", "created_at": "2024-01-02T00:00:00Z"},
    )


def test_non_admin_rejected(gateway):
    with pytest.raises(PermissionError):
        AdminService(gateway, make_profile("u1"))


async def test_list_orders_with_search(gateway):
    seed_orders(gateway)
    admin = AdminService(gateway, ADMIN)

    everything = await admin.list_orders()
    by_user = await admin.list_orders("U2")
    by_product = await admin.list_orders("valorant")

    assert [o.id for o in everything] == ["ord-b", "ord-a"]
    assert everything[0].product.name == "Valorant Account"
    assert [o.id for o in by_user] == ["ord-b"]
    assert len(by_product) == 2


async def test_update_order_status_overwrites_and_audits(gateway):
    seed_orders(gateway)

    order = await AdminService(gateway, ADMIN).update_order_status("ord-a", "refunded")

    assert order.status.value == "refunded"
    (audit,) = gateway.rows("audit_logs")
    assert audit["actor_id"] == "admin-1"
    assert audit["details"] == {"status": "refunded"}


async def test_update_order_status_rejects_unknown_status(gateway):
    seed_orders(gateway)
    with pytest.raises(ValueError):
        await AdminService(gateway, ADMIN).update_order_status("ord-a", "shipped")
    assert gateway.calls_to("update") == []


async def test_update_missing_order(gateway):
    with pytest.raises(LookupError):
        await AdminService(gateway, ADMIN).update_order_status("missing", "completed")


async def test_audit_failure_keeps_mutation(gateway):
    seed_orders(gateway)
    gateway.failures[("insert", "audit_logs")] = GatewayUnavailable("timeout")

    order = await AdminService(gateway, ADMIN).update_order_status("ord-a", "cancelled")

    assert order.status.value == "cancelled"
    assert gateway.rows("orders")[0]["status"] == "cancelled"


async def test_product_lifecycle(gateway):
    admin = AdminService(gateway, ADMIN)

    product = await admin.create_product(ProductCreate(name="Key", price_dh="15", category="Keys"))
    updated = await admin.update_product(product.id, ProductUpdate(stock=9))
    await admin.delete_product(product.id)

    assert updated.stock == 9
    assert gateway.rows("products") == []
    assert [a["action"] for a in gateway.rows("audit_logs")] == [
        "create_product", "update_product", "delete_product"
    ]


async def test_empty_product_update_rejected(gateway):
    with pytest.raises(ValueError):
        await AdminService(gateway, ADMIN).update_product("p1", ProductUpdate())


async def test_tournament_management(gateway):
    admin = AdminService(gateway, ADMIN)

    created = await admin.create_tournament(TournamentCreate(title="Moon Cup", date="2024-07-01"))
    finished = await admin.update_tournament_status(created.id, TournamentStatus.FINISHED)

    assert created.status is TournamentStatus.UPCOMING
    assert finished.status is TournamentStatus.FINISHED
