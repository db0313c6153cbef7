"""Tests for wallet deposits and point redemptions."""
from decimal import Decimal

import pytest

from services.gateway_service import GatewayError, GatewayUnavailable
from services.points_service import PointsService
from services.wallet_service import WalletService, quote_deposit
from conftest import sign_in


def test_deposit_quote():
    quote = quote_deposit(Decimal("100"))

    assert quote.fee == Decimal("5.00")
    assert quote.total == Decimal("105.00")
    assert quote.points == 1000


def test_deposit_quote_rounds_fee_to_cents():
    quote = quote_deposit(Decimal("33"))

    # 3.3 USD * 2% + 0.3 = 0.366 USD = 3.66 DH
    assert quote.fee == Decimal("3.66")
    assert quote.points == 330


async def test_deposit_overwrites_holder_and_records_history(identity, gateway):
    sign_in(identity, gateway, balance="20", points=5)

    result = await WalletService(gateway).deposit(identity, Decimal("100"), "CAPTURE-1")

    assert result.history_recorded
    assert identity.profile.wallet_balance == Decimal("120")
    assert identity.profile.discord_points == 1005
    assert identity.processing is False
    (entry,) = gateway.rows("wallet_history")
    assert entry["type"] == "deposit"
    assert "CAPTURE-1" in entry["description"]
    operations = [c[0] + ":" + c[1] for c in gateway.calls if c[0] != "select"]
    assert operations == ["update:profiles", "insert:wallet_history"]


async def test_deposit_holder_takes_stored_row(identity, gateway):
    sign_in(identity, gateway, balance="20")
    # another device renamed the user; the full row wins
    gateway.rows("profiles")[0]["username"] = "renamed"

    await WalletService(gateway).deposit(identity, Decimal("10"))

    assert identity.profile.username == "renamed"


async def test_deposit_history_failure_keeps_balance(identity, gateway):
    sign_in(identity, gateway, balance="20")
    gateway.failures[("insert", "wallet_history")] = GatewayUnavailable("timeout")

    result = await WalletService(gateway).deposit(identity, Decimal("50"))

    assert result.history_recorded is False
    assert result.message == "Funds added, but the wallet history entry could not be recorded."
    assert identity.profile.wallet_balance == Decimal("70")
    assert identity.processing is False


async def test_deposit_update_failure_raises_and_clears_flag(identity, gateway):
    sign_in(identity, gateway, balance="20")
    gateway.failures[("update", "profiles")] = GatewayError("permission denied", 403)

    with pytest.raises(GatewayError):
        await WalletService(gateway).deposit(identity, Decimal("50"))

    assert identity.profile.wallet_balance == Decimal("20")
    assert identity.processing is False
    assert gateway.rows("wallet_history") == []


async def test_deposit_rejects_concurrent_operation(identity, gateway):
    sign_in(identity, gateway, balance="20")
    identity.processing = True

    with pytest.raises(ValueError):
        await WalletService(gateway).deposit(identity, Decimal("50"))


async def test_deposit_requires_login(identity, gateway):
    with pytest.raises(PermissionError):
        await WalletService(gateway).deposit(identity, Decimal("50"))


def seed_reward(gateway, cost=100):
    gateway.seed("point_shop_items", {"id": "gift", "name": "Nitro", "cost_points": cost})


async def test_redeem_needs_enough_points(identity, gateway):
    sign_in(identity, gateway, points=50)
    seed_reward(gateway, 100)

    with pytest.raises(ValueError, match="You need 50 more points!"):
        await PointsService(gateway).redeem(identity, "gift")

    assert gateway.calls_to("update") == []


async def test_redeem_debits_points_and_audits(identity, gateway):
    sign_in(identity, gateway, points=150)
    seed_reward(gateway, 100)

    result = await PointsService(gateway).redeem(identity, "gift")

    assert result.history_recorded
    assert identity.profile.discord_points == 50
    (audit,) = gateway.rows("audit_logs")
    assert audit["action"] == "redeem_points"
    assert audit["target_id"] == "gift"


async def test_redeem_audit_failure_is_partial(identity, gateway):
    sign_in(identity, gateway, points=150)
    seed_reward(gateway, 100)
    gateway.failures[("insert", "audit_logs")] = GatewayUnavailable("timeout")

    result = await PointsService(gateway).redeem(identity, "gift")

    assert result.history_recorded is False
    assert identity.profile.discord_points == 50
    assert identity.processing is False


async def test_redeem_unknown_item(identity, gateway):
    sign_in(identity, gateway, points=150)
    with pytest.raises(LookupError):
        await PointsService(gateway).redeem(identity, "missing")


async def test_redeem_requires_login(identity, gateway):
    seed_reward(gateway)
    with pytest.raises(PermissionError):
        await PointsService(gateway).redeem(identity, "gift")


async def test_items_listed_by_cost(gateway):
    gateway.seed(
        "point_shop_items",
        {"id": "b", "name": "B", "cost_points": 500},
        {"id": "a", "name": "A", "cost_points": 100},
    )

    items = await PointsService(gateway).list_items()

    assert [i.id for i in items] == ["a", "b"]
