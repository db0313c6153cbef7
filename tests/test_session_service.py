"""Tests for the identity holder and auth flows."""
import json
from decimal import Decimal

import pytest

from services.gateway_service import GatewayError, GatewayUnavailable
from services.session_service import SessionHolder, SessionService
from conftest import make_profile

KEY = "moon-night-auth-session:test-client"


def register_user(gateway, balance="40"):
    gateway.add_user("u1", "neo@example.com", "secret", "token-u1")
    gateway.seed("profiles", make_profile("u1", balance=balance).model_dump(mode="json"))


async def test_sign_in_loads_profile_and_persists_tokens(identity, gateway, storage):
    register_user(gateway)

    profile = await SessionService(gateway).sign_in(identity, "neo@example.com", "secret")

    assert profile.wallet_balance == Decimal("40")
    assert identity.is_authenticated
    assert json.loads(storage.data[KEY])["access_token"] == "token-u1"


async def test_sign_in_rejected(identity, gateway):
    register_user(gateway)

    with pytest.raises(GatewayError):
        await SessionService(gateway).sign_in(identity, "neo@example.com", "wrong")
    assert not identity.is_authenticated


async def test_missing_profile_row_gives_provisional_profile(identity, gateway):
    gateway.add_user("u9", "trinity@example.com", "secret", "token-u9")

    profile = await SessionService(gateway).sign_in(identity, "trinity@example.com", "secret")

    assert profile.id == "u9"
    assert profile.username == "trinity"
    assert profile.wallet_balance == Decimal("0")


async def test_sign_up_pending_verification(identity, gateway):
    result = await SessionService(gateway).sign_up(identity, "new@example.com", "secret", "newbie")

    assert result is None
    assert not identity.is_authenticated


async def test_sign_out_clears_everything(identity, gateway, storage):
    register_user(gateway)
    service = SessionService(gateway)
    await service.sign_in(identity, "neo@example.com", "secret")

    await service.sign_out(identity)

    assert identity.profile is None
    assert KEY not in storage.data


async def test_restore_stored_session(gateway, storage):
    register_user(gateway)
    storage.data[KEY] = json.dumps({"access_token": "token-u1", "refresh_token": "r"})
    holder = SessionHolder(storage, KEY)

    assert await SessionService(gateway).restore(holder) is True
    assert holder.user_id == "u1"


async def test_restore_forgets_expired_session(gateway, storage):
    storage.data[KEY] = json.dumps({"access_token": "expired"})
    holder = SessionHolder(storage, KEY)

    assert await SessionService(gateway).restore(holder) is False
    assert KEY not in storage.data


async def test_restore_keeps_session_when_gateway_down(gateway, storage):
    storage.data[KEY] = json.dumps({"access_token": "token-u1"})
    gateway.failures[("auth", "get_user")] = GatewayUnavailable("down")
    holder = SessionHolder(storage, KEY)

    assert await SessionService(gateway).restore(holder) is False
    assert KEY in storage.data


async def test_refresh_profile_overwrites(identity, gateway):
    register_user(gateway)
    service = SessionService(gateway)
    await service.sign_in(identity, "neo@example.com", "secret")
    gateway.rows("profiles")[0]["wallet_balance"] = "99"

    profile = await service.refresh_profile(identity)

    assert profile.wallet_balance == Decimal("99")
    assert identity.profile.wallet_balance == Decimal("99")


def test_checkout_patch_is_additive(identity):
    identity.start({"access_token": "t"}, make_profile("u1", balance="200", points=7))

    identity.apply_checkout(Decimal("150"), 500)

    assert identity.profile.wallet_balance == Decimal("150")
    assert identity.profile.discord_points == 507
    assert identity.profile.email == "u1@example.com"
