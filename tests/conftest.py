"""Shared fixtures: in-memory gateway, storage and realtime doubles."""
import asyncio
import itertools
import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

os.environ.setdefault("OTEL_ENABLED", "false")
os.environ.setdefault("PROFILING_ENABLED", "false")

import pytest
import redis

from schemas import Product, UserProfile
from services.cart_service import CartStore
from services.gateway_service import GatewayError
from services.session_service import SessionHolder


class MemoryStorage:
    """Dict-backed stand-in for the sync Redis client."""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.failing = False

    def _check(self):
        if self.failing:
            raise redis.ConnectionError("storage offline")

    def get(self, key):
        self._check()
        return self.data.get(key)

    def set(self, key, value):
        self._check()
        self.data[key] = value
        return True

    def delete(self, key):
        self._check()
        return 1 if self.data.pop(key, None) is not None else 0


class FakeGateway:
    """
    In-memory gateway with PostgREST-like semantics.

    ``failures`` maps ``(operation, table)`` to an exception raised on the
    next matching call; ``hold`` (an asyncio.Event) pauses every call until set.
    """

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.calls: List[tuple] = []
        self.failures: Dict[tuple, Exception] = {}
        self.hold: Optional[asyncio.Event] = None
        self.rpc_handler: Optional[Callable[[str, Dict[str, Any]], Any]] = None
        self.users: Dict[str, Dict[str, Any]] = {}
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.access_token: Optional[str] = None
        self._ids = itertools.count(1)
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    # --- helpers for tests ---

    def seed(self, table: str, *rows: Dict[str, Any]) -> None:
        self.tables.setdefault(table, []).extend(dict(row) for row in rows)

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables.get(table, [])

    def next_timestamp(self) -> str:
        self._clock += timedelta(seconds=1)
        return self._clock.isoformat()

    def add_user(self, user_id: str, email: str, password: str, token: str) -> None:
        self.users[email] = {"id": user_id, "email": email, "password": password}
        self.sessions[token] = {"id": user_id, "email": email, "user_metadata": {}}

    def calls_to(self, operation: str, table: Optional[str] = None) -> List[tuple]:
        return [c for c in self.calls if c[0] == operation and (table is None or c[1] == table)]

    async def _enter(self, operation: str, table: str, **details) -> None:
        self.calls.append((operation, table, details))
        if self.hold is not None:
            await self.hold.wait()
        else:
            await asyncio.sleep(0)
        failure = self.failures.pop((operation, table), None)
        if failure is not None:
            raise failure

    @staticmethod
    def _matches(row: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
        return all(str(row.get(column)) == str(value) for column, value in (filters or {}).items())

    # --- gateway surface ---

    def bind(self, access_token):
        self.access_token = access_token
        return self

    async def select(self, table, filters=None, columns="*", order=None, ascending=True, limit=None, offset=None):
        await self._enter("select", table, filters=filters, order=order, limit=limit, offset=offset)
        rows = [dict(r) for r in self.rows(table) if self._matches(r, filters)]
        if order:
            rows.sort(key=lambda r: (r.get(order) is None, r.get(order)), reverse=not ascending)
        if offset:
            rows = rows[offset:]
        if limit is not None:
            rows = rows[:limit]
        if "product:products" in columns:
            products = {p["id"]: p for p in self.rows("products")}
            for row in rows:
                row["product"] = products.get(row.get("product_id"))
        return rows

    async def select_one(self, table, filters, columns="*"):
        rows = await self.select(table, filters, columns=columns, limit=1)
        return rows[0] if rows else None

    async def insert(self, table, row):
        await self._enter("insert", table, row=row)
        stored = dict(row)
        stored.setdefault("id", f"{table}-{next(self._ids)}")
        stored.setdefault("created_at", self.next_timestamp())
        self.tables.setdefault(table, []).append(stored)
        return dict(stored)

    async def update(self, table, values, filters):
        await self._enter("update", table, values=values, filters=filters)
        updated = []
        for row in self.rows(table):
            if self._matches(row, filters):
                row.update(values)
                updated.append(dict(row))
        return updated

    async def delete(self, table, filters):
        await self._enter("delete", table, filters=filters)
        self.tables[table] = [r for r in self.rows(table) if not self._matches(r, filters)]

    async def rpc(self, name, params):
        await self._enter("rpc", name, params=params)
        result = self.rpc_handler(name, params)
        if asyncio.iscoroutine(result):
            result = await result
        return result

    async def sign_in_with_password(self, email, password):
        await self._enter("auth", "sign_in", email=email)
        user = self.users.get(email)
        if user is None or user["password"] != password:
            raise GatewayError("Invalid login credentials", 400)
        token = next(t for t, u in self.sessions.items() if u["id"] == user["id"])
        return {"access_token": token, "refresh_token": f"refresh-{token}", "user": self.sessions[token]}

    async def sign_up(self, email, password, metadata):
        await self._enter("auth", "sign_up", email=email)
        return {"user": {"id": "new-user", "email": email, "user_metadata": metadata}}

    async def sign_out(self):
        await self._enter("auth", "sign_out")

    async def get_user(self):
        await self._enter("auth", "get_user")
        user = self.sessions.get(self.access_token)
        if user is None:
            raise GatewayError("invalid JWT", 401)
        return user

    async def check_connection(self):
        return {"success": True, "message": "Gateway connection established and stable."}


class FakeSubscription:
    def __init__(self, realtime, key):
        self.realtime = realtime
        self.key = key
        self.active = True

    async def unsubscribe(self):
        self.active = False
        self.realtime.subscribers.pop(self.key, None)


class FakeRealtime:
    """Realtime double; ``deliver_on_publish`` echoes publishes to subscribers."""

    def __init__(self, deliver_on_publish: bool = False):
        self.subscribers: Dict[str, Callable] = {}
        self.lost_handlers: Dict[str, Optional[Callable]] = {}
        self.published: List[Dict[str, Any]] = []
        self.deliver_on_publish = deliver_on_publish

    async def subscribe_inserts(self, table, column, value, callback, on_lost=None):
        key = f"{table}:{column}={value}"
        self.subscribers[key] = callback
        self.lost_handlers[key] = on_lost
        return FakeSubscription(self, key)

    def emit(self, table, column, record):
        callback = self.subscribers.get(f"{table}:{column}={record[column]}")
        if callback is not None:
            callback(record)

    async def publish_insert(self, table, column, record):
        self.published.append(record)
        if self.deliver_on_publish:
            self.emit(table, column, record)
        return len(self.subscribers)


def make_product(product_id="p1", price="10", category="Accounts", name=None, description="", stock=5):
    return Product(
        id=product_id,
        name=name or f"Product {product_id}",
        description=description,
        price_dh=Decimal(price),
        category=category,
        stock=stock
    )


def make_profile(user_id="u1", balance="0", points=0, role="user"):
    return UserProfile(
        id=user_id,
        email=f"{user_id}@example.com",
        username=user_id,
        wallet_balance=Decimal(balance),
        discord_points=points,
        role=role
    )


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def realtime():
    return FakeRealtime()


@pytest.fixture
def cart(storage):
    return CartStore.hydrate(storage, "moon-night-cart:test-client")


@pytest.fixture
def identity(storage):
    return SessionHolder(storage, "moon-night-auth-session:test-client")


def sign_in(holder: SessionHolder, gateway: FakeGateway, balance="0", points=0, role="user", user_id="u1"):
    """Put a signed-in profile in the holder and a matching row in the gateway."""
    profile = make_profile(user_id, balance, points, role)
    gateway.seed("profiles", profile.model_dump(mode="json"))
    holder.start({"access_token": f"token-{user_id}", "refresh_token": "r"}, profile)
    return profile
