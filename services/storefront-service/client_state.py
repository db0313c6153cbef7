"""Per-client state: one cart, identity holder and checkout orchestrator per client id."""
import asyncio
import logging
import time
from collections import OrderedDict
from typing import Callable, Dict

import redis

from config import AUTH_STORAGE_KEY, CART_STORAGE_KEY, CLIENT_CONTEXT_IDLE_SECONDS, CLIENT_CONTEXT_LIMIT
from services.cart_service import CartStore
from services.gateway_service import GatewayClient
from services.order_service import CheckoutOrchestrator
from services.session_service import SessionHolder, SessionService

logger = logging.getLogger(__name__)


class ClientContext:
    """Everything the shop remembers about one browser or device."""

    def __init__(self, client_id: str, cart: CartStore, identity: SessionHolder, gateway: GatewayClient):
        self.client_id = client_id
        self.cart = cart
        self.identity = identity
        self.checkout = CheckoutOrchestrator(cart, identity, gateway)

    @property
    def busy(self) -> bool:
        """A checkout or balance operation is in flight."""
        return self.checkout.in_flight or self.identity.processing


class ClientRegistry:
    """
    Owner of every ClientContext.

    A context is built on the first request for a client id: the cart is
    hydrated from storage and a stored session, if any, is restored.
    Contexts idle for longer than ``idle_seconds`` or beyond ``max_contexts``
    (least recently used first) are dropped; carts and sessions live in
    storage, so the next request for that id rebuilds an equal context.
    Busy contexts are never dropped.
    """

    def __init__(
        self,
        storage: redis.Redis,
        gateway: GatewayClient,
        max_contexts: int = CLIENT_CONTEXT_LIMIT,
        idle_seconds: float = CLIENT_CONTEXT_IDLE_SECONDS,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize client registry.

        Args:
            storage: Durable key/value storage for carts and sessions
            gateway: Unbound gateway client
            max_contexts: Most contexts held at once
            idle_seconds: Idle time after which a context is dropped
            clock: Monotonic time source
        """
        self.storage = storage
        self.gateway = gateway
        self.max_contexts = max_contexts
        self.idle_seconds = idle_seconds
        self._clock = clock
        self._contexts: "OrderedDict[str, ClientContext]" = OrderedDict()
        self._last_seen: Dict[str, float] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._contexts)

    def __contains__(self, client_id: str) -> bool:
        return client_id in self._contexts

    def _touch(self, client_id: str) -> None:
        self._contexts.move_to_end(client_id)
        self._last_seen[client_id] = self._clock()

    def _evict(self) -> None:
        now = self._clock()
        for client_id in list(self._contexts):
            over_limit = len(self._contexts) > self.max_contexts
            idle = now - self._last_seen[client_id] > self.idle_seconds
            if not (over_limit or idle):
                break
            if self._contexts[client_id].busy:
                continue
            del self._contexts[client_id]
            del self._last_seen[client_id]
            logger.debug("Client context evicted", extra={"client_id": client_id, "idle": idle})

    async def open(self, client_id: str) -> ClientContext:
        context = self._contexts.get(client_id)
        if context is not None:
            self._touch(client_id)
            self._evict()
            return context
        async with self._lock:
            context = self._contexts.get(client_id)
            if context is not None:
                self._touch(client_id)
                return context
            cart = CartStore.hydrate(self.storage, f"{CART_STORAGE_KEY}:{client_id}")
            identity = SessionHolder(self.storage, f"{AUTH_STORAGE_KEY}:{client_id}")
            restored = await SessionService(self.gateway).restore(identity)
            context = ClientContext(client_id, cart, identity, self.gateway)
            self._contexts[client_id] = context
            self._touch(client_id)
            self._evict()
            logger.info("Client context opened", extra={
                "client_id": client_id,
                "cart_items": cart.count(),
                "session_restored": restored
            })
            return context
