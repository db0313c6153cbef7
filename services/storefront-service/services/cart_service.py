"""Cart management service."""
import json
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional

import redis
from opentelemetry import trace

from schemas import CartItem, CheckoutLine, Product
from monitoring import cart_additions_counter

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def _merge(items: Iterable[CartItem]) -> List[CartItem]:
    """Collapse entries sharing a product id, keeping first-seen order."""
    merged: List[CartItem] = []
    index = {}
    for item in items:
        position = index.get(item.product_id)
        if position is None:
            index[item.product_id] = len(merged)
            merged.append(item)
        else:
            existing = merged[position]
            merged[position] = existing.model_copy(
                update={"quantity": existing.quantity + item.quantity}
            )
    return merged


class CartStore:
    """
    Client-held shopping cart.

    At most one entry exists per product id. Every mutation rewrites the
    whole serialized cart to durable storage, and a new store is hydrated
    from that entry.
    """

    def __init__(self, storage: redis.Redis, storage_key: str):
        """
        Initialize cart store.

        Args:
            storage: Durable key/value storage (sync Redis client)
            storage_key: Namespaced key holding the serialized cart
        """
        self.storage = storage
        self.storage_key = storage_key
        self.tracer = trace.get_tracer(__name__)
        self._items: List[CartItem] = []

    @classmethod
    def hydrate(cls, storage: redis.Redis, storage_key: str) -> "CartStore":
        """Build a store from its stored entry, falling back to an empty cart."""
        store = cls(storage, storage_key)
        store._items = store._load()
        return store

    @property
    def items(self) -> List[CartItem]:
        return list(self._items)

    def _find(self, product_id: str) -> Optional[int]:
        for position, item in enumerate(self._items):
            if item.product_id == product_id:
                return position
        return None

    def add(self, product: Product, quantity: int = 1) -> CartItem:
        """
        Add a product, incrementing the existing entry if present.

        Args:
            product: Catalog product; price, name and image are snapshotted
            quantity: Units to add

        Returns:
            The resulting cart entry

        Raises:
            ValueError: If quantity is below 1
        """
        if quantity < 1:
            raise ValueError("Quantity must be at least 1")

        position = self._find(product.id)
        if position is None:
            item = CartItem(
                product_id=product.id,
                name=product.name,
                unit_price=product.price_dh,
                quantity=quantity,
                image_url=product.image_url,
                category=product.category,
                type=product.type
            )
            self._items.append(item)
        else:
            existing = self._items[position]
            item = existing.model_copy(update={"quantity": existing.quantity + quantity})
            self._items[position] = item

        self._persist()

        cart_additions_counter.add(quantity, {"category": product.category})
        logger.info("Added product to cart", extra={
            "storage_key": self.storage_key,
            "product_id": product.id,
            "product_name": product.name,
            "quantity": quantity
        })
        return item

    def remove(self, product_id: str) -> None:
        """Remove a product's entry; no-op when absent."""
        position = self._find(product_id)
        if position is None:
            return
        del self._items[position]
        self._persist()

    def set_quantity(self, product_id: str, quantity: int) -> Optional[CartItem]:
        """
        Set an entry's quantity; zero or less removes it.

        Raises:
            LookupError: If the product is not in the cart
        """
        position = self._find(product_id)
        if position is None:
            raise LookupError("Product is not in the cart")
        if quantity <= 0:
            self.remove(product_id)
            return None
        item = self._items[position].model_copy(update={"quantity": quantity})
        self._items[position] = item
        self._persist()
        return item

    def set_all(self, items: Iterable[CartItem]) -> None:
        """Replace the whole cart."""
        self._items = _merge(items)
        self._persist()

    def clear(self) -> None:
        self.set_all([])

    def total(self) -> Decimal:
        """Sum of unit price times quantity at full precision."""
        return sum((item.subtotal for item in self._items), Decimal("0"))

    def display_total(self) -> Decimal:
        """Total rounded to cents for display."""
        return self.total().quantize(CENT, rounding=ROUND_HALF_UP)

    def count(self) -> int:
        """Total number of units."""
        return sum(item.quantity for item in self._items)

    def snapshot(self) -> List[CheckoutLine]:
        """Freeze the cart into checkout procedure lines."""
        return [CheckoutLine(id=item.product_id, quantity=item.quantity) for item in self._items]

    def serialize(self) -> str:
        return json.dumps([item.model_dump(mode="json") for item in self._items])

    def _persist(self) -> None:
        with self.tracer.start_as_current_span("cache.set") as cache_span:
            cache_span.set_attribute("cache.system", "redis")
            cache_span.set_attribute("cache.operation", "SET")
            cache_span.set_attribute("cache.key", self.storage_key)
            try:
                self.storage.set(self.storage_key, self.serialize())
            except redis.RedisError as e:
                logger.error("Failed to persist cart", extra={
                    "storage_key": self.storage_key,
                    "error": str(e)
                })

    def _load(self) -> List[CartItem]:
        try:
            raw = self.storage.get(self.storage_key)
        except redis.RedisError as e:
            logger.error("Failed to read stored cart", extra={
                "storage_key": self.storage_key,
                "error": str(e)
            })
            return []
        if not raw:
            return []
        try:
            payload = json.loads(raw)
            items = [CartItem.model_validate(entry) for entry in payload]
        except (TypeError, ValueError) as e:
            # pydantic's ValidationError is a ValueError
            logger.warning("Discarding malformed stored cart", extra={
                "storage_key": self.storage_key,
                "error": str(e)
            })
            return []
        return _merge(items)
