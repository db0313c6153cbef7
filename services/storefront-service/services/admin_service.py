"""Admin back-office operations."""
import logging
from typing import Any, Dict, List, Optional

from schemas import (
    Order,
    OrderStatus,
    Product,
    ProductCreate,
    ProductUpdate,
    Tournament,
    TournamentCreate,
    TournamentStatus,
    UserProfile
)
from services.gateway_service import GatewayClient, GatewayError
from services.order_service import ORDER_COLUMNS
from monitoring import admin_actions_counter, partial_failures_counter

logger = logging.getLogger(__name__)


class AdminService:
    """
    Service for admin mutations.

    Every mutation is followed by an audit log row. A failed audit write
    never undoes the mutation; it is logged and counted instead.
    """

    def __init__(self, gateway: GatewayClient, actor: UserProfile):
        """
        Initialize admin service.

        Args:
            gateway: Gateway client bound to the admin's session
            actor: Profile of the acting admin
        """
        if not actor.is_admin:
            raise PermissionError("Admin access required")
        self.gateway = gateway
        self.actor = actor

    async def _audit(
        self,
        action: str,
        target_table: str,
        target_id: str,
        details: Optional[Dict[str, Any]] = None
    ) -> bool:
        admin_actions_counter.add(1, {"action": action})
        try:
            await self.gateway.insert("audit_logs", {
                "actor_id": self.actor.id,
                "action": action,
                "target_table": target_table,
                "target_id": target_id,
                "details": details or {}
            })
        except GatewayError as e:
            partial_failures_counter.add(1, {"operation": action})
            logger.error("Audit log write failed", extra={
                "actor_id": self.actor.id,
                "action": action,
                "target_id": target_id,
                "error": e.message
            })
            return False
        logger.info("Admin action recorded", extra={
            "actor_id": self.actor.id,
            "action": action,
            "target_id": target_id
        })
        return True

    async def list_orders(self, search: str = "") -> List[Order]:
        """
        List all orders, newest first.

        Args:
            search: Matches order id, user id or product name (case-insensitive)
        """
        rows = await self.gateway.select("orders", columns=ORDER_COLUMNS, order="created_at", ascending=False)
        orders = [Order.model_validate(row) for row in rows]
        needle = search.strip().lower()
        if not needle:
            return orders
        return [
            order for order in orders
            if needle in order.id.lower()
            or needle in order.user_id.lower()
            or (order.product is not None and needle in order.product.name.lower())
        ]

    async def update_order_status(self, order_id: str, status: str) -> Order:
        """
        Overwrite an order's status.

        Raises:
            ValueError: If the status is not a known order status
            LookupError: If the order does not exist
        """
        try:
            new_status = OrderStatus(status)
        except ValueError:
            raise ValueError(f"Invalid order status: {status}")
        rows = await self.gateway.update("orders", {"status": new_status.value}, {"id": order_id})
        if not rows:
            raise LookupError("Order not found")
        await self._audit("update_order_status", "orders", order_id, {"status": new_status.value})
        return Order.model_validate(rows[0])

    async def create_product(self, product: ProductCreate) -> Product:
        row = await self.gateway.insert("products", product.model_dump(mode="json"))
        created = Product.model_validate(row)
        await self._audit("create_product", "products", created.id, {"name": created.name})
        return created

    async def update_product(self, product_id: str, changes: ProductUpdate) -> Product:
        """
        Apply a partial product update.

        Raises:
            ValueError: If no fields were supplied
            LookupError: If the product does not exist
        """
        values = changes.model_dump(mode="json", exclude_unset=True)
        if not values:
            raise ValueError("No product fields to update")
        rows = await self.gateway.update("products", values, {"id": product_id})
        if not rows:
            raise LookupError("Product not found")
        await self._audit("update_product", "products", product_id, values)
        return Product.model_validate(rows[0])

    async def delete_product(self, product_id: str) -> None:
        await self.gateway.delete("products", {"id": product_id})
        await self._audit("delete_product", "products", product_id)

    async def create_tournament(self, tournament: TournamentCreate) -> Tournament:
        row = await self.gateway.insert("tournaments", tournament.model_dump(mode="json"))
        created = Tournament.model_validate(row)
        await self._audit("create_tournament", "tournaments", created.id, {"title": created.title})
        return created

    async def update_tournament_status(self, tournament_id: str, status: TournamentStatus) -> Tournament:
        rows = await self.gateway.update("tournaments", {"status": status.value}, {"id": tournament_id})
        if not rows:
            raise LookupError("Tournament not found")
        await self._audit("update_tournament_status", "tournaments", tournament_id, {"status": status.value})
        return Tournament.model_validate(rows[0])

    async def list_profiles(self) -> List[UserProfile]:
        rows = await self.gateway.select("profiles", order="username")
        return [UserProfile.model_validate(row) for row in rows]
