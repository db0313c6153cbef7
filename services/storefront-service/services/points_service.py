"""Loyalty point shop."""
import logging
from typing import List

from schemas import PointShopItem
from services.gateway_service import GatewayClient, GatewayError
from services.session_service import SessionHolder
from services.wallet_service import BalanceOperation, begin_balance_operation, update_profile
from monitoring import partial_failures_counter, points_redemptions_counter

logger = logging.getLogger(__name__)


class PointsService:
    """Service for redeeming loyalty points."""

    def __init__(self, gateway: GatewayClient):
        self.gateway = gateway

    async def list_items(self) -> List[PointShopItem]:
        rows = await self.gateway.select("point_shop_items", order="cost_points")
        return [PointShopItem.model_validate(row) for row in rows]

    async def get_item(self, item_id: str) -> PointShopItem:
        row = await self.gateway.select_one("point_shop_items", {"id": item_id})
        if row is None:
            raise LookupError("Reward not found")
        return PointShopItem.model_validate(row)

    async def redeem(self, identity: SessionHolder, item_id: str) -> BalanceOperation:
        """
        Spend points on a reward.

        Raises:
            PermissionError: If nobody is logged in
            LookupError: If the reward does not exist
            ValueError: If the user lacks the points
            GatewayError: If the points could not be debited
        """
        if not identity.is_authenticated:
            raise PermissionError("Login to redeem rewards!")
        item = await self.get_item(item_id)
        profile = identity.profile
        if profile.discord_points < item.cost_points:
            points_redemptions_counter.add(1, {"status": "insufficient_points"})
            raise ValueError(f"You need {item.cost_points - profile.discord_points} more points!")

        profile = begin_balance_operation(identity)
        try:
            try:
                updated = await update_profile(self.gateway, profile.id, {
                    "discord_points": profile.discord_points - item.cost_points
                })
            except GatewayError as e:
                points_redemptions_counter.add(1, {"status": "failed"})
                logger.error("Redemption failed", extra={
                    "user_id": profile.id,
                    "item_id": item.id,
                    "error": e.message
                })
                raise
            identity.replace(updated)

            try:
                await self.gateway.insert("audit_logs", {
                    "actor_id": profile.id,
                    "action": "redeem_points",
                    "target_table": "point_shop_items",
                    "target_id": item.id,
                    "details": {"item_name": item.name, "cost_points": item.cost_points}
                })
            except GatewayError as e:
                points_redemptions_counter.add(1, {"status": "partial"})
                partial_failures_counter.add(1, {"operation": "redeem_points"})
                logger.error("Points debited but redemption audit write failed", extra={
                    "user_id": profile.id,
                    "item_id": item.id,
                    "error": e.message
                })
                return BalanceOperation(
                    updated,
                    "Reward redeemed, but the redemption could not be logged. Contact support with your profile id.",
                    history_recorded=False
                )

            points_redemptions_counter.add(1, {"status": "completed"})
            logger.info("Points redeemed", extra={
                "user_id": profile.id,
                "item_id": item.id,
                "cost_points": item.cost_points
            })
            return BalanceOperation(updated, "Redemption successful! Your gift is being prepared.", True)
        finally:
            identity.processing = False
