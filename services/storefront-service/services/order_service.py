"""Checkout orchestration and order queries."""
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import ValidationError

from schemas import CheckoutResult, Order
from services.cart_service import CartStore
from services.gateway_service import GatewayClient, GatewayError
from services.session_service import SessionHolder
from monitoring import (
    checkout_counter,
    checkout_amount_histogram,
    checkout_duration_histogram
)

logger = logging.getLogger(__name__)

CHECKOUT_PROCEDURE = "process_checkout"
GENERIC_REJECTION = "Checkout could not be completed."
ORDER_COLUMNS = "*,product:products(*)"


class CheckoutState(str, Enum):
    """Orchestrator state; every state except IN_FLIGHT accepts a new checkout."""
    IDLE = "idle"
    IN_FLIGHT = "in-flight"
    APPLIED = "applied"
    REJECTED = "rejected"
    FAILED = "failed"


class CheckoutStatus(str, Enum):
    """Outcome reported to the caller."""
    LOGIN_REQUIRED = "login_required"
    EMPTY_CART = "empty_cart"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    BUSY = "busy"
    APPLIED = "applied"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass(frozen=True)
class CheckoutOutcome:
    status: CheckoutStatus
    message: str
    new_balance: Optional[Decimal] = None
    points_earned: int = 0
    redirect: Optional[str] = None


class CheckoutOrchestrator:
    """
    Turns the cart into one atomic checkout procedure call.

    The client-side balance check only short-circuits obviously doomed
    attempts; the procedure's result is the sole authority on funds.
    """

    def __init__(self, cart: CartStore, identity: SessionHolder, gateway: GatewayClient):
        """
        Initialize checkout orchestrator.

        Args:
            cart: The client's cart store
            identity: The client's session holder
            gateway: Gateway client (bound to the session at call time)
        """
        self.cart = cart
        self.identity = identity
        self.gateway = gateway
        self.state = CheckoutState.IDLE

    @property
    def in_flight(self) -> bool:
        return self.state is CheckoutState.IN_FLIGHT

    async def checkout(self) -> CheckoutOutcome:
        """
        Run one checkout attempt.

        Returns:
            Terminal outcome; gateway failures are reported, never raised
        """
        if self.in_flight:
            return CheckoutOutcome(CheckoutStatus.BUSY, "A checkout is already in progress.")

        profile = self.identity.profile
        if profile is None or not self.identity.is_authenticated:
            return CheckoutOutcome(
                CheckoutStatus.LOGIN_REQUIRED,
                "Please log in to purchase.",
                redirect="/login"
            )
        if self.cart.count() == 0:
            return CheckoutOutcome(CheckoutStatus.EMPTY_CART, "Your cart is empty.")

        total = self.cart.total()
        if total > profile.wallet_balance:
            checkout_counter.add(1, {"status": CheckoutStatus.INSUFFICIENT_FUNDS.value})
            return CheckoutOutcome(
                CheckoutStatus.INSUFFICIENT_FUNDS,
                "Insufficient funds in your DH wallet."
            )

        # Guard is taken before the first suspension point
        self.state = CheckoutState.IN_FLIGHT
        lines = self.cart.snapshot()
        start_time = time.time()
        try:
            payload = await self.gateway.bind(self.identity.access_token).rpc(
                CHECKOUT_PROCEDURE,
                {"cart_items": [line.model_dump() for line in lines]}
            )
            result = CheckoutResult.model_validate(payload)
        except GatewayError as e:
            return self._fail(profile.id, total, e.message)
        except ValidationError as e:
            logger.error("Malformed checkout result", extra={"user_id": profile.id, "error": str(e)})
            return self._fail(profile.id, total, "Malformed response from checkout.")
        except BaseException:
            # cancelled or crashed; release the guard before propagating
            self.state = CheckoutState.FAILED
            raise
        finally:
            checkout_duration_histogram.record(time.time() - start_time)

        if not result.success:
            self.state = CheckoutState.REJECTED
            checkout_counter.add(1, {"status": CheckoutStatus.REJECTED.value})
            logger.info("Checkout rejected", extra={
                "user_id": profile.id,
                "amount": float(total),
                "reason": result.message
            })
            return CheckoutOutcome(CheckoutStatus.REJECTED, result.message or GENERIC_REJECTION)

        if self.identity.user_id == profile.id:
            self.identity.apply_checkout(result.new_balance, result.points_earned)
        else:
            logger.warning("Session changed during checkout, skipping profile patch", extra={
                "user_id": profile.id
            })
        self.cart.clear()
        self.state = CheckoutState.APPLIED

        checkout_counter.add(1, {"status": CheckoutStatus.APPLIED.value})
        checkout_amount_histogram.record(float(total))
        logger.info("Checkout completed", extra={
            "user_id": profile.id,
            "amount": float(total),
            "new_balance": float(result.new_balance),
            "points_earned": result.points_earned,
            "item_count": len(lines)
        })
        return CheckoutOutcome(
            CheckoutStatus.APPLIED,
            "Purchase complete! Check your profile for delivery details.",
            new_balance=result.new_balance,
            points_earned=result.points_earned
        )

    def _fail(self, user_id: str, total: Decimal, reason: str) -> CheckoutOutcome:
        self.state = CheckoutState.FAILED
        checkout_counter.add(1, {"status": CheckoutStatus.FAILED.value})
        logger.error("Checkout failed", extra={
            "user_id": user_id,
            "amount": float(total),
            "error": reason
        })
        return CheckoutOutcome(CheckoutStatus.FAILED, f"Checkout failed: {reason}")


class OrderService:
    """Service for reading orders."""

    def __init__(self, gateway: GatewayClient):
        """
        Initialize order service.

        Args:
            gateway: Gateway client bound to the viewer's session
        """
        self.gateway = gateway

    async def get_user_orders(self, user_id: str) -> List[Order]:
        """Orders placed by a user, newest first, with their products."""
        rows = await self.gateway.select(
            "orders",
            {"user_id": user_id},
            columns=ORDER_COLUMNS,
            order="created_at",
            ascending=False
        )
        return [Order.model_validate(row) for row in rows]

    async def get_order(self, order_id: str) -> Optional[Order]:
        row = await self.gateway.select_one("orders", {"id": order_id}, columns=ORDER_COLUMNS)
        return Order.model_validate(row) if row else None

    async def get_order_for_viewer(self, order_id: str, identity: SessionHolder) -> Order:
        """
        Load an order the viewer may access (its owner or an admin).

        Raises:
            LookupError: If the order does not exist
            PermissionError: If the viewer may not see it
        """
        order = await self.get_order(order_id)
        if order is None:
            raise LookupError("Order not found")
        profile = identity.profile
        if profile is None or (order.user_id != profile.id and not profile.is_admin):
            raise PermissionError("You do not have access to this order")
        return order
