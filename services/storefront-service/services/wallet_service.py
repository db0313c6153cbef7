"""Wallet deposits and balance history."""
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from pydantic import ValidationError

from config import DH_TO_USD, FEE_PERCENTAGE, FLAT_FEE_USD, POINTS_PER_DOLLAR
from schemas import DepositQuote, UserProfile, WalletHistoryEntry
from services.gateway_service import GatewayClient, GatewayError
from services.session_service import SessionHolder
from monitoring import partial_failures_counter, wallet_deposits_counter

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def quote_deposit(amount: Decimal) -> DepositQuote:
    """
    Price a deposit: the payment fee is charged in USD and shown in DH.

    Args:
        amount: DH credited to the wallet

    Returns:
        Quote with fee, total charge and loyalty points earned
    """
    amount_usd = amount * DH_TO_USD
    fee_usd = amount_usd * FEE_PERCENTAGE + FLAT_FEE_USD
    fee = (fee_usd / DH_TO_USD).quantize(CENT, rounding=ROUND_HALF_UP)
    return DepositQuote(
        amount=amount,
        fee=fee,
        total=amount + fee,
        points=int(amount_usd * POINTS_PER_DOLLAR)
    )


@dataclass(frozen=True)
class BalanceOperation:
    """Result of a mutation that changed the balance or points."""
    profile: UserProfile
    message: str
    history_recorded: bool


def begin_balance_operation(identity: SessionHolder) -> UserProfile:
    """
    Check preconditions shared by balance mutations and mark one in progress.

    Raises:
        PermissionError: If nobody is logged in
        ValueError: If another balance mutation is running
    """
    if not identity.is_authenticated:
        raise PermissionError("Please log in to continue.")
    if identity.processing:
        raise ValueError("Another balance operation is in progress.")
    identity.processing = True
    return identity.profile


async def update_profile(gateway: GatewayClient, profile_id: str, values: dict) -> UserProfile:
    """Write profile fields and return the full stored row."""
    rows = await gateway.update("profiles", values, {"id": profile_id})
    if not rows:
        raise GatewayError("Profile update returned no record")
    try:
        return UserProfile.model_validate(rows[0])
    except ValidationError as e:
        raise GatewayError("Malformed profile record from gateway") from e


class WalletService:
    """Service for wallet deposits."""

    def __init__(self, gateway: GatewayClient):
        """
        Initialize wallet service.

        Args:
            gateway: Gateway client bound to the user's session
        """
        self.gateway = gateway

    async def deposit(
        self,
        identity: SessionHolder,
        amount: Decimal,
        payment_reference: Optional[str] = None
    ) -> BalanceOperation:
        """
        Credit a captured payment to the wallet.

        The profile write, the holder overwrite and the history insert run
        strictly in that order. A failed history insert leaves the balance
        credited and is reported rather than rolled back.

        Args:
            identity: The client's session holder
            amount: DH to credit
            payment_reference: Capture id from the payment widget

        Raises:
            PermissionError: If nobody is logged in
            ValueError: If the amount is not positive
            GatewayError: If the balance could not be updated
        """
        if amount <= 0:
            raise ValueError("Deposit amount must be positive.")
        profile = begin_balance_operation(identity)
        try:
            quote = quote_deposit(amount)
            try:
                updated = await update_profile(self.gateway, profile.id, {
                    "wallet_balance": profile.wallet_balance + amount,
                    "discord_points": profile.discord_points + quote.points
                })
            except GatewayError as e:
                wallet_deposits_counter.add(1, {"status": "failed"})
                logger.error("Deposit failed", extra={
                    "user_id": profile.id,
                    "amount": float(amount),
                    "error": e.message
                })
                raise
            identity.replace(updated)

            description = f"Wallet deposit of {amount} DH"
            if payment_reference:
                description += f" (payment {payment_reference})"
            try:
                await self.gateway.insert("wallet_history", {
                    "user_id": profile.id,
                    "amount": amount,
                    "type": "deposit",
                    "description": description
                })
            except GatewayError as e:
                wallet_deposits_counter.add(1, {"status": "partial"})
                partial_failures_counter.add(1, {"operation": "deposit"})
                logger.error("Balance credited but wallet history write failed", extra={
                    "user_id": profile.id,
                    "amount": float(amount),
                    "payment_reference": payment_reference,
                    "error": e.message
                })
                return BalanceOperation(
                    updated,
                    "Funds added, but the wallet history entry could not be recorded.",
                    history_recorded=False
                )

            wallet_deposits_counter.add(1, {"status": "completed"})
            logger.info("Wallet deposit completed", extra={
                "user_id": profile.id,
                "amount": float(amount),
                "points": quote.points,
                "payment_reference": payment_reference
            })
            return BalanceOperation(updated, "Funds added successfully via Wallet Balance!", True)
        finally:
            identity.processing = False

    async def get_history(self, user_id: str) -> List[WalletHistoryEntry]:
        rows = await self.gateway.select(
            "wallet_history",
            {"user_id": user_id},
            order="created_at",
            ascending=False
        )
        return [WalletHistoryEntry.model_validate(row) for row in rows]
