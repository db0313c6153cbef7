"""Profile and wallet API router."""
from decimal import Decimal
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List

from client_state import ClientContext
from schemas import (
    BalanceOperationResponse,
    DepositQuote,
    DepositRequest,
    Order,
    UserProfile,
    WalletHistoryEntry
)
from dependencies import (
    get_order_service,
    get_session_service,
    get_wallet_service,
    require_user
)
from services.order_service import OrderService
from services.session_service import SessionService
from services.wallet_service import WalletService, quote_deposit

router = APIRouter(prefix="/profile", tags=["profile"])


@router.get("", response_model=UserProfile)
async def get_profile(client: ClientContext = Depends(require_user)):
    """Get the held profile."""
    return client.identity.profile


@router.post("/refresh", response_model=UserProfile)
async def refresh_profile(
    client: ClientContext = Depends(require_user),
    session_service: SessionService = Depends(get_session_service)
):
    """Re-fetch the profile row and replace the held profile."""
    try:
        return await session_service.refresh_profile(client.identity)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/orders", response_model=List[Order])
async def get_profile_orders(
    client: ClientContext = Depends(require_user),
    order_service: OrderService = Depends(get_order_service)
):
    """Purchase history shown on the profile page."""
    return await order_service.get_user_orders(client.identity.user_id)


@router.get("/wallet/history", response_model=List[WalletHistoryEntry])
async def get_wallet_history(
    client: ClientContext = Depends(require_user),
    wallet_service: WalletService = Depends(get_wallet_service)
):
    """Wallet deposits, newest first."""
    return await wallet_service.get_history(client.identity.user_id)


@router.get("/wallet/quote", response_model=DepositQuote)
async def get_deposit_quote(amount: Decimal = Query(..., gt=0, description="DH to deposit")):
    """Fee and loyalty points for a deposit amount."""
    return quote_deposit(amount)


@router.post("/wallet/deposit", response_model=BalanceOperationResponse)
async def deposit(
    request: DepositRequest,
    client: ClientContext = Depends(require_user),
    wallet_service: WalletService = Depends(get_wallet_service)
):
    """Credit a captured payment to the wallet."""
    try:
        result = await wallet_service.deposit(client.identity, request.amount, request.payment_reference)
    except PermissionError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return BalanceOperationResponse(
        profile=result.profile,
        message=result.message,
        history_recorded=result.history_recorded
    )
