"""Point shop API router."""
from fastapi import APIRouter, Depends, HTTPException
from typing import List

from client_state import ClientContext
from schemas import BalanceOperationResponse, PointShopItem
from dependencies import get_client, get_points_service
from services.points_service import PointsService

router = APIRouter(prefix="/points", tags=["points"])


@router.get("/items", response_model=List[PointShopItem])
async def get_items(points_service: PointsService = Depends(get_points_service)):
    """Rewards, cheapest first."""
    return await points_service.list_items()


@router.post("/items/{item_id}/redeem", response_model=BalanceOperationResponse)
async def redeem(
    item_id: str,
    client: ClientContext = Depends(get_client),
    points_service: PointsService = Depends(get_points_service)
):
    """Spend loyalty points on a reward."""
    try:
        result = await points_service.redeem(client.identity, item_id)
    except PermissionError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return BalanceOperationResponse(
        profile=result.profile,
        message=result.message,
        history_recorded=result.history_recorded
    )
