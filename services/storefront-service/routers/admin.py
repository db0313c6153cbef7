"""Admin dashboard API router."""
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List

from schemas import (
    Order,
    OrderStatusUpdate,
    Product,
    ProductCreate,
    ProductUpdate,
    Tournament,
    TournamentCreate,
    TournamentStatusUpdate,
    UserProfile
)
from dependencies import get_admin_service
from services.admin_service import AdminService

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/orders", response_model=List[Order])
async def get_orders(
    search: str = Query("", description="Order id, user id or product name"),
    admin: AdminService = Depends(get_admin_service)
):
    """All orders, newest first."""
    return await admin.list_orders(search)


@router.patch("/orders/{order_id}", response_model=Order)
async def update_order_status(
    order_id: str,
    request: OrderStatusUpdate,
    admin: AdminService = Depends(get_admin_service)
):
    try:
        return await admin.update_order_status(order_id, request.status)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/products", response_model=Product, status_code=201)
async def create_product(request: ProductCreate, admin: AdminService = Depends(get_admin_service)):
    return await admin.create_product(request)


@router.patch("/products/{product_id}", response_model=Product)
async def update_product(
    product_id: str,
    request: ProductUpdate,
    admin: AdminService = Depends(get_admin_service)
):
    try:
        return await admin.update_product(product_id, request)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.delete("/products/{product_id}", status_code=204)
async def delete_product(product_id: str, admin: AdminService = Depends(get_admin_service)):
    await admin.delete_product(product_id)


@router.post("/tournaments", response_model=Tournament, status_code=201)
async def create_tournament(request: TournamentCreate, admin: AdminService = Depends(get_admin_service)):
    return await admin.create_tournament(request)


@router.patch("/tournaments/{tournament_id}", response_model=Tournament)
async def update_tournament_status(
    tournament_id: str,
    request: TournamentStatusUpdate,
    admin: AdminService = Depends(get_admin_service)
):
    try:
        return await admin.update_tournament_status(tournament_id, request.status)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/profiles", response_model=List[UserProfile])
async def get_profiles(admin: AdminService = Depends(get_admin_service)):
    return await admin.list_profiles()
