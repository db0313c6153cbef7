"""Cart API router."""
from fastapi import APIRouter, Depends, HTTPException

from client_state import ClientContext
from schemas import AddToCartRequest, CartResponse, UpdateCartItemRequest
from dependencies import get_catalog_service, get_client
from services.cart_service import CartStore
from services.catalog_service import CatalogService

router = APIRouter(prefix="/cart", tags=["cart"])


def _cart_response(cart: CartStore) -> CartResponse:
    return CartResponse(items=cart.items, count=cart.count(), total=cart.display_total())


@router.get("", response_model=CartResponse)
async def get_cart(client: ClientContext = Depends(get_client)):
    """Get the client's cart."""
    return _cart_response(client.cart)


@router.post("/add", response_model=CartResponse)
async def add_to_cart(
    request: AddToCartRequest,
    client: ClientContext = Depends(get_client),
    catalog: CatalogService = Depends(get_catalog_service)
):
    """Add a product to the cart, snapshotting its current price."""
    try:
        product = await catalog.get_product(request.product_id)
        client.cart.add(product, request.quantity)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _cart_response(client.cart)


@router.put("/items/{product_id}", response_model=CartResponse)
async def update_cart_item(
    product_id: str,
    request: UpdateCartItemRequest,
    client: ClientContext = Depends(get_client)
):
    """Change an item's quantity; zero or less removes it."""
    try:
        client.cart.set_quantity(product_id, request.quantity)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _cart_response(client.cart)


@router.delete("/items/{product_id}", response_model=CartResponse)
async def remove_cart_item(product_id: str, client: ClientContext = Depends(get_client)):
    """Remove an item; removing an absent item is a no-op."""
    client.cart.remove(product_id)
    return _cart_response(client.cart)


@router.delete("", response_model=CartResponse)
async def clear_cart(client: ClientContext = Depends(get_client)):
    """Empty the cart."""
    client.cart.clear()
    return _cart_response(client.cart)
