"""Products API router."""
from fastapi import APIRouter, Depends, HTTPException, Path, Query
from typing import List
from opentelemetry import trace

from schemas import Product
from dependencies import get_catalog_service
from services.catalog_service import ALL, CatalogService

router = APIRouter(prefix="/products", tags=["products"])


@router.get("", response_model=List[Product])
async def get_products(
    category: str = Query(ALL, description="Category tab; \"All\" matches every product"),
    search: str = Query("", description="Case-insensitive match on name or description"),
    catalog: CatalogService = Depends(get_catalog_service)
):
    """
    Get the storefront catalog, ordered by name.

    Examples:
    - GET /products?category=Accounts
    - GET /products?search=valorant
    """
    products = await catalog.get_products(category, search)

    span = trace.get_current_span()
    span.set_attribute("product.count", len(products))
    span.set_attribute("catalog.category", category)

    return products


@router.get("/categories", response_model=List[str])
async def get_categories(catalog: CatalogService = Depends(get_catalog_service)):
    """Category tabs, "All" first."""
    return await catalog.get_categories()


@router.get("/{product_id}", response_model=Product)
async def get_product(
    product_id: str = Path(..., description="Product ID"),
    catalog: CatalogService = Depends(get_catalog_service)
):
    """Get product details."""
    try:
        product = await catalog.get_product(product_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))

    span = trace.get_current_span()
    span.set_attribute("product.id", product_id)
    span.set_attribute("product.category", product.category)

    return product
