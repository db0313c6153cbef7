"""Product catalog and storefront filtering."""
import logging
from typing import Iterable, List

from schemas import Product
from services.gateway_service import GatewayClient
from monitoring import product_views_counter

logger = logging.getLogger(__name__)

ALL = "All"


def filter_products(products: Iterable[Product], category: str = ALL, search: str = "") -> List[Product]:
    """Keep products in the category whose name or description contains the search text."""
    needle = search.strip().lower()
    matches = []
    for product in products:
        if category != ALL and product.category != category:
            continue
        if needle and needle not in product.name.lower() and needle not in product.description.lower():
            continue
        matches.append(product)
    return matches


def categories(products: Iterable[Product]) -> List[str]:
    """Category tabs: "All" followed by distinct categories in first-seen order."""
    names = [ALL]
    for product in products:
        if product.category not in names:
            names.append(product.category)
    return names


class CatalogService:
    """Service for reading products."""

    def __init__(self, gateway: GatewayClient):
        self.gateway = gateway

    async def _all_products(self) -> List[Product]:
        rows = await self.gateway.select("products", order="name")
        return [Product.model_validate(row) for row in rows]

    async def get_products(self, category: str = ALL, search: str = "") -> List[Product]:
        return filter_products(await self._all_products(), category, search)

    async def get_categories(self) -> List[str]:
        return categories(await self._all_products())

    async def get_product(self, product_id: str) -> Product:
        """
        Get a product by id.

        Raises:
            LookupError: If the product does not exist
        """
        row = await self.gateway.select_one("products", {"id": product_id})
        if row is None:
            raise LookupError("Product not found")
        product_views_counter.add(1, {"product_id": product_id})
        return Product.model_validate(row)
