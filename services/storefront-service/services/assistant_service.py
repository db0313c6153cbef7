"""Shop assistant backed by an OpenAI-compatible completion provider."""
import logging
import time
from typing import List, Optional

import httpx

from config import (
    APP_NAME,
    ASSISTANT_HISTORY_LIMIT,
    COMPLETION_API_KEY,
    COMPLETION_API_URL,
    COMPLETION_MODEL
)
from schemas import AssistantHistoryEntry, Product, Tournament
from services.gateway_service import GatewayClient, GatewayError
from services.session_service import SessionHolder
from monitoring import assistant_duration_histogram

logger = logging.getLogger(__name__)


class AssistantUnavailable(Exception):
    """No completion provider is configured."""


class AssistantError(Exception):
    """The completion provider failed or answered with something unusable."""


def build_context(products: List[Product], tournaments: List[Tournament]) -> str:
    """Render the shop state the assistant may talk about."""
    lines = [f"You are the {APP_NAME} shop assistant. Answer briefly and only about the shop."]
    lines.append("Products (price in DH):")
    for product in products:
        stock = "in stock" if product.stock > 0 else "out of stock"
        lines.append(f"- {product.name} [{product.category}] {product.price_dh} DH, {stock}")
    if tournaments:
        lines.append("Upcoming tournaments:")
        for tournament in tournaments:
            lines.append(f"- {tournament.title} on {tournament.date}, prize: {tournament.prize_pool}")
    return "\n".join(lines)


class AssistantService:
    """Service for the AI shop assistant."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        gateway: GatewayClient,
        api_url: str = COMPLETION_API_URL,
        api_key: str = COMPLETION_API_KEY,
        model: str = COMPLETION_MODEL
    ):
        """
        Initialize assistant service.

        Args:
            http_client: Async HTTP client
            gateway: Gateway client bound to the user's session
            api_url: Chat completions endpoint
            api_key: Provider API key; empty disables the assistant
            model: Model name sent to the provider
        """
        self.http_client = http_client
        self.gateway = gateway
        self.api_url = api_url
        self.api_key = api_key
        self.model = model

    async def _context(self) -> str:
        products = await self.gateway.select("products", order="name")
        tournaments = await self.gateway.select("tournaments", {"status": "upcoming"}, order="date")
        return build_context(
            [Product.model_validate(row) for row in products],
            [Tournament.model_validate(row) for row in tournaments]
        )

    async def _complete(self, context: str, message: str) -> str:
        start_time = time.time()
        # HTTPXClientInstrumentor already creates spans for HTTP calls
        try:
            response = await self.http_client.post(
                self.api_url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "model": self.model,
                    "messages": [
                        {"role": "system", "content": context},
                        {"role": "user", "content": message}
                    ]
                }
            )
        except httpx.HTTPError as e:
            logger.error("Completion provider unreachable", extra={"error": str(e)})
            raise AssistantError("Server connection failed. Please try again.") from e
        finally:
            assistant_duration_histogram.record(time.time() - start_time)

        if response.status_code != 200:
            logger.warning("Completion provider returned non-200 status", extra={
                "status_code": response.status_code
            })
            raise AssistantError("Failed to contact AI server")
        try:
            return response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.error("Malformed completion response", extra={"error": str(e)})
            raise AssistantError("Failed to contact AI server") from e

    async def ask(self, identity: SessionHolder, message: str) -> str:
        """
        Answer a shopper's question.

        Raises:
            AssistantUnavailable: If no provider is configured
            AssistantError: If the provider failed
            GatewayError: If the shop context could not be loaded
        """
        if not self.api_key:
            raise AssistantUnavailable("AI assistant is not configured")
        context = await self._context()
        text = await self._complete(context, message)
        if identity.is_authenticated:
            await self._remember(identity.user_id, message, text)
        return text

    async def _remember(self, user_id: str, message: str, reply: str) -> None:
        try:
            await self.gateway.insert("ai_chats", {"user_id": user_id, "role": "user", "content": message})
            await self.gateway.insert("ai_chats", {"user_id": user_id, "role": "model", "content": reply})
        except GatewayError as e:
            logger.error("Failed to save assistant chat", extra={"user_id": user_id, "error": e.message})

    async def history(self, user_id: Optional[str]) -> List[AssistantHistoryEntry]:
        if not user_id:
            return []
        rows = await self.gateway.select(
            "ai_chats",
            {"user_id": user_id},
            columns="role,content",
            order="created_at",
            ascending=False,
            limit=ASSISTANT_HISTORY_LIMIT
        )
        return [AssistantHistoryEntry.model_validate(row) for row in reversed(rows)]
