"""Dependency injection for services."""
from typing import Any
import httpx
from fastapi import Depends, HTTPException
from fastapi.requests import HTTPConnection

from auth import verify_client_id
from client_state import ClientContext, ClientRegistry
from logging_config import bind_client_id
from services.admin_service import AdminService
from services.assistant_service import AssistantService
from services.catalog_service import CatalogService
from services.gateway_service import GatewayClient
from services.order_service import OrderService
from services.points_service import PointsService
from services.realtime_service import RealtimeChannel
from services.session_service import SessionService
from services.tournament_service import TournamentService
from services.wallet_service import WalletService


def get_http_client(connection: HTTPConnection) -> httpx.AsyncClient:
    """Get HTTP client from app state."""
    return connection.app.state.http_client


def get_gateway(connection: HTTPConnection) -> GatewayClient:
    """Get the unbound gateway client from app state."""
    return connection.app.state.gateway


def get_registry(connection: HTTPConnection) -> ClientRegistry:
    """Get the client registry from app state."""
    return connection.app.state.registry


def get_realtime(connection: HTTPConnection) -> RealtimeChannel:
    """Get the realtime channel from app state."""
    return connection.app.state.realtime


async def get_client(
    client_id: str = Depends(verify_client_id),
    registry: ClientRegistry = Depends(get_registry)
) -> ClientContext:
    """Get (opening on first use) the calling client's state."""
    bind_client_id(client_id)
    return await registry.open(client_id)


def require_user(client: ClientContext = Depends(get_client)) -> ClientContext:
    """Client state for a signed-in user."""
    if not client.identity.is_authenticated:
        raise HTTPException(status_code=401, detail="Please log in to continue.")
    return client


def require_admin(client: ClientContext = Depends(require_user)) -> ClientContext:
    """Client state for a signed-in admin."""
    if not client.identity.profile.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return client


def get_client_gateway(
    client: ClientContext = Depends(get_client),
    gateway: GatewayClient = Depends(get_gateway)
) -> GatewayClient:
    """Gateway client bound to the calling client's session, if any."""
    return gateway.bind(client.identity.access_token)


def get_session_service(gateway: GatewayClient = Depends(get_gateway)) -> SessionService:
    """Get session service instance."""
    return SessionService(gateway)


def get_catalog_service(gateway: GatewayClient = Depends(get_client_gateway)) -> CatalogService:
    """Get catalog service instance."""
    return CatalogService(gateway)


def get_order_service(gateway: GatewayClient = Depends(get_client_gateway)) -> OrderService:
    """Get order service instance."""
    return OrderService(gateway)


def get_wallet_service(gateway: GatewayClient = Depends(get_client_gateway)) -> WalletService:
    """Get wallet service instance."""
    return WalletService(gateway)


def get_points_service(gateway: GatewayClient = Depends(get_client_gateway)) -> PointsService:
    """Get points service instance."""
    return PointsService(gateway)


def get_tournament_service(gateway: GatewayClient = Depends(get_client_gateway)) -> TournamentService:
    """Get tournament service instance."""
    return TournamentService(gateway)


def get_admin_service(
    client: ClientContext = Depends(require_admin),
    gateway: GatewayClient = Depends(get_client_gateway)
) -> AdminService:
    """Get admin service instance for the signed-in admin."""
    return AdminService(gateway, client.identity.profile)


def get_assistant_service(
    http_client: Any = Depends(get_http_client),
    gateway: GatewayClient = Depends(get_client_gateway)
) -> AssistantService:
    """Get assistant service instance."""
    return AssistantService(http_client, gateway)
