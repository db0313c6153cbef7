"""Authentication API router."""
from fastapi import APIRouter, Depends, HTTPException
import logging

from client_state import ClientContext
from dependencies import get_client, get_session_service
from schemas import LoginRequest, SessionResponse, SignUpRequest
from services.gateway_service import GatewayError, GatewayUnavailable
from services.session_service import SessionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])


@router.post("/login", response_model=SessionResponse)
async def login(
    request: LoginRequest,
    client: ClientContext = Depends(get_client),
    session_service: SessionService = Depends(get_session_service)
):
    """Sign in with email and password."""
    try:
        profile = await session_service.sign_in(client.identity, request.email, request.password)
    except GatewayUnavailable:
        raise
    except GatewayError as e:
        raise HTTPException(status_code=401, detail=e.message or "Invalid login credentials")
    return SessionResponse(authenticated=True, profile=profile)


@router.post("/signup", response_model=SessionResponse)
async def signup(
    request: SignUpRequest,
    client: ClientContext = Depends(get_client),
    session_service: SessionService = Depends(get_session_service)
):
    """
    Register a new account.

    When the gateway requires email verification no session is returned
    and the client stays signed out.
    """
    try:
        profile = await session_service.sign_up(
            client.identity,
            request.email,
            request.password,
            request.username
        )
    except GatewayUnavailable:
        raise
    except GatewayError as e:
        raise HTTPException(status_code=400, detail=e.message)
    if profile is None:
        return SessionResponse(
            authenticated=False,
            message="Check your email to confirm your account, then log in."
        )
    return SessionResponse(authenticated=True, profile=profile)


@router.post("/logout", response_model=SessionResponse)
async def logout(
    client: ClientContext = Depends(get_client),
    session_service: SessionService = Depends(get_session_service)
):
    """Sign out and forget the stored session."""
    await session_service.sign_out(client.identity)
    return SessionResponse(authenticated=False)


@router.get("/session", response_model=SessionResponse)
async def get_session(client: ClientContext = Depends(get_client)):
    """Current identity of the calling client."""
    identity = client.identity
    return SessionResponse(authenticated=identity.is_authenticated, profile=identity.profile)
