"""Main application entry point."""
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import redis
import redis.asyncio as aioredis
import httpx
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

from config import (
    API_VERSION,
    APP_NAME,
    GATEWAY_ANON_KEY,
    GATEWAY_TIMEOUT_SECONDS,
    GATEWAY_URL,
    REDIS_URL
)
from client_state import ClientContext, ClientRegistry
from dependencies import get_client, get_gateway
from monitoring import init_profiling
from logging_config import setup_logging
from routers import admin, assistant, cart, orders, points, products, profile, tournaments, auth as auth_router
from services.gateway_service import GatewayClient, GatewayError
from services.realtime_service import RealtimeChannel

# Setup structured logging
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    # Startup
    logger.info("Starting application...")

    # Sync client backs carts and stored sessions, async client the realtime feed
    redis_client = redis.from_url(REDIS_URL, decode_responses=True)
    RedisInstrumentor().instrument(redis_client=redis_client)
    app.state.redis_client = redis_client

    async_redis_client = aioredis.from_url(REDIS_URL, decode_responses=True)
    RedisInstrumentor().instrument(redis_client=async_redis_client)
    app.state.async_redis_client = async_redis_client
    app.state.realtime = RealtimeChannel(async_redis_client)
    logger.info("Redis clients initialized (sync + async)")

    # Initialize HTTP client and the gateway on top of it
    http_client = httpx.AsyncClient(timeout=GATEWAY_TIMEOUT_SECONDS)
    HTTPXClientInstrumentor().instrument_client(http_client)
    app.state.http_client = http_client
    app.state.gateway = GatewayClient(http_client, GATEWAY_URL, GATEWAY_ANON_KEY)
    logger.info("HTTP client initialized", extra={"gateway_url": GATEWAY_URL})

    app.state.registry = ClientRegistry(redis_client, app.state.gateway)

    # Initialize profiling
    init_profiling()

    logger.info("Application startup complete")

    yield

    # Shutdown
    logger.info("Shutting down application...")
    await http_client.aclose()
    await async_redis_client.aclose()
    redis_client.close()
    logger.info("Application shutdown complete")


# Create FastAPI app
app = FastAPI(
    title=f"{APP_NAME} Storefront Service",
    version=API_VERSION,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Instrument FastAPI
FastAPIInstrumentor.instrument_app(app)


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    """Gateway failures that no route handled become 502s."""
    logger.error("Unhandled gateway error", extra={
        "path": request.url.path,
        "status_code": exc.status_code,
        "error": exc.message
    })
    return JSONResponse(status_code=502, content={"detail": exc.message})


@app.exception_handler(Exception)
async def recovery_handler(request: Request, exc: Exception):
    """Last-resort boundary: log and ask the client to reload."""
    logger.exception("Unhandled error", extra={"path": request.url.path})
    return JSONResponse(
        status_code=500,
        content={"error": "System Critical Error", "recovery": "reload"}
    )


# Health check endpoints
@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/health/gateway")
async def gateway_health(gateway: GatewayClient = Depends(get_gateway)):
    """Probe the gateway connection."""
    return await gateway.check_connection()


# Include routers
app.include_router(auth_router.router)
app.include_router(products.router)
app.include_router(cart.router)
app.include_router(orders.router)
app.include_router(profile.router)
app.include_router(points.router)
app.include_router(tournaments.router)
app.include_router(admin.router)
app.include_router(assistant.router)


# Checkout is also served at /checkout
@app.post("/checkout")
async def checkout_compat(client: ClientContext = Depends(get_client)):
    """Checkout endpoint at the top level."""
    return await orders.checkout(client)


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
