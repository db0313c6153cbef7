"""Configuration settings for the storefront service."""
import os
from decimal import Decimal

# Gateway (hosted database / auth / RPC backend)
GATEWAY_URL = os.getenv("GATEWAY_URL", "http://localhost:54321")
GATEWAY_ANON_KEY = os.getenv("GATEWAY_ANON_KEY", "")
GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "30"))
APPLICATION_NAME = "moon-night-shop"

# Redis backs local durable storage and the realtime change feed
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379")

# Local durable storage keys (suffixed with the client id)
CART_STORAGE_KEY = "moon-night-cart"
AUTH_STORAGE_KEY = "moon-night-auth-session"

# In-memory client contexts (rebuilt from storage after eviction)
CLIENT_CONTEXT_LIMIT = int(os.getenv("CLIENT_CONTEXT_LIMIT", "10000"))
CLIENT_CONTEXT_IDLE_SECONDS = float(os.getenv("CLIENT_CONTEXT_IDLE_SECONDS", "1800"))

# Realtime
REALTIME_CHANNEL_PREFIX = os.getenv("REALTIME_CHANNEL_PREFIX", "realtime")

# Order support chat
CHAT_PAGE_SIZE = 50
CHAT_AUTOSCROLL_THRESHOLD_PX = 100

# Completion provider for the shop assistant (OpenAI-compatible)
COMPLETION_API_URL = os.getenv("COMPLETION_API_URL", "https://api.openai.com/v1/chat/completions")
COMPLETION_API_KEY = os.getenv("COMPLETION_API_KEY", "")
COMPLETION_MODEL = os.getenv("COMPLETION_MODEL", "gpt-4o-mini")
ASSISTANT_HISTORY_LIMIT = 50

# Financials (DH is the shop currency)
DH_TO_USD = Decimal("0.1")
POINTS_PER_DOLLAR = 100
FEE_PERCENTAGE = Decimal("0.02")
FLAT_FEE_USD = Decimal("0.3")

# Observability
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
OTEL_ENABLED = os.getenv("OTEL_ENABLED", "true").lower() == "true"
OTEL_EXPORTER_OTLP_ENDPOINT = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317")
PROFILING_ENABLED = os.getenv("PROFILING_ENABLED", "true").lower() == "true"
PYROSCOPE_SERVER = os.getenv("PYROSCOPE_SERVER_ADDRESS", "http://localhost:4040")

# Application Settings
APP_NAME = "Moon Night"
SERVICE_NAME = "storefront-service"
API_VERSION = "1.0.0"
