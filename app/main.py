# app/main.py
"""
FastAPI application entry point.
Includes security middleware, global error handlers, fan-out wiring, and all routers.
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from app.routers import counter, history, events, health
from app.database import create_tables
from app.config import settings
from app.services.fanout import FanOut, RelayPublisher, StreamBroker
from app.services.state_cache import StateCache
from app.utils.errors import InvalidInput
from app.utils.logger import get_logger
from sqlalchemy.exc import SQLAlchemyError
import time

logger = get_logger(__name__)

app = FastAPI(
    title="People Counter API",
    description="Occupancy counter ingestion, history, and live updates.",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── Shared state (one cache + one fan-out per process) ──────────────────────
app.state.cache = StateCache()
app.state.fanout = FanOut(
    StreamBroker(queue_size=settings.STREAM_QUEUE_SIZE),
    RelayPublisher(
        host=settings.MQTT_HOST,
        port=settings.MQTT_PORT,
        topic=settings.RELAY_TOPIC,
        client_id=settings.MQTT_CLIENT_ID,
        username=settings.MQTT_USERNAME,
        password=settings.MQTT_PASSWORD,
    ) if settings.RELAY_ENABLED else None,
)

# ── CORS (dashboards may be served from another origin) ─────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],   # Restrict to dashboard origin in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── API Key Middleware ───────────────────────────────────────────────────────
class APIKeyMiddleware(BaseHTTPMiddleware):
    """
    Optional lightweight API key auth for query endpoints.
    Device ingestion, the event stream and health stay open — the counter
    device and browser EventSource cannot send custom headers.
    Set API_KEY in .env. Leave empty to disable auth.
    """
    async def dispatch(self, request: Request, call_next):
        open_paths = {"/api/v1/events", "/api/v1/health", "/docs", "/redoc", "/openapi.json"}
        is_ingestion = request.url.path == "/api/v1/counter" and request.method == "POST"
        if is_ingestion or request.url.path in open_paths or not settings.API_KEY:
            return await call_next(request)

        api_key = request.headers.get("X-API-Key") or request.query_params.get("api_key")
        if api_key != settings.API_KEY:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"error": "Invalid or missing API key"},
            )
        return await call_next(request)


if settings.API_KEY:
    app.add_middleware(APIKeyMiddleware)


# ── Request Timing Middleware ────────────────────────────────────────────────
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    duration = round((time.time() - start) * 1000, 2)
    logger.debug(f"{request.method} {request.url.path} → {response.status_code} ({duration}ms)")
    return response


# ── Exception Handlers ───────────────────────────────────────────────────────
@app.exception_handler(InvalidInput)
async def invalid_input_handler(request: Request, exc: InvalidInput):
    logger.warning(f"Rejected {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": str(exc)},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )


# ── Routers ──────────────────────────────────────────────────────────────────
app.include_router(counter.router, prefix="/api/v1", tags=["📡 Counter"])
app.include_router(history.router, prefix="/api/v1", tags=["📜 History"])
app.include_router(events.router,  prefix="/api/v1", tags=["🔴 Live Updates"])
app.include_router(health.router,  prefix="/api/v1", tags=["💚 Health"])


# ── Startup ───────────────────────────────────────────────────────────────────
@app.on_event("startup")
async def startup():
    logger.info("🚀 People Counter backend starting up...")

    if settings.PERSISTENCE_ENABLED:
        try:
            create_tables()
            logger.info("✅ Database tables ready")
        except SQLAlchemyError as e:
            logger.error(f"❌ Database unreachable at startup, log writes and queries will degrade until it returns: {e}")
    else:
        logger.warning("⚠️  DATABASE_URL not set — readings kept in memory only")

    relay = app.state.fanout.relay
    if relay is not None:
        relay.connect()
        logger.info(f"📡 Relay publishing to {settings.MQTT_HOST}:{settings.MQTT_PORT} on {settings.RELAY_TOPIC}")
    else:
        logger.info("📡 No relay configured — live updates via /api/v1/events only")

    logger.info(f"🌐 Listening on http://{settings.BACKEND_IP}:{settings.BACKEND_PORT}")
    logger.info("📖 API docs at /docs")


@app.on_event("shutdown")
async def shutdown():
    logger.info("🛑 People Counter backend shutting down...")
    relay = app.state.fanout.relay
    if relay is not None:
        relay.disconnect()
