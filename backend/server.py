"""Deeplink session gateway — entry point.

One long-lived WebSocket per client carrying JSON command envelopes:
getNonce, registerDevice and the signed-nonce login that issues device
credentials. A small REST surface exposes health and credential
introspection.
"""
from contextlib import asynccontextmanager
from pathlib import Path
import logging
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, APIRouter, Depends, Header, HTTPException, WebSocket

# Load env before anything else
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / ".env")

from config.settings import get_settings
from config.validators import validate_startup_config
from core.logging_config import setup_logging
from core.database import init_indexes, close_db
from core.exceptions import AuthError
from auth.nonce_store import MongoNonceStore
from auth.tokens import TokenClaims, validate_token
from devices.registry import MongoDeviceRegistry
from gateway.dispatcher import CommandDispatcher
from gateway.ws_server import get_active_session_count, handle_ws_connection, shutdown_sessions

VERSION = "0.1.0"

# ---- Setup logging ----
setup_logging()
logger = logging.getLogger(__name__)

_dispatcher: CommandDispatcher | None = None


def get_dispatcher() -> CommandDispatcher:
    """Shared dispatcher over the MongoDB-backed stores."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = CommandDispatcher(MongoNonceStore(), MongoDeviceRegistry())
    return _dispatcher


# ---- Lifespan ----
@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info("Gateway starting — env=%s", settings.ENV)
    validate_startup_config(settings)
    await init_indexes()
    logger.info("Gateway ready")
    yield
    await shutdown_sessions()
    await close_db()
    logger.info("Gateway shutdown complete")


# ---- App ----
app = FastAPI(
    title="Deeplink Session Gateway",
    version=VERSION,
    lifespan=lifespan,
)

api_router = APIRouter(prefix="/api")


# =====================================================
#  REST Endpoints
# =====================================================

@api_router.get("/health")
async def health():
    settings = get_settings()
    return {
        "status": "ok",
        "env": settings.ENV,
        "version": VERSION,
        "active_sessions": get_active_session_count(),
    }


def require_claims(authorization: Optional[str] = Header(default=None)) -> TokenClaims:
    """Decode the bearer credential. 401 when missing or invalid."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(
            status_code=401,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return validate_token(authorization[7:].strip())
    except AuthError as e:
        raise HTTPException(
            status_code=401,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        )


@api_router.get("/auth/me", response_model=TokenClaims)
async def whoami(claims: TokenClaims = Depends(require_claims)):
    return claims


app.include_router(api_router)


# =====================================================
#  WebSocket Endpoint
# =====================================================

@app.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    dispatcher: CommandDispatcher = Depends(get_dispatcher),
):
    """Command session endpoint for device clients."""
    user_agent = websocket.headers.get("user-agent", "Unknown browser")
    client = websocket.client
    logger.info("`%s` at %s connected.", user_agent, f"{client.host}:{client.port}" if client else "unknown")
    await handle_ws_connection(websocket, dispatcher)
