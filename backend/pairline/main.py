"""
pairline: FastAPI backend entry point.

Anonymous one-to-one matchmaking: the session registry, the matchmaking
queue, per-room text chat, the signal fallback store, and the WebSocket relay
that carries WebRTC negotiation between two matched participants.
"""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pairline.api import chat, health, matchmaking, report, session, signal
from pairline.config import settings
from pairline.core.errors import AppException, ErrorCode, create_error, log_error
from pairline.database import SessionLocal, create_tables, get_db
from pairline.redis.client import close_redis, init_redis
from pairline.services.session_registry import run_reaper
from pairline.websocket.handlers import match_ws_handler, relay_ws_handler, room_ws_handler
from pairline.websocket.manager import manager

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_redis()
    create_tables()
    reaper = None
    if settings.SESSION_REAPER_ENABLED:
        reaper = asyncio.create_task(run_reaper(SessionLocal, on_rooms_ended=manager.announce_room_ended))
    yield
    if reaper is not None:
        reaper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await reaper
    await close_redis()


app = FastAPI(
    title="pairline",
    description="Anonymous one-to-one text and video chat",
    version="1.0.0",
    debug=settings.DEBUG,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------
# allow_origins=["*"] is incompatible with allow_credentials=True, so a
# wildcard entry switches to allow_origin_regex=".*" instead.
_cors_origins = [o for o in settings.CORS_ORIGINS if o != "*"]
_cors_regex = ".*" if len(_cors_origins) < len(settings.CORS_ORIGINS) else None

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_origin_regex=_cors_regex,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
app.include_router(health.router)
app.include_router(session.router, prefix="/api")
app.include_router(matchmaking.router, prefix="/api")
app.include_router(chat.router, prefix="/api")
app.include_router(signal.router, prefix="/api")
app.include_router(report.router, prefix="/api")

# ---------------------------------------------------------------------------
# WebSocket endpoints
# ---------------------------------------------------------------------------


@app.websocket("/ws/relay/{channel}")
async def relay_websocket_endpoint(websocket: WebSocket, channel: str, db: Session = Depends(get_db)) -> None:
    await relay_ws_handler(websocket, channel, db)


@app.websocket("/ws/matchmaking")
async def match_websocket_endpoint(websocket: WebSocket, db: Session = Depends(get_db)) -> None:
    await match_ws_handler(websocket, db)


@app.websocket("/ws/rooms/{room_id}")
async def room_websocket_endpoint(websocket: WebSocket, room_id: str, db: Session = Depends(get_db)) -> None:
    await room_ws_handler(websocket, room_id, db)


# ---------------------------------------------------------------------------
# Custom exception handlers
# ---------------------------------------------------------------------------


@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    error = exc.error
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": error.user_message,
            "code": error.code.value,
            "recoverable": error.recoverable,
            "action": error.action,
        },
    )


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    error = create_error(ErrorCode.SERVER_ERROR, type(exc).__name__)
    log_error(error, f"{request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": error.user_message,
            "code": error.code.value,
            "recoverable": error.recoverable,
            "action": error.action,
        },
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})
