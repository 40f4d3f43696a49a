from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.concurrency import run_in_threadpool
from routers.auth import auth_router
from routers.rooms import rooms_router
from backend import RedisBackend, redis_backend
from relay import ChannelRelay, Connection
from auth import extract_bearer
from constants import ALLOWED_ORIGINS
from errors import AppError, Unauthenticated
from middleware import SecurityHeadersMiddleware, build_limiter
from typing import Optional
from datetime import datetime, timezone
import json
import time
from logging_config import get_logger, setup_logging
import os

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)

# Websocket close code for policy violations (refused handshake)
WS_POLICY_VIOLATION = 1008


def create_app(
    backend: Optional[RedisBackend] = None,
    relay: Optional[ChannelRelay] = None,
    rate_limit: Optional[str] = None,
    rate_limit_enabled: Optional[bool] = None,
) -> FastAPI:
    """Build the application around one store backend and one relay instance."""
    backend = backend or redis_backend
    relay = relay or ChannelRelay()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Blocks startup until the store answers, retrying forever
        await run_in_threadpool(backend.connect)
        yield
        logger.info(f"Shutting down with {relay.connection_count} open signaling connections")

    app = FastAPI(title="StudyRooms API", lifespan=lifespan)
    app.state.backend = backend
    app.state.relay = relay
    app.state.started_at = time.monotonic()
    app.state.limiter = build_limiter(rate_limit, rate_limit_enabled)

    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    allow_all = "*" in ALLOWED_ORIGINS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if allow_all else ALLOWED_ORIGINS,
        # Credentials cannot be combined with a wildcard origin
        allow_credentials=not allow_all,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthenticated) else None
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message}, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        logger.info(f"Rejected malformed request to {request.url.path}: {exc.errors()}")
        return JSONResponse(status_code=400, content={"error": "Invalid request body"})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
        return JSONResponse(status_code=500, content={"error": "Something went wrong!"})

    app.include_router(auth_router)
    app.include_router(rooms_router)

    @app.get("/", response_class=PlainTextResponse)
    async def root():
        return "Study Platform API"

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.monotonic() - app.state.started_at, 3),
        }

    @app.websocket("/ws")
    async def signaling_endpoint(websocket: WebSocket, token: Optional[str] = None):
        """Signaling socket.

        Query parameters:
        - token: bearer token; ``Authorization: Bearer`` is accepted as well

        Frames are JSON objects ``{"event": ..., "data": ...}``.
        """
        connection = Connection(websocket)
        token = token or extract_bearer(websocket.headers.get("authorization"))
        try:
            identity = relay.admit(connection, token)
        except Unauthenticated as e:
            await websocket.close(code=WS_POLICY_VIOLATION, reason=e.reason)
            return

        message_count = 0
        try:
            await websocket.accept()
            logger.info(f"Signaling connection {connection.connection_id} opened by user {identity.user_id}")

            while True:
                frame = await websocket.receive()
                if frame["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(frame.get("code", 1000))
                message_count += 1
                data = frame.get("text")
                if data is None:
                    logger.warning(f"Ignoring binary frame #{message_count} from connection {connection.connection_id}")
                    continue
                try:
                    message = json.loads(data)
                except json.JSONDecodeError:
                    logger.warning(f"Ignoring non-JSON frame #{message_count} from connection {connection.connection_id}")
                    continue
                if not isinstance(message, dict) or not message.get("event"):
                    logger.warning(f"Ignoring frame #{message_count} without an event from connection {connection.connection_id}")
                    continue

                await relay.dispatch(connection, message["event"], message.get("data"))
        except WebSocketDisconnect:
            logger.info(f"Signaling connection {connection.connection_id} closed by client")
        except Exception as e:
            logger.error(f"Error on signaling connection {connection.connection_id}: {e}", exc_info=True)
            try:
                await websocket.close(code=1011)
            except Exception as close_error:
                logger.debug(f"Error closing WebSocket: {close_error}")
        finally:
            relay.disconnect(connection)

    logger.info("FastAPI application initialized")
    return app


app = create_app()
