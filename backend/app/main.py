import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.database import init_db
from app.core.errors import (
    AuthorizationError,
    ChatError,
    ConflictError,
    NotFoundError,
    TransportError,
    ValidationError,
)
from app.core.feed import feed
from app.api import conversations, profiles, realtime

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Configure logging based on debug setting
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s" if settings.debug
        else "%(levelname)-8s %(name)s: %(message)s",
    )

    init_db()

    yield

    # Drop live subscriptions on shutdown
    feed.close()


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(profiles.router, prefix="/api/profiles", tags=["profiles"])
app.include_router(conversations.router, prefix="/api/conversations", tags=["conversations"])
app.include_router(realtime.router, prefix="/api/realtime", tags=["realtime"])

_ERROR_STATUS = [
    (NotFoundError, 404),
    (AuthorizationError, 403),
    (ValidationError, 422),
    (ConflictError, 409),
    (TransportError, 503),
]


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError):
    status = next((code for cls, code in _ERROR_STATUS if isinstance(exc, cls)), 400)
    if status == 403:
        logger.warning(f"Denied {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=status, content={"detail": str(exc)})


@app.get("/api/health")
async def health():
    return {"status": "ok", "app": settings.app_name}
