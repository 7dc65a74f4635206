"""FastAPI entry point for the Nexus study service."""

import logging
from contextlib import asynccontextmanager

import litellm
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config.settings import get_settings
from errors import NexusError
from services.concurrency import ConcurrencyLimitMiddleware
from services.middleware import RequestIdMiddleware, configure_logging

settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

# ── Global LiteLLM settings ──────────────────────────────────
litellm.request_timeout = settings.provider_timeout


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Check store connectivity on startup, close connections on shutdown."""
    from agents.session_coordinator import get_session_coordinator

    coordinator = get_session_coordinator()
    stores = [coordinator.conversations, coordinator.study_chats, coordinator.groups]

    from services.conversation_store import RedisConversationStore
    if isinstance(coordinator.conversations, RedisConversationStore):
        if await coordinator.conversations.ping():
            logger.info("Redis connection verified")
        else:
            logger.warning("Redis connection failed, history will not persist")

    logger.info(
        "Nexus study service ready (model=%s, store=%s, blobs=%s)",
        coordinator.provider.model, settings.store_type, settings.blob_store_type,
    )
    yield

    for store in stores:
        close = getattr(store, "close", None)
        if close is not None:
            await close()


app = FastAPI(
    title="Nexus Study Agents",
    description="Group study chat with a shared AI assistant, lessons and quizzes",
    version="0.4.0",
    lifespan=lifespan,
)

# ── Middleware stack (outermost first) ─────────────────────────
# Order matters: CORS → RequestId → ConcurrencyLimit → route handler
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestIdMiddleware)
app.add_middleware(ConcurrencyLimitMiddleware)


@app.exception_handler(NexusError)
async def nexus_error_handler(request: Request, exc: NexusError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s → %d: %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.code},
    )


# ── Register routers ────────────────────────────────────────
from api.files import router as files_router  # noqa: E402
from api.groups import router as groups_router  # noqa: E402
from api.health import router as health_router  # noqa: E402
from api.realtime import router as realtime_router  # noqa: E402
from api.study_session import router as study_session_router  # noqa: E402
from api.users import router as users_router  # noqa: E402

app.include_router(health_router)
app.include_router(users_router)
app.include_router(groups_router)
app.include_router(study_session_router)
app.include_router(files_router)
app.include_router(realtime_router)


if __name__ == "__main__":
    # The realtime registry is in-process: always a single worker.
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.service_port,
        reload=settings.debug,
        timeout_keep_alive=120,
    )
