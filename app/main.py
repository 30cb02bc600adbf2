"""FastAPI application entry point for the Krismini chat backend."""
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routes.chat import router as chat_router
from app.api.routes.completion import router as completion_router
from app.config import settings
from app.core.deps import get_gateway, get_retry_queue
from app.database import dispose_engine, init_db
from app.services.message_gateway import MessageGateway

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup; stop the retry queue and pool on shutdown."""
    try:
        await init_db()
    except Exception as e:
        logger.error(f"Database init skipped: {e}")

    yield

    await get_retry_queue().close()
    await dispose_engine()


app = FastAPI(
    title="Krismini Chat API",
    description="Chat history persistence and text completion for Krismini",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    """Process liveness."""
    return {"status": "ok"}


@app.get("/health/db")
async def database_health(gateway: MessageGateway = Depends(get_gateway)):
    """Whether the message store is reachable."""
    result = await gateway.health_check()
    if not result.success:
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "detail": result.error},
        )
    return {"status": "ok"}


app.include_router(chat_router)
app.include_router(completion_router)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Hide internal error details from clients."""
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )
