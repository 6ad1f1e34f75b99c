"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from grounded_chat.api.chat import router as chat_router
from grounded_chat.api.dependencies import get_deferred_runner
from grounded_chat.api.gaps import router as gaps_router
from grounded_chat.api.health import router as health_router
from grounded_chat.api.pairs import router as pairs_router
from grounded_chat.api.sessions import router as sessions_router
from grounded_chat.config import settings
from grounded_chat.db.database import init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield
    # Let post-processing of finished streams land before shutdown
    await get_deferred_runner().drain(timeout=10.0)


app = FastAPI(
    title=settings.APP_NAME,
    description="Knowledge-grounded chat with gap tracking and streaming answers",
    version="0.1.0",
    lifespan=lifespan,
)

# Widget is embedded on customer sites
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router)
app.include_router(chat_router)
app.include_router(gaps_router)
app.include_router(pairs_router)
app.include_router(sessions_router)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic application info."""
    return {
        "name": settings.APP_NAME,
        "version": "0.1.0",
        "docs": "/docs",
    }
