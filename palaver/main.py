"""FastAPI entrypoint for the functions the chat client calls."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI

from .config import settings
from .routers import chat, realtime

logger = logging.getLogger(__name__)


def create_app(http_client: Optional[httpx.AsyncClient] = None) -> FastAPI:
    """Instantiate the gateway; ``http_client`` replaces the upstream client (tests)."""

    logging.basicConfig(level=settings.log_level)

    @asynccontextmanager
    async def lifespan(application: FastAPI):
        owned = http_client is None
        application.state.http_client = http_client or httpx.AsyncClient(timeout=settings.http_timeout)
        try:
            yield
        finally:
            if owned:
                await application.state.http_client.aclose()

    application = FastAPI(
        title="Palaver Functions",
        description="Chat streaming, image generation, realtime credentials and voice-note transcription.",
        version="0.1.0",
        lifespan=lifespan,
    )
    application.include_router(chat.router)
    application.include_router(realtime.router)

    @application.get("/")
    async def root() -> dict[str, str]:
        """Lightweight health endpoint for service discovery."""
        return {"service": "palaver-functions", "status": "ok"}

    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
