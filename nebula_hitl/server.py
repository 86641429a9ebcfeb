"""HTTP surface of the webhook ingress."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse

from .config import HitlConfig, load_config
from .ingress import WebhookIngress

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Nebula HITL webhook ingress starting")
    yield
    logger.info("Nebula HITL webhook ingress shutting down")


def create_webhook_router(ingress: WebhookIngress, config: HitlConfig) -> APIRouter:
    """Router serving ``POST /{prefix}/{executionHandle}/{webhookPath}``."""
    router = APIRouter()

    @router.post(f"/{config.waiting_path_prefix}/{{execution_handle}}/{config.webhook_path}")
    async def receive_response(execution_handle: str, request: Request) -> JSONResponse:
        try:
            body = await request.json()
        except ValueError:
            body = None
        result = await ingress.handle(execution_handle, body)
        return JSONResponse(status_code=result.status_code, content=result.body)

    return router


def create_app(ingress: WebhookIngress, config: Optional[HitlConfig] = None) -> FastAPI:
    """Create the FastAPI application for ``ingress``."""
    from . import __version__

    config = config or load_config()
    app = FastAPI(
        title="Nebula HITL Webhook Ingress",
        version=__version__,
        lifespan=lifespan,
    )
    app.include_router(create_webhook_router(ingress, config), tags=["webhooks"])

    @app.get("/health", tags=["health"])
    async def health() -> dict:
        return {"status": "ok"}

    return app
