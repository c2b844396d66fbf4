"""FastAPI application: health, readiness and the gateway webhook."""

from __future__ import annotations

import os
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .. import __version__
from ..bot.core import GalleryBot
from ..gateway.events import GatewayEvent
from ..gateway.signing import verify_signature

logger = structlog.get_logger()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_app(bot: GalleryBot, *, webhook_secret: Optional[str] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    started_at = time.monotonic()

    app = FastAPI(
        title="Gallerybot",
        description="WhatsApp photo upload bot for the class gallery",
        version=__version__,
    )

    @app.get("/health")
    async def health_check() -> Dict[str, Any]:
        """Liveness: answers whenever the process is up."""
        return {
            "status": "ok",
            "uptime_seconds": round(time.monotonic() - started_at, 3),
            "pid": os.getpid(),
            "timestamp": _now_iso(),
        }

    @app.get("/ready")
    async def readiness_check() -> JSONResponse:
        """Readiness: only when the WhatsApp connection is open."""
        supervisor = bot.supervisor
        if supervisor.is_ready:
            return JSONResponse(
                status_code=200,
                content={
                    "status": "ready",
                    "connection_state": supervisor.state,
                    "timestamp": _now_iso(),
                },
            )
        return JSONResponse(
            status_code=503,
            content={
                "status": "not_ready",
                "connection_state": supervisor.state,
                "timestamp": _now_iso(),
            },
        )

    @app.post("/gateway/events", status_code=202)
    async def gateway_events(request: Request) -> Dict[str, str]:
        """Receive one Baileys event from the gateway."""
        body = await request.body()
        if webhook_secret and not verify_signature(
            body,
            signature=request.headers.get("X-Signature"),
            timestamp=request.headers.get("X-Timestamp"),
            secret=webhook_secret,
        ):
            logger.warning("Rejected unsigned gateway event")
            raise HTTPException(status_code=401, detail="invalid signature")

        try:
            event = GatewayEvent.model_validate_json(body)
        except ValidationError as e:
            raise HTTPException(status_code=422, detail=str(e))

        bot.handle_event(event.event, event.data)
        return {"status": "accepted"}

    return app
