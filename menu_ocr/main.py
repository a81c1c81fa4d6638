from __future__ import annotations

import logging

from fastapi import FastAPI

from menu_ocr.api.routes import router
from menu_ocr.core.config import settings
from menu_ocr.core.logging import configure_logging
from menu_ocr.db.init_db import init_db
from menu_ocr.ocr.factory import build_coordinator, get_usage_tracker


def create_app() -> FastAPI:
    configure_logging(settings.log_level)
    app = FastAPI(title="Menu OCR Service", version="0.1.0")
    app.include_router(router)

    @app.get("/")
    async def root():
        return {
            "message": "Welcome to the Menu OCR API",
            "docs": "/docs",
            "health": "/health"
        }

    @app.on_event("startup")
    async def _startup() -> None:
        logging.getLogger(__name__).info("startup")
        await init_db()
        tracker = get_usage_tracker(settings)
        coordinator = build_coordinator(settings, usage_tracker=tracker)
        await coordinator.initialize(cloud_credential=settings.cloud_vision_api_key)
        app.state.usage_tracker = tracker
        app.state.coordinator = coordinator

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        coordinator = getattr(app.state, "coordinator", None)
        if coordinator is not None:
            await coordinator.cleanup()
        logging.getLogger(__name__).info("shutdown")

    return app


app = create_app()
