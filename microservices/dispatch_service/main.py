"""Dispatch Service process host: wires dependencies and runs the reconciliation loop."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, HTTPException
import uvicorn

from core.config import get_settings, setup_logging
from core.nats_client import get_event_bus

from .dispatch_service import DispatchService
from .factory import create_dispatch_service

logger = logging.getLogger(__name__)

SERVICE_NAME = "dispatch_service"
SERVICE_VERSION = "1.0.0"

event_bus = None
dispatch_service: Optional[DispatchService] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global event_bus, dispatch_service

    settings = get_settings()
    setup_logging(settings.logging)

    # Initialize event bus for event-driven communication
    try:
        event_bus = await get_event_bus(SERVICE_NAME, config=settings.infra)
        logger.info("Event bus initialized successfully")
    except Exception as e:
        logger.warning(f"Failed to initialize event bus: {e}. Continuing without event publishing.")
        event_bus = None

    dispatch_service = await create_dispatch_service(settings=settings, event_bus=event_bus)
    dispatch_service.start()
    logger.info("Dispatch Service started")

    yield

    # Cleanup
    await dispatch_service.stop()
    optimizer = dispatch_service.selector.optimizer
    if hasattr(optimizer, "close"):
        await optimizer.close()

    if event_bus:
        try:
            await event_bus.close()
            logger.info("Event bus closed")
        except Exception as e:
            logger.error(f"Error closing event bus: {e}")

    logger.info("Dispatch Service shutting down...")


app = FastAPI(title=SERVICE_NAME, version=SERVICE_VERSION, lifespan=lifespan)


@app.get("/api/v1/dispatch/health")
@app.get("/health")
async def health():
    return {
        "status": "ok",
        "service": SERVICE_NAME,
        "loop_running": bool(dispatch_service and dispatch_service.reconciler.running),
        "event_bus_connected": bool(event_bus and event_bus.is_connected),
        "timestamp": datetime.utcnow().isoformat(),
    }


@app.get("/api/v1/dispatch/status")
async def status():
    if not dispatch_service:
        raise HTTPException(status_code=503, detail="Dispatch service not available")
    return dispatch_service.status().model_dump(mode="json")


if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "microservices.dispatch_service.main:app",
        host=settings.dispatch.service_host,
        port=settings.dispatch.service_port,
        log_level=settings.logging.log_level.lower(),
    )
