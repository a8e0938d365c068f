"""
Dispatch Service Factory

Factory functions for creating service instances with real dependencies.
This is the ONLY place that imports I/O-dependent modules.

Usage:
    from .factory import create_dispatch_service
    service = await create_dispatch_service(settings, event_bus)
"""
from typing import Optional

from core.config import DispatchSettings, get_settings

from .dispatch_service import DispatchService


async def create_dispatch_service(
    settings: Optional[DispatchSettings] = None,
    event_bus=None,
    store=None,
    optimizer=None,
    notifier=None,
) -> DispatchService:
    """
    Create DispatchService with real dependencies.

    This function imports the real store and clients (which have I/O
    dependencies). Use this in production, NOT in tests.

    Args:
        settings: Combined settings (defaults to the global settings)
        event_bus: Event bus for domain events and notification requests
        store: Relational store override
        optimizer: Optimizer override
        notifier: Notifier override

    Returns:
        DispatchService with zones loaded
    """
    settings = settings or get_settings()

    # Import real adapters here (not at module level)
    if store is None:
        from core.postgres_client import get_postgres_client
        store = await get_postgres_client("dispatch_service", config=settings.infra)

    if optimizer is None:
        from .clients.optimizer_client import OptimizerClient
        optimizer = OptimizerClient(
            base_url=settings.dispatch.optimizer_url,
            timeout=settings.dispatch.optimizer_timeout_seconds,
        )

    if notifier is None:
        from .clients.notification_client import NotificationClient
        notifier = NotificationClient(event_bus=event_bus)

    service = DispatchService(
        store=store,
        optimizer=optimizer,
        notifier=notifier,
        event_bus=event_bus,
        config=settings.dispatch,
    )
    await service.initialize()
    return service
