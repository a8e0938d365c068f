#!/usr/bin/env python3
"""
Core Module for the Dispatch Service

Shared infrastructure used by the dispatch microservice.

COMPONENTS:
    - config/: Environment-driven settings (infra, dispatch, logging)
    - postgres_client.py: asyncpg store with select/insert/update/transaction
    - nats_client.py: NATS JetStream event bus
    - service_client_base.py: httpx base client for peer services
    - background_tasks.py: Fire-and-forget task tracking

USAGE:
    from core.config import get_settings
    from core.nats_client import get_event_bus
"""

__version__ = "1.0.0"
