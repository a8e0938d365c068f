"""
Dispatch Service Clients Module

Adapters for the optimizer and the notification transport
"""

from .optimizer_client import OptimizerClient
from .notification_client import NotificationClient

__all__ = [
    "OptimizerClient",
    "NotificationClient",
]
