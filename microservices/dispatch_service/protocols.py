"""
Dispatch Service Protocols (Interfaces)

These interfaces define contracts for dependency injection.
NO import-time I/O dependencies - safe to import anywhere.
"""
from typing import Any, AsyncContextManager, Dict, List, Optional, Protocol, Sequence, runtime_checkable

# Import only models (no I/O dependencies)
from .models import AssignmentSuggestion, Courier, Order


# ============================================================================
# Custom Exceptions - defined here to avoid importing repository
# ============================================================================

class DispatchServiceError(Exception):
    """Base exception for dispatch service errors"""
    error_code = "DISPATCH_ERROR"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__doc__ or ""


class NotFoundError(DispatchServiceError):
    """Order or courier not found"""
    error_code = "NOT_FOUND"


class AlreadyTerminalError(DispatchServiceError):
    """That order was cancelled."""
    error_code = "ALREADY_TERMINAL"


class OutOfSyncError(DispatchServiceError):
    """Requested status is not the legal next status (stale or racing client)"""
    error_code = "OUT_OF_SYNC"


class PermissionDeniedError(DispatchServiceError):
    """Permission denied."""
    error_code = "PERMISSION_DENIED"


class InvalidStatusError(DispatchServiceError):
    """Invalid status."""
    error_code = "INVALID_STATUS"


class PriceMismatchError(DispatchServiceError):
    """Submitted price disagrees with the current price"""
    error_code = "PRICE_MISMATCH"


class ServiceClosedError(DispatchServiceError):
    """Zone closed or not serviced at the requested time"""
    error_code = "SERVICE_CLOSED"


class CapacityExceededError(DispatchServiceError):
    """No free courier to honor the requested delivery window"""
    error_code = "CAPACITY_EXCEEDED"


class OptimizerUnavailableError(DispatchServiceError):
    """Optimizer call failed"""
    error_code = "OPTIMIZER_UNAVAILABLE"


# ============================================================================
# Persistence Protocol
# ============================================================================

@runtime_checkable
class DispatchStoreProtocol(Protocol):
    """
    Interface for the relational store.

    Predicates are equality maps; list/tuple values mean IN, None means IS NULL.
    """

    async def select(
        self,
        table: str,
        columns: Optional[Sequence[str]] = None,
        predicate: Optional[Dict[str, Any]] = None,
        order: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Select rows"""
        ...

    async def insert(self, table: str, record: Dict[str, Any]) -> int:
        """Insert one row, returns affected row count"""
        ...

    async def update(self, table: str, changes: Dict[str, Any], predicate: Dict[str, Any]) -> int:
        """Update rows matching predicate, returns affected row count"""
        ...

    def transaction(self) -> AsyncContextManager["DispatchStoreProtocol"]:
        """Run a group of operations atomically"""
        ...


# ============================================================================
# Optimizer Protocol
# ============================================================================

@runtime_checkable
class OptimizerProtocol(Protocol):
    """Ranks order/courier pairings. Nothing is assumed about its algorithm."""

    async def suggest(
        self,
        orders: List[Order],
        couriers: List[Courier],
    ) -> Dict[str, List[AssignmentSuggestion]]:
        """Return order_id -> candidate couriers with rank and is_new flag"""
        ...


# ============================================================================
# Notification Protocol
# ============================================================================

@runtime_checkable
class NotifierProtocol(Protocol):
    """Best-effort, fire-and-forget delivery of a message to a user or courier"""

    async def notify(self, recipient_id: str, message: str) -> bool:
        """Send a message"""
        ...


# ============================================================================
# Event Bus Protocol
# ============================================================================

@runtime_checkable
class EventBusProtocol(Protocol):
    """Interface for Event Bus - no I/O imports"""

    async def publish_event(self, event: Any) -> None:
        """Publish an event"""
        ...
