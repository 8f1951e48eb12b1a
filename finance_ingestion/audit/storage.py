"""
Audit Storage

DESIGN DECISION: The audit trail is written through an abstract sink.
Ingestion itself never persists anything, so the sink is optional: the host
application plugs in whatever it uses (database table, log shipper), and
tests use the in-memory implementation.
"""

from abc import ABC, abstractmethod
from uuid import UUID

from finance_ingestion.models.audit import AuditEvent


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (one processed document).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events (newest first).
        """
        pass


class InMemoryAuditStorage(AuditStorageInterface):
    """Audit sink kept in process memory. Meant for tests and local runs."""

    def __init__(self, max_events: int = 10_000):
        self._events: list[AuditEvent] = []
        self._max_events = max_events

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        if len(self._events) > self._max_events:
            del self._events[: len(self._events) - self._max_events]
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return [e for e in self._events if e.correlation_id == correlation_id]

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return list(reversed(self._events[-limit:]))

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)
