"""GrowthSync — Sync status events.

The orchestrator emits one event per state change; what happens to it (UI
toast, websocket push, log line) belongs to the notifier.
"""

from datetime import datetime, timezone
from typing import List, Optional, Protocol

from pydantic import BaseModel, Field

from growthsync.core.logging import get_logger
from growthsync.models.sync_models import SyncStatus

logger = get_logger("sync.status")


class StatusEvent(BaseModel):
    project_id: str
    source: Optional[str] = None
    status: SyncStatus
    stage: Optional[str] = None
    message: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class StatusNotifier(Protocol):
    def notify(self, event: StatusEvent) -> None: ...


class LoggingNotifier:
    """Default notifier: one structured log line per event."""

    def notify(self, event: StatusEvent) -> None:
        level = logger.error if event.status == SyncStatus.ERROR else logger.info
        level(
            event.message or f"{event.stage or 'sync'} {event.status.value}",
            extra={
                "project_id": event.project_id,
                "source": event.source,
                "status": event.status.value,
            },
        )


class RecordingNotifier:
    """Keeps the most recent events in memory."""

    def __init__(self, limit: int = 500):
        self.events: List[StatusEvent] = []
        self.limit = limit

    def notify(self, event: StatusEvent) -> None:
        self.events.append(event)
        if len(self.events) > self.limit:
            del self.events[: len(self.events) - self.limit]
