"""
Import completion and failure events.

The pipeline emits `import.completed` after a successful commit and
`import.failed` after a reverted one. In-process listeners (cache
invalidation and the like) subscribe here; a Telegram message is sent
as well when enabled in settings.

Delivery is best effort: a failing listener or Telegram call is logged
and never changes the outcome of the commit.
"""

from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Callable, Optional

import structlog

from config.settings import Settings, get_settings
from exceptions import TelegramError
from integrations.telegram import send_import_event
from models.import_session import ImportSession

logger = structlog.get_logger(__name__)

IMPORT_COMPLETED = "import.completed"
IMPORT_FAILED = "import.failed"


@dataclass
class ImportEvent:
    """Outcome of one commit attempt."""
    name: str
    session_id: str
    owner_id: str
    scope_id: str
    entity_type: str
    row_count: int
    created: int = 0
    updated: int = 0
    error: Optional[str] = None
    error_code: Optional[str] = None
    row_index: int = 0
    occurred_at: str = ""

    @classmethod
    def for_session(cls, name: str, session: ImportSession, **kwargs) -> "ImportEvent":
        return cls(
            name=name,
            session_id=session.id,
            owner_id=session.owner_id,
            scope_id=session.scope_id,
            entity_type=session.entity_type.value,
            row_count=len(session.draft),
            occurred_at=datetime.now(timezone.utc).isoformat(),
            **kwargs,
        )

    def to_dict(self) -> dict:
        return asdict(self)


ImportEventListener = Callable[[ImportEvent], None]


class ImportEventService:
    """Dispatches import events to listeners and Telegram."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._listeners: list[ImportEventListener] = []

    def subscribe(self, listener: ImportEventListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: ImportEventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, event: ImportEvent) -> None:
        """Deliver an event to every listener."""
        logger.info(
            "import_event_emitted",
            event_name=event.name,
            session_id=event.session_id,
            scope_id=event.scope_id,
            entity_type=event.entity_type,
            created=event.created,
            updated=event.updated,
            error_code=event.error_code
        )

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(
                    "import_event_listener_failed",
                    event_name=event.name,
                    listener=getattr(listener, "__name__", repr(listener)),
                    error=str(e)
                )

        if self.settings.telegram_enabled:
            try:
                send_import_event(event)
            except TelegramError as e:
                logger.warning(
                    "import_event_telegram_failed",
                    session_id=event.session_id,
                    error=str(e)
                )


# Singleton instance
_event_service: Optional[ImportEventService] = None


def get_import_event_service() -> ImportEventService:
    """Get or create ImportEventService instance."""
    global _event_service
    if _event_service is None:
        _event_service = ImportEventService()
    return _event_service
