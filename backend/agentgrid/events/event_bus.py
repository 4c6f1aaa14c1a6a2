"""
Bounded publish/subscribe event bus with an append-only audit log
"""

import asyncio
import inspect
import json
import time
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Union

import structlog

from agentgrid.coordination.models import utc_now
from agentgrid.core.config import Settings, get_settings
from agentgrid.core.exceptions import EventHandlerError
from agentgrid.events.event_log import EventLogSink, FileEventLog
from agentgrid.events.payloads import EventPayload, EventType, build_payload

logger = structlog.get_logger(__name__)

Handler = Callable[["Event"], Union[None, Awaitable[None]]]
ErrorListener = Callable[["Event", EventHandlerError], Union[None, Awaitable[None]]]

_DEFAULT_SINK = object()


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


@dataclass
class Event:
    """Published event; only processed/processed_at/error change after publish"""

    id: str
    type: EventType
    payload: EventPayload
    source: str
    created_at: datetime = field(default_factory=utc_now)
    processed: bool = False
    processed_at: Optional[datetime] = None
    error: Optional[str] = None

    def payload_json(self) -> str:
        return json.dumps(self.payload.model_dump(), sort_keys=True, default=_json_default)

    def envelope(self) -> Dict[str, Any]:
        """Generic serializable form"""
        return {
            "id": self.id,
            "type": self.type.value,
            "source": self.source,
            "created_at": self.created_at.isoformat(),
            "payload": json.loads(self.payload_json()),
            "processed": self.processed,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "error": self.error,
        }

    def to_log_line(self) -> str:
        return f"{self.created_at.isoformat()}|{self.type.value}|{self.source}|{self.id}|{self.payload_json()}"


@dataclass
class EventSummary:
    id: str
    type: str
    source: str
    created_at: datetime
    processed: bool
    error: Optional[str] = None


def generate_event_id() -> str:
    return f"evt_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


async def _invoke(callback: Callable, *args) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class EventBus:
    """
    Single-worker event queue:
    - Drop-oldest backpressure at capacity
    - FIFO, one drain loop at a time
    - Handler failures recorded on the event, never stop the drain
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        log_sink: Any = _DEFAULT_SINK,
        metrics: Any = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings or get_settings()
        if log_sink is _DEFAULT_SINK:
            log_sink = FileEventLog(self.settings.EVENT_LOG_PATH) if self.settings.EVENT_LOG_ENABLED else None
        self.log_sink: Optional[EventLogSink] = log_sink
        self.metrics = metrics
        self.clock = clock

        self.max_queue_size = self.settings.EVENT_QUEUE_SIZE
        self._queue: Deque[Event] = deque()
        self._history: Deque[Event] = deque(maxlen=self.settings.EVENT_HISTORY_SIZE)
        self._handlers: Dict[EventType, List[Handler]] = defaultdict(list)
        self._global_handlers: List[Handler] = []
        self._processed_listeners: List[Handler] = []
        self._error_listeners: List[ErrorListener] = []

        self.processing = False
        self._current: Optional[Event] = None
        self._drain_task: Optional[asyncio.Task] = None

        self.stats = {
            "published": 0,
            "processed": 0,
            "failed": 0,
            "dropped": 0,
            "log_failures": 0,
        }

    def subscribe(self, event_type: EventType, handler: Handler):
        self._handlers[EventType(event_type)].append(handler)
        logger.debug("Handler subscribed", event_type=EventType(event_type).value)

    def subscribe_all(self, handler: Handler):
        self._global_handlers.append(handler)

    def unsubscribe(self, event_type: EventType, handler: Handler) -> bool:
        handlers = self._handlers.get(EventType(event_type), [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def unsubscribe_all(self, handler: Handler) -> bool:
        if handler in self._global_handlers:
            self._global_handlers.remove(handler)
            return True
        return False

    def on_processed(self, listener: Handler):
        self._processed_listeners.append(listener)

    def on_error(self, listener: ErrorListener):
        self._error_listeners.append(listener)

    async def publish(
        self,
        event_type: Union[EventType, str],
        payload: Any = None,
        source: str = "system",
    ) -> str:
        """Log, enqueue and schedule processing; returns the event id"""
        event_type = EventType(event_type)
        event = Event(
            id=generate_event_id(),
            type=event_type,
            payload=build_payload(event_type, payload),
            source=source,
            created_at=self.clock(),
        )

        if self.log_sink is not None:
            try:
                await self.log_sink.append(event.to_log_line())
            except Exception as e:
                # Delivery does not depend on the audit log
                self.stats["log_failures"] += 1
                logger.error(
                    "Failed to write event log", event_id=event.id, event_type=event_type.value, error=str(e)
                )

        if len(self._queue) >= self.max_queue_size:
            dropped = self._queue.popleft()
            self.stats["dropped"] += 1
            if self.metrics:
                self.metrics.record_event_dropped(dropped.type.value)
            logger.warning(
                "Event queue full, dropping oldest event",
                dropped_event_id=dropped.id,
                dropped_event_type=dropped.type.value,
                max_queue_size=self.max_queue_size,
            )

        self._queue.append(event)
        self._history.append(event)
        self.stats["published"] += 1
        if self.metrics:
            self.metrics.record_event_published(event_type.value)

        logger.info("Event published", event_id=event.id, event_type=event_type.value, source=source)

        if not self.processing:
            self.processing = True
            self._drain_task = asyncio.create_task(self._drain_queue())

        return event.id

    async def _drain_queue(self):
        try:
            while self._queue:
                event = self._queue.popleft()
                self._current = event
                await self._process_event(event)
                self._current = None
        finally:
            self._current = None
            self.processing = False

    async def _process_event(self, event: Event):
        handlers = list(self._handlers.get(event.type, [])) + list(self._global_handlers)
        failure: Optional[EventHandlerError] = None

        for handler in handlers:
            try:
                await _invoke(handler, event)
            except Exception as e:
                logger.error(
                    "Event handler failed",
                    event_id=event.id,
                    event_type=event.type.value,
                    handler=getattr(handler, "__name__", repr(handler)),
                    error=str(e),
                )
                if failure is None:
                    failure = EventHandlerError(event.id, event.type.value, e)

        event.processed = True
        event.processed_at = self.clock()

        if failure is None:
            self.stats["processed"] += 1
            for listener in list(self._processed_listeners):
                await self._notify(listener, event)
        else:
            event.error = failure.detail
            self.stats["failed"] += 1
            for listener in list(self._error_listeners):
                await self._notify(listener, event, failure)

    async def _notify(self, listener: Callable, *args):
        try:
            await _invoke(listener, *args)
        except Exception as e:
            logger.error(
                "Event listener failed",
                listener=getattr(listener, "__name__", repr(listener)),
                error=str(e),
            )

    async def wait_until_idle(self, timeout: Optional[float] = None):
        """Wait for the current drain loop to empty the queue"""
        while self._drain_task is not None and not self._drain_task.done():
            await asyncio.wait_for(asyncio.shield(self._drain_task), timeout)

    def status(self) -> Dict[str, Any]:
        return {
            "queue_length": len(self._queue),
            "max_queue_size": self.max_queue_size,
            "processing": self.processing,
            "unprocessed": len(self._queue) + (1 if self._current is not None else 0),
            "subscribers": {t.value: len(h) for t, h in self._handlers.items() if h},
            "global_subscribers": len(self._global_handlers),
            **self.stats,
        }

    def recent(self, n: int = 10) -> List[EventSummary]:
        """Newest-last summaries of recently published events"""
        if n <= 0:
            return []
        return [
            EventSummary(
                id=e.id,
                type=e.type.value,
                source=e.source,
                created_at=e.created_at,
                processed=e.processed,
                error=e.error,
            )
            for e in list(self._history)[-n:]
        ]

    def cleanup(self, max_age_hours: Optional[float] = None) -> int:
        """Drop processed events older than the retention window from history"""
        if max_age_hours is None:
            max_age_hours = self.settings.EVENT_RETENTION_HOURS
        cutoff = self.clock() - timedelta(hours=max_age_hours)

        kept = [e for e in self._history if not (e.processed and e.created_at < cutoff)]
        removed = len(self._history) - len(kept)
        self._history = deque(kept, maxlen=self._history.maxlen)

        if removed:
            logger.info("Cleaned up old events", removed=removed)
        return removed

    async def close(self):
        await self.wait_until_idle()
        if self.log_sink is not None:
            await self.log_sink.close()
