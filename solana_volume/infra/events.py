"""
Typed lifecycle events

Listeners register per EventKind. Events are advisory: a listener that
raises is logged and skipped, it never changes the emitting operation.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class EventKind(Enum):
    # Transaction lifecycle
    TX_SENT = "tx_sent"
    TX_CONFIRMED = "tx_confirmed"
    TX_FAILED = "tx_failed"
    TX_RETRY = "tx_retry"
    FEE_SPIKE_DETECTED = "fee_spike_detected"

    # Batch funding
    FUNDING_STARTED = "funding_started"
    CHUNK_STARTED = "chunk_started"
    CHUNK_COMPLETED = "chunk_completed"
    FUNDING_COMPLETED = "funding_completed"

    # Orchestrated run
    RUN_STARTED = "run_started"
    STAGE_CHANGED = "stage_changed"
    SCHEDULE_GENERATED = "schedule_generated"
    RUN_COMPLETED = "run_completed"
    RUN_FAILED = "run_failed"


@dataclass(frozen=True)
class Event:
    kind: EventKind
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Listener = Callable[[Event], None]


class EventBus:
    """
    Listener registry keyed by event kind

    Usage:
        bus = EventBus()
        bus.on(EventKind.TX_CONFIRMED, lambda e: print(e.data["signature"]))
        bus.on_any(recorder.append)
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._listeners: Dict[EventKind, List[Listener]] = {}
        self._any_listeners: List[Listener] = []

    def on(self, kind: EventKind, listener: Listener) -> Listener:
        """Register listener for one kind; returns it for later off()"""
        with self._lock:
            self._listeners.setdefault(kind, []).append(listener)
        return listener

    def on_any(self, listener: Listener) -> Listener:
        """Register listener for every kind"""
        with self._lock:
            self._any_listeners.append(listener)
        return listener

    def off(self, listener: Listener, kind: Optional[EventKind] = None) -> None:
        """Remove listener from one kind, or from everywhere when kind is None"""
        with self._lock:
            kinds = [kind] if kind is not None else list(self._listeners)
            for k in kinds:
                registered = self._listeners.get(k, [])
                if listener in registered:
                    registered.remove(listener)
            if kind is None and listener in self._any_listeners:
                self._any_listeners.remove(listener)

    def listener_count(self, kind: EventKind) -> int:
        with self._lock:
            return len(self._listeners.get(kind, [])) + len(self._any_listeners)

    def emit(self, kind: EventKind, **data: Any) -> Event:
        event = Event(kind=kind, data=data)
        with self._lock:
            listeners = list(self._listeners.get(kind, [])) + list(self._any_listeners)

        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(f"Event listener failed for {kind.value}")
        return event
