from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, List, Optional, Tuple, Type, TypeVar
from uuid import uuid4

from .events import ConversionEvent

E = TypeVar("E", bound=ConversionEvent)


@dataclass
class ConversionContext:
    """
    Append-only event ledger for a single conversion run.

    Responsibilities
    - Record ConversionEvents in emission order
    - Provide immutable external views of the recorded events

    The document itself is never stored here; components mutate the tree and
    report what they did through emit_event.
    """

    context_id: str = field(default_factory=lambda: uuid4().hex)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    operation_name: Optional[str] = None

    _events: List[ConversionEvent] = field(default_factory=list, init=False, repr=False)
    _lock: Lock = field(default_factory=Lock, init=False, repr=False)

    def emit_event(self, event: ConversionEvent) -> "ConversionContext":
        """
        Append a ConversionEvent to the ledger.

        Raises
        - TypeError: if event is not a ConversionEvent.
        """

        if not isinstance(event, ConversionEvent):
            raise TypeError("Only ConversionEvent instances may be emitted")

        with self._lock:
            self._events.append(event)

        return self

    def get_events(self) -> Tuple[ConversionEvent, ...]:
        """
        Return an immutable snapshot of recorded events in order.
        """

        with self._lock:
            return tuple(self._events)

    def events_of(self, event_type: Type[E]) -> List[E]:
        with self._lock:
            return [e for e in self._events if isinstance(e, event_type)]

    def event_counts(self) -> Dict[str, int]:
        with self._lock:
            return dict(Counter(e.event_type for e in self._events))
