# anchorreg/events.py
"""
Registry notifications for external observers.

Every state change in the registry produces one or more events:
- AnchorCreated: a new anchor was recorded
- AnchorLinked: one direction of a link (two per link operation)
- AnchorVerified: the admin verified an anchor
- AdminChanged: the admin role moved to a new identity

Events are kept in an append-only log for auditability and pushed to
subscribers after the change that produced them is committed.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Tuple

logger = logging.getLogger(__name__)

ANCHOR_CREATED = "AnchorCreated"
ANCHOR_LINKED = "AnchorLinked"
ANCHOR_VERIFIED = "AnchorVerified"
ADMIN_CHANGED = "AdminChanged"

EVENT_TYPES = (ANCHOR_CREATED, ANCHOR_LINKED, ANCHOR_VERIFIED, ADMIN_CHANGED)


def _now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


@dataclass
class RegistryEvent:
    """
    A single notification.

    Attributes:
        sequence: 1-based position in the event log
        event_type: One of EVENT_TYPES
        data: Event payload (anchor ids, identities, hashes)
        emitted_at: ISO timestamp
    """
    sequence: int
    event_type: str
    data: Dict[str, Any]
    emitted_at: str = field(default_factory=_now_iso)

    @property
    def anchor_ids(self) -> List[int]:
        """Anchor ids this event refers to."""
        ids = []
        for key in ("anchor_id", "from_id", "to_id"):
            if key in self.data:
                ids.append(self.data[key])
        return ids

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence": self.sequence,
            "event_type": self.event_type,
            "data": self.data,
            "emitted_at": self.emitted_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RegistryEvent":
        return cls(
            sequence=data["sequence"],
            event_type=data["event_type"],
            data=data["data"],
            emitted_at=data.get("emitted_at", ""),
        )


# Subscriber callback type
EventCallback = Callable[[RegistryEvent], None]


class EventLog:
    """
    Append-only event log with subscribers.

    Events are drafted first and recorded once the change that produced
    them is committed, so readers never see an event that is later
    rolled back. Reads and writes are guarded by the log's own lock.
    """

    def __init__(self):
        self._events: List[RegistryEvent] = []
        self._subscribers: List[EventCallback] = []
        self._lock = threading.Lock()

    def draft(self, entries: List[Tuple[str, Dict[str, Any]]]) -> List[RegistryEvent]:
        """
        Build events that continue the log, without recording them.

        Args:
            entries: (event_type, data) pairs, in order

        Returns:
            Events numbered after the last recorded one
        """
        for event_type, _ in entries:
            if event_type not in EVENT_TYPES:
                raise ValueError(f"Unknown event type: {event_type}")
        with self._lock:
            start = len(self._events) + 1
        return [
            RegistryEvent(sequence=start + i, event_type=event_type, data=dict(data))
            for i, (event_type, data) in enumerate(entries)
        ]

    def record(self, events: List[RegistryEvent]) -> None:
        """Append drafted events. Their sequences must continue the log."""
        with self._lock:
            expected = len(self._events) + 1
            for offset, event in enumerate(events):
                if event.sequence != expected + offset:
                    raise ValueError(
                        f"Event #{event.sequence} does not continue the log (expected #{expected + offset})"
                    )
            self._events.extend(events)

    def append(self, event_type: str, data: Dict[str, Any]) -> RegistryEvent:
        """Record a single event and return it. Does not notify subscribers."""
        event = self.draft([(event_type, data)])[0]
        self.record([event])
        return event

    def subscribe(self, callback: EventCallback) -> None:
        """Register a callback for future events."""
        with self._lock:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: EventCallback) -> bool:
        """Remove a callback. Returns False if it was not registered."""
        with self._lock:
            if callback not in self._subscribers:
                return False
            self._subscribers.remove(callback)
            return True

    def publish(self, event: RegistryEvent) -> None:
        """Deliver an event to every subscriber in registration order."""
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Event subscriber error on {event.event_type} #{event.sequence}: {e}")

    def load(self, events: List[Dict[str, Any]]) -> None:
        """Replace the log with stored events."""
        loaded = [RegistryEvent.from_dict(e) for e in events]
        with self._lock:
            self._events = loaded

    def list(self) -> List[RegistryEvent]:
        """List all events."""
        with self._lock:
            return list(self._events)

    def since(self, sequence: int) -> List[RegistryEvent]:
        """Events recorded after the given sequence number."""
        return [e for e in self.list() if e.sequence > sequence]

    def find_by_type(self, event_type: str) -> List[RegistryEvent]:
        """Find events of one type."""
        return [e for e in self.list() if e.event_type == event_type]

    def find_by_anchor(self, anchor_id: int) -> List[RegistryEvent]:
        """Find events that mention an anchor id."""
        return [e for e in self.list() if anchor_id in e.anchor_ids]

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
