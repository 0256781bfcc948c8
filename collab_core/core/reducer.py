"""
Deterministic event reducer.

Folds project events into snapshots. Everything here is pure: no I/O,
no clock reads, and inputs are never mutated.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Optional

from .events import Event, EventBody, EventType, ProjectRename, decode_event, parse_event_type


@dataclass(frozen=True)
class Snapshot:
    """Derived project state.

    head_seq is the seq of the last event folded into fields. The
    snapshot is a cache: replaying the event stream from empty must
    reproduce it exactly.
    """
    aggregate_id: str
    head_seq: int = 0
    fields: Dict[str, Any] = field(default_factory=dict)
    updated_at: Optional[datetime] = None

    @classmethod
    def initial(cls, aggregate_id: str) -> "Snapshot":
        return cls(aggregate_id=aggregate_id, head_seq=0, fields={})

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.fields)


def _apply_rename(fields: Dict[str, Any], body: ProjectRename) -> Dict[str, Any]:
    updated = dict(fields)
    updated["name"] = body.name
    return updated


_HANDLERS: Dict[EventType, Callable[[Dict[str, Any], Any], Dict[str, Any]]] = {
    EventType.PROJECT_RENAME: _apply_rename,
}

_unhandled = set(EventType) - set(_HANDLERS)
if _unhandled:
    raise RuntimeError(f"No reducer for event types: {sorted(t.value for t in _unhandled)}")


def apply_body(fields: Dict[str, Any], event_type: EventType, body: EventBody) -> Dict[str, Any]:
    """Fold an already-decoded body into a copy of fields."""
    return _HANDLERS[event_type](fields, body)


def apply_fields(fields: Dict[str, Any], event_type: Any, payload: Any) -> Dict[str, Any]:
    """Validate (type, payload) and fold it into a copy of fields.

    Used on the commit path, where the event has no seq yet.

    Raises:
        UnknownEventType: If the type is not recognized
        InvalidPayload: If the payload fails validation
    """
    parsed_type = parse_event_type(event_type)
    body = decode_event(parsed_type, payload)
    return apply_body(fields, parsed_type, body)


def apply(snapshot: Snapshot, event: Event) -> Snapshot:
    """Apply a single event to a snapshot, returning a new snapshot.

    Unrelated fields are carried over unchanged; the input snapshot is
    left untouched.

    Raises:
        UnknownEventType: If event.type is not recognized
        InvalidPayload: If event.payload fails validation
    """
    new_fields = apply_fields(snapshot.fields, event.type, event.payload)
    return replace(
        snapshot,
        head_seq=event.seq,
        fields=new_fields,
        updated_at=event.recorded_at,
    )


def apply_events(events: Iterable[Event], initial: Optional[Snapshot] = None) -> Snapshot:
    """Fold events left-to-right. Order matters and is preserved exactly."""
    events = list(events)
    if initial is None:
        aggregate_id = events[0].aggregate_id if events else ""
        initial = Snapshot.initial(aggregate_id)

    snapshot = initial
    for event in events:
        snapshot = apply(snapshot, event)
    return snapshot


def rebuild_snapshot(aggregate_id: str, events: Iterable[Event]) -> Snapshot:
    """Replay a full event stream from empty.

    Raises:
        ValueError: If the stream belongs to another aggregate or its
            seqs are not contiguous from 1
    """
    snapshot = Snapshot.initial(aggregate_id)
    expected_seq = 1
    for event in events:
        if event.aggregate_id != aggregate_id:
            raise ValueError(
                f"Event seq {event.seq} belongs to {event.aggregate_id}, not {aggregate_id}"
            )
        if event.seq != expected_seq:
            raise ValueError(f"Event stream gap: expected seq {expected_seq}, found {event.seq}")
        snapshot = apply(snapshot, event)
        expected_seq += 1
    return snapshot
