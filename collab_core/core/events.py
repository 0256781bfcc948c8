"""
Project event vocabulary.

Events are immutable facts, append-only and sequence-numbered per
project. The vocabulary is closed: every wire type tag maps to one
EventType member and one typed body.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Union

from ..errors import InvalidPayload, UnknownEventType

MAX_PROJECT_NAME_LENGTH = 200


class EventType(Enum):
    """Recognized event type tags."""
    PROJECT_RENAME = "project.rename"


@dataclass(frozen=True)
class ProjectRename:
    """Body of a project.rename event."""
    name: str


EventBody = Union[ProjectRename]


@dataclass(frozen=True)
class Event:
    """Immutable event record as stored in the log."""
    aggregate_id: str
    actor_id: str
    seq: int
    type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    recorded_at: datetime = field(default_factory=datetime.now)


def parse_event_type(event_type: Any) -> EventType:
    """Resolve a wire tag to its EventType.

    Raises:
        UnknownEventType: If the tag is not in the vocabulary
    """
    if isinstance(event_type, EventType):
        return event_type
    if not isinstance(event_type, str):
        raise UnknownEventType(event_type)
    try:
        return EventType(event_type)
    except ValueError:
        raise UnknownEventType(event_type)


def _decode_rename(payload: Mapping[str, Any]) -> ProjectRename:
    unknown_keys = set(payload.keys()) - {"name"}
    if unknown_keys:
        raise InvalidPayload(f"Invalid project.rename payload: unknown keys {sorted(unknown_keys)}")

    name = payload.get("name")
    if not isinstance(name, str):
        raise InvalidPayload("Invalid project.rename payload: name must be a string")
    if len(name) == 0:
        raise InvalidPayload("Invalid project.rename payload: name cannot be empty")
    if len(name) > MAX_PROJECT_NAME_LENGTH:
        raise InvalidPayload(
            f"Invalid project.rename payload: name exceeds maximum length of {MAX_PROJECT_NAME_LENGTH}"
        )
    return ProjectRename(name=name)


_DECODERS = {
    EventType.PROJECT_RENAME: _decode_rename,
}

_undecoded = set(EventType) - set(_DECODERS)
if _undecoded:
    raise RuntimeError(f"No payload decoder for event types: {sorted(t.value for t in _undecoded)}")


def decode_event(event_type: Any, payload: Any) -> EventBody:
    """Validate a wire (type, payload) pair and return its typed body.

    Args:
        event_type: Wire type tag, e.g. "project.rename"
        payload: Event payload, must be a mapping

    Returns:
        Typed event body

    Raises:
        UnknownEventType: If the type tag is not recognized
        InvalidPayload: If the payload fails validation
    """
    parsed_type = parse_event_type(event_type)
    if not isinstance(payload, Mapping):
        raise InvalidPayload(f"Invalid {parsed_type.value} payload: must be an object")
    return _DECODERS[parsed_type](payload)
