"""
Store contracts.

The commit coordinator and the AI gateway depend only on these
protocols; SQLite and in-memory implementations satisfy them.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from ..core.events import Event
from ..core.reducer import Snapshot
from .models import MemberRole, Project, UsageRecord

# (fields, event_type, payload) -> new fields
FieldsReducer = Callable[[Dict[str, Any], str, Dict[str, Any]], Dict[str, Any]]


class ProjectStore(Protocol):
    """Project directory and membership."""

    def create_project(self, owner_id: str, name: str, project_id: Optional[str] = None) -> Project: ...

    def get_project(self, project_id: str) -> Optional[Project]: ...

    def add_member(self, project_id: str, user_id: str, role: MemberRole) -> None: ...

    def get_member_role(self, project_id: str, user_id: str) -> Optional[MemberRole]: ...


class EventStore(Protocol):
    """Append-only event log paired with one projection per aggregate.

    append_and_project is the only write path into the pair. It runs
    under a lock scoped to the aggregate's projection: read head, reduce,
    insert the event at head + 1, update the projection, all or nothing.
    """

    def get_projection(self, aggregate_id: str) -> Optional[Snapshot]: ...

    def list_events(self, aggregate_id: str, after_seq: int = 0) -> List[Event]: ...

    def append_and_project(
        self,
        aggregate_id: str,
        actor_id: str,
        event_type: str,
        payload: Dict[str, Any],
        reduce_fields: FieldsReducer,
        expected_seq: Optional[int] = None,
    ) -> Tuple[Event, Snapshot]: ...

    def replace_projection(self, snapshot: Snapshot) -> None: ...


class UsageLedger(Protocol):
    """Append-only ledger of AI call attempts."""

    def record(self, usage: UsageRecord) -> None: ...

    def sum_principal_cost(self, principal_id: str, since: datetime) -> float: ...

    def sum_project_cost(self, aggregate_id: str, since: datetime) -> float: ...

    def list_usage(
        self,
        principal_id: Optional[str] = None,
        aggregate_id: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[UsageRecord]: ...


class RateWindowStore(Protocol):
    """Fixed-window counters keyed by (key, window_start)."""

    def hit(self, key: str, window_start: int, max_requests: int) -> Tuple[bool, int]: ...

    def get_count(self, key: str, window_start: int) -> int: ...

    def cleanup(self, before: int) -> int: ...
