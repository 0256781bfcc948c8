"""
In-memory stores.

Same contracts as the SQLite repositories, for tests and embedding.
Writes to one aggregate serialize on that aggregate's lock; rate
windows serialize on a per-key lock.
"""

import threading
import uuid
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..core.events import Event
from ..core.reducer import Snapshot
from ..errors import Conflict
from .base import FieldsReducer
from .models import MemberRole, Project, UsageRecord, UsageStatus


class InMemoryProjectStore:

    def __init__(self):
        self._projects: Dict[str, Project] = {}
        self._members: Dict[Tuple[str, str], MemberRole] = {}
        self._lock = threading.Lock()

    def create_project(self, owner_id: str, name: str, project_id: Optional[str] = None) -> Project:
        project = Project(id=project_id or str(uuid.uuid4()), owner_id=owner_id, name=name)
        with self._lock:
            if project.id in self._projects:
                raise ValueError(f"Project already exists: {project.id}")
            self._projects[project.id] = project
            self._members[(project.id, owner_id)] = MemberRole.OWNER
        return project

    def get_project(self, project_id: str) -> Optional[Project]:
        return self._projects.get(project_id)

    def add_member(self, project_id: str, user_id: str, role: MemberRole) -> None:
        with self._lock:
            if project_id not in self._projects:
                raise ValueError(f"Unknown project: {project_id}")
            self._members[(project_id, user_id)] = role

    def get_member_role(self, project_id: str, user_id: str) -> Optional[MemberRole]:
        return self._members.get((project_id, user_id))


class InMemoryEventStore:

    def __init__(self):
        self._events: Dict[str, List[Event]] = defaultdict(list)
        self._projections: Dict[str, Snapshot] = {}
        self._locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

    def _lock_for(self, aggregate_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks[aggregate_id]

    def get_projection(self, aggregate_id: str) -> Optional[Snapshot]:
        snapshot = self._projections.get(aggregate_id)
        if snapshot is None:
            return None
        # callers get their own fields dict
        return replace(snapshot, fields=dict(snapshot.fields))

    def list_events(self, aggregate_id: str, after_seq: int = 0) -> List[Event]:
        return [e for e in list(self._events.get(aggregate_id, [])) if e.seq > after_seq]

    def append_and_project(
        self,
        aggregate_id: str,
        actor_id: str,
        event_type: str,
        payload: Dict[str, Any],
        reduce_fields: FieldsReducer,
        expected_seq: Optional[int] = None,
    ) -> Tuple[Event, Snapshot]:
        with self._lock_for(aggregate_id):
            current = self._projections.get(aggregate_id) or Snapshot.initial(aggregate_id)

            if expected_seq is not None and expected_seq != current.head_seq:
                raise Conflict(expected=expected_seq, current=current.head_seq, snapshot=dict(current.fields))

            next_seq = current.head_seq + 1
            # reduce before any write so a rejected event leaves no trace
            new_fields = reduce_fields(current.fields, event_type, payload)
            now = datetime.now()

            event = Event(
                aggregate_id=aggregate_id,
                actor_id=actor_id,
                seq=next_seq,
                type=event_type,
                payload=dict(payload),
                recorded_at=now,
            )
            snapshot = Snapshot(aggregate_id=aggregate_id, head_seq=next_seq, fields=new_fields, updated_at=now)
            self._events[aggregate_id].append(event)
            self._projections[aggregate_id] = snapshot
            return event, replace(snapshot, fields=dict(new_fields))

    def replace_projection(self, snapshot: Snapshot) -> None:
        with self._lock_for(snapshot.aggregate_id):
            self._projections[snapshot.aggregate_id] = replace(snapshot, fields=dict(snapshot.fields))


class InMemoryUsageLedger:

    def __init__(self):
        self._records: List[UsageRecord] = []
        self._lock = threading.Lock()

    def record(self, usage: UsageRecord) -> None:
        with self._lock:
            self._records.append(usage)

    def sum_principal_cost(self, principal_id: str, since: datetime) -> float:
        return sum(
            r.cost for r in list(self._records)
            if r.principal_id == principal_id and r.status == UsageStatus.OK and r.recorded_at >= since
        )

    def sum_project_cost(self, aggregate_id: str, since: datetime) -> float:
        return sum(
            r.cost for r in list(self._records)
            if r.aggregate_id == aggregate_id and r.status == UsageStatus.OK and r.recorded_at >= since
        )

    def list_usage(
        self,
        principal_id: Optional[str] = None,
        aggregate_id: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[UsageRecord]:
        records = [
            r for r in reversed(list(self._records))
            if (principal_id is None or r.principal_id == principal_id)
            and (aggregate_id is None or r.aggregate_id == aggregate_id)
            and (since is None or r.recorded_at >= since)
        ]
        return records[:limit]


class InMemoryRateWindowStore:

    def __init__(self):
        self._counts: Dict[Tuple[str, int], int] = {}
        self._lock = threading.Lock()

    def hit(self, key: str, window_start: int, max_requests: int) -> Tuple[bool, int]:
        with self._lock:
            count = self._counts.get((key, window_start), 0)
            if count >= max_requests:
                return False, count
            self._counts[(key, window_start)] = count + 1
            return True, count + 1

    def get_count(self, key: str, window_start: int) -> int:
        return self._counts.get((key, window_start), 0)

    def cleanup(self, before: int) -> int:
        with self._lock:
            expired = [k for k in self._counts if k[1] < before]
            for k in expired:
                del self._counts[k]
            return len(expired)
