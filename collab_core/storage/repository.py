"""
SQLite repositories.

Implements the store contracts in collab_core.storage.base on top of a
single SQLite database file.
"""

import json
import sqlite3
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..core.events import Event
from ..core.reducer import Snapshot
from ..errors import Conflict
from .base import FieldsReducer
from .db import DEFAULT_DB_PATH, get_connection
from .models import MemberRole, Project, UsageRecord, UsageStatus


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class ProjectRepository:
    """Project directory and membership backed by SQLite."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def create_project(self, owner_id: str, name: str, project_id: Optional[str] = None) -> Project:
        """Create a project owned by owner_id.

        The projection row is not created here; the first commit creates
        it lazily at head_seq 0.
        """
        project = Project(
            id=project_id or str(uuid.uuid4()),
            owner_id=owner_id,
            name=name,
        )
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN TRANSACTION")
            conn.execute(
                "INSERT INTO projects (id, name, owner_id, created_at) VALUES (?, ?, ?, ?)",
                (project.id, project.name, project.owner_id, project.created_at.isoformat()),
            )
            conn.execute(
                """
                INSERT INTO project_members (project_id, user_id, role, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (project.id, owner_id, MemberRole.OWNER.value, project.created_at.isoformat()),
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        return project

    def get_project(self, project_id: str) -> Optional[Project]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT id, owner_id, name, created_at FROM projects WHERE id = ?",
                (project_id,),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return Project(id=row[0], owner_id=row[1], name=row[2], created_at=_parse_timestamp(row[3]))

    def add_member(self, project_id: str, user_id: str, role: MemberRole) -> None:
        """Add or change a member's role."""
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO project_members (project_id, user_id, role, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (project_id, user_id) DO UPDATE SET role = excluded.role
                """,
                (project_id, user_id, role.value, datetime.now().isoformat()),
            )
            conn.commit()
        finally:
            conn.close()

    def get_member_role(self, project_id: str, user_id: str) -> Optional[MemberRole]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT role FROM project_members WHERE project_id = ? AND user_id = ?",
                (project_id, user_id),
            ).fetchone()
        finally:
            conn.close()
        return MemberRole(row[0]) if row else None


class EventRepository:
    """Append-only event log and projections backed by SQLite.

    BEGIN IMMEDIATE takes the database write lock before the projection
    row is read, so concurrent commits serialize and never observe the
    same head_seq.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def get_projection(self, aggregate_id: str) -> Optional[Snapshot]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT head_seq, snapshot, updated_at FROM project_projections WHERE project_id = ?",
                (aggregate_id,),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return Snapshot(
            aggregate_id=aggregate_id,
            head_seq=row[0],
            fields=json.loads(row[1]),
            updated_at=_parse_timestamp(row[2]),
        )

    def list_events(self, aggregate_id: str, after_seq: int = 0) -> List[Event]:
        """Return events with seq > after_seq in ascending seq order."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                """
                SELECT project_id, actor_id, seq, type, payload, recorded_at
                FROM project_events
                WHERE project_id = ? AND seq > ?
                ORDER BY seq ASC
                """,
                (aggregate_id, after_seq),
            )
            return [
                Event(
                    aggregate_id=row[0],
                    actor_id=row[1],
                    seq=row[2],
                    type=row[3],
                    payload=json.loads(row[4]),
                    recorded_at=_parse_timestamp(row[5]),
                )
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()

    def append_and_project(
        self,
        aggregate_id: str,
        actor_id: str,
        event_type: str,
        payload: Dict[str, Any],
        reduce_fields: FieldsReducer,
        expected_seq: Optional[int] = None,
    ) -> Tuple[Event, Snapshot]:
        """Atomically append one event and advance the projection.

        Raises:
            Conflict: If expected_seq is given and differs from the head,
                or another writer already holds the next seq
            UnknownEventType, InvalidPayload: From reduce_fields; nothing
                is written
        """
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute(
                "INSERT OR IGNORE INTO project_projections (project_id, head_seq, snapshot) VALUES (?, 0, '{}')",
                (aggregate_id,),
            )
            head_seq, raw_fields = conn.execute(
                "SELECT head_seq, snapshot FROM project_projections WHERE project_id = ?",
                (aggregate_id,),
            ).fetchone()
            fields = json.loads(raw_fields)

            if expected_seq is not None and expected_seq != head_seq:
                raise Conflict(expected=expected_seq, current=head_seq, snapshot=fields)

            next_seq = head_seq + 1
            new_fields = reduce_fields(fields, event_type, payload)
            now = datetime.now()

            try:
                conn.execute(
                    """
                    INSERT INTO project_events (project_id, actor_id, seq, type, payload, recorded_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (aggregate_id, actor_id, next_seq, event_type, json.dumps(payload), now.isoformat()),
                )
            except sqlite3.IntegrityError as e:
                if "UNIQUE" not in str(e).upper():
                    raise
                raise Conflict(
                    expected=expected_seq,
                    current=head_seq,
                    snapshot=fields,
                    message=f"Sequence {next_seq} already committed",
                )

            conn.execute(
                "UPDATE project_projections SET head_seq = ?, snapshot = ?, updated_at = ? WHERE project_id = ?",
                (next_seq, json.dumps(new_fields), now.isoformat(), aggregate_id),
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

        event = Event(
            aggregate_id=aggregate_id,
            actor_id=actor_id,
            seq=next_seq,
            type=event_type,
            payload=dict(payload),
            recorded_at=now,
        )
        snapshot = Snapshot(aggregate_id=aggregate_id, head_seq=next_seq, fields=new_fields, updated_at=now)
        return event, snapshot

    def replace_projection(self, snapshot: Snapshot) -> None:
        """Overwrite a projection with a snapshot rebuilt from the log."""
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO project_projections (project_id, head_seq, snapshot, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (project_id) DO UPDATE SET
                    head_seq = excluded.head_seq,
                    snapshot = excluded.snapshot,
                    updated_at = excluded.updated_at
                """,
                (
                    snapshot.aggregate_id,
                    snapshot.head_seq,
                    json.dumps(snapshot.fields),
                    snapshot.updated_at.isoformat() if snapshot.updated_at else None,
                ),
            )
            conn.commit()
        finally:
            conn.close()


class UsageRepository:
    """Append-only AI usage ledger backed by SQLite."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def record(self, usage: UsageRecord) -> None:
        """Insert a single usage record. Records are never modified."""
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO ai_usage
                (user_id, project_id, provider, model, tokens_in, tokens_out,
                 cost_usd, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    usage.principal_id,
                    usage.aggregate_id,
                    usage.provider,
                    usage.model,
                    usage.tokens_in,
                    usage.tokens_out,
                    usage.cost,
                    usage.status.value,
                    usage.recorded_at.isoformat(),
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def _sum_cost(self, column: str, value: str, since: datetime) -> float:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                f"""
                SELECT SUM(cost_usd) FROM ai_usage
                WHERE {column} = ? AND status = 'ok' AND created_at >= ?
                """,
                (value, since.isoformat()),
            ).fetchone()
        finally:
            conn.close()
        return float(row[0] or 0)

    def sum_principal_cost(self, principal_id: str, since: datetime) -> float:
        """Sum of ok-status cost for a principal since the given time."""
        return self._sum_cost("user_id", principal_id, since)

    def sum_project_cost(self, aggregate_id: str, since: datetime) -> float:
        """Sum of ok-status cost for a project since the given time."""
        return self._sum_cost("project_id", aggregate_id, since)

    def list_usage(
        self,
        principal_id: Optional[str] = None,
        aggregate_id: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[UsageRecord]:
        """Usage records, newest first, optionally filtered."""
        conn = get_connection(self.db_path)
        try:
            query = """
                SELECT user_id, project_id, provider, model, tokens_in, tokens_out,
                       cost_usd, status, created_at
                FROM ai_usage
            """
            params: List[Any] = []
            conditions = []

            if principal_id:
                conditions.append("user_id = ?")
                params.append(principal_id)
            if aggregate_id:
                conditions.append("project_id = ?")
                params.append(aggregate_id)
            if since is not None:
                conditions.append("created_at >= ?")
                params.append(since.isoformat())

            if conditions:
                query += " WHERE " + " AND ".join(conditions)

            query += " ORDER BY created_at DESC, id DESC LIMIT ?"
            params.append(limit)

            cursor = conn.execute(query, params)
            return [
                UsageRecord(
                    principal_id=row[0],
                    aggregate_id=row[1],
                    provider=row[2],
                    model=row[3],
                    tokens_in=row[4],
                    tokens_out=row[5],
                    cost=row[6],
                    status=UsageStatus(row[7]),
                    recorded_at=_parse_timestamp(row[8]),
                )
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()


class RateWindowRepository:
    """Fixed-window request counters backed by SQLite."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def hit(self, key: str, window_start: int, max_requests: int) -> Tuple[bool, int]:
        """Atomically count one request against the window.

        Returns:
            (allowed, count) where count is the window's count after this call
        """
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT count FROM rate_limits WHERE key = ? AND window_start = ?",
                (key, window_start),
            ).fetchone()

            if row is None:
                conn.execute(
                    "INSERT INTO rate_limits (key, window_start, count) VALUES (?, ?, 1)",
                    (key, window_start),
                )
                result = (True, 1)
            elif row[0] >= max_requests:
                result = (False, row[0])
            else:
                conn.execute(
                    "UPDATE rate_limits SET count = count + 1 WHERE key = ? AND window_start = ?",
                    (key, window_start),
                )
                result = (True, row[0] + 1)
            conn.commit()
            return result
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def get_count(self, key: str, window_start: int) -> int:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT count FROM rate_limits WHERE key = ? AND window_start = ?",
                (key, window_start),
            ).fetchone()
        finally:
            conn.close()
        return row[0] if row else 0

    def cleanup(self, before: int) -> int:
        """Delete windows that started before the given epoch second."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("DELETE FROM rate_limits WHERE window_start < ?", (before,))
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()
