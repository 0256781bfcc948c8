"""
Data models for the storage layer.

Defines persisted entities. Events and projections live in
collab_core.core.events and collab_core.core.reducer.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class MemberRole(Enum):
    """Roles a principal can hold on a project."""
    OWNER = "owner"
    EDITOR = "editor"
    VIEWER = "viewer"

    @property
    def can_write(self) -> bool:
        return self in (MemberRole.OWNER, MemberRole.EDITOR)


class UsageStatus(Enum):
    OK = "ok"
    FAILED = "failed"


@dataclass(frozen=True)
class Project:
    """A project aggregate's directory entry."""
    id: str
    owner_id: str
    name: str
    created_at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class UsageRecord:
    """Immutable ledger entry for one attempted AI call.

    Every attempt produces exactly one record; failed attempts carry
    zero cost. Once written, records are never modified.
    """
    principal_id: str
    provider: str
    model: str
    tokens_in: int
    tokens_out: int
    cost: float
    status: UsageStatus
    aggregate_id: Optional[str] = None
    recorded_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if self.cost < 0:
            raise ValueError("cost cannot be negative")
        if self.status == UsageStatus.FAILED and self.cost != 0:
            raise ValueError("failed usage records must carry zero cost")

    @classmethod
    def failed(
        cls,
        principal_id: str,
        provider: str,
        model: str,
        aggregate_id: Optional[str] = None,
        recorded_at: Optional[datetime] = None,
    ) -> "UsageRecord":
        """Zero-cost record for a denied or failed attempt."""
        return cls(
            principal_id=principal_id,
            provider=provider,
            model=model,
            tokens_in=0,
            tokens_out=0,
            cost=0.0,
            status=UsageStatus.FAILED,
            aggregate_id=aggregate_id,
            recorded_at=recorded_at or datetime.now(),
        )
