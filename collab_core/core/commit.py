"""
Commit coordinator: the only write path into a project's event log and
projection.

Commit stages, each short-circuiting with its own error:

1. Authenticate the actor
2. Rate limit (when a limiter is configured)
3. Authorize: owner or editor may write, viewer may only read
4. Optimistic concurrency pre-check against the caller's base_seq
5. Validate the proposal independently of the client
6. Atomic append + reduce under the aggregate's lock, re-checking
   base_seq on write
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import structlog

from ..errors import Conflict, CoreError, Forbidden, Internal
from .auth import Authenticator, authenticate
from .events import decode_event
from .rate_limit import RateLimiter
from .reducer import Snapshot, apply_fields, rebuild_snapshot
from ..storage.base import EventStore, ProjectStore
from ..storage.models import MemberRole

logger = structlog.get_logger()


@dataclass(frozen=True)
class Proposal:
    type: str
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CommitRequest:
    aggregate_id: str
    proposal: Proposal
    base_seq: Optional[int] = None
    idempotency_key: Optional[str] = None


@dataclass(frozen=True)
class CommitResult:
    aggregate_id: str
    seq: int
    snapshot: Dict[str, Any]
    idempotency_key: Optional[str] = None


class CommitCoordinator:
    """Validates, authorizes and atomically applies project mutations.

    The idempotency key is accepted and echoed but not used for
    deduplication: a retried identical proposal appends a new event.
    """

    def __init__(
        self,
        authenticator: Authenticator,
        projects: ProjectStore,
        events: EventStore,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.authenticator = authenticator
        self.projects = projects
        self.events = events
        self.rate_limiter = rate_limiter

    def _role_for(self, aggregate_id: str, principal_id: str) -> Optional[MemberRole]:
        project = self.projects.get_project(aggregate_id)
        if project is None:
            return None
        if project.owner_id == principal_id:
            return MemberRole.OWNER
        return self.projects.get_member_role(aggregate_id, principal_id)

    def authorize_write(self, aggregate_id: str, principal_id: str) -> MemberRole:
        """
        Raises:
            Forbidden: If the principal is not the owner or an editor
        """
        role = self._role_for(aggregate_id, principal_id)
        if role is None:
            raise Forbidden("Not a project member")
        if not role.can_write:
            raise Forbidden("Viewers cannot modify projects")
        return role

    def authorize_read(self, aggregate_id: str, principal_id: str) -> MemberRole:
        role = self._role_for(aggregate_id, principal_id)
        if role is None:
            raise Forbidden("Not a project member")
        return role

    def current_snapshot(self, aggregate_id: str) -> Snapshot:
        return self.events.get_projection(aggregate_id) or Snapshot.initial(aggregate_id)

    def commit(self, authorization: Optional[str], request: CommitRequest) -> CommitResult:
        """Run one commit attempt to Committed or Rejected.

        Args:
            authorization: Bearer credential header value
            request: The proposed mutation

        Returns:
            CommitResult with the new seq and snapshot fields

        Raises:
            Unauthenticated, RateLimited, Forbidden, Conflict,
            UnknownEventType, InvalidPayload: Rejections, nothing written
            Internal: Storage failure; the transaction was rolled back
        """
        principal_id = authenticate(self.authenticator, authorization)
        if self.rate_limiter is not None:
            self.rate_limiter.enforce(principal_id)

        try:
            self.authorize_write(request.aggregate_id, principal_id)

            if request.base_seq is not None:
                current = self.current_snapshot(request.aggregate_id)
                if current.head_seq != request.base_seq:
                    raise Conflict(
                        expected=request.base_seq,
                        current=current.head_seq,
                        snapshot=current.to_dict(),
                    )

            decode_event(request.proposal.type, request.proposal.payload)

            event, snapshot = self.events.append_and_project(
                aggregate_id=request.aggregate_id,
                actor_id=principal_id,
                event_type=request.proposal.type,
                payload=dict(request.proposal.payload),
                reduce_fields=apply_fields,
                expected_seq=request.base_seq,
            )
        except Conflict as e:
            logger.info(
                "commit_conflict",
                aggregate_id=request.aggregate_id,
                principal_id=principal_id,
                expected=e.expected,
                current=e.current,
            )
            raise
        except CoreError:
            raise
        except Exception as e:
            logger.error(
                "commit_failed",
                aggregate_id=request.aggregate_id,
                principal_id=principal_id,
                exc_info=True,
            )
            raise Internal("Failed to apply event") from e

        logger.info(
            "commit_applied",
            aggregate_id=request.aggregate_id,
            principal_id=principal_id,
            seq=event.seq,
            event_type=event.type,
        )
        return CommitResult(
            aggregate_id=request.aggregate_id,
            seq=event.seq,
            snapshot=snapshot.to_dict(),
            idempotency_key=request.idempotency_key,
        )

    def read_snapshot(self, authorization: Optional[str], aggregate_id: str) -> Snapshot:
        """Current projection for any member, viewers included."""
        principal_id = authenticate(self.authenticator, authorization)
        self.authorize_read(aggregate_id, principal_id)
        return self.current_snapshot(aggregate_id)

    def rebuild_projection(self, aggregate_id: str) -> Snapshot:
        """Replay the event log from empty and replace the projection.

        Raises:
            ValueError: If the stored stream has gaps
        """
        snapshot = rebuild_snapshot(aggregate_id, self.events.list_events(aggregate_id))
        self.events.replace_projection(snapshot)
        logger.info("projection_rebuilt", aggregate_id=aggregate_id, head_seq=snapshot.head_seq)
        return snapshot
