"""
Request/response boundary for the commit and metered-call endpoints.

Transport-agnostic: handlers take a decoded JSON body and the raw
authorization header value and return a status, a JSON-ready body and
headers. Request shapes are validated strictly before reaching the core.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import structlog

from ..core.auth import parse_bearer
from ..core.commit import CommitCoordinator, CommitRequest, Proposal
from ..core.gateway import AIGateway, MeteredCallRequest
from ..errors import CoreError, InvalidRequest, RateLimited

logger = structlog.get_logger()

_COMMIT_KEYS = {"aggregate_id", "base_seq", "proposal", "idempotency_key"}
_PROPOSAL_KEYS = {"type", "payload"}
_METERED_CALL_KEYS = {"project_id", "prompt", "provider", "model"}


@dataclass
class ApiResponse:
    status: int
    body: Dict[str, Any]
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def _require_object(body: Any, name: str) -> Dict[str, Any]:
    if not isinstance(body, dict):
        raise InvalidRequest(f"{name} must be a JSON object")
    return body


def _reject_unknown(data: Dict[str, Any], allowed: set, name: str) -> None:
    unknown_keys = set(data.keys()) - allowed
    if unknown_keys:
        raise InvalidRequest(f"Unknown keys in {name}: {sorted(unknown_keys)}")


def _uuid(value: Any, name: str) -> str:
    if not isinstance(value, str):
        raise InvalidRequest(f"{name} must be a UUID string")
    try:
        return str(uuid.UUID(value))
    except ValueError:
        raise InvalidRequest(f"{name} must be a UUID string")


def _optional_string(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise InvalidRequest(f"{key} must be a string")
    return value


def parse_commit_request(body: Any) -> CommitRequest:
    """Validate a commit endpoint body.

    Raises:
        InvalidRequest: If the body does not match the request schema
    """
    data = _require_object(body, "request body")
    _reject_unknown(data, _COMMIT_KEYS, "request body")

    if "aggregate_id" not in data:
        raise InvalidRequest("Missing required 'aggregate_id'")
    aggregate_id = _uuid(data["aggregate_id"], "aggregate_id")

    base_seq = data.get("base_seq")
    if base_seq is not None:
        if isinstance(base_seq, bool) or not isinstance(base_seq, int) or base_seq < 0:
            raise InvalidRequest("base_seq must be a non-negative integer")

    if "proposal" not in data:
        raise InvalidRequest("Missing required 'proposal'")
    proposal = _require_object(data["proposal"], "proposal")
    _reject_unknown(proposal, _PROPOSAL_KEYS, "proposal")
    if not isinstance(proposal.get("type"), str):
        raise InvalidRequest("proposal.type must be a string")
    payload = proposal.get("payload", {})
    if not isinstance(payload, dict):
        raise InvalidRequest("proposal.payload must be a JSON object")

    return CommitRequest(
        aggregate_id=aggregate_id,
        proposal=Proposal(type=proposal["type"], payload=payload),
        base_seq=base_seq,
        idempotency_key=_optional_string(data, "idempotency_key"),
    )


def parse_metered_call_request(body: Any) -> MeteredCallRequest:
    """Validate a metered-call endpoint body.

    Limits and defaults are applied by the gateway; this only checks shape.

    Raises:
        InvalidRequest: If the body does not match the request schema
    """
    data = _require_object(body, "request body")
    _reject_unknown(data, _METERED_CALL_KEYS, "request body")

    prompt = data.get("prompt")
    if not isinstance(prompt, str):
        raise InvalidRequest("prompt must be a string")

    project_id = data.get("project_id")
    if project_id is not None:
        project_id = _uuid(project_id, "project_id")

    return MeteredCallRequest(
        prompt=prompt,
        provider=_optional_string(data, "provider"),
        model=_optional_string(data, "model"),
        project_id=project_id,
    )


def error_response(error: CoreError) -> ApiResponse:
    headers = {}
    if isinstance(error, RateLimited):
        headers["Retry-After"] = str(error.retry_after)
    return ApiResponse(status=error.status, body=error.to_dict(), headers=headers)


def _internal_error(endpoint: str) -> ApiResponse:
    logger.error("unexpected_error", endpoint=endpoint, exc_info=True)
    return ApiResponse(status=500, body={"error": "internal", "message": "Internal server error"})


def handle_commit(body: Any, authorization: Optional[str], coordinator: CommitCoordinator) -> ApiResponse:
    """Commit endpoint.

    A missing or malformed credential is reported as 401 before the body
    is looked at.
    """
    try:
        parse_bearer(authorization)
        request = parse_commit_request(body)
        result = coordinator.commit(authorization, request)
    except CoreError as e:
        return error_response(e)
    except Exception:
        return _internal_error("commit")

    response_body = {
        "aggregate_id": result.aggregate_id,
        "seq": result.seq,
        "snapshot": result.snapshot,
    }
    if result.idempotency_key is not None:
        response_body["idempotency_key"] = result.idempotency_key
    return ApiResponse(status=200, body=response_body)


def handle_metered_call(body: Any, authorization: Optional[str], gateway: AIGateway) -> ApiResponse:
    """Metered-call endpoint."""
    try:
        parse_bearer(authorization)
        request = parse_metered_call_request(body)
        result = gateway.call(authorization, request)
    except CoreError as e:
        return error_response(e)
    except Exception:
        return _internal_error("metered_call")

    return ApiResponse(
        status=200,
        body={
            "result": result.text,
            "usage": {
                "tokens_in": result.tokens_in,
                "tokens_out": result.tokens_out,
                "cost": result.cost,
            },
        },
    )
