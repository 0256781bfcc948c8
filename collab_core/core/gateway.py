"""
AI gateway: metered access to the text-generation capability.

Pipeline, each stage short-circuiting to its own error:

1. Authenticate            -> Unauthenticated
2. Rate limit              -> RateLimited (fails open on limiter outage
                              unless configured otherwise)
3. Validate request        -> InvalidRequest
4. Budget check            -> BudgetExceeded, plus a zero-cost failed record
5. Invoke provider         -> UpstreamError, plus a zero-cost failed record
6. Cost the call
7. Record an ok usage row

Every request that reaches stage 4 leaves exactly one ledger record.

Stages 4 to 7 run under the principal's metering lock, and the
project's when a project is given, so concurrent calls from one
principal see each other's spend. Locks are per process.
"""

import threading
import uuid
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from contextlib import ExitStack
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

import structlog

from ..config.loader import GatewayConfig
from ..errors import BudgetExceeded, InvalidRequest, Internal, UpstreamError
from ..providers.base import Generation, TextGenerator
from ..storage.base import UsageLedger
from ..storage.models import UsageRecord, UsageStatus
from .auth import Authenticator, authenticate
from .budget import BudgetGuard
from .pricing import PRICING_TABLE, PricingTable, calculate_cost
from .rate_limit import RateLimiter
from .token_counter import TokenUsage

logger = structlog.get_logger()

DEFAULT_MAX_WORKERS = 8


@dataclass(frozen=True)
class MeteredCallRequest:
    prompt: str
    provider: Optional[str] = None
    model: Optional[str] = None
    project_id: Optional[str] = None


@dataclass(frozen=True)
class MeteredCallResult:
    text: str
    tokens_in: int
    tokens_out: int
    cost: float


class AIGateway:
    """Authorizes, meters and records every costed AI call exactly once."""

    def __init__(
        self,
        authenticator: Authenticator,
        rate_limiter: RateLimiter,
        budget_guard: BudgetGuard,
        ledger: UsageLedger,
        generator: TextGenerator,
        config: Optional[GatewayConfig] = None,
        pricing: PricingTable = PRICING_TABLE,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ):
        self.authenticator = authenticator
        self.rate_limiter = rate_limiter
        self.budget_guard = budget_guard
        self.ledger = ledger
        self.generator = generator
        self.config = config or GatewayConfig()
        self.pricing = pricing
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ai-gateway")
        self._metering_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._metering_locks_guard = threading.Lock()

    def close(self) -> None:
        """Stop accepting provider calls; in-flight calls are not cancelled."""
        self._executor.shutdown(wait=False)

    def _lock_for(self, key: str) -> threading.Lock:
        with self._metering_locks_guard:
            return self._metering_locks[key]

    def _metering_lock(self, principal_id: str, project_id: Optional[str]) -> ExitStack:
        # principal before project, always, so lock order is fixed
        stack = ExitStack()
        stack.enter_context(self._lock_for(f"principal:{principal_id}"))
        if project_id:
            stack.enter_context(self._lock_for(f"project:{project_id}"))
        return stack

    def validate(self, request: MeteredCallRequest) -> MeteredCallRequest:
        """Check limits and fill defaults.

        Raises:
            InvalidRequest: If prompt, provider, model or project_id is invalid
        """
        if not isinstance(request.prompt, str) or len(request.prompt) == 0:
            raise InvalidRequest("prompt cannot be empty")
        if len(request.prompt) > self.config.max_prompt_length:
            raise InvalidRequest(f"prompt exceeds maximum length of {self.config.max_prompt_length}")

        provider = request.provider if request.provider is not None else self.config.default_provider
        if provider not in self.config.providers:
            raise InvalidRequest(f"provider must be one of: {sorted(self.config.providers)}")

        model = request.model if request.model is not None else self.config.default_model
        if not isinstance(model, str) or not model.strip():
            raise InvalidRequest("model cannot be empty")

        project_id = request.project_id
        if project_id is not None:
            try:
                project_id = str(uuid.UUID(str(project_id)))
            except ValueError:
                raise InvalidRequest("project_id must be a UUID")

        return MeteredCallRequest(prompt=request.prompt, provider=provider, model=model, project_id=project_id)

    def _record_failure(self, principal_id: str, request: MeteredCallRequest) -> None:
        # the caller is already failing; a ledger outage here is logged, not raised
        try:
            self.ledger.record(UsageRecord.failed(
                principal_id=principal_id,
                provider=request.provider,
                model=request.model,
                aggregate_id=request.project_id,
            ))
        except Exception:
            logger.error(
                "usage_record_failed",
                principal_id=principal_id,
                project_id=request.project_id,
                status=UsageStatus.FAILED.value,
                exc_info=True,
            )

    def _invoke(self, request: MeteredCallRequest) -> Generation:
        future = self._executor.submit(self.generator.generate, request.provider, request.model, request.prompt)
        try:
            generation = future.result(timeout=self.config.provider_timeout_seconds)
        except FutureTimeoutError:
            future.cancel()
            raise UpstreamError(
                f"Provider {request.provider} timed out after {self.config.provider_timeout_seconds}s"
            )
        except Exception as e:
            raise UpstreamError(str(e) or "AI provider error") from e

        if generation.tokens_in < 0 or generation.tokens_out < 0:
            raise UpstreamError("AI provider returned negative token counts")
        return generation

    def call(self, authorization: Optional[str], request: MeteredCallRequest, now: Optional[datetime] = None) -> MeteredCallResult:
        """Run one metered call through the full pipeline.

        Args:
            authorization: Bearer credential header value
            request: Prompt, provider, model and optional project context
            now: Reference time for the budget day; defaults to now

        Returns:
            MeteredCallResult with text, token counts and cost

        Raises:
            Unauthenticated, RateLimited, InvalidRequest: Before metering;
                nothing recorded
            BudgetExceeded, UpstreamError: After a failed record is written
            Internal: Budget lookup or success-path ledger write failed
        """
        principal_id = authenticate(self.authenticator, authorization)
        self.rate_limiter.enforce(principal_id)
        request = self.validate(request)

        with self._metering_lock(principal_id, request.project_id):
            return self._metered_call(principal_id, request, now)

    def _metered_call(self, principal_id: str, request: MeteredCallRequest, now: Optional[datetime]) -> MeteredCallResult:
        try:
            decision = self.budget_guard.check(principal_id, request.project_id, now)
        except Exception as e:
            logger.error("budget_lookup_failed", principal_id=principal_id, exc_info=True)
            raise Internal("Failed to compute spend") from e
        if not decision.allowed:
            logger.info(
                "budget_denied",
                principal_id=principal_id,
                project_id=request.project_id,
                scope=decision.scope,
                spent=decision.spent,
                cap=decision.cap,
            )
            self._record_failure(principal_id, request)
            raise BudgetExceeded(scope=decision.scope, message=decision.reason)

        try:
            generation = self._invoke(request)
        except UpstreamError as e:
            logger.warning(
                "provider_call_failed",
                principal_id=principal_id,
                provider=request.provider,
                model=request.model,
                error=e.message,
            )
            self._record_failure(principal_id, request)
            raise

        cost = calculate_cost(
            request.model,
            TokenUsage(tokens_in=generation.tokens_in, tokens_out=generation.tokens_out),
            self.pricing,
        )

        try:
            self.ledger.record(UsageRecord(
                principal_id=principal_id,
                aggregate_id=request.project_id,
                provider=request.provider,
                model=request.model,
                tokens_in=generation.tokens_in,
                tokens_out=generation.tokens_out,
                cost=cost,
                status=UsageStatus.OK,
            ))
        except Exception as e:
            logger.error(
                "usage_record_failed",
                principal_id=principal_id,
                project_id=request.project_id,
                status=UsageStatus.OK.value,
                cost=cost,
                exc_info=True,
            )
            raise Internal("Failed to record AI usage") from e

        logger.info(
            "ai_call_metered",
            principal_id=principal_id,
            project_id=request.project_id,
            provider=request.provider,
            model=request.model,
            tokens_in=generation.tokens_in,
            tokens_out=generation.tokens_out,
            cost=cost,
        )
        return MeteredCallResult(
            text=generation.text,
            tokens_in=generation.tokens_in,
            tokens_out=generation.tokens_out,
            cost=cost,
        )
