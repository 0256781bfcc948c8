"""
Tests for the metered AI gateway.

Every call that reaches metering must leave exactly one ledger record;
calls rejected before metering leave none.
"""

import threading
from unittest.mock import Mock, patch

import pytest

from collab_core.config.loader import BudgetConfig, GatewayConfig, RateLimitConfig
from collab_core.core.auth import StaticTokenAuthenticator
from collab_core.core.budget import BudgetGuard
from collab_core.core.gateway import AIGateway, MeteredCallRequest
from collab_core.core.rate_limit import RateLimiter
from collab_core.errors import (
    BudgetExceeded,
    Internal,
    InvalidRequest,
    RateLimited,
    Unauthenticated,
    UpstreamError,
)
from collab_core.providers.base import EchoGenerator, Generation
from collab_core.storage.memory import InMemoryRateWindowStore, InMemoryUsageLedger
from collab_core.storage.models import UsageRecord, UsageStatus

AUTH = "Bearer alice-token"
PROJECT = "11111111-1111-1111-1111-111111111111"


def _ok_record(cost: float, aggregate_id=None) -> UsageRecord:
    return UsageRecord(
        principal_id="alice",
        provider="openai",
        model="gpt-4",
        tokens_in=0,
        tokens_out=0,
        cost=cost,
        status=UsageStatus.OK,
        aggregate_id=aggregate_id,
    )


class TestAIGateway:
    """Test the metered call pipeline."""

    def setup_method(self):
        self.ledger = InMemoryUsageLedger()
        self.generator = Mock()
        self.generator.generate.return_value = Generation(text="Hello!", tokens_in=1000, tokens_out=500)
        self.gateway = self._gateway()

    def teardown_method(self):
        self.gateway.close()

    def _gateway(self, gateway_config=None, rate_limit_config=None, ledger=None):
        ledger = ledger or self.ledger
        return AIGateway(
            authenticator=StaticTokenAuthenticator({"alice-token": "alice"}),
            rate_limiter=RateLimiter(InMemoryRateWindowStore(), rate_limit_config or RateLimitConfig()),
            budget_guard=BudgetGuard(ledger, BudgetConfig()),
            ledger=ledger,
            generator=self.generator,
            config=gateway_config,
        )

    def test_successful_call_records_ok(self):
        result = self.gateway.call(AUTH, MeteredCallRequest(prompt="Hello", model="gpt-4"))

        assert result.text == "Hello!"
        assert (result.tokens_in, result.tokens_out) == (1000, 500)
        assert result.cost == pytest.approx(0.06)

        records = self.ledger.list_usage()
        assert len(records) == 1
        assert records[0].status == UsageStatus.OK
        assert records[0].cost == pytest.approx(0.06)
        assert records[0].principal_id == "alice"

    def test_defaults_applied(self):
        self.gateway.call(AUTH, MeteredCallRequest(prompt="Hello"))

        self.generator.generate.assert_called_once_with("openai", "gpt-4", "Hello")
        record = self.ledger.list_usage()[0]
        assert (record.provider, record.model) == ("openai", "gpt-4")

    def test_project_context_recorded(self):
        self.gateway.call(AUTH, MeteredCallRequest(prompt="Hello", project_id=PROJECT.upper()))
        assert self.ledger.list_usage()[0].aggregate_id == PROJECT

    def test_unknown_model_priced_as_default(self):
        result = self.gateway.call(AUTH, MeteredCallRequest(prompt="Hello", model="brand-new-model"))
        assert result.cost == pytest.approx(0.06)

    def test_budget_exhausted_records_failed(self):
        self.ledger.record(_ok_record(10.00))

        with pytest.raises(BudgetExceeded) as exc_info:
            self.gateway.call(AUTH, MeteredCallRequest(prompt="Hello"))

        assert exc_info.value.scope == "principal"
        assert exc_info.value.status == 402
        self.generator.generate.assert_not_called()
        failed = [r for r in self.ledger.list_usage() if r.status == UsageStatus.FAILED]
        assert len(failed) == 1
        assert failed[0].cost == 0

    def test_call_crossing_cap_allowed_then_blocked(self):
        self.ledger.record(_ok_record(9.99))

        self.gateway.call(AUTH, MeteredCallRequest(prompt="Hello"))

        with pytest.raises(BudgetExceeded):
            self.gateway.call(AUTH, MeteredCallRequest(prompt="Hello again"))

    def test_failed_calls_do_not_consume_budget(self):
        self.ledger.record(_ok_record(9.00))
        self.ledger.record(UsageRecord.failed("alice", "openai", "gpt-4"))

        result = self.gateway.call(AUTH, MeteredCallRequest(prompt="Hello"))
        assert result.cost > 0

    def test_project_budget_exhausted(self):
        self.ledger.record(UsageRecord(
            principal_id="bob",
            provider="openai",
            model="gpt-4",
            tokens_in=0,
            tokens_out=0,
            cost=5.00,
            status=UsageStatus.OK,
            aggregate_id=PROJECT,
        ))

        with pytest.raises(BudgetExceeded) as exc_info:
            self.gateway.call(AUTH, MeteredCallRequest(prompt="Hello", project_id=PROJECT))

        assert exc_info.value.scope == "project"
        assert exc_info.value.message == "Project daily budget exceeded"

    def test_provider_error_records_failed(self):
        self.generator.generate.side_effect = RuntimeError("provider exploded")

        with pytest.raises(UpstreamError) as exc_info:
            self.gateway.call(AUTH, MeteredCallRequest(prompt="Hello"))

        assert "provider exploded" in exc_info.value.message
        records = self.ledger.list_usage()
        assert len(records) == 1
        assert records[0].status == UsageStatus.FAILED
        assert records[0].cost == 0

    def test_negative_token_counts_rejected(self):
        self.generator.generate.return_value = Generation(text="?", tokens_in=-1, tokens_out=0)

        with pytest.raises(UpstreamError):
            self.gateway.call(AUTH, MeteredCallRequest(prompt="Hello"))
        assert self.ledger.list_usage()[0].status == UsageStatus.FAILED

    def test_provider_timeout_records_failed(self):
        release = threading.Event()
        self.generator.generate.side_effect = lambda *args: release.wait(5)
        gateway = self._gateway(gateway_config=GatewayConfig(provider_timeout_seconds=0.05))

        try:
            with pytest.raises(UpstreamError, match="timed out"):
                gateway.call(AUTH, MeteredCallRequest(prompt="Hello"))
        finally:
            release.set()
            gateway.close()

        records = self.ledger.list_usage()
        assert len(records) == 1
        assert records[0].status == UsageStatus.FAILED

    def test_unauthenticated_records_nothing(self):
        with pytest.raises(Unauthenticated):
            self.gateway.call("Bearer nope", MeteredCallRequest(prompt="Hello"))
        assert self.ledger.list_usage() == []

    @pytest.mark.parametrize("request_kwargs", [
        {"prompt": ""},
        {"prompt": "x" * 10001},
        {"prompt": "Hello", "provider": "acme"},
        {"prompt": "Hello", "model": "  "},
        {"prompt": "Hello", "project_id": "not-a-uuid"},
    ])
    def test_invalid_request_records_nothing(self, request_kwargs):
        with pytest.raises(InvalidRequest):
            self.gateway.call(AUTH, MeteredCallRequest(**request_kwargs))
        assert self.ledger.list_usage() == []
        self.generator.generate.assert_not_called()

    def test_prompt_at_max_length_accepted(self):
        self.gateway.call(AUTH, MeteredCallRequest(prompt="x" * 10000))

    def test_rate_limited_records_nothing(self):
        gateway = self._gateway(rate_limit_config=RateLimitConfig(max_requests=1))
        try:
            with patch("collab_core.core.rate_limit.time.time", return_value=1_700_000_040.0):
                gateway.call(AUTH, MeteredCallRequest(prompt="Hello"))
                with pytest.raises(RateLimited):
                    gateway.call(AUTH, MeteredCallRequest(prompt="Hello"))
        finally:
            gateway.close()

        assert len(self.ledger.list_usage()) == 1

    def test_ledger_failure_on_success_is_internal(self):
        ledger = Mock(wraps=InMemoryUsageLedger())
        ledger.record.side_effect = RuntimeError("ledger down")
        gateway = self._gateway(ledger=ledger)

        try:
            with pytest.raises(Internal):
                gateway.call(AUTH, MeteredCallRequest(prompt="Hello"))
        finally:
            gateway.close()

    def test_ledger_failure_on_failure_path_keeps_original_error(self):
        ledger = Mock(wraps=InMemoryUsageLedger())
        ledger.record.side_effect = RuntimeError("ledger down")
        self.generator.generate.side_effect = RuntimeError("provider exploded")
        gateway = self._gateway(ledger=ledger)

        try:
            with pytest.raises(UpstreamError):
                gateway.call(AUTH, MeteredCallRequest(prompt="Hello"))
        finally:
            gateway.close()

    def test_spend_lookup_failure_is_internal(self):
        ledger = Mock(wraps=InMemoryUsageLedger())
        ledger.sum_principal_cost.side_effect = RuntimeError("ledger down")
        gateway = self._gateway(ledger=ledger)

        try:
            with pytest.raises(Internal):
                gateway.call(AUTH, MeteredCallRequest(prompt="Hello"))
        finally:
            gateway.close()
        self.generator.generate.assert_not_called()


class TestEchoGenerator:

    def test_token_estimate_rounds_up(self):
        generation = EchoGenerator().generate("openai", "gpt-4", "Hello")

        assert generation.tokens_in == 2
        assert generation.text.startswith('Mock AI response for: "Hello')
        assert generation.tokens_out > 0

    def test_through_gateway(self, memory_services):
        result = memory_services.gateway.call(
            "Bearer owner-token", MeteredCallRequest(prompt="Say hi")
        )

        assert result.cost > 0
        records = memory_services.ledger.list_usage(principal_id="user-owner")
        assert len(records) == 1
        assert records[0].status == UsageStatus.OK


class TestConcurrentMeteredCalls:
    """Concurrent calls from one principal must see each other's spend."""

    def setup_method(self):
        self.ledger = InMemoryUsageLedger()
        self.generator = Mock()
        self.generator.generate.side_effect = self._slow_generate
        self.gateway = AIGateway(
            authenticator=StaticTokenAuthenticator({"alice-token": "alice", "bob-token": "bob"}),
            rate_limiter=RateLimiter(InMemoryRateWindowStore(), RateLimitConfig()),
            budget_guard=BudgetGuard(self.ledger, BudgetConfig()),
            ledger=self.ledger,
            generator=self.generator,
        )

    def teardown_method(self):
        self.gateway.close()

    @staticmethod
    def _slow_generate(provider, model, prompt):
        threading.Event().wait(0.3)
        return Generation(text="Hello!", tokens_in=1000, tokens_out=500)

    def _run(self, calls):
        outcomes = []
        outcomes_lock = threading.Lock()

        def worker(auth, request):
            try:
                result = self.gateway.call(auth, request)
            except BudgetExceeded as exc:
                outcome = exc
            else:
                outcome = result
            with outcomes_lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=worker, args=call) for call in calls]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)
        return outcomes

    def test_only_one_call_passes_near_principal_cap(self):
        self.ledger.record(_ok_record(9.99))
        request = MeteredCallRequest(prompt="Hello", model="gpt-4")

        outcomes = self._run([(AUTH, request)] * 8)

        allowed = [o for o in outcomes if not isinstance(o, BudgetExceeded)]
        denied = [o for o in outcomes if isinstance(o, BudgetExceeded)]
        assert len(allowed) == 1
        assert len(denied) == 7
        assert all(exc.scope == "principal" for exc in denied)
        assert self.generator.generate.call_count == 1

        records = self.ledger.list_usage()
        assert len(records) == 9
        assert len([r for r in records if r.status == UsageStatus.FAILED]) == 7
        assert sum(r.cost for r in records if r.status == UsageStatus.OK) == pytest.approx(10.05)

    def test_only_one_call_passes_near_project_cap(self):
        self.ledger.record(_ok_record(4.99, aggregate_id=PROJECT))
        request = MeteredCallRequest(prompt="Hello", model="gpt-4", project_id=PROJECT)

        outcomes = self._run([(AUTH, request), ("Bearer bob-token", request)] * 2)

        denied = [o for o in outcomes if isinstance(o, BudgetExceeded)]
        assert len(outcomes) - len(denied) == 1
        assert len(denied) == 3
        assert all(exc.scope == "project" for exc in denied)
