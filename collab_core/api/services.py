"""
Explicit construction of the core services.

Stores, limiter and clients are built here and passed in; nothing in
the core reaches for a process-wide singleton.
"""

from dataclasses import dataclass
from typing import Optional

from ..config.loader import AppConfig
from ..core.auth import Authenticator
from ..core.budget import BudgetGuard
from ..core.commit import CommitCoordinator
from ..core.gateway import AIGateway
from ..core.rate_limit import RateLimiter
from ..providers.base import EchoGenerator, TextGenerator
from ..storage.base import EventStore, ProjectStore, RateWindowStore, UsageLedger
from ..storage.db import initialize_schema
from ..storage.memory import (
    InMemoryEventStore,
    InMemoryProjectStore,
    InMemoryRateWindowStore,
    InMemoryUsageLedger,
)
from ..storage.repository import (
    EventRepository,
    ProjectRepository,
    RateWindowRepository,
    UsageRepository,
)


@dataclass
class Services:
    projects: ProjectStore
    events: EventStore
    ledger: UsageLedger
    rate_windows: RateWindowStore
    coordinator: CommitCoordinator
    gateway: AIGateway
    budget_guard: BudgetGuard

    def close(self) -> None:
        self.gateway.close()


def _assemble(
    config: AppConfig,
    authenticator: Authenticator,
    generator: TextGenerator,
    projects: ProjectStore,
    events: EventStore,
    ledger: UsageLedger,
    rate_windows: RateWindowStore,
) -> Services:
    budget_guard = BudgetGuard(ledger, config.budget)
    coordinator = CommitCoordinator(
        authenticator,
        projects,
        events,
        rate_limiter=RateLimiter(rate_windows, config.rate_limit, scope="commit"),
    )
    gateway = AIGateway(
        authenticator,
        RateLimiter(rate_windows, config.rate_limit, scope="ai_gateway"),
        budget_guard,
        ledger,
        generator,
        config.gateway,
    )
    return Services(
        projects=projects,
        events=events,
        ledger=ledger,
        rate_windows=rate_windows,
        coordinator=coordinator,
        gateway=gateway,
        budget_guard=budget_guard,
    )


def build_sqlite_services(
    config: AppConfig,
    authenticator: Authenticator,
    generator: Optional[TextGenerator] = None,
) -> Services:
    """Services backed by the SQLite database in config.storage.db_path."""
    db_path = config.storage.db_path
    initialize_schema(db_path)
    return _assemble(
        config,
        authenticator,
        generator or EchoGenerator(),
        ProjectRepository(db_path),
        EventRepository(db_path),
        UsageRepository(db_path),
        RateWindowRepository(db_path),
    )


def build_memory_services(
    config: AppConfig,
    authenticator: Authenticator,
    generator: Optional[TextGenerator] = None,
) -> Services:
    """Services backed by in-memory stores."""
    return _assemble(
        config,
        authenticator,
        generator or EchoGenerator(),
        InMemoryProjectStore(),
        InMemoryEventStore(),
        InMemoryUsageLedger(),
        InMemoryRateWindowStore(),
    )
