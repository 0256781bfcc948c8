"""
Daily spend caps per principal and per project.

A call is allowed while the day's ok-status spend is still below the
cap, measured before the call. The call that crosses the cap goes
through; only the next one is denied, so overspend is bounded by the
cost of a single call.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..config.loader import BudgetConfig
from ..storage.base import UsageLedger

SCOPE_PRINCIPAL = "principal"
SCOPE_PROJECT = "project"


@dataclass(frozen=True)
class BudgetDecision:
    allowed: bool
    scope: Optional[str] = None
    spent: float = 0.0
    cap: float = 0.0
    reason: str = ""


@dataclass(frozen=True)
class BudgetSummary:
    """Today's spend against both caps."""
    principal_spent: float
    principal_cap: float
    project_spent: Optional[float]
    project_cap: float
    since: datetime


def day_start(now: datetime) -> datetime:
    """Local midnight of the day containing now."""
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


class BudgetGuard:

    def __init__(self, ledger: UsageLedger, config: Optional[BudgetConfig] = None):
        self.ledger = ledger
        self.config = config or BudgetConfig()

    def check(self, principal_id: str, project_id: Optional[str] = None, now: Optional[datetime] = None) -> BudgetDecision:
        """Decide whether one more call is allowed today.

        Args:
            principal_id: Principal making the call
            project_id: Optional project context; its cap is checked too
            now: Reference time; defaults to the current local time

        Returns:
            BudgetDecision naming the exhausted scope when denied
        """
        since = day_start(now or datetime.now())

        principal_spent = self.ledger.sum_principal_cost(principal_id, since)
        if principal_spent >= self.config.principal_daily:
            return BudgetDecision(
                allowed=False,
                scope=SCOPE_PRINCIPAL,
                spent=principal_spent,
                cap=self.config.principal_daily,
                reason="User daily budget exceeded",
            )

        if project_id:
            project_spent = self.ledger.sum_project_cost(project_id, since)
            if project_spent >= self.config.project_daily:
                return BudgetDecision(
                    allowed=False,
                    scope=SCOPE_PROJECT,
                    spent=project_spent,
                    cap=self.config.project_daily,
                    reason="Project daily budget exceeded",
                )

        return BudgetDecision(allowed=True, spent=principal_spent, cap=self.config.principal_daily)

    def summary(self, principal_id: str, project_id: Optional[str] = None, now: Optional[datetime] = None) -> BudgetSummary:
        since = day_start(now or datetime.now())
        return BudgetSummary(
            principal_spent=self.ledger.sum_principal_cost(principal_id, since),
            principal_cap=self.config.principal_daily,
            project_spent=self.ledger.sum_project_cost(project_id, since) if project_id else None,
            project_cap=self.config.project_daily,
            since=since,
        )
