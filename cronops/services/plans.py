from dataclasses import dataclass
from typing import Optional

from cronops.models.enums import Plan


@dataclass(frozen=True)
class PlanPolicy:
    """Everything that varies by subscription plan"""
    max_active_jobs: Optional[int]
    resolution_seconds: int
    log_retention_days: int

    @property
    def unlimited(self) -> bool:
        return self.max_active_jobs is None


PLAN_POLICIES = {
    Plan.FREE: PlanPolicy(max_active_jobs=3, resolution_seconds=60, log_retention_days=7),
    Plan.PREMIUM: PlanPolicy(max_active_jobs=100, resolution_seconds=30, log_retention_days=30),
    Plan.PRO: PlanPolicy(max_active_jobs=None, resolution_seconds=1, log_retention_days=90),
}


def policy_for(user) -> PlanPolicy:
    """Policy for a user; admins get the top tier"""
    if user.is_admin:
        return PLAN_POLICIES[Plan.PRO]
    return PLAN_POLICIES[Plan(user.plan)]
