"""Subscription tiers: maximum depth and monthly exploration allowance."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from depthwise.db.models import User
from depthwise.db.users import SECONDS_PER_DAY


@dataclass(frozen=True)
class TierPolicy:
    name: str
    max_depth: int
    monthly_quota: Optional[int]  # None means unlimited


TIERS: dict[str, TierPolicy] = {
    "FREE": TierPolicy("FREE", max_depth=5, monthly_quota=10),
    "STARTER": TierPolicy("STARTER", max_depth=8, monthly_quota=50),
    "PRO": TierPolicy("PRO", max_depth=10, monthly_quota=None),
}


def policy_for(tier: Optional[str]) -> TierPolicy:
    """Unknown or missing tiers fall back to ``FREE``."""
    return TIERS.get((tier or "FREE").upper(), TIERS["FREE"])


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[str] = None


def reset_due(user: User, now: int, window_days: int = 30) -> bool:
    return now - user.explorations_reset_at >= window_days * SECONDS_PER_DAY


def can_explore(user: User, now: int, window_days: int = 30) -> Decision:
    """Check the monthly allowance, treating a due reset as already applied."""
    policy = policy_for(user.subscription_tier)
    if policy.monthly_quota is None:
        return Decision(True)
    used = 0 if reset_due(user, now, window_days) else user.explorations_used
    if used >= policy.monthly_quota:
        return Decision(
            False,
            f"You've reached your monthly limit of {policy.monthly_quota} explorations. "
            "Upgrade to continue exploring.",
        )
    return Decision(True)


def remaining(user: User, now: int, window_days: int = 30) -> Optional[int]:
    """Explorations left this window, or ``None`` when unlimited."""
    policy = policy_for(user.subscription_tier)
    if policy.monthly_quota is None:
        return None
    used = 0 if reset_due(user, now, window_days) else user.explorations_used
    return max(0, policy.monthly_quota - used)
