"""Usage gate: per-tier quota checks and atomic consumption.

A check never mutates state. An increment re-validates inside a single
conditional UPDATE, so two requests that both passed a check cannot push
a free account past its limit or lose a count. Denials are returned as
decisions, not raised.
"""

import logging
from dataclasses import dataclass, replace

from sqlalchemy.ext.asyncio import AsyncSession

from textbehind.core.config import Settings, settings
from textbehind.core.errors import NotFoundError
from textbehind.models.user import UserAccount
from textbehind.repositories.user_repository import UserRepository
from textbehind.services.entitlements import is_premium, usage_limit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageDecision:
    """Outcome of a usage check or increment.

    Attributes:
        allowed: Whether the metered action may proceed (check) or was
            recorded (increment).
        current_usage: Usage count after this operation.
        limit: Tier limit.
        tier: Subscription tier.
        is_premium: Paid tier with an active subscription.
        reason: Denial message, None when allowed.
    """

    allowed: bool
    current_usage: int
    limit: int
    tier: str
    is_premium: bool
    reason: str | None = None

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.current_usage)


def _limit_reached_message(tier: str, limit: int) -> str:
    if tier == "free":
        return (
            f"You have reached your limit of {limit} free generations. "
            "Please upgrade to continue."
        )
    return f"You have reached your plan limit of {limit} generations."


class UsageGate:
    """Decides whether an identity may perform one more metered action.

    Args:
        db: Async database session.
        config: Settings holding the tier limit table.
    """

    def __init__(self, db: AsyncSession, config: Settings = settings) -> None:
        self._db = db
        self._config = config

    async def _require_account(self, identity_id: str, *, refresh: bool = False) -> UserAccount:
        account = await UserRepository.get_by_identity_id(
            self._db, identity_id, refresh=refresh
        )
        if account is None:
            raise NotFoundError("User profile")
        return account

    def _decide(self, account: UserAccount) -> UsageDecision:
        tier = account.subscription_tier
        usage = account.usage_count
        limit = usage_limit(tier, self._config)
        premium = is_premium(tier, account.subscription_status)
        allowed = premium or usage < limit
        return UsageDecision(
            allowed=allowed,
            current_usage=usage,
            limit=limit,
            tier=tier,
            is_premium=premium,
            reason=None if allowed else _limit_reached_message(tier, limit),
        )

    async def check(self, identity_id: str) -> UsageDecision:
        """Evaluate the quota without consuming it.

        Premium accounts are allowed regardless of count.

        Raises:
            NotFoundError: If the identity has no account.
        """
        account = await self._require_account(identity_id)
        return self._decide(account)

    async def increment(self, identity_id: str) -> UsageDecision:
        """Atomically consume one unit of usage.

        Returns:
            Allowed decision carrying the post-increment count, or a denial
            with the stored count when the limit was reached concurrently.

        Raises:
            NotFoundError: If the identity has no account.
        """
        new_count = await UserRepository.increment_usage(
            self._db, identity_id, self._config
        )
        account = await self._require_account(identity_id, refresh=True)
        if new_count is None:
            logger.info(
                "Usage increment denied for %s at %d", identity_id, account.usage_count
            )
            denied = self._decide(account)
            return replace(
                denied,
                allowed=False,
                reason=denied.reason
                or _limit_reached_message(denied.tier, denied.limit),
            )

        limit = usage_limit(account.subscription_tier, self._config)
        return UsageDecision(
            allowed=True,
            current_usage=new_count,
            limit=limit,
            tier=account.subscription_tier,
            is_premium=is_premium(
                account.subscription_tier, account.subscription_status
            ),
        )

    async def check_and_increment(self, identity_id: str) -> UsageDecision:
        """Check, then increment only if allowed.

        A denied check never reaches the increment.
        """
        decision = await self.check(identity_id)
        if not decision.allowed:
            return decision
        return await self.increment(identity_id)
