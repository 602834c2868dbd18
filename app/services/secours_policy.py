"""
Ô Secours token policy - token value and purchase bounds per subscription type.

The policy is an interface; the default implementation reads the
secours_token_policies table. Nothing here carries built-in prices.
"""

from decimal import Decimal
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import SecoursTokenPolicy
from app.exceptions import PolicyNotConfiguredError
from app.models.api import SubscriptionType
from app.models.domain import TokenPolicy

logger = get_logger(__name__)


class SecoursPolicy(Protocol):
    """Source of token pricing and purchase limits."""

    async def get_token_value(self, subscription_type: SubscriptionType) -> Decimal:
        """FCFA value of one token."""
        ...

    async def get_min_max_tokens(self, subscription_type: SubscriptionType) -> tuple[int, int]:
        """Inclusive (min, max) tokens per purchase."""
        ...


class DatabaseSecoursPolicy:
    """SecoursPolicy backed by secours_token_policies."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_policy(self, subscription_type: SubscriptionType) -> TokenPolicy:
        """
        Full policy row for a type.

        Raises:
            PolicyNotConfiguredError: No row for the type
        """
        row = await self.session.get(SecoursTokenPolicy, subscription_type.value)
        if row is None:
            logger.error("secours_policy_missing", subscription_type=subscription_type.value)
            raise PolicyNotConfiguredError(subscription_type.value)
        return TokenPolicy(
            subscription_type=row.subscription_type,
            token_value_fcfa=Decimal(row.token_value_fcfa),
            min_tokens=row.min_tokens,
            max_tokens=row.max_tokens,
        )

    async def get_token_value(self, subscription_type: SubscriptionType) -> Decimal:
        """FCFA value of one token."""
        return (await self.get_policy(subscription_type)).token_value_fcfa

    async def get_min_max_tokens(self, subscription_type: SubscriptionType) -> tuple[int, int]:
        """Inclusive (min, max) tokens per purchase."""
        policy = await self.get_policy(subscription_type)
        return policy.min_tokens, policy.max_tokens

    async def set_policy(self, policy: TokenPolicy) -> TokenPolicy:
        """Create or replace the policy for a type."""
        await self.session.merge(
            SecoursTokenPolicy(
                subscription_type=policy.subscription_type,
                token_value_fcfa=policy.token_value_fcfa,
                min_tokens=policy.min_tokens,
                max_tokens=policy.max_tokens,
            )
        )
        await self.session.commit()

        logger.info(
            "secours_policy_updated",
            subscription_type=policy.subscription_type,
            token_value_fcfa=str(policy.token_value_fcfa),
            min_tokens=policy.min_tokens,
            max_tokens=policy.max_tokens,
        )
        return policy
