"""
Ô Secours client with a keyed query cache.

Reads are cached under a key until a write that affects them invalidates
the key; the next read then refetches.
"""

from collections.abc import Awaitable, Callable
from decimal import Decimal
from typing import Any
from uuid import UUID

from structlog import get_logger

from app.client.api import ApiClient
from app.models.api import (
    RescueRequestResponse,
    SecurityAlertResponse,
    SubscriptionResponse,
    SubscriptionType,
    TokenInfoResponse,
    TokenTransactionResponse,
)

logger = get_logger(__name__)

SUBSCRIPTIONS_KEY = "secours-subscriptions"
TOKEN_TRANSACTIONS_KEY = "token-transactions"
RESCUE_REQUESTS_KEY = "rescue-requests"


class QueryCache:
    """Results of read queries, by key."""

    def __init__(self) -> None:
        self._entries: dict[str, Any] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    async def get_or_fetch(self, key: str, fetch: Callable[[], Awaitable[Any]]) -> Any:
        """Cached value for key, fetching it on a miss."""
        if key not in self._entries:
            self._entries[key] = await fetch()
            logger.debug("query_cache_filled", key=key)
        return self._entries[key]

    def invalidate(self, *keys: str) -> None:
        for key in keys:
            if self._entries.pop(key, None) is not None:
                logger.debug("query_cache_invalidated", key=key)

    def clear(self) -> None:
        self._entries.clear()


class SecoursClient:
    """Ô Secours operations for the signed-in member."""

    def __init__(self, api: ApiClient, cache: QueryCache | None = None) -> None:
        self.api = api
        self.cache = cache or QueryCache()

    # Reads

    async def list_subscriptions(self) -> list[SubscriptionResponse]:
        return await self.cache.get_or_fetch(
            SUBSCRIPTIONS_KEY,
            lambda: self._fetch_list("/v1/secours/subscriptions", SubscriptionResponse),
        )

    async def list_token_transactions(self) -> list[TokenTransactionResponse]:
        return await self.cache.get_or_fetch(
            TOKEN_TRANSACTIONS_KEY,
            lambda: self._fetch_list("/v1/secours/tokens/transactions", TokenTransactionResponse),
        )

    async def list_rescue_requests(self) -> list[RescueRequestResponse]:
        return await self.cache.get_or_fetch(
            RESCUE_REQUESTS_KEY,
            lambda: self._fetch_list("/v1/secours/rescue-requests", RescueRequestResponse),
        )

    async def get_token_info(self, subscription_type: SubscriptionType) -> TokenInfoResponse:
        """Token value and limits. Not cached; policies can change server-side."""
        body = await self.api.get(f"/v1/secours/token-info/{subscription_type.value}")
        return TokenInfoResponse.model_validate(body)

    async def security_alerts(self) -> list[SecurityAlertResponse]:
        return await self._fetch_list("/v1/secours/security-alerts", SecurityAlertResponse)

    # Writes

    async def subscribe(self, subscription_type: SubscriptionType) -> SubscriptionResponse:
        body = await self.api.post(
            "/v1/secours/subscriptions", json={"subscription_type": subscription_type.value}
        )
        self.cache.invalidate(SUBSCRIPTIONS_KEY)
        return SubscriptionResponse.model_validate(body)

    async def purchase_tokens(
        self, subscription_id: UUID, token_amount: int, payment_id: UUID
    ) -> TokenTransactionResponse:
        body = await self.api.post(
            "/v1/secours/tokens/purchase",
            json={
                "subscription_id": str(subscription_id),
                "token_amount": token_amount,
                "payment_id": str(payment_id),
            },
        )
        self.cache.invalidate(SUBSCRIPTIONS_KEY, TOKEN_TRANSACTIONS_KEY)
        return TokenTransactionResponse.model_validate(body)

    async def request_rescue(
        self, subscription_id: UUID, request_description: str, rescue_value_fcfa: Decimal
    ) -> RescueRequestResponse:
        body = await self.api.post(
            "/v1/secours/rescue-requests",
            json={
                "subscription_id": str(subscription_id),
                "request_description": request_description,
                "rescue_value_fcfa": str(rescue_value_fcfa),
            },
        )
        # the claim deducts tokens, so balances are stale too
        self.cache.invalidate(RESCUE_REQUESTS_KEY, SUBSCRIPTIONS_KEY)
        return RescueRequestResponse.model_validate(body)

    async def _fetch_list(self, path: str, model: Any) -> list[Any]:
        body = await self.api.get(path)
        return [model.model_validate(item) for item in body]
