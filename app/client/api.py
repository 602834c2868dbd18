"""
HTTP client for the platform API.
"""

from typing import Any

import httpx
from structlog import get_logger

from app.client.session import AuthSession, error_detail

logger = get_logger(__name__)


class ApiError(Exception):
    """Non-2xx response from the API."""

    def __init__(self, status_code: int, detail: str) -> None:
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"HTTP {status_code}: {detail}")


class ApiClient:
    """Thin JSON client that sends the session's bearer token."""

    def __init__(self, http: httpx.AsyncClient, session: AuthSession) -> None:
        self.http = http
        self.session = session

    async def request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Send a request and return the decoded body (None for 204)."""
        response = await self.http.request(
            method, path, json=json, params=params, headers=self.session.auth_headers()
        )
        if response.status_code >= 400:
            detail = error_detail(response)
            logger.info(
                "client_api_error", method=method, path=path, status_code=response.status_code
            )
            raise ApiError(response.status_code, detail)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, json: dict[str, Any] | None = None) -> Any:
        return await self.request("POST", path, json=json)
