"""
Client-side auth session.

One AuthSession holds the sign-in state for a client process. It is
created once and passed to every client that needs credentials.

    anonymous -> authenticating -> authenticated -> signed_out
                       |
                       +-> anonymous (sign-in failed)
"""

from enum import Enum

import httpx
from pydantic import ValidationError
from structlog import get_logger

from app.models.api import SignInResponse, UserResponse, UserRole

logger = get_logger(__name__)


class SessionState(str, Enum):
    """Where the session is in its lifecycle."""

    ANONYMOUS = "anonymous"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    SIGNED_OUT = "signed_out"


class SignInFailedError(Exception):
    """Raised when the server rejects the credentials or the call fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class AuthSession:
    """Authoritative sign-in state."""

    def __init__(self, http: httpx.AsyncClient) -> None:
        self.http = http
        self.state = SessionState.ANONYMOUS
        self.token: str | None = None
        self.user: UserResponse | None = None
        self.role: UserRole | None = None
        self.redirect_to: str | None = None
        self.error: str | None = None

    @property
    def loading(self) -> bool:
        """True only while a sign-in or restore is in flight."""
        return self.state == SessionState.AUTHENTICATING

    @property
    def is_authenticated(self) -> bool:
        return self.state == SessionState.AUTHENTICATED

    def auth_headers(self) -> dict[str, str]:
        """Authorization header for the current token, if any."""
        if self.token is None or not self.is_authenticated:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    async def sign_in(self, email: str, password: str) -> SignInResponse:
        """
        Exchange credentials for a token.

        On failure the session returns to anonymous with no redirect and
        no token.

        Raises:
            SignInFailedError: Credentials rejected or server unreachable
        """
        self._reset()
        self.state = SessionState.AUTHENTICATING

        try:
            response = await self.http.post(
                "/v1/auth/signin", json={"email": email, "password": password}
            )
        except httpx.HTTPError as exc:
            self._fail(f"Sign-in request failed: {exc}")
            raise SignInFailedError(self.error or "Sign-in request failed") from exc

        if response.status_code != 200:
            detail = error_detail(response)
            self._fail(detail)
            raise SignInFailedError(detail, response.status_code)

        try:
            result = SignInResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            self._fail("Malformed sign-in response")
            raise SignInFailedError("Malformed sign-in response") from exc

        self.token = result.access_token
        self.user = result.user
        self.role = result.user.role
        self.redirect_to = result.redirect_to
        self.state = SessionState.AUTHENTICATED

        logger.info("client_signed_in", user_id=str(result.user.id), role=self.role.value)
        return result

    async def restore(self, token: str) -> bool:
        """
        Resume from a persisted token.

        Returns True when the server still accepts the token; otherwise
        the session stays anonymous.
        """
        self._reset()
        self.state = SessionState.AUTHENTICATING
        headers = {"Authorization": f"Bearer {token}"}

        try:
            me = await self.http.get("/v1/auth/me", headers=headers)
        except httpx.HTTPError as exc:
            self._fail(f"Session restore failed: {exc}")
            return False

        if me.status_code != 200:
            self._fail(error_detail(me))
            return False

        try:
            user = UserResponse.model_validate(me.json())
        except (ValueError, ValidationError):
            self._fail("Malformed session response")
            return False

        self.token = token
        self.user = user
        self.role = user.role
        self.redirect_to = "/admin" if self.role == UserRole.ADMIN else "/dashboard"
        self.state = SessionState.AUTHENTICATED

        logger.info("client_session_restored", user_id=str(self.user.id))
        return True

    async def sign_out(self) -> None:
        """Revoke the token on the server and clear local state."""
        if self.token is not None and self.is_authenticated:
            try:
                await self.http.post("/v1/auth/signout", headers=self.auth_headers())
            except httpx.HTTPError as exc:
                logger.warning("client_sign_out_request_failed", error=str(exc))

        self._reset()
        self.state = SessionState.SIGNED_OUT
        logger.info("client_signed_out")

    def _reset(self) -> None:
        self.token = None
        self.user = None
        self.role = None
        self.redirect_to = None
        self.error = None

    def _fail(self, message: str) -> None:
        self._reset()
        self.error = message
        self.state = SessionState.ANONYMOUS
        logger.info("client_sign_in_failed", error=message)


def error_detail(response: httpx.Response) -> str:
    """The server's error detail, or the status line."""
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    if isinstance(body, dict) and "detail" in body:
        return str(body["detail"])
    return f"HTTP {response.status_code}"
