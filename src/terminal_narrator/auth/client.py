"""
Auth Network Client
===================

Thin HTTP client for the terminal server's auth API.

Endpoints (relative to the API base, e.g. http://localhost:4020/api):
    GET  /health             - server liveness
    GET  /auth/config        - auth mode (noAuth, SSH keys, passwords)
    POST /auth/password      - password login, returns a bearer token
    GET  /auth/verify        - token validity
    GET  /auth/current-user  - user owning a token

Design Rules:
    - Blocking requests calls run in a worker thread (asyncio.to_thread)
    - Every request carries an explicit timeout
    - Transport failures raise AuthError(NETWORK); rejected logins raise
      AuthError(INVALID_CREDENTIALS)
"""

import asyncio
import logging
from typing import Optional

import requests
from pydantic import ValidationError

from terminal_narrator.errors import AuthError
from terminal_narrator.models.auth import AuthConfigResponse, LoginRequest, LoginResponse
from terminal_narrator.models.error_codes import AuthErrorCode


logger = logging.getLogger(__name__)


class AuthNetworkClient:
    """
    Async facade over the auth endpoints.

    Attributes:
        api_url: API base URL without trailing slash
        timeout: Per-request timeout in seconds

    Example:
        client = AuthNetworkClient("http://localhost:4020/api")
        config = await client.get_auth_config()
        if not config.no_auth:
            login = await client.authenticate("alice", "secret")
    """

    def __init__(
        self,
        api_url: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.api_url}{path}"
        try:
            return self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise AuthError(AuthErrorCode.NETWORK, f"{method} {url} failed: {e}") from e

    async def _call(self, method: str, path: str, **kwargs) -> requests.Response:
        return await asyncio.to_thread(self._request, method, path, **kwargs)

    async def check_health(self) -> bool:
        """True if the server answers its health endpoint with 2xx."""
        try:
            response = await self._call("GET", "/health")
        except AuthError as e:
            logger.warning(f"Health check failed: {e}")
            return False
        return response.ok

    async def get_auth_config(self) -> AuthConfigResponse:
        """
        Fetch the server's authentication mode.

        Raises:
            AuthError: NETWORK if unreachable or the body is unreadable
        """
        response = await self._call("GET", "/auth/config")
        if not response.ok:
            raise AuthError(
                AuthErrorCode.NETWORK,
                f"auth config returned HTTP {response.status_code}",
            )
        try:
            return AuthConfigResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise AuthError(AuthErrorCode.NETWORK, f"unreadable auth config: {e}") from e

    async def authenticate(self, username: str, password: str) -> LoginResponse:
        """
        Log in with a password.

        Args:
            username: User id
            password: Password

        Returns:
            LoginResponse carrying the bearer token

        Raises:
            AuthError: INVALID_CREDENTIALS if rejected, NETWORK otherwise
        """
        body = LoginRequest(user_id=username, password=password).model_dump(by_alias=True)
        response = await self._call("POST", "/auth/password", json=body)

        if response.status_code in (401, 403):
            raise AuthError(AuthErrorCode.INVALID_CREDENTIALS, f"login rejected for {username!r}")
        if not response.ok:
            raise AuthError(AuthErrorCode.NETWORK, f"login returned HTTP {response.status_code}")

        try:
            login = LoginResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise AuthError(AuthErrorCode.NETWORK, f"unreadable login response: {e}") from e

        if not login.success or not login.token:
            raise AuthError(AuthErrorCode.INVALID_CREDENTIALS, f"login rejected for {username!r}")

        logger.info(f"Authenticated as {login.user_id or username} via {login.auth_method or 'password'}")
        return login

    async def verify_token(self, token: str) -> bool:
        """True if the server still accepts ``token``."""
        response = await self._call(
            "GET",
            "/auth/verify",
            headers={"Authorization": f"Bearer {token}"},
        )
        return response.ok

    async def get_current_user(self, token: str) -> Optional[str]:
        """User id that owns ``token``, or None if the token is rejected."""
        response = await self._call(
            "GET",
            "/auth/current-user",
            headers={"Authorization": f"Bearer {token}"},
        )
        if not response.ok:
            return None
        try:
            return response.json().get("userId")
        except ValueError:
            return None

    def close(self) -> None:
        self._session.close()
