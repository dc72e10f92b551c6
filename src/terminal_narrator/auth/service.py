"""
Auth Service
============

Bearer token lifecycle for the terminal server.

Responsibilities:
    - Detect whether the server requires authentication at all
    - Log in and keep credentials for silent refresh
    - Hand out tokens, refreshing them once they reach their TTL
    - Decide when repeated rejections mean the credentials are dead

Token Rules:
    - A token is valid for ``token_ttl`` seconds from issuance, whatever
      the server would say about it afterwards
    - A rejected token is dropped; the next get_token() refreshes it
    - Two rejections within ``rejection_window`` seconds flip
      ``authenticated`` to False (once) and require a manual login
    - Credentials the server rejects are deleted from the secret store

Example:
    service = AuthService(AuthNetworkClient(api_url), MemorySecretStore())
    await service.login("alice", "secret")
    token = await service.get_token()
"""

import logging
import time
from typing import Callable, List, Optional

from pydantic import ValidationError

from terminal_narrator.auth.client import AuthNetworkClient
from terminal_narrator.auth.store import SecretStore
from terminal_narrator.errors import AuthError
from terminal_narrator.models.auth import AuthToken, Credentials
from terminal_narrator.models.error_codes import AuthErrorCode


logger = logging.getLogger(__name__)


CREDENTIALS_KEY = "terminal-narrator.credentials"

AuthListener = Callable[[bool], None]


class AuthService:
    """
    Owns the token, the credentials and the authenticated flag.

    Attributes:
        token_ttl: Token lifetime in seconds
        rejection_window: Window for the two-rejection rule in seconds
    """

    def __init__(
        self,
        client: AuthNetworkClient,
        store: Optional[SecretStore] = None,
        token_ttl: float = 24 * 60 * 60,
        rejection_window: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._store = store
        self.token_ttl = token_ttl
        self.rejection_window = rejection_window
        self._clock = clock

        self._auth_required: Optional[bool] = None
        self._token: Optional[AuthToken] = None
        self._credentials: Optional[Credentials] = None
        self._authenticated: bool = False
        self._rejections: List[float] = []
        self._listeners: List[AuthListener] = []

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def authenticated(self) -> bool:
        """Externally visible login state."""
        return self._authenticated

    @property
    def auth_required(self) -> Optional[bool]:
        """None until the auth mode was detected."""
        return self._auth_required

    @property
    def token(self) -> Optional[AuthToken]:
        return self._token

    def add_listener(self, listener: AuthListener) -> None:
        """Register a callback invoked with the new flag on every change."""
        self._listeners.append(listener)

    def _set_authenticated(self, value: bool) -> None:
        if value == self._authenticated:
            return
        self._authenticated = value
        logger.info(f"Authenticated: {value}")
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception as e:
                logger.error(f"Auth listener failed: {e}")

    # -------------------------------------------------------------------------
    # Auth Mode
    # -------------------------------------------------------------------------

    async def detect_auth_mode(self) -> bool:
        """
        Ask the server whether it requires authentication.

        An unreachable or unreadable auth config is treated as "required"
        for this call only; the mode stays unknown and is asked again next
        time.

        Returns:
            True if a token is required
        """
        try:
            config = await self._client.get_auth_config()
        except AuthError as e:
            logger.warning(f"Auth mode check failed, assuming auth is required: {e}")
            return True

        required = not config.no_auth
        self._auth_required = required
        if not required:
            logger.info("Server runs without authentication")
            self._set_authenticated(True)
        return required

    async def is_auth_required(self) -> bool:
        if self._auth_required is None:
            return await self.detect_auth_mode()
        return self._auth_required

    # -------------------------------------------------------------------------
    # Login / Logout
    # -------------------------------------------------------------------------

    async def login(self, username: str, password: str, remember: bool = True) -> AuthToken:
        """
        Log in with a password and keep the credentials for refresh.

        Raises:
            AuthError: NOT_REQUIRED if the server has auth disabled,
                INVALID_CREDENTIALS or NETWORK from the client
        """
        if not await self.is_auth_required():
            raise AuthError(AuthErrorCode.NOT_REQUIRED, "server does not require authentication")

        credentials = Credentials(username=username, password=password)
        token = await self._authenticate(credentials)

        self._credentials = credentials
        self._rejections.clear()
        if remember and self._store is not None:
            self._store.save(CREDENTIALS_KEY, credentials.model_dump_json())
        return token

    def logout(self) -> None:
        """Drop the token and forget stored credentials."""
        self._token = None
        self._forget_credentials()
        self._set_authenticated(False)
        logger.info("Logged out")

    def load_saved_credentials(self) -> Optional[Credentials]:
        """Credentials from the secret store, or None if absent or unreadable."""
        if self._store is None:
            return None
        raw = self._store.load(CREDENTIALS_KEY)
        if raw is None:
            return None
        try:
            return Credentials.model_validate_json(raw)
        except ValidationError:
            logger.warning("Stored credentials are unreadable, deleting them")
            self._store.delete(CREDENTIALS_KEY)
            return None

    def _forget_credentials(self) -> None:
        self._credentials = None
        if self._store is not None:
            self._store.delete(CREDENTIALS_KEY)

    # -------------------------------------------------------------------------
    # Tokens
    # -------------------------------------------------------------------------

    async def get_token(self) -> Optional[str]:
        """
        Current bearer token, refreshed if missing or past its TTL.

        Returns:
            Token value, or None if the server requires no auth

        Raises:
            AuthError: INVALID_CREDENTIALS if no usable credentials remain,
                NETWORK if the server could not be reached
        """
        if not await self.is_auth_required():
            return None

        if self._token is not None:
            if not self._token.is_expired(self._clock(), self.token_ttl):
                return self._token.value
            logger.info("Token reached its TTL, refreshing")
            self._token = None

        return await self.refresh()

    async def refresh(self) -> str:
        """
        Obtain a fresh token from the stored credentials.

        Raises:
            AuthError: INVALID_CREDENTIALS if none are stored or the server
                rejects them (they are deleted), NETWORK on transport errors or
                while the auth mode is still unknown
        """
        credentials = self._credentials or self.load_saved_credentials()
        if credentials is None and self._auth_required is None:
            # Server may run without auth; retry once it answers
            raise AuthError(AuthErrorCode.NETWORK, "auth mode unknown, server unreachable")
        if credentials is None:
            self._token = None
            self._set_authenticated(False)
            raise AuthError(AuthErrorCode.INVALID_CREDENTIALS, "no stored credentials, login required")

        try:
            token = await self._authenticate(credentials)
        except AuthError as e:
            if e.code == AuthErrorCode.INVALID_CREDENTIALS:
                logger.warning("Stored credentials were rejected, deleting them")
                self._forget_credentials()
                self._set_authenticated(False)
            raise

        self._credentials = credentials
        return token.value

    async def _authenticate(self, credentials: Credentials) -> AuthToken:
        response = await self._client.authenticate(credentials.username, credentials.password)
        self._token = AuthToken(value=response.token, issued_at=self._clock())
        self._set_authenticated(True)
        return self._token

    def invalidate_token(self) -> None:
        """Drop the cached token so the next get_token() refreshes."""
        self._token = None

    async def verify(self) -> bool:
        """Ask the server whether the current token is still accepted."""
        if not await self.is_auth_required():
            return True
        if self._token is None:
            return False
        return await self._client.verify_token(self._token.value)

    def record_rejection(self) -> bool:
        """
        Record a server-side token rejection.

        Returns:
            True if this rejection invalidates auth (second one inside the
            window); the caller must stop and wait for a manual login
        """
        now = self._clock()
        self._rejections = [t for t in self._rejections if now - t < self.rejection_window]
        self._rejections.append(now)
        self._token = None

        if len(self._rejections) >= 2:
            logger.warning(
                f"{len(self._rejections)} auth rejections within "
                f"{self.rejection_window:.0f}s, login required"
            )
            self._set_authenticated(False)
            return True

        logger.info("Token rejected, will refresh on next attempt")
        return False
