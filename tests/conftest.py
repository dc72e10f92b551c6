"""
Test Configuration
==================

Pytest fixtures and test doubles for terminal-narrator.

Fakes stand in for the network edges only:
    - FakeTransport / FakeTransportFactory: WebSocket transport
    - FakeAuthClient: auth HTTP endpoints
    - FakeHttpSession / FakeResponse: requests.Session for the poller
"""

import asyncio
import json
import struct
from typing import List, Optional

import pytest

from terminal_narrator.errors import AuthError, StreamConnectionError
from terminal_narrator.models.auth import AuthConfigResponse, LoginResponse
from terminal_narrator.models.error_codes import AuthErrorCode, ConnectionErrorCode
from terminal_narrator.models.snapshot import BLANK_CELL, Cell, Snapshot


# =============================================================================
# Transport Fakes
# =============================================================================

class FakeTransport:
    """In-memory transport; tests push server messages into it."""

    def __init__(self, send_delay: float = 0.0) -> None:
        self.send_delay = send_delay
        self.sent: List[dict] = []
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send(self, message: str) -> None:
        if self.send_delay:
            await asyncio.sleep(self.send_delay)
        if self.closed:
            raise StreamConnectionError(ConnectionErrorCode.CONNECTION_LOST, "closed")
        self.sent.append(json.loads(message))

    async def recv(self):
        item = await self._incoming.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True

    def push(self, message) -> None:
        self._incoming.put_nowait(message)

    def drop(self) -> None:
        self.push(StreamConnectionError(ConnectionErrorCode.CONNECTION_LOST, "dropped by test"))


class FakeTransportFactory:
    """
    Transport factory with scripted outcomes.

    Each call pops the next outcome: an exception is raised, anything
    else opens a new FakeTransport. Once the script is exhausted every
    call succeeds.
    """

    def __init__(self, outcomes: Optional[list] = None, send_delay: float = 0.0) -> None:
        self.outcomes = list(outcomes or [])
        self.send_delay = send_delay
        self.calls: List[tuple] = []
        self.transports: List[FakeTransport] = []

    async def __call__(self, url: str, headers: dict) -> FakeTransport:
        self.calls.append((url, headers))
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, Exception):
            raise outcome
        transport = FakeTransport(send_delay=self.send_delay)
        self.transports.append(transport)
        return transport


class RecordingObserver:
    """Snapshot observer that records what it receives."""

    def __init__(self) -> None:
        self.events = []
        self.resets: List[str] = []

    async def on_snapshot(self, event) -> None:
        self.events.append(event)

    async def on_stream_reset(self, reason: str) -> None:
        self.resets.append(reason)


# =============================================================================
# HTTP Fakes
# =============================================================================

class FakeAuthClient:
    """Stand-in for AuthNetworkClient."""

    def __init__(self, no_auth: bool = False, config_error: bool = False) -> None:
        self.no_auth = no_auth
        self.config_error = config_error
        self.valid = {"alice": "secret"}
        self.login_calls = 0
        self.issued: List[str] = []

    async def get_auth_config(self) -> AuthConfigResponse:
        if self.config_error:
            raise AuthError(AuthErrorCode.NETWORK, "auth config unreachable")
        return AuthConfigResponse(no_auth=self.no_auth)

    async def authenticate(self, username: str, password: str) -> LoginResponse:
        self.login_calls += 1
        if self.valid.get(username) != password:
            raise AuthError(AuthErrorCode.INVALID_CREDENTIALS, f"login rejected for {username!r}")
        token = f"token-{self.login_calls}"
        self.issued.append(token)
        return LoginResponse(success=True, token=token, user_id=username, auth_method="password")

    async def verify_token(self, token: str) -> bool:
        return token in self.issued

    async def check_health(self) -> bool:
        return True


class FakeResponse:
    """Minimal requests.Response look-alike."""

    def __init__(
        self,
        status_code: int = 200,
        json_data=None,
        content: bytes = b"",
        content_type: str = "application/json",
    ) -> None:
        self.status_code = status_code
        self._json = json_data
        if json_data is not None and not content:
            content = json.dumps(json_data).encode("utf-8")
        self.content = content
        self.headers = {"Content-Type": content_type}

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    def json(self):
        if self._json is None:
            raise ValueError("no JSON body")
        return self._json


class FakeHttpSession:
    """requests.Session stand-in returning scripted responses, then ``default``."""

    def __init__(self, responses: Optional[list] = None, default: Optional[FakeResponse] = None) -> None:
        self.responses = list(responses or [])
        self.default = default or FakeResponse(404)
        self.requests: List[dict] = []

    def request(self, method: str, url: str, **kwargs):
        self.requests.append({"method": method, "url": url, **kwargs})
        if not self.responses:
            return self.default
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url: str, **kwargs):
        return self.request("GET", url, **kwargs)

    def close(self) -> None:
        pass


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def make_snapshot():
    """Build a Snapshot from text lines (one ASCII cell per character)."""

    def _make(lines, cols: int = 20, rows: int = 5, cursor_x: int = 0, cursor_y: int = 0) -> Snapshot:
        grid = []
        for index in range(rows):
            text = lines[index][:cols] if index < len(lines) else ""
            row = [Cell(glyph=ch) for ch in text] + [BLANK_CELL] * (cols - len(text))
            grid.append(tuple(row))
        return Snapshot(
            cols=cols,
            rows=rows,
            viewport_y=0,
            cursor_x=cursor_x,
            cursor_y=cursor_y,
            cells=tuple(grid),
        )

    return _make


@pytest.fixture
def header():
    """Pack a 28-byte snapshot header."""

    def _header(
        cols: int = 80,
        rows: int = 24,
        cursor_x: int = 0,
        cursor_y: int = 0,
        viewport_y: int = 0,
        magic: int = 0x5654,
        version: int = 1,
        flags: int = 0,
    ) -> bytes:
        return struct.pack("<HBBIIiii4x", magic, version, flags, cols, rows, viewport_y, cursor_x, cursor_y)

    return _header


@pytest.fixture
def sample_snapshot_bytes(header):
    """80x24 snapshot: row 0 = 'AB', then a run of 23 empty rows."""
    return (
        header(cols=80, rows=24, cursor_x=3, cursor_y=1)
        + bytes([0xFD]) + struct.pack("<H", 2)
        + bytes([0x01, ord("A"), 0x01, ord("B")])
        + bytes([0xFE, 23])
    )


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def transport_factory():
    """FakeTransportFactory class; call it with a list of scripted outcomes."""
    return FakeTransportFactory


@pytest.fixture
def recording_observer():
    return RecordingObserver()


@pytest.fixture
def fake_auth_client():
    return FakeAuthClient()


@pytest.fixture
def auth_client_factory():
    """FakeAuthClient class, for servers with a non-default auth mode."""
    return FakeAuthClient


@pytest.fixture
def fake_http():
    """FakeHttpSession class; call it with a list of scripted responses."""
    return FakeHttpSession


@pytest.fixture
def response():
    """FakeResponse class."""
    return FakeResponse


@pytest.fixture
def wait_until():
    """Async helper polling a predicate until it holds."""

    async def _wait(predicate, timeout: float = 2.0, interval: float = 0.005) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(interval)

    return _wait
