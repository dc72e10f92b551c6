"""
Stream Session
==============

WebSocket session that mirrors a remote terminal's buffer.

This module provides the StreamSession class which:
    - Connects to the terminal server's /buffers endpoint
    - Authenticates with a bearer token (query parameter + header)
    - Subscribes to one terminal session and resubscribes after reconnects
    - Strips envelopes, decodes snapshots and fans them out to observers
    - Pings periodically and reconnects when the server goes quiet

Wire Messages:
    -> {"type": "subscribe", "sessionId": "..."}
    -> {"type": "unsubscribe", "sessionId": "..."}
    -> {"type": "ping"} / {"type": "pong"}
    <- {"type": "connected" | "subscribed" | "ping" | "pong" | "error", ...}
    <- binary: enveloped snapshot (see stream.envelope)

Design Rules:
    - Undecodable frames are dropped; the last good snapshot is kept
    - Frames for other sessions are counted and ignored
    - The transport is injectable; tests never open real sockets
"""

import asyncio
import json
import logging
import random
import time
from typing import Awaitable, Callable, Dict, Optional, Protocol, Union
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, InvalidStatus, WebSocketException

from terminal_narrator.auth.service import AuthService
from terminal_narrator.errors import AuthError, ProtocolError, StreamConnectionError
from terminal_narrator.models.error_codes import AuthErrorCode, ConnectionErrorCode
from terminal_narrator.models.state import ConnectionState
from terminal_narrator.stream.decode_monitor import DecodeFailureMonitor
from terminal_narrator.stream.decoder import decode_snapshot
from terminal_narrator.stream.envelope import parse_envelope
from terminal_narrator.stream.source import SnapshotSource


logger = logging.getLogger(__name__)


Message = Union[str, bytes]


class Transport(Protocol):
    """Bidirectional message channel used by the session."""

    async def send(self, message: str) -> None:
        ...

    async def recv(self) -> Message:
        ...

    async def close(self) -> None:
        ...


TransportFactory = Callable[[str, Dict[str, str]], Awaitable[Transport]]


class WebSocketTransport:
    """
    Transport over a websockets client connection.

    Translates library exceptions into StreamConnectionError / AuthError.
    """

    def __init__(self, websocket) -> None:
        self._websocket = websocket

    @classmethod
    async def open(
        cls,
        url: str,
        headers: Dict[str, str],
        open_timeout: float = 10.0,
    ) -> "WebSocketTransport":
        """
        Open a connection.

        Raises:
            AuthError: EXPIRED if the handshake is answered with 401/403
            StreamConnectionError: UNREACHABLE, TIMEOUT or HANDSHAKE_FAILED
        """
        try:
            websocket = await websockets.connect(
                url,
                additional_headers=headers,
                open_timeout=open_timeout,
                ping_interval=None,
                max_size=None,
            )
        except InvalidStatus as e:
            status_code = e.response.status_code
            if status_code in (401, 403):
                raise AuthError(
                    AuthErrorCode.EXPIRED,
                    f"handshake rejected with HTTP {status_code}",
                ) from e
            raise StreamConnectionError(
                ConnectionErrorCode.HANDSHAKE_FAILED,
                f"handshake failed with HTTP {status_code}",
            ) from e
        except (asyncio.TimeoutError, TimeoutError) as e:
            raise StreamConnectionError(
                ConnectionErrorCode.TIMEOUT,
                f"opening handshake timed out after {open_timeout:.0f}s",
            ) from e
        except WebSocketException as e:
            raise StreamConnectionError(ConnectionErrorCode.HANDSHAKE_FAILED, str(e)) from e
        except OSError as e:
            raise StreamConnectionError(ConnectionErrorCode.UNREACHABLE, str(e)) from e

        return cls(websocket)

    async def send(self, message: str) -> None:
        try:
            await self._websocket.send(message)
        except ConnectionClosed as e:
            raise StreamConnectionError(ConnectionErrorCode.CONNECTION_LOST, str(e)) from e

    async def recv(self) -> Message:
        try:
            return await self._websocket.recv()
        except ConnectionClosed as e:
            raise StreamConnectionError(ConnectionErrorCode.CONNECTION_LOST, str(e)) from e

    async def close(self) -> None:
        await self._websocket.close()


class StreamSession(SnapshotSource):
    """
    Resilient WebSocket session for terminal snapshots.

    Attributes:
        url: WebSocket URL of the buffers endpoint
        ping_interval: Seconds between health-check pings
        health_grace: Seconds to wait for pong or data after a ping
        metrics: Operational metrics

    Example:
        session = StreamSession(
            url="ws://localhost:4020/buffers",
            auth=auth_service,
        )
        session.add_observer(pipeline)
        await session.subscribe("a1b2c3")
        await session.connect()

        # Later, stop gracefully
        await session.disconnect()
    """

    name = "stream_session"

    def __init__(
        self,
        url: str,
        auth: Optional[AuthService] = None,
        ping_interval: float = 30.0,
        health_grace: float = 10.0,
        open_timeout: float = 10.0,
        backoff_base: float = 0.5,
        backoff_max: float = 8.0,
        jitter_ratio: float = 0.25,
        max_reconnect_attempts: int = 10,
        decode_monitor: Optional[DecodeFailureMonitor] = None,
        transport_factory: Optional[TransportFactory] = None,
        rng: Callable[[], float] = random.random,
    ) -> None:
        """
        Initialize the session.

        Args:
            url: WebSocket URL of the buffers endpoint
            auth: Token provider; None for servers without auth
            ping_interval: Seconds between health-check pings
            health_grace: Seconds to wait for pong or data after a ping
            open_timeout: Opening handshake timeout
            backoff_base: First reconnect delay
            backoff_max: Reconnect delay cap (before jitter)
            jitter_ratio: Jitter as a fraction of the delay
            max_reconnect_attempts: Max attempts (0 = unlimited)
            decode_monitor: Decode failure tracker (created if omitted)
            transport_factory: Coroutine (url, headers) -> Transport
            rng: Uniform [0, 1) source for jitter
        """
        super().__init__(
            auth=auth,
            backoff_base=backoff_base,
            backoff_max=backoff_max,
            jitter_ratio=jitter_ratio,
            max_reconnect_attempts=max_reconnect_attempts,
            decode_monitor=decode_monitor,
            rng=rng,
        )
        self.url = url
        self.ping_interval = ping_interval
        self.health_grace = health_grace
        self.open_timeout = open_timeout
        self._transport_factory = transport_factory or self._open_websocket
        self._transport: Optional[Transport] = None
        self._last_traffic: float = 0.0

    async def _open_websocket(self, url: str, headers: Dict[str, str]) -> Transport:
        return await WebSocketTransport.open(url, headers, open_timeout=self.open_timeout)

    def _build_request(self, token: Optional[str]):
        if token is None:
            return self.url, {}
        separator = "&" if "?" in self.url else "?"
        url = f"{self.url}{separator}{urlencode({'token': token})}"
        return url, {"Authorization": f"Bearer {token}"}

    # -------------------------------------------------------------------------
    # Connection Lifecycle
    # -------------------------------------------------------------------------

    async def _stream(self, generation: int) -> None:
        self._set_status(ConnectionState.CONNECTING, attempt=self._attempt)
        token = await self._authorize()

        url, headers = self._build_request(token)
        transport = await self._transport_factory(url, headers)

        if not self._is_current(generation):
            await transport.close()
            return

        self._transport = transport
        logger.info(f"Connected to terminal server: {self.url}")

        try:
            self._last_traffic = time.monotonic()
            if self._session_id is not None:
                self._set_status(ConnectionState.SUBSCRIBING)
                await self._send_json({"type": "subscribe", "sessionId": self._session_id})
            await self._mark_streaming()
            await self._receive_loop(transport, generation)
        finally:
            if self._transport is transport:
                self._transport = None
            await transport.close()

    async def _close_transport(self) -> None:
        transport, self._transport = self._transport, None
        if transport is not None:
            await transport.close()

    async def _receive_loop(self, transport: Transport, generation: int) -> None:
        next_ping = time.monotonic() + self.ping_interval
        ping_sent_at: Optional[float] = None

        while self._is_current(generation):
            now = time.monotonic()

            if ping_sent_at is not None:
                if self._last_traffic > ping_sent_at:
                    ping_sent_at = None
                    continue
                deadline = ping_sent_at + self.health_grace
                if now >= deadline:
                    raise StreamConnectionError(
                        ConnectionErrorCode.TIMEOUT,
                        f"no pong or data within {self.health_grace:.0f}s of ping",
                    )
                timeout = deadline - now
            elif now >= next_ping:
                await self._send_json({"type": "ping"})
                ping_sent_at = now
                next_ping = now + self.ping_interval
                continue
            else:
                timeout = next_ping - now

            try:
                message = await asyncio.wait_for(transport.recv(), timeout=timeout)
            except asyncio.TimeoutError:
                continue

            self._last_traffic = time.monotonic()
            if isinstance(message, (bytes, bytearray, memoryview)):
                await self._handle_binary(bytes(message))
            else:
                await self._handle_text(message)

    async def _on_session_changed(self, previous: Optional[str], current: Optional[str]) -> None:
        if self._transport is None:
            return  # subscribed once the transport opens
        try:
            if previous is not None:
                await self._send_json({"type": "unsubscribe", "sessionId": previous})
            if current is not None:
                await self._send_json({"type": "subscribe", "sessionId": current})
        except StreamConnectionError as e:
            logger.warning(f"Subscription change not sent, will resubscribe on reconnect: {e}")

    async def _send_json(self, message: dict) -> None:
        if self._transport is None:
            raise StreamConnectionError(ConnectionErrorCode.CONNECTION_LOST, "no open transport")
        await self._transport.send(json.dumps(message))

    # -------------------------------------------------------------------------
    # Message Handling
    # -------------------------------------------------------------------------

    async def _handle_binary(self, data: bytes) -> None:
        self.metrics.frames_received += 1

        try:
            frame = parse_envelope(data)
        except ProtocolError as e:
            self._record_decode_failure(e)
            return

        if frame.session_id != self._session_id:
            self.metrics.ignored_frames += 1
            logger.debug(f"Ignoring frame for inactive session {frame.session_id}")
            return

        try:
            snapshot = decode_snapshot(frame.payload)
        except ProtocolError as e:
            self._record_decode_failure(e)
            return

        await self._publish_snapshot(frame.session_id, snapshot, frame.received_at)

    async def _handle_text(self, raw: str) -> None:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            self.metrics.ignored_frames += 1
            logger.warning(f"Failed to parse text message: {e}")
            return

        if not isinstance(data, dict):
            self.metrics.ignored_frames += 1
            logger.warning(f"Unexpected text message: {raw[:80]!r}")
            return

        kind = data.get("type")
        if kind == "connected":
            logger.info(f"Server says hello (version={data.get('version', 'unknown')})")
        elif kind == "subscribed":
            logger.info(f"Subscribed to session {data.get('sessionId')}")
        elif kind == "ping":
            await self._send_json({"type": "pong"})
        elif kind == "pong":
            logger.debug("Pong received")
        elif kind == "error":
            logger.warning(f"Server error: {data.get('message', data)}")
        else:
            self.metrics.ignored_frames += 1
            logger.debug(f"Ignoring message type {kind!r}")
