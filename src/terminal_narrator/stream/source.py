"""
Snapshot Source
===============

Connection-resilience machinery shared by the WebSocket session and the
HTTP poller.

A SnapshotSource owns:
    - One supervisor task that connects, streams and reconnects
    - The published ConnectionStatus and its listeners
    - The active session id and the stream epoch
    - The observers receiving decoded snapshots

Supervisor Loop:
    CONNECTING -> AUTHENTICATING -> SUBSCRIBING -> STREAMING
    failure -> RECONNECTING(attempt, delay) -> CONNECTING ...
    retries exhausted or auth invalidated -> DISCONNECTED (fatal)

Design Rules:
    - Backoff waits live inside the supervisor task; disconnect() cancels
      the task, so a pending wait never reconnects
    - A generation counter guards against a superseded task touching state
    - The attempt counter resets once STREAMING is reached
    - The epoch increments on every (re)connect and session switch, and
      every SnapshotEvent carries the epoch it was decoded in
"""

import asyncio
import logging
import random
from typing import Callable, List, Optional, Protocol

from terminal_narrator.auth.service import AuthService
from terminal_narrator.errors import AuthError, ProtocolError, StreamConnectionError
from terminal_narrator.models.error_codes import AuthErrorCode, ConnectionErrorCode
from terminal_narrator.models.snapshot import Snapshot
from terminal_narrator.models.state import ConnectionState, ConnectionStatus
from terminal_narrator.stream.backoff import compute_backoff_delay
from terminal_narrator.stream.decode_monitor import DecodeFailureMonitor
from terminal_narrator.stream.frame import SnapshotEvent


logger = logging.getLogger(__name__)


class SnapshotObserver(Protocol):
    """Receiver of decoded snapshots and stream resets."""

    async def on_snapshot(self, event: SnapshotEvent) -> None:
        ...

    async def on_stream_reset(self, reason: str) -> None:
        ...


StatusListener = Callable[[ConnectionStatus], None]


class SessionMetrics:
    """Metrics for snapshot source observability."""

    __slots__ = (
        "frames_received",
        "snapshots_decoded",
        "decode_failures",
        "ignored_frames",
        "reconnect_count",
        "auth_rejections",
        "last_snapshot_time",
    )

    def __init__(self) -> None:
        self.frames_received: int = 0
        self.snapshots_decoded: int = 0
        self.decode_failures: int = 0
        self.ignored_frames: int = 0
        self.reconnect_count: int = 0
        self.auth_rejections: int = 0
        self.last_snapshot_time: float = 0.0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "frames_received": self.frames_received,
            "snapshots_decoded": self.snapshots_decoded,
            "decode_failures": self.decode_failures,
            "ignored_frames": self.ignored_frames,
            "reconnect_count": self.reconnect_count,
            "auth_rejections": self.auth_rejections,
            "last_snapshot_time": self.last_snapshot_time,
        }


class SnapshotSource:
    """
    Base class for transports that feed snapshots to observers.

    Subclasses implement ``_stream(generation)``, which opens the transport,
    calls ``_mark_streaming()`` once data can flow, and runs until the
    transport fails (raising StreamConnectionError or AuthError) or the
    source is closed.
    """

    name = "source"

    def __init__(
        self,
        auth: Optional[AuthService] = None,
        backoff_base: float = 0.5,
        backoff_max: float = 8.0,
        jitter_ratio: float = 0.25,
        max_reconnect_attempts: int = 10,
        decode_monitor: Optional[DecodeFailureMonitor] = None,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._auth = auth
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.jitter_ratio = jitter_ratio
        self.max_reconnect_attempts = max_reconnect_attempts
        self._decode_monitor = decode_monitor or DecodeFailureMonitor()
        self._rng = rng

        self._observers: List[SnapshotObserver] = []
        self._status_listeners: List[StatusListener] = []
        self._status = ConnectionStatus()

        self._task: Optional[asyncio.Task] = None
        self._generation: int = 0
        self._closing: bool = True
        self._attempt: int = 0
        self._epoch: int = 0
        self._session_id: Optional[str] = None
        self._last_snapshot: Optional[Snapshot] = None

        self.metrics = SessionMetrics()

    # -------------------------------------------------------------------------
    # Read-only State
    # -------------------------------------------------------------------------

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def connected(self) -> bool:
        """Whether the source is currently streaming."""
        return self._status.is_streaming

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def last_snapshot(self) -> Optional[Snapshot]:
        """Last successfully decoded snapshot of the active session."""
        return self._last_snapshot

    @property
    def decode_monitor(self) -> DecodeFailureMonitor:
        return self._decode_monitor

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def add_observer(self, observer: SnapshotObserver) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: SnapshotObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def add_status_listener(self, listener: StatusListener) -> None:
        self._status_listeners.append(listener)

    # -------------------------------------------------------------------------
    # Control
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Start the supervisor task. No-op while one is running."""
        if self._task is not None and not self._task.done():
            return

        self._closing = False
        self._generation += 1
        self._attempt = 0
        self._task = asyncio.create_task(
            self._run(self._generation),
            name=f"{self.name}_supervisor",
        )

    async def disconnect(self) -> None:
        """
        Stop the supervisor and release the transport.

        Cancels any pending connect, backoff or refresh wait. Idempotent.
        """
        self._closing = True
        self._generation += 1

        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self._close_transport()
        self._attempt = 0

        if self._status.state != ConnectionState.DISCONNECTED:
            logger.info(f"{self.name} disconnected")
            self._set_status(ConnectionState.DISCONNECTED)

    async def subscribe(self, session_id: str) -> None:
        """
        Switch the active terminal session.

        Observers receive a stream reset before any snapshot of the new
        session.
        """
        if session_id == self._session_id:
            return

        previous = self._session_id
        self._session_id = session_id
        self._last_snapshot = None
        self._decode_monitor.reset()
        logger.info(f"Active session: {previous} -> {session_id}")

        await self._bump_epoch(f"session changed to {session_id}")
        await self._on_session_changed(previous, session_id)
        self._publish(self._status.model_copy(update={"session_id": session_id}))

    async def unsubscribe(self) -> None:
        """Stop streaming the active session without closing the transport."""
        if self._session_id is None:
            return

        previous = self._session_id
        self._session_id = None
        self._last_snapshot = None
        logger.info(f"Unsubscribed from session {previous}")

        await self._bump_epoch(f"unsubscribed from {previous}")
        await self._on_session_changed(previous, None)
        self._publish(self._status.model_copy(update={"session_id": None}))

    # -------------------------------------------------------------------------
    # Subclass Hooks
    # -------------------------------------------------------------------------

    async def _stream(self, generation: int) -> None:
        raise NotImplementedError

    async def _on_session_changed(self, previous: Optional[str], current: Optional[str]) -> None:
        """Called after the active session id changed."""

    async def _close_transport(self) -> None:
        """Release the transport, if any."""

    # -------------------------------------------------------------------------
    # Supervisor
    # -------------------------------------------------------------------------

    def _is_current(self, generation: int) -> bool:
        return not self._closing and generation == self._generation

    async def _run(self, generation: int) -> None:
        logger.info(f"{self.name} starting")

        while self._is_current(generation):
            try:
                await self._stream(generation)
                if not self._is_current(generation):
                    break
                error: Exception = StreamConnectionError(
                    ConnectionErrorCode.CONNECTION_LOST,
                    "stream ended",
                )
            except AuthError as e:
                if not self._is_current(generation):
                    break
                if not self._handle_auth_error(e):
                    return
                error = e
            except StreamConnectionError as e:
                if not self._is_current(generation):
                    break
                logger.warning(f"{self.name} connection failed: {e}")
                error = e

            await self._close_transport()

            self._attempt += 1
            if self.max_reconnect_attempts and self._attempt > self.max_reconnect_attempts:
                logger.error(
                    f"Max reconnect attempts ({self.max_reconnect_attempts}) exceeded"
                )
                self._set_status(
                    ConnectionState.DISCONNECTED,
                    error=f"gave up after {self.max_reconnect_attempts} attempts: {error}",
                    fatal=True,
                )
                return

            delay = compute_backoff_delay(
                self._attempt,
                base=self.backoff_base,
                max_delay=self.backoff_max,
                jitter_ratio=self.jitter_ratio,
                rng=self._rng,
            )
            self.metrics.reconnect_count += 1
            logger.info(f"Reconnecting in {delay:.2f}s (attempt {self._attempt})")
            self._set_status(
                ConnectionState.RECONNECTING,
                attempt=self._attempt,
                next_delay=delay,
                error=str(error),
            )
            await asyncio.sleep(delay)

        logger.info(f"{self.name} stopped")

    def _handle_auth_error(self, error: AuthError) -> bool:
        """
        Apply the auth failure policy.

        Returns:
            True to retry with backoff, False if the source stopped
        """
        if error.code == AuthErrorCode.EXPIRED:
            self.metrics.auth_rejections += 1
            if self._auth is None or not self._auth.record_rejection():
                return True
            self._stop_fatal("authentication rejected repeatedly, login required")
            return False

        if error.code == AuthErrorCode.NETWORK:
            logger.warning(f"Auth server unreachable: {error}")
            return True

        self._stop_fatal(f"login required: {error.message}")
        return False

    def _stop_fatal(self, message: str) -> None:
        logger.error(f"{self.name} stopped: {message}")
        self._closing = True
        self._set_status(ConnectionState.DISCONNECTED, error=message, fatal=True)

    async def _authorize(self) -> Optional[str]:
        """Token for the next connection attempt, or None if auth is off."""
        if self._auth is None or not await self._auth.is_auth_required():
            return None
        self._set_status(ConnectionState.AUTHENTICATING, attempt=self._attempt)
        return await self._auth.get_token()

    async def _mark_streaming(self) -> None:
        if self._attempt:
            logger.info(f"Reconnected after {self._attempt} attempts")
        self._attempt = 0
        await self._bump_epoch("stream (re)started")
        self._set_status(ConnectionState.STREAMING)

    # -------------------------------------------------------------------------
    # Fan-out
    # -------------------------------------------------------------------------

    def _set_status(
        self,
        state: ConnectionState,
        attempt: int = 0,
        next_delay: Optional[float] = None,
        error: Optional[str] = None,
        fatal: bool = False,
    ) -> None:
        self._publish(
            ConnectionStatus(
                state=state,
                attempt=attempt,
                next_delay=next_delay,
                session_id=self._session_id,
                error=error,
                fatal=fatal,
                incompatible_server=self._decode_monitor.escalated,
            )
        )

    def _publish(self, status: ConnectionStatus) -> None:
        self._status = status
        for listener in list(self._status_listeners):
            try:
                listener(status)
            except Exception as e:
                logger.error(f"Status listener failed: {e}")

    async def _bump_epoch(self, reason: str) -> None:
        self._epoch += 1
        for observer in list(self._observers):
            try:
                await observer.on_stream_reset(reason)
            except Exception as e:
                logger.error(f"Observer reset failed: {e}")

    def _record_decode_failure(self, error: ProtocolError) -> None:
        self.metrics.decode_failures += 1
        if self._decode_monitor.record_failure(error):
            self._publish(self._status.model_copy(update={"incompatible_server": True}))

    async def _publish_snapshot(self, session_id: str, snapshot: Snapshot, received_at: float) -> None:
        if self._decode_monitor.record_success():
            self._publish(self._status.model_copy(update={"incompatible_server": False}))

        self._last_snapshot = snapshot
        self.metrics.snapshots_decoded += 1
        self.metrics.last_snapshot_time = received_at

        event = SnapshotEvent(
            session_id=session_id,
            snapshot=snapshot,
            received_at=received_at,
            epoch=self._epoch,
        )
        for observer in list(self._observers):
            try:
                await observer.on_snapshot(event)
            except Exception as e:
                logger.error(f"Observer failed on snapshot: {e}")
