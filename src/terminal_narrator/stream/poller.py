"""
Snapshot Poller
===============

HTTP polling alternative to the WebSocket session.

Fetches ``GET {api_url}/sessions/{id}/buffer`` on a fixed interval and
feeds the result through the same observer interface, status model,
backoff and auth-rejection policy as StreamSession.

Response Bodies:
    application/octet-stream -> binary snapshot
    application/json         -> structured snapshot
"""

import asyncio
import logging
import random
import time
from typing import Callable, Optional, Tuple
from urllib.parse import quote

import requests

from terminal_narrator.auth.service import AuthService
from terminal_narrator.errors import AuthError, ProtocolError, StreamConnectionError
from terminal_narrator.models.error_codes import AuthErrorCode, ConnectionErrorCode
from terminal_narrator.models.state import ConnectionState
from terminal_narrator.stream.decode_monitor import DecodeFailureMonitor
from terminal_narrator.stream.decoder import decode_response
from terminal_narrator.stream.source import SnapshotSource


logger = logging.getLogger(__name__)


class SnapshotPoller(SnapshotSource):
    """
    Polling snapshot source.

    Example:
        poller = SnapshotPoller("http://localhost:4020/api", auth=auth_service)
        poller.add_observer(pipeline)
        await poller.subscribe("a1b2c3")
        await poller.connect()
    """

    name = "snapshot_poller"

    def __init__(
        self,
        api_url: str,
        auth: Optional[AuthService] = None,
        interval: float = 1.0,
        timeout: float = 10.0,
        backoff_base: float = 0.5,
        backoff_max: float = 8.0,
        jitter_ratio: float = 0.25,
        max_reconnect_attempts: int = 10,
        decode_monitor: Optional[DecodeFailureMonitor] = None,
        http: Optional[requests.Session] = None,
        rng: Callable[[], float] = random.random,
    ) -> None:
        super().__init__(
            auth=auth,
            backoff_base=backoff_base,
            backoff_max=backoff_max,
            jitter_ratio=jitter_ratio,
            max_reconnect_attempts=max_reconnect_attempts,
            decode_monitor=decode_monitor,
            rng=rng,
        )
        self.api_url = api_url.rstrip("/")
        self.interval = interval
        self.timeout = timeout
        self._http = http or requests.Session()

    def buffer_url(self, session_id: str) -> str:
        return f"{self.api_url}/sessions/{quote(session_id, safe='')}/buffer"

    async def _stream(self, generation: int) -> None:
        self._set_status(ConnectionState.CONNECTING, attempt=self._attempt)
        streaming = False

        while self._is_current(generation):
            token = await self._authorize() if not streaming else await self._current_token()
            session_id = self._session_id

            if session_id is not None:
                body, content_type = await asyncio.to_thread(self._fetch, session_id, token)
                received_at = time.time()

                if not streaming:
                    await self._mark_streaming()
                    streaming = True

                self.metrics.frames_received += 1
                if session_id != self._session_id:
                    self.metrics.ignored_frames += 1
                else:
                    try:
                        snapshot = decode_response(body, content_type)
                    except ProtocolError as e:
                        self._record_decode_failure(e)
                    else:
                        await self._publish_snapshot(session_id, snapshot, received_at)

            elif not streaming:
                await self._mark_streaming()
                streaming = True

            await asyncio.sleep(self.interval)

    async def _current_token(self) -> Optional[str]:
        # get_token checks the TTL and refreshes silently
        if self._auth is None or not await self._auth.is_auth_required():
            return None
        return await self._auth.get_token()

    def _fetch(self, session_id: str, token: Optional[str]) -> Tuple[bytes, str]:
        headers = {"Accept": "application/octet-stream, application/json"}
        if token is not None:
            headers["Authorization"] = f"Bearer {token}"

        url = self.buffer_url(session_id)
        try:
            response = self._http.get(url, headers=headers, timeout=self.timeout)
        except requests.Timeout as e:
            raise StreamConnectionError(ConnectionErrorCode.TIMEOUT, f"GET {url} timed out") from e
        except requests.RequestException as e:
            raise StreamConnectionError(ConnectionErrorCode.UNREACHABLE, f"GET {url} failed: {e}") from e

        if response.status_code in (401, 403):
            raise AuthError(AuthErrorCode.EXPIRED, f"buffer request rejected with HTTP {response.status_code}")
        if not response.ok:
            raise StreamConnectionError(
                ConnectionErrorCode.HANDSHAKE_FAILED,
                f"buffer request returned HTTP {response.status_code}",
            )

        return response.content, response.headers.get("Content-Type", "")

    def close(self) -> None:
        self._http.close()
