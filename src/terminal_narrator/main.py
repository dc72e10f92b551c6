"""
Terminal Narrator Main Application
==================================

FastAPI entry point for the terminal narrator.

The NarratorRuntime wires the pieces together:
    SnapshotSource (WebSocket session or poller)
        -> NarrationPipeline -> ChangeAccumulator -> NarrationLog

Endpoints:
    GET    /              - Service information
    GET    /health        - Liveness probe (is process alive?)
    GET    /ready         - Readiness probe (is the stream up?)
    GET    /status        - Connection status and auth state
    GET    /metrics       - Detailed metrics
    GET    /narration     - Recent flush events
    POST   /connect       - Start the snapshot source
    POST   /disconnect    - Stop the snapshot source
    POST   /session       - Switch the active terminal session
    DELETE /session       - Unsubscribe from the active session
    POST   /auth/login    - Password login
    POST   /auth/logout   - Forget token and credentials
    WS     /ws/narration  - Real-time flush events
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from terminal_narrator.auth import AuthNetworkClient, AuthService, MemorySecretStore, SecretStore
from terminal_narrator.config import Settings, settings, setup_logging
from terminal_narrator.errors import AuthError
from terminal_narrator.models.error_codes import AuthErrorCode
from terminal_narrator.models.state import ConnectionStatus
from terminal_narrator.narration import ChangeAccumulator, NarrationLog, NarrationPipeline
from terminal_narrator.stream import (
    DecodeFailureMonitor,
    FrameBuffer,
    SnapshotPoller,
    SnapshotSource,
    StreamSession,
)
from terminal_narrator.stream.session import TransportFactory


logger = logging.getLogger(__name__)


# =============================================================================
# Request Bodies
# =============================================================================

class SessionRequest(BaseModel):
    session_id: str = Field(..., min_length=1, description="Terminal session to follow")


class LoginBody(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(...)
    remember: bool = Field(default=True, description="Keep credentials for silent refresh")


# =============================================================================
# Runtime
# =============================================================================

class NarratorRuntime:
    """
    Owns one snapshot source and the narration pipeline behind it.

    Constructed in the app lifespan and stored on ``app.state.runtime``.
    """

    def __init__(
        self,
        config: Settings,
        store: Optional[SecretStore] = None,
        auth_client: Optional[AuthNetworkClient] = None,
        transport_factory: Optional[TransportFactory] = None,
    ) -> None:
        self.settings = config
        self.started_at = time.time()

        self.auth_client = auth_client or AuthNetworkClient(
            config.server.api_url,
            timeout=config.stream.request_timeout_seconds,
        )
        self.auth = AuthService(
            self.auth_client,
            store if store is not None else MemorySecretStore(),
            token_ttl=config.auth.token_ttl_seconds,
            rejection_window=config.auth.rejection_window_seconds,
        )
        self.decode_monitor = DecodeFailureMonitor(
            escalation_seconds=config.decode.escalation_seconds,
            summary_interval=config.decode.summary_interval_seconds,
        )
        self.source = self._create_source(transport_factory)

        self.accumulator = ChangeAccumulator(
            char_threshold=config.accumulator.char_threshold,
            time_threshold=config.accumulator.time_threshold_seconds,
            max_chunk_size=config.accumulator.max_chunk_size,
        )
        self.narration = NarrationLog(history_size=config.narration.history_size)
        self.pipeline = NarrationPipeline(
            self.accumulator,
            self.narration,
            buffer=FrameBuffer(maxsize=config.stream.max_queue_size),
            tick_interval=config.accumulator.tick_interval_seconds,
        )

        self.source.add_observer(self.pipeline)
        self.source.add_status_listener(self._log_status)

    def _create_source(self, transport_factory: Optional[TransportFactory]) -> SnapshotSource:
        stream = self.settings.stream
        common = dict(
            auth=self.auth,
            backoff_base=stream.backoff_base_seconds,
            backoff_max=stream.backoff_max_seconds,
            jitter_ratio=stream.backoff_jitter_ratio,
            max_reconnect_attempts=stream.max_reconnect_attempts,
            decode_monitor=self.decode_monitor,
        )

        if stream.mode == "poll":
            logger.info(f"Polling snapshots from {self.settings.server.api_url}")
            return SnapshotPoller(
                self.settings.server.api_url,
                interval=stream.poll_interval_seconds,
                timeout=stream.request_timeout_seconds,
                **common,
            )

        logger.info(f"Streaming snapshots from {self.settings.server.websocket_url}")
        return StreamSession(
            self.settings.server.websocket_url,
            ping_interval=stream.ping_interval_seconds,
            health_grace=stream.health_grace_seconds,
            open_timeout=stream.open_timeout_seconds,
            transport_factory=transport_factory,
            **common,
        )

    def _log_status(self, status: ConnectionStatus) -> None:
        details = f" (attempt {status.attempt}, retry in {status.next_delay:.2f}s)" if status.next_delay else ""
        error = f": {status.error}" if status.error else ""
        logger.info(f"Connection {status.state.value}{details}{error}")

    async def start(self) -> None:
        await self.pipeline.start()

        if self.settings.auth.username and self.settings.auth.password:
            try:
                await self.auth.login(self.settings.auth.username, self.settings.auth.password)
            except AuthError as e:
                if e.code != AuthErrorCode.NOT_REQUIRED:
                    logger.warning(f"Startup login failed: {e}")

        if self.settings.session.initial_id:
            await self.source.subscribe(self.settings.session.initial_id)

        if self.settings.session.auto_connect:
            await self.source.connect()

    async def stop(self) -> None:
        await self.source.disconnect()
        await self.pipeline.stop()

    def status(self) -> dict:
        return {
            **self.source.status.model_dump(mode="json"),
            "authenticated": self.auth.authenticated,
            "auth_required": self.auth.auth_required,
            "mode": self.settings.stream.mode,
        }

    def metrics(self) -> dict:
        return {
            "uptime_seconds": round(time.time() - self.started_at, 1),
            "stream": self.source.metrics.to_dict(),
            "decode": self.decode_monitor.to_dict(),
            "pipeline": self.pipeline.to_dict(),
            "narration_published": self.narration.total_published,
        }


def get_runtime(request: Request) -> NarratorRuntime:
    return request.app.state.runtime


# =============================================================================
# HTTP Endpoints
# =============================================================================

router = APIRouter()


@router.get("/")
async def root(request: Request) -> JSONResponse:
    """Service information endpoint."""
    runtime = get_runtime(request)
    return JSONResponse({
        "service": "terminal-narrator",
        "name": runtime.settings.agent.name,
        "version": runtime.settings.agent.version,
        "status": "running",
        "server": runtime.settings.server.base_url,
        "mode": runtime.settings.stream.mode,
    })


@router.get("/health")
async def health(request: Request) -> JSONResponse:
    """
    Liveness probe - is the process alive?

    Always returns 200 if the service is running.
    """
    runtime = get_runtime(request)
    return JSONResponse({
        "status": "healthy",
        "uptime_seconds": round(time.time() - runtime.started_at, 1),
    })


@router.get("/ready")
async def ready(request: Request) -> JSONResponse:
    """
    Readiness probe - is the snapshot stream up?

    Returns 200 while streaming, 503 otherwise.
    """
    runtime = get_runtime(request)
    status = runtime.source.status
    body = {
        "stream_connected": status.is_streaming,
        "state": status.state.value,
        "pipeline_running": runtime.pipeline.running,
    }

    if status.is_streaming and runtime.pipeline.running:
        return JSONResponse({"status": "ready", **body})
    return JSONResponse({"status": "not_ready", **body}, status_code=503)


@router.get("/status")
async def status(request: Request) -> JSONResponse:
    return JSONResponse(get_runtime(request).status())


@router.get("/metrics")
async def metrics(request: Request) -> JSONResponse:
    """Detailed metrics for observability."""
    return JSONResponse(get_runtime(request).metrics())


@router.get("/narration")
async def narration(request: Request, limit: int = 20) -> JSONResponse:
    """Most recent flush events, oldest first."""
    if limit < 0:
        raise HTTPException(status_code=422, detail="limit must be >= 0")
    events = get_runtime(request).narration.history(limit)
    return JSONResponse([event.model_dump(mode="json") for event in events])


@router.post("/connect")
async def connect(request: Request) -> JSONResponse:
    runtime = get_runtime(request)
    await runtime.source.connect()
    return JSONResponse(runtime.status())


@router.post("/disconnect")
async def disconnect(request: Request) -> JSONResponse:
    runtime = get_runtime(request)
    await runtime.source.disconnect()
    return JSONResponse(runtime.status())


@router.post("/session")
async def set_session(request: Request, body: SessionRequest) -> JSONResponse:
    runtime = get_runtime(request)
    await runtime.source.subscribe(body.session_id)
    return JSONResponse(runtime.status())


@router.delete("/session")
async def clear_session(request: Request) -> JSONResponse:
    runtime = get_runtime(request)
    await runtime.source.unsubscribe()
    return JSONResponse(runtime.status())


@router.post("/auth/login")
async def login(request: Request, body: LoginBody) -> JSONResponse:
    runtime = get_runtime(request)

    try:
        await runtime.auth.login(body.username, body.password, remember=body.remember)
    except AuthError as e:
        if e.code == AuthErrorCode.NOT_REQUIRED:
            return JSONResponse({"authenticated": True, "auth_required": False})
        if e.code == AuthErrorCode.INVALID_CREDENTIALS:
            raise HTTPException(status_code=401, detail=e.message) from e
        raise HTTPException(status_code=502, detail=e.message) from e

    # A session stopped for auth reasons resumes after a manual login
    if runtime.source.status.fatal:
        await runtime.source.connect()

    return JSONResponse({"authenticated": True, "auth_required": True})


@router.post("/auth/logout")
async def logout(request: Request) -> JSONResponse:
    runtime = get_runtime(request)
    runtime.auth.logout()
    return JSONResponse({"authenticated": False})


# =============================================================================
# WebSocket Endpoints
# =============================================================================

@router.websocket("/ws/narration")
async def narration_stream(websocket: WebSocket) -> None:
    """WebSocket endpoint for real-time flush events."""
    runtime: NarratorRuntime = websocket.app.state.runtime
    await websocket.accept()
    queue = runtime.narration.subscribe()
    logger.info("Client connected to /ws/narration")

    try:
        while True:
            event = await queue.get()
            await websocket.send_json(event.model_dump(mode="json"))
    except WebSocketDisconnect:
        pass
    finally:
        runtime.narration.unsubscribe(queue)
        logger.info("Client disconnected from /ws/narration")


# =============================================================================
# FastAPI Application
# =============================================================================

def create_app(
    config: Optional[Settings] = None,
    runtime: Optional[NarratorRuntime] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Settings (defaults to the global settings)
        runtime: Prebuilt runtime (tests inject one with fakes)
    """
    config = config or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.runtime = runtime or NarratorRuntime(config)
        logger.info(f"Starting {config.agent.name} {config.agent.version}")
        await app.state.runtime.start()

        yield

        logger.info("Shutting down gracefully...")
        await app.state.runtime.stop()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="terminal-narrator",
        description="Turns a live terminal stream into narration-sized text deltas",
        version=config.agent.version,
        lifespan=lifespan,
    )
    app.include_router(router)
    return app


app = create_app()


# =============================================================================
# Main Entry Point
# =============================================================================

def main() -> None:
    import uvicorn

    setup_logging(settings)
    uvicorn.run(
        "terminal_narrator.main:app",
        host=settings.api.host,
        port=settings.api.port,
        reload=False,
    )


if __name__ == "__main__":
    main()
