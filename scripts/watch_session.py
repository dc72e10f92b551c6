#!/usr/bin/env python3
"""
Watch Session Script
====================

Standalone script to follow one terminal session and print narration.

This script:
    1. Logs in (if the server requires it)
    2. Subscribes to a terminal session over WebSocket or polling
    3. Prints every flush event as it happens
    4. Logs stream stats periodically and a final summary

Prerequisites:
    - A terminal server must be running at the configured URL
    - Install the package: pip install -e .

Usage:
    python scripts/watch_session.py --session a1b2c3 --duration 120
    python scripts/watch_session.py --session a1b2c3 --poll --user alice
"""

import argparse
import asyncio
import getpass
import logging
import os
import sys
import time

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from terminal_narrator.auth import AuthNetworkClient, AuthService, MemorySecretStore
from terminal_narrator.errors import AuthError
from terminal_narrator.models.error_codes import AuthErrorCode
from terminal_narrator.narration import ChangeAccumulator, NarrationLog, NarrationPipeline
from terminal_narrator.stream import SnapshotPoller, StreamSession


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
logger = logging.getLogger(__name__)


async def run_watch(
    server: str,
    session_id: str,
    duration: int,
    poll: bool,
    username: str,
    report_interval: int,
) -> dict:
    """
    Follow a session for ``duration`` seconds.

    Returns:
        Final metrics dict
    """
    api_url = server.rstrip("/") + "/api"
    auth = AuthService(AuthNetworkClient(api_url), MemorySecretStore())

    if username:
        password = os.environ.get("NARRATOR_PASSWORD") or getpass.getpass(f"Password for {username}: ")
        try:
            await auth.login(username, password)
        except AuthError as e:
            if e.code != AuthErrorCode.NOT_REQUIRED:
                logger.error(f"Login failed: {e}")
                return {"error": str(e)}

    if poll:
        source = SnapshotPoller(api_url, auth=auth)
    else:
        ws_url = server.replace("https://", "wss://").replace("http://", "ws://").rstrip("/") + "/buffers"
        source = StreamSession(ws_url, auth=auth)

    narration = NarrationLog()
    pipeline = NarrationPipeline(ChangeAccumulator(), narration)
    source.add_observer(pipeline)
    updates = narration.subscribe()

    logger.info("=" * 60)
    logger.info(f"Watching session {session_id} on {server} ({'poll' if poll else 'websocket'})")
    logger.info("=" * 60)

    await pipeline.start()
    await source.subscribe(session_id)
    await source.connect()

    start_time = time.time()
    last_report_time = start_time

    try:
        while time.time() - start_time < duration:
            try:
                event = await asyncio.wait_for(updates.get(), timeout=0.5)
                print(f"--- [{event.reason.value}] ---\n{event.text}")
            except asyncio.TimeoutError:
                pass

            if time.time() - last_report_time >= report_interval:
                metrics = source.metrics
                logger.info(
                    f"State={source.status.state.value} "
                    f"frames={metrics.frames_received} "
                    f"decoded={metrics.snapshots_decoded} "
                    f"failures={metrics.decode_failures} "
                    f"reconnects={metrics.reconnect_count}"
                )
                last_report_time = time.time()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        await source.disconnect()
        await pipeline.stop()

    summary = {
        "duration": time.time() - start_time,
        **source.metrics.to_dict(),
        "flushes": narration.total_published,
    }

    logger.info("=" * 60)
    logger.info("FINAL SUMMARY")
    for key, value in summary.items():
        logger.info(f"  {key}: {value}")
    logger.info("=" * 60)

    return summary


def main():
    parser = argparse.ArgumentParser(description="Follow a terminal session and print narration")
    parser.add_argument(
        "--server",
        type=str,
        default=os.environ.get("NARRATOR_SERVER_URL", "http://localhost:4020"),
        help="HTTP base URL of the terminal server",
    )
    parser.add_argument("--session", type=str, required=True, help="Terminal session id")
    parser.add_argument("--duration", type=int, default=120, help="Seconds to watch (default: 120)")
    parser.add_argument("--poll", action="store_true", help="Use HTTP polling instead of WebSocket")
    parser.add_argument(
        "--user",
        type=str,
        default=os.environ.get("NARRATOR_USERNAME", ""),
        help="Login user (password from NARRATOR_PASSWORD or prompt)",
    )
    parser.add_argument(
        "--report-interval",
        type=int,
        default=10,
        help="Seconds between stats reports (default: 10)",
    )

    args = parser.parse_args()

    try:
        result = asyncio.run(
            run_watch(
                server=args.server,
                session_id=args.session,
                duration=args.duration,
                poll=args.poll,
                username=args.user,
                report_interval=args.report_interval,
            )
        )
        sys.exit(0 if result.get("snapshots_decoded", 0) > 0 else 1)
    except KeyboardInterrupt:
        logger.info("Watch cancelled")
        sys.exit(130)


if __name__ == "__main__":
    main()
