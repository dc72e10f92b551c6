"""
Narration Pipeline
==================

Single consumer between the snapshot source and the narration sink.

Flow:
    SnapshotSource --on_snapshot--> FrameBuffer --(one task)--> ChangeAccumulator
                                                                 |
                                                    FlushEvent -> NarrationLog

Design Rules:
    - Snapshots are consumed strictly in arrival order by one task
    - An event from a new stream epoch resets the accumulator baseline
      before it is consumed, so sessions never bleed into each other
    - The time threshold is evaluated every tick even when no snapshot
      arrives, so small changes are never starved
    - Pending changes are flushed (reason "forced") on stop
"""

import asyncio
import logging
from typing import Optional

from terminal_narrator.narration.accumulator import ChangeAccumulator
from terminal_narrator.narration.sink import NarrationLog
from terminal_narrator.models.narration import FlushEvent
from terminal_narrator.stream.buffer import FrameBuffer
from terminal_narrator.stream.frame import SnapshotEvent


logger = logging.getLogger(__name__)


class NarrationPipeline:
    """
    Snapshot observer that drives the accumulator.

    Example:
        pipeline = NarrationPipeline(ChangeAccumulator(), NarrationLog())
        session.add_observer(pipeline)
        await pipeline.start()
        ...
        await pipeline.stop()
    """

    def __init__(
        self,
        accumulator: ChangeAccumulator,
        sink: NarrationLog,
        buffer: Optional[FrameBuffer] = None,
        tick_interval: float = 0.25,
    ) -> None:
        self.accumulator = accumulator
        self.sink = sink
        self.buffer: FrameBuffer = buffer or FrameBuffer(maxsize=50)
        self.tick_interval = tick_interval

        self._task: Optional[asyncio.Task] = None
        self._running: bool = False
        self._epoch: Optional[int] = None
        self._session_id: Optional[str] = None

        self.events_consumed: int = 0
        self.resets: int = 0
        self.errors: int = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # -------------------------------------------------------------------------
    # Observer Interface
    # -------------------------------------------------------------------------

    async def on_snapshot(self, event: SnapshotEvent) -> None:
        self.buffer.put_nowait(event)

    async def on_stream_reset(self, reason: str) -> None:
        # Baseline reset happens in order, when the first event of the new epoch is consumed
        logger.debug(f"Stream reset: {reason}")

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        if self.running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run(), name="narration_pipeline")

    async def stop(self) -> None:
        self._running = False
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        # Drain what is already queued, then flush leftovers
        while (event := self.buffer.get_nowait()) is not None:
            await self._consume(event)
        leftover = self.accumulator.force_flush()
        if leftover is not None:
            await self.sink.publish(leftover)

    async def _run(self) -> None:
        logger.info("Narration pipeline started")

        while self._running:
            try:
                event = await self.buffer.get(timeout=self.tick_interval)
                if event is not None:
                    await self._consume(event)
                await self._emit(self.accumulator.poll())
            except asyncio.CancelledError:
                logger.info("Narration pipeline cancelled")
                raise
            except Exception as e:
                self.errors += 1
                logger.error(f"Pipeline error: {e}")
                await asyncio.sleep(0.1)

        logger.info("Narration pipeline stopped")

    async def _consume(self, event: SnapshotEvent) -> None:
        if event.epoch != self._epoch or event.session_id != self._session_id:
            if self._epoch is not None:
                self.resets += 1
                logger.info(f"New stream epoch {event.epoch} (session {event.session_id}), resetting baseline")
            self.accumulator.reset()
            self._epoch = event.epoch
            self._session_id = event.session_id

        self.events_consumed += 1
        await self._emit(self.accumulator.consume(event.snapshot))

    async def _emit(self, flush: Optional[FlushEvent]) -> None:
        if flush is not None:
            await self.sink.publish(flush)

    def to_dict(self) -> dict:
        """Export pipeline metrics as dict."""
        return {
            "running": self.running,
            "events_consumed": self.events_consumed,
            "resets": self.resets,
            "errors": self.errors,
            "flushes": self.accumulator.flush_count,
            "buffer": self.buffer.metrics(),
        }
