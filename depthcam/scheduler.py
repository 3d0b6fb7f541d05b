"""Keep-only-latest frame scheduling.

Frames are pushed by the capture source at any rate.  A single worker thread
pulls them one at a time through :class:`~depthcam.vision.pipeline.DepthPipeline`.
Between passes only the most recent frame is kept; anything it supersedes is
released straight back to the capture source without entering the pipeline.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from types import TracebackType

from depthcam.types import DepthImage, FrameState, RawFrame
from depthcam.vision.pipeline import DepthPipeline, PipelineStats

logger = logging.getLogger(__name__)

DepthSink = Callable[[DepthImage], None]


def _release(frame: RawFrame) -> None:
    try:
        frame.close()
    except Exception:  # noqa: BLE001
        logger.exception("failed to release frame %d", frame.frame_id)


class FrameScheduler:
    def __init__(
        self,
        pipeline: DepthPipeline,
        sink: DepthSink,
        *,
        name: str = "depthcam-worker",
    ) -> None:
        self.pipeline = pipeline
        self.sink = sink
        self.name = name
        self._cond = threading.Condition()
        self._pending: RawFrame | None = None
        self._busy = False
        self._stopping = False
        self._state = FrameState.IDLE
        self._thread: threading.Thread | None = None
        self._disabled_logged = False

    @property
    def stats(self) -> PipelineStats:
        return self.pipeline.stats

    @property
    def state(self) -> FrameState:
        return self._state

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> FrameScheduler:
        with self._cond:
            if self._thread is not None:
                if not self._stopping:
                    raise RuntimeError("scheduler already started")
                if self._thread.is_alive():
                    raise RuntimeError(f"worker {self.name} is still stopping")
            self._stopping = False
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        logger.info("frame scheduler started (engine available=%s)", self.pipeline.available)
        return self

    def submit(self, frame: RawFrame) -> None:
        """Hand a frame over.  Never blocks on the worker.

        The frame replaces any frame still waiting for the worker; the
        replaced frame is released and counted as dropped.
        """
        self.stats.count("submitted")
        with self._cond:
            if self._stopping or self._thread is None:
                superseded: RawFrame | None = frame
            else:
                superseded = self._pending
                self._pending = frame
                self._cond.notify_all()
        if superseded is not None:
            self.stats.count("dropped")
            _release(superseded)

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no frame is pending or in flight."""
        with self._cond:
            return self._cond.wait_for(
                lambda: self._pending is None and not self._busy,
                timeout=timeout,
            )

    def stop(self, timeout: float | None = 5.0) -> None:
        """Finish the in-flight frame, release the pending one, join the worker."""
        with self._cond:
            self._stopping = True
            leftover, self._pending = self._pending, None
            self._cond.notify_all()
            thread = self._thread
        if leftover is not None:
            self.stats.count("dropped")
            _release(leftover)
        if thread is not None:
            thread.join(timeout=timeout)
            if thread.is_alive():
                # The old worker still owns the engine; keep its handle.
                logger.warning("worker %s did not stop within %ss", self.name, timeout)
                return
        with self._cond:
            self._thread = None
        logger.info("frame scheduler stopped: %s", self.stats.to_dict())

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _run(self) -> None:
        while True:
            with self._cond:
                self._cond.wait_for(lambda: self._pending is not None or self._stopping)
                if self._stopping:
                    return
                frame, self._pending = self._pending, None
                self._busy = True

            try:
                self._handle(frame)
            finally:
                with self._cond:
                    self._busy = False
                    self._state = FrameState.IDLE
                    self._cond.notify_all()

    def _set_state(self, state: FrameState) -> None:
        self._state = state

    def _handle(self, frame: RawFrame) -> None:
        image: DepthImage | None = None
        try:
            with frame:
                if not self.pipeline.available:
                    if not self._disabled_logged:
                        logger.warning("depth engine unavailable; frames pass through without overlay")
                        self._disabled_logged = True
                    return
                image = self.pipeline.process(frame, on_stage=self._set_state)
        except Exception:  # noqa: BLE001
            # Per-frame failures stay inside the worker.
            logger.exception("frame %d failed", frame.frame_id)
            return

        if image is None:
            logger.debug("frame %d produced no depth image", frame.frame_id)
            return

        self._deliver(image)

    def _deliver(self, image: DepthImage) -> None:
        self._state = FrameState.DELIVERED
        try:
            self.sink(image)
        except Exception:  # noqa: BLE001
            logger.exception("sink rejected frame %d", image.frame_id)
            return
        self.stats.count("delivered")

    def __enter__(self) -> FrameScheduler:
        return self.start()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.stop()
