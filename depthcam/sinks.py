"""Presentation sinks: hand depth images from the worker to a display thread."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

from depthcam.types import DepthImage

logger = logging.getLogger(__name__)


class LatestImageSink:
    """Single-slot handoff polled by the presentation thread.

    ``__call__`` never blocks beyond a short lock; an image not yet picked up
    is replaced by the next one.  The last image stays readable through
    :attr:`latest` so the display keeps showing it after a failed frame.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._latest: DepthImage | None = None
        self._fresh = False

    def __call__(self, image: DepthImage) -> None:
        with self._lock:
            self._latest = image
            self._fresh = True

    @property
    def latest(self) -> DepthImage | None:
        with self._lock:
            return self._latest

    def poll(self) -> DepthImage | None:
        """Return the newest image if it has not been polled yet."""
        with self._lock:
            if not self._fresh:
                return None
            self._fresh = False
            return self._latest


class CallbackSink:
    """Runs *callback* on a dedicated single-thread executor.

    Delivery is fire-and-forget: images reach the callback in submission
    order, callback errors are logged.
    """

    def __init__(self, callback: Callable[[DepthImage], None], *, name: str = "depthcam-sink") -> None:
        self._callback = callback
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)

    def __call__(self, image: DepthImage) -> None:
        self._executor.submit(self._invoke, image)

    def _invoke(self, image: DepthImage) -> None:
        try:
            self._callback(image)
        except Exception:  # noqa: BLE001
            logger.exception("presentation callback failed for frame %d", image.frame_id)

    def close(self, *, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
