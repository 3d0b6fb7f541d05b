"""One synchronous frame-to-depth pass.

Usage::

    from depthcam.config import DepthConfig
    from depthcam.vision.inference import DepthEngine
    from depthcam.vision.pipeline import DepthPipeline

    config = DepthConfig(model_path="models/depth_anything_v2.onnx")
    engine = DepthEngine(config.model_path, num_threads=config.num_threads)
    pipeline = DepthPipeline(engine, config)
    image = pipeline.process(frame)  # DepthImage sized like the frame, or None
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from depthcam.config import DepthConfig
from depthcam.types import DepthImage, FrameState, RawFrame
from depthcam.vision.color import convert_frame
from depthcam.vision.depth import decode_depth
from depthcam.vision.inference import DepthEngine
from depthcam.vision.tensor import encode_tensor

StageCallback = Callable[[FrameState], None]


@dataclass
class PipelineStats:
    """Aggregate pipeline counters and timings."""

    submitted: int = 0
    dropped: int = 0
    processed: int = 0
    delivered: int = 0
    failures: dict[str, int] = field(default_factory=dict)
    total_elapsed_ms: float = 0.0
    stage_elapsed_ms: dict[str, float] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def failed(self) -> int:
        return sum(self.failures.values())

    @property
    def avg_ms_per_frame(self) -> float:
        return self.total_elapsed_ms / max(self.processed, 1)

    @property
    def fps(self) -> float:
        avg = self.avg_ms_per_frame
        return 1000.0 / avg if avg > 0 else 0.0

    def record_failure(self, stage: FrameState) -> None:
        with self._lock:
            self.failures[stage.value] = self.failures.get(stage.value, 0) + 1

    def add_stage_time(self, stage: FrameState, elapsed_ms: float) -> None:
        with self._lock:
            key = stage.value
            self.stage_elapsed_ms[key] = self.stage_elapsed_ms.get(key, 0.0) + elapsed_ms

    def count(self, name: str, n: int = 1) -> None:
        with self._lock:
            setattr(self, name, getattr(self, name) + n)

    def add_elapsed(self, elapsed_ms: float) -> None:
        with self._lock:
            self.total_elapsed_ms += elapsed_ms

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "submitted": self.submitted,
                "dropped": self.dropped,
                "processed": self.processed,
                "delivered": self.delivered,
                "failed": sum(self.failures.values()),
                "failures": dict(self.failures),
                "total_elapsed_ms": round(self.total_elapsed_ms, 1),
                "avg_ms_per_frame": round(self.avg_ms_per_frame, 1),
                "fps": round(self.fps, 2),
                "stage_elapsed_ms": {k: round(v, 1) for k, v in self.stage_elapsed_ms.items()},
            }


class DepthPipeline:
    """Convert, encode, infer, decode.  Every stage failure yields ``None``."""

    def __init__(
        self,
        engine: DepthEngine,
        config: DepthConfig | None = None,
        *,
        stats: PipelineStats | None = None,
    ) -> None:
        self.engine = engine
        self.config = config or DepthConfig()
        self._stats = stats or PipelineStats()

    @property
    def stats(self) -> PipelineStats:
        return self._stats

    @property
    def available(self) -> bool:
        return self.engine.available

    def process(
        self,
        frame: RawFrame,
        *,
        on_stage: StageCallback | None = None,
    ) -> DepthImage | None:
        """Run *frame* through all stages.  Does not release the frame."""
        if not self.engine.available:
            return None
        self._stats.count("processed")
        t0 = time.perf_counter()
        try:
            image = self._run_stages(frame, on_stage)
        finally:
            total_ms = (time.perf_counter() - t0) * 1000
            self._stats.add_elapsed(total_ms)

        if image is not None:
            image.frame_id = frame.frame_id
            image.timestamp = frame.timestamp
            image.elapsed_ms = total_ms
        return image

    def _run_stages(
        self, frame: RawFrame, on_stage: StageCallback | None
    ) -> DepthImage | None:
        def enter(stage: FrameState) -> float:
            if on_stage is not None:
                on_stage(stage)
            return time.perf_counter()

        def leave(stage: FrameState, started: float) -> None:
            self._stats.add_stage_time(stage, (time.perf_counter() - started) * 1000)

        cfg = self.config

        t = enter(FrameState.CONVERTING)
        rgb = convert_frame(frame, jpeg_quality=cfg.jpeg_quality)
        leave(FrameState.CONVERTING, t)
        if rgb is None:
            self._stats.record_failure(FrameState.CONVERTING)
            return None

        t = enter(FrameState.ENCODING)
        tensor = encode_tensor(rgb, self.engine.input_size, resample=cfg.resample)
        leave(FrameState.ENCODING, t)

        t = enter(FrameState.INFERRING)
        depth = self.engine.infer(tensor)
        leave(FrameState.INFERRING, t)
        if depth is None:
            self._stats.record_failure(FrameState.INFERRING)
            return None

        t = enter(FrameState.DECODING)
        image = decode_depth(
            depth,
            (frame.width, frame.height),
            stretch_gain=cfg.stretch_gain,
            stretch_base=cfg.stretch_base,
            resample=cfg.resample,
        )
        leave(FrameState.DECODING, t)
        return image
