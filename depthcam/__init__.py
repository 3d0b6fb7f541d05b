"""Real-time monocular depth overlay for planar camera streams."""

from __future__ import annotations

from depthcam.config import DepthConfig, load_config
from depthcam.errors import (
    ConfigError,
    ConversionError,
    DepthCamError,
    EngineInitError,
    FrameError,
    InferenceRuntimeError,
    ShapeMismatchError,
)
from depthcam.scheduler import FrameScheduler
from depthcam.types import DepthImage, FrameState, PixelFormat, Plane, RawFrame
from depthcam.vision.inference import DepthEngine
from depthcam.vision.pipeline import DepthPipeline, PipelineStats

__version__ = "0.1.0"

__all__ = [
    "ConfigError",
    "ConversionError",
    "DepthCamError",
    "DepthConfig",
    "DepthEngine",
    "DepthImage",
    "DepthPipeline",
    "EngineInitError",
    "FrameError",
    "FrameScheduler",
    "FrameState",
    "InferenceRuntimeError",
    "PipelineStats",
    "PixelFormat",
    "Plane",
    "RawFrame",
    "ShapeMismatchError",
    "load_config",
]
