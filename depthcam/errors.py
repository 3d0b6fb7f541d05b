"""Unified exception hierarchy for depthcam.

All domain-specific errors inherit from :class:`DepthCamError` so callers
can catch the whole family with a single ``except`` clause when appropriate.

Per-frame errors derive from :class:`FrameError`.  They are raised by the
strict stage functions and absorbed (logged, turned into ``None``) by the
stage wrappers and the frame scheduler, so they never reach the host process.
"""

from __future__ import annotations


class DepthCamError(Exception):
    """Base exception for all depthcam errors."""


class ConfigError(DepthCamError, ValueError):
    """Invalid configuration value or config file.

    Inherits from ``ValueError`` so generic ``except ValueError`` handlers
    keep working.
    """


class EngineInitError(DepthCamError, RuntimeError):
    """The inference engine could not be created (missing or corrupt model).

    Fatal to the inference path only: the engine switches to a permanently
    disabled state and the preview keeps running without a depth overlay.
    """


class FrameError(DepthCamError, RuntimeError):
    """Failure confined to a single frame."""


class ConversionError(FrameError):
    """A raw camera frame could not be turned into an RGB image."""


class ShapeMismatchError(FrameError):
    """A tensor does not match the shape declared by the engine."""


class InferenceRuntimeError(FrameError):
    """The engine failed while running a single frame."""
