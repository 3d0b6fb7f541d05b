"""ONNX Runtime depth engine.

Usage::

    from depthcam.vision.inference import DepthEngine

    with DepthEngine("models/depth_anything_v2.onnx", num_threads=4) as engine:
        if engine.available:
            depth = engine.infer(tensor)  # (H_out, W_out) float32 or None

The engine never raises from its constructor or from :meth:`DepthEngine.infer`.
A model that cannot be loaded leaves the engine permanently disabled with the
cause kept on :attr:`DepthEngine.init_error`.
"""

from __future__ import annotations

import logging
from pathlib import Path
from types import TracebackType
from typing import Any

import numpy as np
import onnxruntime as ort

from depthcam.errors import (
    EngineInitError,
    FrameError,
    InferenceRuntimeError,
    ShapeMismatchError,
)

logger = logging.getLogger(__name__)

Shape = tuple[int | None, ...]


def _select_providers(device: str) -> list[str]:
    """Select ONNX Runtime execution providers."""
    available = ort.get_available_providers()
    if device == "auto":
        providers = []
        if "CUDAExecutionProvider" in available:
            providers.append("CUDAExecutionProvider")
        providers.append("CPUExecutionProvider")
        return providers
    if device == "cuda":
        return ["CUDAExecutionProvider", "CPUExecutionProvider"]
    return ["CPUExecutionProvider"]


def _static_shape(dims: Any) -> Shape:
    """Engine metadata dims with symbolic/unknown entries mapped to ``None``."""
    return tuple(d if isinstance(d, int) and d > 0 else None for d in (dims or ()))


def _shape_matches(actual: tuple[int, ...], declared: Shape) -> bool:
    if len(actual) != len(declared):
        return False
    return all(d is None or d == a for a, d in zip(actual, declared))


class DepthEngine:
    """Single-handle wrapper around an ONNX depth model.

    Expects a channel-last input ``[1, H_in, W_in, 3]`` float32 and an output
    ``[1, H_out, W_out]`` float32.  Not safe for concurrent :meth:`infer`
    calls; give the engine to exactly one worker.
    """

    def __init__(
        self,
        model_path: str | Path,
        *,
        num_threads: int = 4,
        device: str = "cpu",
        input_size: tuple[int, int] = (256, 256),
    ) -> None:
        self.model_path = Path(model_path)
        self.num_threads = num_threads
        self.init_error: EngineInitError | None = None
        self._session: Any = None
        self._input_name = ""
        self._output_name = ""
        self._input_shape: Shape = (1, input_size[0], input_size[1], 3)
        self._output_shape: Shape = ()

        try:
            self._session = self._open_session(device)
        except EngineInitError as exc:
            self.init_error = exc
        except Exception as exc:  # noqa: BLE001
            self.init_error = EngineInitError(f"cannot load model {self.model_path}: {exc}")
            self.init_error.__cause__ = exc

        if self.init_error is not None:
            logger.error("depth engine disabled: %s", self.init_error)
            return

        logger.info(
            "depth engine ready: %s input=%s output=%s threads=%d",
            self.model_path,
            self._input_shape,
            self._output_shape,
            num_threads,
        )

    def _open_session(self, device: str) -> Any:
        if not self.model_path.is_file():
            raise EngineInitError(f"model artifact not found: {self.model_path}")

        options = ort.SessionOptions()
        options.intra_op_num_threads = self.num_threads
        session = ort.InferenceSession(
            str(self.model_path),
            sess_options=options,
            providers=_select_providers(device),
        )

        inputs = session.get_inputs()
        outputs = session.get_outputs()
        if not inputs or not outputs:
            raise EngineInitError("model declares no input or no output tensor")

        declared_in = _static_shape(inputs[0].shape)
        if len(declared_in) != 4 or declared_in[3] not in (None, 3):
            raise EngineInitError(f"expected a [1, H, W, 3] input, model declares {declared_in}")
        # Symbolic spatial dims fall back to the configured input size.
        self._input_shape = tuple(
            d if d is not None else fallback
            for d, fallback in zip(declared_in, self._input_shape)
        )
        self._input_name = inputs[0].name

        self._output_name = outputs[0].name
        self._output_shape = _static_shape(outputs[0].shape)
        if len(self._output_shape) not in (3, 4):
            raise EngineInitError(
                f"expected a [1, H, W] output, model declares {self._output_shape}"
            )
        return session

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    @property
    def available(self) -> bool:
        return self._session is not None

    @property
    def input_size(self) -> tuple[int, int]:
        """Model input resolution as ``(H, W)``."""
        return (int(self._input_shape[1]), int(self._input_shape[2]))

    @property
    def input_shape(self) -> Shape:
        return self._input_shape

    @property
    def output_shape(self) -> Shape:
        """Output shape declared by the model (``None`` for dynamic dims)."""
        return self._output_shape

    def describe(self) -> dict[str, Any]:
        info: dict[str, Any] = {
            "model_path": str(self.model_path),
            "available": self.available,
            "num_threads": self.num_threads,
            "input_shape": list(self._input_shape),
            "output_shape": list(self._output_shape),
        }
        if self._session is not None:
            info["input_name"] = self._input_name
            info["output_name"] = self._output_name
            info["providers"] = list(self._session.get_providers())
        if self.init_error is not None:
            info["init_error"] = str(self.init_error)
        return info

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def run(self, tensor: np.ndarray) -> np.ndarray:
        """Run one tensor and return the ``(H_out, W_out)`` depth grid.

        Raises:
            InferenceRuntimeError: engine disabled/closed or failed internally.
            ShapeMismatchError: input or output disagrees with the model.
        """
        session = self._session
        if session is None:
            raise InferenceRuntimeError("depth engine is not available")

        if tensor.dtype != np.float32 or not _shape_matches(tensor.shape, self._input_shape):
            raise ShapeMismatchError(
                f"input tensor {tensor.dtype}{list(tensor.shape)} does not match "
                f"float32{list(self._input_shape)}"
            )

        try:
            raw = session.run(None, {self._input_name: tensor})[0]
        except Exception as exc:  # noqa: BLE001
            raise InferenceRuntimeError(f"engine failure: {exc}") from exc

        raw = np.asarray(raw)
        batch = int(np.prod(raw.shape[:-2])) if raw.ndim >= 3 else 0
        if batch != 1 or raw.size == 0 or not _shape_matches(raw.shape, self._output_shape):
            raise ShapeMismatchError(
                f"output tensor {list(raw.shape)} does not match {list(self._output_shape)}"
            )
        # [1, H, W] (or [1, 1, H, W]) -> (H, W)
        depth = raw.reshape(raw.shape[-2:]).astype(np.float32, copy=False)
        if not np.isfinite(depth).all():
            raise InferenceRuntimeError("engine produced non-finite depth values")
        return depth

    def infer(self, tensor: np.ndarray) -> np.ndarray | None:
        """Like :meth:`run` but returns ``None`` instead of raising."""
        if self._session is None:
            return None
        try:
            return self.run(tensor)
        except FrameError as exc:
            logger.warning("inference failed: %s", exc)
            return None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        if self._session is not None:
            self._session = None
            logger.info("depth engine closed: %s", self.model_path)

    def __enter__(self) -> DepthEngine:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
