from __future__ import annotations

import math
import os
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml

from depthcam.errors import ConfigError

DEFAULT_MODEL_PATH = "models/depth_anything_v2.onnx"
DEVICES = {"auto", "cpu", "cuda"}
RESAMPLE_FILTERS = {"nearest", "bilinear", "bicubic", "lanczos", "box", "hamming"}

_ENV_PREFIX = "DEPTHCAM_"


@dataclass(slots=True, frozen=True)
class DepthConfig:
    model_path: str = DEFAULT_MODEL_PATH
    input_size: tuple[int, int] = (256, 256)  # (H, W)
    num_threads: int = 4
    device: str = "cpu"
    # Log contrast stretch: s = ln(1 + gain * n) / ln(base)
    stretch_gain: float = 9.0
    stretch_base: float = 10.0
    resample: str = "bilinear"
    jpeg_quality: int | None = None

    def __post_init__(self) -> None:
        h, w = self.input_size
        if h <= 0 or w <= 0:
            raise ConfigError(f"'input_size' must be positive, got {h}x{w}")
        if self.num_threads < 1:
            raise ConfigError("'num_threads' must be >= 1")
        if self.device not in DEVICES:
            raise ConfigError(f"'device' must be one of {sorted(DEVICES)}, got '{self.device}'")
        if not (math.isfinite(self.stretch_gain) and math.isfinite(self.stretch_base)):
            raise ConfigError("'stretch_gain' and 'stretch_base' must be finite")
        if self.stretch_gain <= 0:
            raise ConfigError("'stretch_gain' must be > 0")
        if self.stretch_base <= 1:
            raise ConfigError("'stretch_base' must be > 1")
        if self.resample not in RESAMPLE_FILTERS:
            raise ConfigError(
                f"'resample' must be one of {sorted(RESAMPLE_FILTERS)}, got '{self.resample}'"
            )
        if self.jpeg_quality is not None and not 1 <= self.jpeg_quality <= 100:
            raise ConfigError("'jpeg_quality' must be within 1..100")

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> DepthConfig:
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(payload) - known)
        if unknown:
            raise ConfigError(f"unknown config keys: {', '.join(unknown)}")

        values: dict[str, Any] = {}
        for key, raw in payload.items():
            values[key] = _coerce(key, raw)
        return cls(**values)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> DepthConfig:
        env = os.environ if environ is None else environ
        payload: dict[str, Any] = {}
        for f in fields(cls):
            raw = env.get(f"{_ENV_PREFIX}{f.name.upper()}")
            if raw is not None and raw.strip():
                payload[f.name] = raw.strip()
        return cls.from_dict(payload)

    def merged(self, **overrides: Any) -> DepthConfig:
        """Return a copy with every non-``None`` override applied."""
        changes = {k: _coerce(k, v) for k, v in overrides.items() if v is not None}
        return replace(self, **changes)


def parse_size(value: Any) -> tuple[int, int]:
    """Parse ``"256x256"``, ``256`` or ``[256, 256]`` into ``(H, W)``."""
    if isinstance(value, bool):
        raise ConfigError("'input_size' must be a size, not a boolean")
    if isinstance(value, int):
        return (value, value)
    if isinstance(value, str):
        parts = value.lower().replace(",", "x").split("x")
    elif isinstance(value, (list, tuple)):
        parts = list(value)
    else:
        raise ConfigError(f"'input_size' has unsupported type {type(value).__name__}")
    try:
        ints = [int(p) for p in parts]
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"'input_size' is not a valid size: {value!r}") from exc
    if len(ints) == 1:
        return (ints[0], ints[0])
    if len(ints) != 2:
        raise ConfigError(f"'input_size' must have two dimensions: {value!r}")
    return (ints[0], ints[1])


def _coerce(key: str, raw: Any) -> Any:
    try:
        if key == "input_size":
            return parse_size(raw)
        if key == "num_threads":
            return int(raw)
        if key in ("stretch_gain", "stretch_base"):
            return float(raw)
        if key == "jpeg_quality":
            if raw is None or (isinstance(raw, str) and raw.strip().lower() in ("", "none", "off")):
                return None
            return int(raw)
        if key == "model_path":
            return str(raw)
        if key in ("device", "resample"):
            return str(raw).strip().lower()
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"'{key}' has invalid value {raw!r}") from exc
    return raw


def load_config(path: str | Path, *, base: DepthConfig | None = None) -> DepthConfig:
    """Load a YAML config file.

    Keys may sit at the top level or under a ``depthcam:`` mapping.  Values
    from the file override *base* (defaults when omitted).
    """
    path = Path(path)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"cannot read config file: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {path}: {exc}") from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"config root must be a mapping: {path}")
    section = data.get("depthcam", data)
    if not isinstance(section, dict):
        raise ConfigError("'depthcam' must be a mapping")

    if base is None:
        return DepthConfig.from_dict(section)
    merged = {f.name: getattr(base, f.name) for f in fields(base)}
    merged.update(section)
    return DepthConfig.from_dict(merged)
