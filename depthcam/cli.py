from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

import cv2
import numpy as np

from depthcam.capture import CameraSource, frame_from_bgr
from depthcam.config import DepthConfig, load_config
from depthcam.errors import ConfigError
from depthcam.scheduler import FrameScheduler
from depthcam.sinks import LatestImageSink
from depthcam.types import DepthImage
from depthcam.vision.inference import DepthEngine
from depthcam.vision.pipeline import DepthPipeline


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="depthcam",
        description="Real-time monocular depth overlay",
    )
    parser.add_argument("--config", default=None, metavar="PATH", help="YAML config file")
    parser.add_argument("--model", default=None, metavar="PATH", help="ONNX depth model")
    parser.add_argument("--threads", type=int, default=None, help="Engine thread count")
    parser.add_argument("--device", default=None, choices=["auto", "cpu", "cuda"])
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("inspect", help="Print engine metadata as JSON")

    frame = sub.add_parser("frame", help="Estimate depth for a single image file")
    frame.add_argument("input", help="Input image path")
    frame.add_argument("--output", default=None, help="Output PNG (default: <input>_depth.png)")
    frame.add_argument(
        "--alpha",
        type=float,
        default=None,
        help="Blend the depth map over the input with this opacity",
    )

    live = sub.add_parser("live", help="Camera preview with depth overlay")
    live.add_argument("--camera", default="0", help="Camera index or video path")
    live.add_argument("--width", type=int, default=None)
    live.add_argument("--height", type=int, default=None)
    live.add_argument("--alpha", type=float, default=0.6, help="Overlay opacity")
    live.add_argument("--max-frames", type=int, default=None)
    return parser


def _resolve_config(args: argparse.Namespace) -> DepthConfig:
    config = DepthConfig.from_env()
    if args.config:
        config = load_config(args.config, base=config)
    return config.merged(
        model_path=args.model,
        num_threads=args.threads,
        device=args.device,
    )


def _open_engine(config: DepthConfig) -> DepthEngine:
    return DepthEngine(
        config.model_path,
        num_threads=config.num_threads,
        device=config.device,
        input_size=config.input_size,
    )


def blend_overlay(preview_bgr: np.ndarray, depth: DepthImage | None, alpha: float) -> np.ndarray:
    """Draw *depth* over the preview; the preview alone when there is none."""
    if depth is None or alpha <= 0:
        return preview_bgr
    overlay = depth.pixels
    h, w = preview_bgr.shape[:2]
    if overlay.shape[:2] != (h, w):
        overlay = cv2.resize(overlay, (w, h), interpolation=cv2.INTER_LINEAR)
    return cv2.addWeighted(preview_bgr, 1.0 - alpha, overlay, alpha, 0.0)


def _cmd_inspect(config: DepthConfig) -> int:
    with _open_engine(config) as engine:
        print(json.dumps(engine.describe(), indent=2))
        return 0 if engine.available else 1


def _cmd_frame(config: DepthConfig, args: argparse.Namespace) -> int:
    bgr = cv2.imread(args.input, cv2.IMREAD_COLOR)
    if bgr is None:
        print(f"cannot read image: {args.input}")
        return 1

    pipeline = DepthPipeline(_open_engine(config), config)
    with pipeline.engine, frame_from_bgr(bgr) as frame:
        image = pipeline.process(frame)
    if image is None:
        print("no depth image produced")
        return 1

    out = Path(args.output) if args.output else Path(args.input).with_name(
        f"{Path(args.input).stem}_depth.png"
    )
    picture = image.pixels
    if args.alpha is not None:
        picture = blend_overlay(bgr[: image.height, : image.width], image, args.alpha)
    cv2.imwrite(str(out), picture)
    print(json.dumps({**image.to_dict(), "output": str(out)}, indent=2))
    return 0


def _cmd_live(config: DepthConfig, args: argparse.Namespace) -> int:
    device: int | str = int(args.camera) if args.camera.isdigit() else args.camera
    pipeline = DepthPipeline(_open_engine(config), config)
    sink = LatestImageSink()
    window = "depthcam"

    with pipeline.engine, CameraSource(device, width=args.width, height=args.height) as camera:
        with FrameScheduler(pipeline, sink) as scheduler:
            for frame in camera.frames(max_frames=args.max_frames):
                if frame is not None:
                    scheduler.submit(frame)
                if camera.last_bgr is None:
                    continue
                # Display runs on this thread; the worker only fills the sink.
                cv2.imshow(window, blend_overlay(camera.last_bgr, sink.latest, args.alpha))
                if (cv2.waitKey(1) & 0xFF) in (ord("q"), 27):
                    break
        stats = scheduler.stats.to_dict()
    cv2.destroyAllWindows()
    print(json.dumps(stats, indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = _resolve_config(args)
    except ConfigError as exc:
        print(f"config error: {exc}")
        return 1

    if args.command == "inspect":
        return _cmd_inspect(config)
    if args.command == "frame":
        return _cmd_frame(config, args)
    if args.command == "live":
        try:
            return _cmd_live(config, args)
        except RuntimeError as exc:
            print(str(exc))
            return 1

    parser.error(f"unknown command: {args.command}")
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
