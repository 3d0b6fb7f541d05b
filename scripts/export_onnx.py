#!/usr/bin/env python3
"""Export Depth Anything V2 Small as a depthcam model artifact.

The exported graph takes a channel-last ``[1, H, W, 3]`` float32 tensor in
``[0, 1]`` (ImageNet normalisation happens inside the graph) and returns the
relative depth as ``[1, H_out, W_out]`` float32.

Usage::

    python scripts/export_onnx.py --output models/depth_anything_v2.onnx
    python scripts/export_onnx.py --output models/depth_anything_v2.onnx --quantize int8 --benchmark
"""

from __future__ import annotations

import argparse
import time
from pathlib import Path

import numpy as np
import torch

_MODEL_NAME = "depth-anything/Depth-Anything-V2-Small-hf"


class ChannelLastDepth(torch.nn.Module):
    """Wraps a HF depth model behind the depthcam tensor contract."""

    def __init__(self, model: torch.nn.Module) -> None:
        super().__init__()
        self.model = model
        self.register_buffer("mean", torch.tensor([0.485, 0.456, 0.406]).view(1, 3, 1, 1))
        self.register_buffer("std", torch.tensor([0.229, 0.224, 0.225]).view(1, 3, 1, 1))

    def forward(self, pixels: torch.Tensor) -> torch.Tensor:
        x = pixels.permute(0, 3, 1, 2)  # (1, H, W, 3) -> (1, 3, H, W)
        x = (x - self.mean) / self.std
        return self.model(pixel_values=x).predicted_depth  # (1, H_out, W_out)


def export_depth_anything(output: Path, *, input_h: int = 256, input_w: int = 256) -> Path:
    from transformers import AutoModelForDepthEstimation

    print("Loading Depth Anything V2 Small...")
    model = AutoModelForDepthEstimation.from_pretrained(_MODEL_NAME)
    model.eval()
    wrapped = ChannelLastDepth(model).eval()

    dummy = torch.rand(1, input_h, input_w, 3)
    output.parent.mkdir(parents=True, exist_ok=True)

    print(f"Exporting to {output}...")
    torch.onnx.export(
        wrapped,
        (dummy,),
        str(output),
        input_names=["pixels"],
        output_names=["depth"],
        opset_version=17,
    )
    size_mb = output.stat().st_size / (1024 * 1024)
    print(f"  Depth Anything ONNX: {size_mb:.1f} MB")
    return output


def quantize_int8(onnx_path: Path) -> Path:
    """Apply INT8 dynamic quantization to an ONNX model."""
    from onnxruntime.quantization import QuantType, quantize_dynamic

    quant_path = onnx_path.with_suffix(".int8.onnx")
    print(f"Quantizing {onnx_path.name} → {quant_path.name}...")
    quantize_dynamic(str(onnx_path), str(quant_path), weight_type=QuantType.QInt8)
    orig_mb = onnx_path.stat().st_size / (1024 * 1024)
    quant_mb = quant_path.stat().st_size / (1024 * 1024)
    print(f"  {orig_mb:.1f} MB → {quant_mb:.1f} MB ({quant_mb / orig_mb * 100:.0f}%)")
    return quant_path


def benchmark(onnx_path: Path, *, num_threads: int = 4, n_warmup: int = 3, n_runs: int = 10) -> float:
    """Time :meth:`DepthEngine.infer` on random input."""
    from depthcam.vision.inference import DepthEngine

    with DepthEngine(onnx_path, num_threads=num_threads) as engine:
        if not engine.available:
            print(f"  {onnx_path.name}: SKIPPED ({engine.init_error})")
            return -1.0
        h, w = engine.input_size
        dummy = np.random.rand(1, h, w, 3).astype(np.float32)

        for _ in range(n_warmup):
            engine.infer(dummy)
        t0 = time.perf_counter()
        for _ in range(n_runs):
            engine.infer(dummy)
        elapsed = (time.perf_counter() - t0) / n_runs

    print(f"  {onnx_path.name}: {elapsed * 1000:.1f} ms/frame, output {engine.output_shape}")
    return elapsed


def main() -> None:
    parser = argparse.ArgumentParser(description="Export the depth model to ONNX")
    parser.add_argument("--output", default="models/depth_anything_v2.onnx")
    parser.add_argument("--input-size", type=int, default=256, help="Square input resolution")
    parser.add_argument("--quantize", choices=["none", "int8"], default="none")
    parser.add_argument("--benchmark", action="store_true", help="Run benchmark after export")
    args = parser.parse_args()

    path = export_depth_anything(Path(args.output), input_h=args.input_size, input_w=args.input_size)
    quantized = quantize_int8(path) if args.quantize == "int8" else None

    if args.benchmark:
        print("\nBenchmark (CPU):")
        benchmark(path)
        if quantized:
            benchmark(quantized)

    print("\nDone.")


if __name__ == "__main__":
    main()
