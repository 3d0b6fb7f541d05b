"""Frame-to-depth stages.

1. **Color conversion**: planar YUV 4:2:0 camera frames to RGB (``color``).
2. **Tensor encoding**: RGB to the model's channel-last float tensor (``tensor``).
3. **Inference**: ONNX Runtime depth engine (``inference``).
4. **Depth decoding**: depth grid to a log-stretched gray image (``depth``).

``pipeline`` chains the four into one synchronous pass.
"""

from __future__ import annotations
