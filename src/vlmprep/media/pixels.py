"""像素归一化与批次组装，产出模型可直接消费的 NHWC float32 张量。"""

from __future__ import annotations

from typing import List, Sequence, Tuple

import cv2
import numpy as np
from numpy.typing import NDArray


def normalize(
    pixels: NDArray[np.uint8],
    mean: Sequence[float],
    std: Sequence[float],
    *,
    bgr: bool = True,
) -> NDArray[np.float32]:
    """uint8 -> [0,1] -> (x - mean) / std；OpenCV 解码的 BGR 先转成 RGB。"""

    if pixels.ndim == 2:
        pixels = cv2.cvtColor(pixels, cv2.COLOR_GRAY2RGB)
    elif bgr:
        pixels = cv2.cvtColor(pixels, cv2.COLOR_BGR2RGB)
    scaled = pixels.astype(np.float32) / 255.0
    mean_arr = np.asarray(mean, dtype=np.float32)
    std_arr = np.asarray(std, dtype=np.float32)
    return (scaled - mean_arr) / std_arr


def build_pixel_batch(
    buffers: Sequence[NDArray[np.uint8]],
    mean: Sequence[float],
    std: Sequence[float],
    *,
    bgr: bool = True,
) -> NDArray[np.float32]:
    """按顺序归一化并堆叠成 (N, H, W, C)；所有 buffer 尺寸必须一致。"""

    if not buffers:
        raise ValueError("build_pixel_batch requires at least one buffer")
    normalized = [normalize(buffer, mean, std, bgr=bgr) for buffer in buffers]
    shapes = {item.shape for item in normalized}
    if len(shapes) != 1:
        raise ValueError(f"pixel buffers must share one shape, got {sorted(shapes)}")
    return np.stack(normalized, axis=0)


def frame_shapes(count: int, edge: int) -> List[Tuple[int, int, int]]:
    """视频每帧的 (temporal, height, width) 描述。"""

    return [(index, edge, edge) for index in range(count)]
