"""大图切块：按最长边缩放并对齐到 tile 边长，切成网格，再附加一张全局缩略图。"""

from __future__ import annotations

from dataclasses import dataclass
import math
from typing import List, Tuple

import cv2
import numpy as np
from numpy.typing import NDArray

from vlmprep.core.errors import InvalidImageError

# 浮点除法得到 5.0000000001 这类值时不应多出一行/列
_CEIL_EPS = 1e-9


@dataclass(slots=True)
class Tile:
    """网格中的单个切块，像素由切块方独占（已复制）。"""

    row: int
    col: int
    pixels: NDArray[np.uint8]


@dataclass(slots=True)
class TileGrid:
    """行优先排列的切块网格，row 0 总是画面最上方的一行。"""

    tiles: List[Tile]
    rows: int
    cols: int
    global_tile: Tile

    def __post_init__(self) -> None:
        if self.rows < 1 or self.cols < 1:
            raise ValueError("TileGrid requires at least one row and one column")
        if len(self.tiles) != self.rows * self.cols:
            raise ValueError(f"expected {self.rows * self.cols} tiles, got {len(self.tiles)}")

    @property
    def unit_count(self) -> int:
        """送入模型的视觉单元数：网格切块 + 全局图。"""

        return len(self.tiles) + 1

    def pixel_buffers(self) -> List[NDArray[np.uint8]]:
        return [tile.pixels for tile in self.tiles] + [self.global_tile.pixels]


def _ceil_multiple(value: float, multiple: float) -> int:
    return int(math.ceil(value / multiple - _CEIL_EPS) * multiple)


def best_fit_size(width: int, height: int, longest_edge: float, *, upscale: bool = False) -> Tuple[int, int]:
    """保持宽高比，把最长边缩放到 longest_edge；upscale=False 时不放大小图。"""

    scale = longest_edge / max(width, height)
    if not upscale:
        scale = min(scale, 1.0)
    return max(1, int(round(width * scale))), max(1, int(round(height * scale)))


def aspect_ratio_size(
    width: int,
    height: int,
    longest_edge: float,
    multiple: float | None = None,
    *,
    upscale: bool = False,
) -> Tuple[int, int]:
    """一次性算出 "最长边缩放 + 对齐到 multiple" 的目标尺寸 (width, height)。

    两步缩放合并计算，避免先缩放再对齐造成的舍入误差累积：
    先对齐较长边，另一边由缩放后的宽高比推出，再向上对齐。
    """

    fit_w, fit_h = best_fit_size(width, height, longest_edge, upscale=upscale)
    if multiple is None:
        return fit_w, fit_h
    aspect_ratio = fit_w / fit_h
    if width >= height:
        target_w = _ceil_multiple(fit_w, multiple)
        target_h = _ceil_multiple(target_w / aspect_ratio, multiple)
    else:
        target_h = _ceil_multiple(fit_h, multiple)
        target_w = _ceil_multiple(target_h * aspect_ratio, multiple)
    return target_w, target_h


def resample(image: NDArray[np.uint8], width: int, height: int) -> NDArray[np.uint8]:
    """Lanczos 重采样到 (width, height)。"""

    return cv2.resize(image, (int(width), int(height)), interpolation=cv2.INTER_LANCZOS4)


def _validate(image: NDArray[np.uint8]) -> Tuple[int, int]:
    if image.ndim < 2:
        raise InvalidImageError(f"图像维度不足: shape={image.shape}")
    height, width = image.shape[:2]
    if width == 0 or height == 0:
        raise InvalidImageError(f"图像宽高不能为 0: shape={image.shape}")
    return width, height


def tile_image(
    image: NDArray[np.uint8],
    max_edge: float,
    tile_edge: int,
    *,
    bottom_up: bool = False,
    upscale: bool = False,
) -> TileGrid:
    """把图片切成 rows x cols 个 tile_edge 见方的切块，并生成全局图。

    bottom_up=True 表示缓冲区第一行是画面底部（左下角为原点的坐标系），
    切块前先翻转，保证返回网格的 row 0 始终是视觉上最上面一行。
    """

    width, height = _validate(image)
    if tile_edge <= 0 or max_edge <= 0:
        raise ValueError("max_edge and tile_edge must be positive")
    source = np.ascontiguousarray(image[::-1]) if bottom_up else image

    target_w, target_h = aspect_ratio_size(width, height, max_edge, tile_edge, upscale=upscale)
    processed = resample(source, target_w, target_h)

    rows = int(math.ceil(target_h / tile_edge))
    cols = int(math.ceil(target_w / tile_edge))
    tiles: List[Tile] = []
    for row in range(rows):
        y0 = row * tile_edge
        y1 = min(y0 + tile_edge, target_h)
        for col in range(cols):
            x0 = col * tile_edge
            x1 = min(x0 + tile_edge, target_w)
            tiles.append(Tile(row=row, col=col, pixels=processed[y0:y1, x0:x1].copy()))

    # 全局图直接从原图重采样，而不是从处理尺寸的图
    summary = Tile(row=0, col=0, pixels=resample(source, tile_edge, tile_edge))
    return TileGrid(tiles=tiles, rows=rows, cols=cols, global_tile=summary)


def global_tile(image: NDArray[np.uint8], tile_edge: int, *, bottom_up: bool = False) -> Tile:
    """不切网格，只把整张图重采样成 tile_edge 见方的全局图。"""

    _validate(image)
    source = np.ascontiguousarray(image[::-1]) if bottom_up else image
    return Tile(row=0, col=0, pixels=resample(source, tile_edge, tile_edge))
