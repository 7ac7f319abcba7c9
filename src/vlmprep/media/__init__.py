"""媒体模块：帧选择解析、抽帧、切块与像素归一化。"""

from .loader import OpenCVVideoSource, VideoSource, extract_frames, iter_frames, probe_video
from .pixels import build_pixel_batch, frame_shapes, normalize
from .selection import cap_frames, resolve_frames, video_sampling_rate
from .tiling import Tile, TileGrid, aspect_ratio_size, tile_image
from .types import FrameSample

__all__ = [
    "FrameSample",
    "OpenCVVideoSource",
    "VideoSource",
    "extract_frames",
    "iter_frames",
    "probe_video",
    "build_pixel_batch",
    "frame_shapes",
    "normalize",
    "cap_frames",
    "resolve_frames",
    "video_sampling_rate",
    "Tile",
    "TileGrid",
    "aspect_ratio_size",
    "tile_image",
]
