"""核心模块入口，聚合数据模型、异常与配置加载工具供各步骤复用。"""

from .config import PipelineConfig, ProcessorConfig, SceneConfig, load_config
from .datamodels import (
    AllFrames,
    FrameNumbers,
    FrameSelection,
    ResolvedFrame,
    SceneBoundary,
    SceneSpan,
    Timestamps,
    parse_frame_selection,
)
from .errors import (
    EmptySelectionError,
    InvalidImageError,
    InvalidSelectionError,
    MediaCountMismatchError,
    MissingSplicePointError,
    OperationCancelled,
    PreprocessError,
    UnsupportedInputError,
    UpstreamDecodeError,
    VideoOpenError,
)
from .logging_utils import get_logger, setup_logging

__all__ = [
    "AllFrames",
    "FrameNumbers",
    "FrameSelection",
    "ResolvedFrame",
    "SceneBoundary",
    "SceneSpan",
    "Timestamps",
    "parse_frame_selection",
    "PipelineConfig",
    "ProcessorConfig",
    "SceneConfig",
    "load_config",
    "get_logger",
    "setup_logging",
    "PreprocessError",
    "InvalidSelectionError",
    "EmptySelectionError",
    "InvalidImageError",
    "UnsupportedInputError",
    "MediaCountMismatchError",
    "MissingSplicePointError",
    "OperationCancelled",
    "UpstreamDecodeError",
    "VideoOpenError",
]
