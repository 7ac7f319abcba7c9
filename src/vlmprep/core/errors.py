"""统一异常分类：上层根据 retryable 区分内部缺陷与可重试的运行期失败。"""

from __future__ import annotations


class PreprocessError(Exception):
    """所有预处理异常的基类。"""

    retryable = False


class InvalidSelectionError(PreprocessError, ValueError):
    """帧选择参数非法，或过滤后为空而调用方要求至少一帧。"""


class EmptySelectionError(InvalidSelectionError):
    """过滤越界帧之后一帧不剩。"""


class InvalidImageError(PreprocessError, ValueError):
    """图像宽或高为 0，无法切块。"""


class UnsupportedInputError(PreprocessError, ValueError):
    """单次请求中媒体数量或类型组合不受支持。"""


class MediaCountMismatchError(PreprocessError, RuntimeError):
    """占位单元数量与像素批次数量不一致，属于内部缺陷。"""

    def __init__(self, units: int, batches: int) -> None:
        super().__init__(f"prompt 占位单元 {units} 个，但像素批次为 {batches} 个")
        self.units = units
        self.batches = batches


class MissingSplicePointError(PreprocessError, RuntimeError):
    """渲染后的模板中找不到拼接标记。"""

    def __init__(self, marker: str) -> None:
        super().__init__(f"渲染后的 prompt 中缺少拼接标记 {marker!r}")
        self.marker = marker


class OperationCancelled(PreprocessError, RuntimeError):
    """逐帧处理中观察到取消信号，不返回任何部分结果。"""

    retryable = True


class UpstreamDecodeError(PreprocessError, RuntimeError):
    """视频解码或 embedding 等外部协作者失败，原异常保存在 __cause__。"""

    retryable = True


class VideoOpenError(UpstreamDecodeError):
    """视频无法打开时抛出的异常，便于上层捕获并降级。"""
