"""视频抽帧：顺序解码全部帧，或按帧号/时间戳随机访问并行抽取。"""

from __future__ import annotations

from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
import threading
from typing import Dict, Generator, List, Optional, Protocol, Sequence, Tuple

import cv2
import numpy as np
from numpy.typing import NDArray

from vlmprep.core.datamodels import ResolvedFrame
from vlmprep.core.errors import OperationCancelled, PreprocessError, UpstreamDecodeError, VideoOpenError
from vlmprep.core.logging_utils import get_logger

from .types import FrameSample

logger = get_logger(__name__)


class VideoSource(Protocol):
    """视频源协议：提供时长与按时间戳取帧，便于注入测试替身。"""

    def duration(self) -> float:
        """视频总时长（秒）。"""

    def frame_at(self, timestamp: float) -> NDArray[np.uint8]:
        """返回最接近 timestamp 的可解码帧（零容差请求）。"""

    def close(self) -> None:
        ...


def probe_video(video_path: str | Path) -> Tuple[float, float, int]:
    """读取原始 FPS 与帧数，返回 (时长, fps, 帧数)。"""

    path = Path(video_path)
    capture = cv2.VideoCapture(str(path))
    if not capture.isOpened():
        raise VideoOpenError(f"无法打开视频: {path}")
    try:
        native_fps = capture.get(cv2.CAP_PROP_FPS) or 0.0
        frame_count = int(capture.get(cv2.CAP_PROP_FRAME_COUNT) or 0)
    finally:
        capture.release()
    if native_fps <= 0:
        raise VideoOpenError(f"视频缺少有效 FPS 信息: {path}")
    return frame_count / native_fps, native_fps, frame_count


class OpenCVVideoSource:
    """基于 cv2.VideoCapture 的视频源；每个线程持有独立 capture，可并行取帧。"""

    def __init__(self, video_path: str | Path) -> None:
        self.video_path = Path(video_path)
        self._duration, self.native_fps, self.frame_count = probe_video(self.video_path)
        self._local = threading.local()
        self._lock = threading.Lock()
        self._captures: List[cv2.VideoCapture] = []

    def __enter__(self) -> "OpenCVVideoSource":
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    def duration(self) -> float:
        return self._duration

    def frame_at(self, timestamp: float) -> NDArray[np.uint8]:
        capture = self._capture()
        capture.set(cv2.CAP_PROP_POS_MSEC, max(timestamp, 0.0) * 1000.0)
        success, frame = capture.read()
        if not success:
            # 末尾时间戳常常落在最后一帧之后，退回最后一帧
            capture.set(cv2.CAP_PROP_POS_FRAMES, max(self.frame_count - 1, 0))
            success, frame = capture.read()
        if not success or frame is None:
            raise UpstreamDecodeError(f"无法在 {timestamp:.3f}s 处解码帧: {self.video_path}")
        return frame

    def close(self) -> None:
        with self._lock:
            captures, self._captures = self._captures, []
        for capture in captures:
            capture.release()

    def _capture(self) -> cv2.VideoCapture:
        capture = getattr(self._local, "capture", None)
        if capture is None:
            capture = cv2.VideoCapture(str(self.video_path))
            if not capture.isOpened():
                raise VideoOpenError(f"无法打开视频: {self.video_path}")
            self._local.capture = capture
            with self._lock:
                self._captures.append(capture)
        return capture


def iter_frames(
    video_path: str | Path,
    frames: Sequence[ResolvedFrame],
    *,
    cancel_event: Optional[threading.Event] = None,
) -> Generator[FrameSample, None, None]:
    """顺序解码视频流，按 frames 的时间戳取最近的原始帧，保持解码顺序输出。"""

    if not frames:
        return
    path = Path(video_path)
    capture = cv2.VideoCapture(str(path))
    if not capture.isOpened():
        raise VideoOpenError(f"无法打开视频: {path}")

    native_fps = capture.get(cv2.CAP_PROP_FPS) or 0.0
    if native_fps <= 0:
        capture.release()
        raise VideoOpenError(f"视频缺少有效 FPS 信息: {path}")

    targets = [(int(round(frame.timestamp * native_fps)), frame) for frame in frames]
    cursor = 0
    native_index = -1
    current: Optional[NDArray[np.uint8]] = None
    try:
        while cursor < len(targets):
            if cancel_event is not None and cancel_event.is_set():
                raise OperationCancelled("抽帧已取消")
            wanted, resolved = targets[cursor]
            if native_index < wanted or current is None:
                if not capture.grab():
                    logger.warning(
                        "Stream ended at native frame %d, %d requested frames not decoded",
                        native_index,
                        len(targets) - cursor,
                    )
                    break
                native_index += 1
                current = None
                if native_index < wanted:
                    continue
                success, current = capture.retrieve()
                if not success:
                    raise UpstreamDecodeError(f"无法解码第 {native_index} 帧: {path}")
            yield FrameSample(
                frame_index=resolved.index,
                timestamp=resolved.timestamp,
                frame=current,
                video_path=path,
            )
            cursor += 1
    finally:
        capture.release()


def extract_frames(
    source: VideoSource,
    frames: Sequence[ResolvedFrame],
    *,
    max_workers: int = 4,
    cancel_event: Optional[threading.Event] = None,
) -> List[FrameSample]:
    """并行随机访问抽帧；结果写入按位置编号的槽位，输出顺序与 frames 一致。"""

    if not frames:
        return []
    slots: List[Optional[FrameSample]] = [None] * len(frames)

    def _extract(resolved: ResolvedFrame) -> FrameSample:
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelled("抽帧已取消")
        try:
            pixels = source.frame_at(resolved.timestamp)
        except PreprocessError:
            raise
        except Exception as exc:
            raise UpstreamDecodeError(f"抽取第 {resolved.index} 帧失败: {exc}") from exc
        return FrameSample(frame_index=resolved.index, timestamp=resolved.timestamp, frame=pixels)

    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        pending: Dict[Future[FrameSample], int] = {
            executor.submit(_extract, resolved): slot for slot, resolved in enumerate(frames)
        }
        try:
            while pending:
                done, _ = wait(pending, timeout=0.1, return_when=FIRST_COMPLETED)
                if cancel_event is not None and cancel_event.is_set():
                    raise OperationCancelled("抽帧已取消")
                for future in done:
                    slots[pending.pop(future)] = future.result()
        except BaseException:
            for future in pending:
                future.cancel()
            raise

    logger.debug("Extracted %d frames with %d workers", len(slots), max_workers)
    return [sample for sample in slots if sample is not None]
