"""抽帧测试：并行抽帧的顺序、取消与错误包装，以及顺序解码。"""

from pathlib import Path
import threading
import time

import cv2
import numpy as np
import pytest

from vlmprep.core import OperationCancelled, ResolvedFrame, UpstreamDecodeError, VideoOpenError
from vlmprep.media import OpenCVVideoSource, extract_frames, iter_frames, probe_video


class FakeSource:
    """按时间戳生成纯色帧；越早的帧睡得越久，打乱完成顺序。"""

    def __init__(self, duration: float = 10.0) -> None:
        self._duration = duration
        self.closed = False

    def duration(self) -> float:
        return self._duration

    def frame_at(self, timestamp: float) -> np.ndarray:
        time.sleep(max(0.0, 0.05 - timestamp * 0.01))
        return np.full((2, 2, 3), int(timestamp * 10), dtype=np.uint8)

    def close(self) -> None:
        self.closed = True


class BrokenSource(FakeSource):
    def frame_at(self, timestamp: float) -> np.ndarray:
        raise IOError("decoder exploded")


def _frames(count: int) -> list[ResolvedFrame]:
    return [ResolvedFrame(index=idx, timestamp=idx * 0.5) for idx in range(count)]


def test_extract_frames_keeps_input_order() -> None:
    frames = _frames(6)

    samples = extract_frames(FakeSource(), frames, max_workers=4)

    assert [sample.frame_index for sample in samples] == [0, 1, 2, 3, 4, 5]
    assert [int(sample.frame[0, 0, 0]) for sample in samples] == [0, 5, 10, 15, 20, 25]
    assert samples[3].resolved == frames[3]


def test_extract_frames_empty_selection() -> None:
    assert extract_frames(FakeSource(), []) == []


def test_extract_frames_observes_cancellation() -> None:
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(OperationCancelled):
        extract_frames(FakeSource(), _frames(4), cancel_event=cancel)


def test_extract_frames_wraps_collaborator_errors() -> None:
    with pytest.raises(UpstreamDecodeError) as excinfo:
        extract_frames(BrokenSource(), _frames(3), max_workers=2)

    assert isinstance(excinfo.value.__cause__, IOError)
    assert excinfo.value.retryable


def test_probe_missing_video(tmp_path: Path) -> None:
    with pytest.raises(VideoOpenError):
        probe_video(tmp_path / "missing.avi")


@pytest.fixture()
def synthetic_video(tmp_path: Path) -> Path:
    """5 fps、3 秒的 MJPG 视频，第 i 帧亮度为 i * 15。"""

    path = tmp_path / "synthetic.avi"
    writer = cv2.VideoWriter(str(path), cv2.VideoWriter_fourcc(*"MJPG"), 5.0, (32, 24))
    if not writer.isOpened():
        pytest.skip("当前 OpenCV 构建不支持 MJPG 写入")
    for idx in range(15):
        writer.write(np.full((24, 32, 3), idx * 15, dtype=np.uint8))
    writer.release()
    return path


def test_iter_frames_decodes_sequentially(synthetic_video: Path) -> None:
    duration, native_fps, frame_count = probe_video(synthetic_video)
    assert native_fps == pytest.approx(5.0)
    assert frame_count == 15
    assert duration == pytest.approx(3.0)

    frames = [ResolvedFrame(index=idx, timestamp=float(idx)) for idx in range(3)]
    samples = list(iter_frames(synthetic_video, frames))

    assert [sample.frame_index for sample in samples] == [0, 1, 2]
    # 原始帧号 0/5/10，亮度 0/75/150，MJPG 有少量压缩误差
    assert [float(sample.frame.mean()) for sample in samples] == pytest.approx([0.0, 75.0, 150.0], abs=4.0)


def test_opencv_source_frame_at(synthetic_video: Path) -> None:
    with OpenCVVideoSource(synthetic_video) as source:
        assert source.duration() == pytest.approx(3.0)
        samples = extract_frames(source, [ResolvedFrame(index=0, timestamp=0.0)], max_workers=1)

    assert samples[0].frame.shape == (24, 32, 3)
