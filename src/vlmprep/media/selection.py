"""帧选择解析：把用户的帧选择意图转成有序、去重、经过越界过滤的具体帧列表。"""

from __future__ import annotations

import math
from typing import List, Sequence

import numpy as np

from vlmprep.core.datamodels import AllFrames, FrameNumbers, FrameSelection, ResolvedFrame, Timestamps
from vlmprep.core.errors import EmptySelectionError, InvalidSelectionError
from vlmprep.core.logging_utils import get_logger

logger = get_logger(__name__)


def resolve_frames(
    selection: FrameSelection,
    duration_seconds: float,
    sampling_rate: float,
    *,
    require_frames: bool = False,
) -> List[ResolvedFrame]:
    """按视频时长与采样率解析帧选择。

    - AllFrames：帧号 0..floor(D*r)-1，时间戳 = 帧号 / r；
    - FrameNumbers：丢弃 n < 0 或 n >= floor(D*r) 的帧号；
    - Timestamps：丢弃 t < 0 或 t > D 的时间戳，帧号取 round(t*r)，时间戳保留原值。

    越界项只记日志不报错；require_frames=True 且结果为空时抛 EmptySelectionError。
    """

    if not math.isfinite(sampling_rate) or sampling_rate <= 0:
        raise InvalidSelectionError(f"sampling_rate must be positive, got {sampling_rate}")
    if not math.isfinite(duration_seconds) or duration_seconds < 0:
        raise InvalidSelectionError(f"duration must be non-negative, got {duration_seconds}")

    max_index = math.floor(duration_seconds * sampling_rate)

    if isinstance(selection, AllFrames):
        frames = [ResolvedFrame(index=idx, timestamp=idx / sampling_rate) for idx in range(max_index)]
    elif isinstance(selection, FrameNumbers):
        frames = _resolve_numbers(selection.numbers, max_index, sampling_rate)
    elif isinstance(selection, Timestamps):
        frames = _resolve_timestamps(selection.seconds, duration_seconds, sampling_rate)
    else:
        raise InvalidSelectionError(f"未知帧选择类型: {type(selection).__name__}")

    if require_frames and not frames:
        raise EmptySelectionError(
            f"帧选择 {_describe(selection)} 在时长 {duration_seconds:.2f}s、采样率 {sampling_rate:g} 下没有可用帧"
        )
    logger.debug("Resolved %d frames for selection %s", len(frames), _describe(selection))
    return frames


def _resolve_numbers(numbers: Sequence[int], max_index: int, sampling_rate: float) -> List[ResolvedFrame]:
    valid: List[int] = []
    dropped: List[int] = []
    for number in sorted(set(numbers)):
        if 0 <= number < max_index:
            valid.append(number)
        else:
            dropped.append(number)
    if dropped:
        logger.warning("Dropped %d out-of-range frame numbers (valid range 0..%d): %s", len(dropped), max_index - 1, dropped)
    logger.info("Processing specific frame numbers: %s", valid)
    return [ResolvedFrame(index=number, timestamp=number / sampling_rate) for number in valid]


def _resolve_timestamps(seconds: Sequence[float], duration_seconds: float, sampling_rate: float) -> List[ResolvedFrame]:
    frames: List[ResolvedFrame] = []
    dropped: List[float] = []
    collided: List[float] = []
    last_index = -1
    for ts in sorted(set(seconds)):
        if ts < 0 or ts > duration_seconds:
            dropped.append(ts)
            continue
        # 四舍五入（非银行家舍入），与解码器按最近帧取图一致
        index = int(math.floor(ts * sampling_rate + 0.5))
        if index <= last_index:
            collided.append(ts)
            continue
        frames.append(ResolvedFrame(index=index, timestamp=ts))
        last_index = index
    if dropped:
        logger.warning("Dropped %d out-of-range timestamps (valid range 0..%.2fs): %s", len(dropped), duration_seconds, dropped)
    if collided:
        logger.warning("Dropped %d timestamps mapping to an already selected frame: %s", len(collided), collided)
    logger.info("Processing frames at timestamps: %s", [f"{frame.timestamp:.2f}" for frame in frames])
    return frames


def _describe(selection: FrameSelection) -> str:
    describe = getattr(selection, "describe", None)
    return describe() if callable(describe) else repr(selection)


def video_sampling_rate(duration_seconds: float, fps: float) -> float:
    """短视频加密采样：时长 >= 10s 时约 1 fps，更短的视频按比例提高。"""

    return max((10.0 - 0.9 * duration_seconds) * fps, 1.0)


def cap_frames(frames: Sequence[ResolvedFrame], max_frames: int) -> List[ResolvedFrame]:
    """超过帧数预算时均匀抽取，始终保留首帧，结果仍按帧号升序。"""

    if max_frames <= 0:
        raise InvalidSelectionError("max_frames must be positive")
    if len(frames) <= max_frames:
        return list(frames)
    positions = np.linspace(0, len(frames) - 1, num=max_frames).round().astype(int)
    kept = [frames[pos] for pos in sorted(set(positions.tolist()))]
    logger.info("Capped %d frames to %d evenly spaced frames", len(frames), len(kept))
    return kept
