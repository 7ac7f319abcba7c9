"""场景切分状态机：单次顺序遍历，用到当前参考帧的距离与时长约束决定场景边界。

规则（对首帧之后的每一帧，elapsed = 当前时间 - 当前场景起点时间；
首个场景的起点是首帧的实际时间戳，而对外报告的边界仍为 (0, 0.0)）：
1. elapsed >= max_scene_seconds：强制切分（duration_cap），参考帧换成当前帧；
2. 否则 distance > threshold 且 elapsed >= min_scene_seconds：切分（distance），参考帧换成当前帧；
3. 否则不切分。distance 超阈值但场景过短时，候选被抑制：
   reference_policy="pinned" 时参考帧保持不变，"sliding" 时参考帧移到被抑制的候选帧。
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import threading
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple

from vlmprep.core.datamodels import ResolvedFrame, SceneBoundary, SceneSpan
from vlmprep.core.errors import EmptySelectionError, OperationCancelled
from vlmprep.core.logging_utils import get_logger

logger = get_logger(__name__)

DistanceFn = Callable[[Any, Any], float]

REFERENCE_POLICIES = ("pinned", "sliding")


class SegmenterState(str, Enum):
    AWAITING_FIRST_FRAME = "awaiting_first_frame"
    ACTIVE = "active"
    DONE = "done"


@dataclass(slots=True)
class SceneDecision:
    """单帧判定结果，便于调试与测试断言。"""

    frame: ResolvedFrame
    distance: Optional[float]
    elapsed: float
    boundary: Optional[SceneBoundary] = None
    suppressed: bool = False
    reference_updated: bool = False


class SceneSegmenter:
    """顺序消费 (帧, 特征) 或 (帧, 距离)，逐步产出场景边界。"""

    def __init__(
        self,
        *,
        threshold: float,
        min_scene_seconds: float,
        max_scene_seconds: float,
        distance_fn: Optional[DistanceFn] = None,
        reference_policy: str = "pinned",
    ) -> None:
        if threshold < 0 or min_scene_seconds < 0 or max_scene_seconds <= 0:
            raise ValueError("threshold/min_scene_seconds must be >= 0 and max_scene_seconds > 0")
        if reference_policy not in REFERENCE_POLICIES:
            raise ValueError(f"未知参考帧策略: {reference_policy}")
        self.threshold = threshold
        self.min_scene_seconds = min_scene_seconds
        self.max_scene_seconds = max_scene_seconds
        self.reference_policy = reference_policy
        self._distance_fn = distance_fn
        self.state = SegmenterState.AWAITING_FIRST_FRAME
        self._boundaries: List[SceneBoundary] = []
        self._reference_frame: Optional[ResolvedFrame] = None
        self._reference_feature: Any = None
        self._last_index: Optional[int] = None
        self._scene_start: float = 0.0

    @property
    def boundaries(self) -> Tuple[SceneBoundary, ...]:
        return tuple(self._boundaries)

    @property
    def reference_frame(self) -> Optional[ResolvedFrame]:
        return self._reference_frame

    def step(self, frame: ResolvedFrame, distance: Optional[float]) -> SceneDecision:
        """用调用方算好的、到当前参考帧的距离推进一帧；首帧的距离被忽略。"""

        if self.state is SegmenterState.DONE:
            raise RuntimeError("segmenter already finished")
        if self._last_index is not None and frame.index <= self._last_index:
            raise ValueError(f"frames must arrive in ascending index order: {frame.index} after {self._last_index}")
        self._last_index = frame.index

        if self.state is SegmenterState.AWAITING_FIRST_FRAME:
            self.state = SegmenterState.ACTIVE
            self._scene_start = frame.timestamp
            self._reference_frame = frame
            start = SceneBoundary(frame_index=0, timestamp=0.0, reason="start")
            self._boundaries.append(start)
            return SceneDecision(frame=frame, distance=None, elapsed=0.0, boundary=start, reference_updated=True)

        if distance is None:
            raise ValueError("distance is required after the first frame")
        if distance < 0:
            raise ValueError(f"distance must be non-negative, got {distance}")

        elapsed = frame.timestamp - self._scene_start
        decision = SceneDecision(frame=frame, distance=distance, elapsed=elapsed)
        if elapsed >= self.max_scene_seconds:
            decision.boundary = self._open_scene(frame, "duration_cap")
        elif distance > self.threshold and elapsed >= self.min_scene_seconds:
            decision.boundary = self._open_scene(frame, "distance")
        elif distance > self.threshold:
            decision.suppressed = True
            logger.debug(
                "Suppressed scene change at frame %d (distance %.4f, elapsed %.2fs < %.2fs)",
                frame.index,
                distance,
                elapsed,
                self.min_scene_seconds,
            )
            if self.reference_policy == "sliding":
                self._reference_frame = frame
        decision.reference_updated = self._reference_frame is frame
        return decision

    def push(self, frame: ResolvedFrame, feature: Any) -> SceneDecision:
        """用注入的距离函数计算到参考帧的距离，再推进一帧。"""

        if self.state is SegmenterState.AWAITING_FIRST_FRAME:
            decision = self.step(frame, None)
        else:
            if self._distance_fn is None:
                raise RuntimeError("push() requires a distance_fn; use step() with precomputed distances")
            decision = self.step(frame, float(self._distance_fn(self._reference_feature, feature)))
        if decision.reference_updated:
            self._reference_feature = feature
        return decision

    def finish(self) -> List[SceneBoundary]:
        if self.state is SegmenterState.AWAITING_FIRST_FRAME:
            raise EmptySelectionError("场景切分至少需要一帧")
        self.state = SegmenterState.DONE
        return list(self._boundaries)

    def _open_scene(self, frame: ResolvedFrame, reason: str) -> SceneBoundary:
        boundary = SceneBoundary(frame_index=frame.index, timestamp=frame.timestamp, reason=reason)
        self._boundaries.append(boundary)
        self._reference_frame = frame
        self._scene_start = frame.timestamp
        logger.debug("Scene %d starts at frame %d (%s)", len(self._boundaries), frame.index, reason)
        return boundary


def segment_stream(
    stream: Iterable[Tuple[ResolvedFrame, Any]],
    segmenter: SceneSegmenter,
    *,
    cancel_event: Optional[threading.Event] = None,
) -> List[SceneBoundary]:
    """消费有序的 (帧, 特征) 流；每帧之间检查取消信号，取消时不返回部分结果。"""

    for frame, feature in stream:
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelled(f"场景切分在第 {frame.index} 帧前被取消")
        segmenter.push(frame, feature)
    return segmenter.finish()


def scene_spans(
    boundaries: Sequence[SceneBoundary],
    *,
    last_frame_index: Optional[int] = None,
    end_time: Optional[float] = None,
) -> List[SceneSpan]:
    """相邻边界组成场景区间 [b[i], b[i+1]-1]；最后一段延伸到流末尾。"""

    spans: List[SceneSpan] = []
    for idx, boundary in enumerate(boundaries):
        if idx + 1 < len(boundaries):
            nxt = boundaries[idx + 1]
            end_frame: Optional[int] = nxt.frame_index - 1
            span_end: Optional[float] = nxt.timestamp
        else:
            end_frame = last_frame_index
            span_end = end_time
        spans.append(
            SceneSpan(
                scene_index=idx,
                start_frame=boundary.frame_index,
                end_frame=end_frame,
                start_time=boundary.timestamp,
                end_time=span_end,
            )
        )
    return spans
