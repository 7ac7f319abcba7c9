"""场景切分状态机测试：最短/最长时长约束、参考帧策略与取消。"""

import threading
from typing import List, Optional, Sequence

import numpy as np
import pytest

from vlmprep.core import EmptySelectionError, OperationCancelled, ResolvedFrame, SceneBoundary
from vlmprep.segment import SceneSegmenter, SegmenterState, scene_spans, segment_stream


def _frame(index: int, spacing: float = 1.0) -> ResolvedFrame:
    return ResolvedFrame(index=index, timestamp=index * spacing)


def _abs_distance(a: np.ndarray, b: np.ndarray) -> float:
    return float(abs(a[0] - b[0]))


def _run(
    distances: Sequence[Optional[float]],
    *,
    spacing: float = 1.0,
    threshold: float = 0.5,
    min_scene_seconds: float = 2.0,
    max_scene_seconds: float = 15.0,
) -> List[SceneBoundary]:
    segmenter = SceneSegmenter(
        threshold=threshold,
        min_scene_seconds=min_scene_seconds,
        max_scene_seconds=max_scene_seconds,
    )
    for idx, distance in enumerate(distances):
        segmenter.step(_frame(idx, spacing), distance)
    return segmenter.finish()


def test_short_crossing_is_suppressed() -> None:
    segmenter = SceneSegmenter(threshold=0.5, min_scene_seconds=2.0, max_scene_seconds=15.0)
    decisions = [
        segmenter.step(_frame(idx, 0.5), distance)
        for idx, distance in enumerate([None, 0.1, 0.2, 0.6, 0.1])
    ]

    assert segmenter.finish() == [SceneBoundary(0, 0.0, "start")]
    assert decisions[3].suppressed
    assert decisions[3].elapsed == pytest.approx(1.5)
    assert not decisions[3].reference_updated
    assert decisions[4].boundary is None
    assert segmenter.reference_frame == _frame(0, 0.5)


def test_first_boundary_is_always_stream_start() -> None:
    segmenter = SceneSegmenter(threshold=0.5, min_scene_seconds=2.0, max_scene_seconds=15.0)

    decision = segmenter.step(ResolvedFrame(index=5, timestamp=2.5), None)

    assert decision.boundary == SceneBoundary(0, 0.0, "start")
    assert segmenter.state is SegmenterState.ACTIVE
    assert segmenter.finish()[0] == SceneBoundary(0, 0.0, "start")


def test_crossing_after_min_duration_opens_scene() -> None:
    boundaries = _run([None, 0.1, 0.9, 0.1])

    assert boundaries == [SceneBoundary(0, 0.0, "start"), SceneBoundary(2, 2.0, "distance")]


def test_distance_equal_to_threshold_is_not_a_change() -> None:
    assert len(_run([None, 0.0, 0.5, 0.5])) == 1


def test_max_duration_forces_boundaries() -> None:
    boundaries = _run([None] + [0.0] * 7, max_scene_seconds=3.0)

    assert [(b.frame_index, b.reason) for b in boundaries] == [(0, "start"), (3, "duration_cap"), (6, "duration_cap")]


def test_duration_cap_takes_priority_over_distance() -> None:
    boundaries = _run([None, 0.0, 0.0, 0.9], max_scene_seconds=3.0)

    assert boundaries[-1] == SceneBoundary(3, 3.0, "duration_cap")


@pytest.mark.parametrize(
    "policy, expected",
    [
        ("pinned", [(0, "start"), (2, "distance")]),
        ("sliding", [(0, "start")]),
    ],
)
def test_reference_policy_after_suppressed_candidate(policy: str, expected: list) -> None:
    segmenter = SceneSegmenter(
        threshold=0.5,
        min_scene_seconds=2.0,
        max_scene_seconds=15.0,
        distance_fn=_abs_distance,
        reference_policy=policy,
    )
    features = [np.array([0.0]), np.array([1.0]), np.array([1.0])]

    decisions = [segmenter.push(_frame(idx), feature) for idx, feature in enumerate(features)]

    assert decisions[1].suppressed
    assert decisions[1].reference_updated is (policy == "sliding")
    # 第三帧的距离总是相对当前参考帧计算
    assert decisions[2].distance == (1.0 if policy == "pinned" else 0.0)
    assert [(b.frame_index, b.reason) for b in segmenter.finish()] == expected


def test_push_requires_distance_fn() -> None:
    segmenter = SceneSegmenter(threshold=0.5, min_scene_seconds=2.0, max_scene_seconds=15.0)
    segmenter.push(_frame(0), np.array([0.0]))

    with pytest.raises(RuntimeError):
        segmenter.push(_frame(1), np.array([1.0]))


def test_invalid_inputs() -> None:
    segmenter = SceneSegmenter(threshold=0.5, min_scene_seconds=2.0, max_scene_seconds=15.0)
    segmenter.step(_frame(3), None)

    with pytest.raises(ValueError):
        segmenter.step(_frame(2), 0.1)
    with pytest.raises(ValueError):
        segmenter.step(_frame(4), None)
    with pytest.raises(ValueError):
        segmenter.step(_frame(5), -0.1)

    segmenter.finish()
    with pytest.raises(RuntimeError):
        segmenter.step(_frame(6), 0.1)

    with pytest.raises(ValueError):
        SceneSegmenter(threshold=0.5, min_scene_seconds=2.0, max_scene_seconds=15.0, reference_policy="drift")


def test_empty_stream() -> None:
    segmenter = SceneSegmenter(threshold=0.5, min_scene_seconds=2.0, max_scene_seconds=15.0)

    with pytest.raises(EmptySelectionError):
        segment_stream([], segmenter)


def test_segment_stream_and_spans() -> None:
    segmenter = SceneSegmenter(
        threshold=0.5,
        min_scene_seconds=2.0,
        max_scene_seconds=15.0,
        distance_fn=_abs_distance,
    )
    stream = [(_frame(idx), np.array([0.0 if idx < 4 else 1.0])) for idx in range(10)]

    boundaries = segment_stream(stream, segmenter)
    spans = scene_spans(boundaries, last_frame_index=9, end_time=9.0)

    assert [b.frame_index for b in boundaries] == [0, 4]
    assert [(s.start_frame, s.end_frame, s.frame_count) for s in spans] == [(0, 3, 4), (4, 9, 6)]
    assert spans[0].end_time == 4.0
    assert scene_spans(boundaries)[-1].end_frame is None


def test_segment_stream_cancelled() -> None:
    cancel = threading.Event()
    segmenter = SceneSegmenter(
        threshold=0.5,
        min_scene_seconds=2.0,
        max_scene_seconds=15.0,
        distance_fn=_abs_distance,
    )

    def stream():
        for idx in range(10):
            if idx == 3:
                cancel.set()
            yield _frame(idx), np.array([0.0])

    with pytest.raises(OperationCancelled):
        segment_stream(stream(), segmenter, cancel_event=cancel)
    assert segmenter.state is SegmenterState.ACTIVE


def test_first_scene_duration_counts_from_first_sampled_frame() -> None:
    segmenter = SceneSegmenter(threshold=0.5, min_scene_seconds=2.0, max_scene_seconds=15.0)

    segmenter.step(ResolvedFrame(index=40, timestamp=20.0), None)
    early = segmenter.step(ResolvedFrame(index=42, timestamp=21.0), 0.0)
    short = segmenter.step(ResolvedFrame(index=43, timestamp=21.5), 0.9)
    capped = segmenter.step(ResolvedFrame(index=70, timestamp=35.0), 0.0)

    assert early.boundary is None
    assert early.elapsed == pytest.approx(1.0)
    assert short.suppressed
    assert capped.boundary == SceneBoundary(70, 35.0, "duration_cap")
    assert segmenter.finish()[0] == SceneBoundary(0, 0.0, "start")
