"""数据模型测试：帧选择解析与序列化。"""

import pytest

from vlmprep.core import (
    AllFrames,
    EmptySelectionError,
    FrameNumbers,
    InvalidSelectionError,
    PreprocessError,
    SceneBoundary,
    SceneSpan,
    Timestamps,
    parse_frame_selection,
)
from vlmprep.core.errors import OperationCancelled, UpstreamDecodeError, VideoOpenError


def test_parse_frame_selection_variants() -> None:
    assert parse_frame_selection(None) == AllFrames()
    assert parse_frame_selection("all") == AllFrames()
    assert parse_frame_selection("frames:20, 0,10,10") == FrameNumbers((0, 10, 20))
    assert parse_frame_selection("times:2,0.5") == Timestamps((0.5, 2.0))


@pytest.mark.parametrize("text", ["frames", "frames:a,b", "seconds:1,2"])
def test_parse_frame_selection_rejects_garbage(text: str) -> None:
    with pytest.raises(InvalidSelectionError):
        parse_frame_selection(text)


def test_selection_describe_round_trips_through_parser() -> None:
    selection = Timestamps((3.0, 1.5))

    assert selection.describe() == "times:1.5,3"
    assert parse_frame_selection(selection.describe()) == selection


def test_scene_boundary_dict_round_trip() -> None:
    boundary = SceneBoundary(frame_index=12, timestamp=12.0, reason="distance")

    assert SceneBoundary.from_dict(boundary.to_dict()) == boundary
    assert SceneBoundary.from_dict({"frame_index": 0, "timestamp": 0}).reason == "start"


def test_scene_span_frame_count() -> None:
    closed = SceneSpan(scene_index=0, start_frame=0, end_frame=9, start_time=0.0, end_time=10.0)
    open_span = SceneSpan(scene_index=1, start_frame=10, end_frame=None, start_time=10.0, end_time=None)

    assert closed.frame_count == 10
    assert closed.to_dict()["frame_count"] == 10
    assert open_span.frame_count is None


def test_error_taxonomy_flags() -> None:
    assert issubclass(EmptySelectionError, InvalidSelectionError)
    assert issubclass(InvalidSelectionError, ValueError)
    assert not EmptySelectionError("x").retryable
    assert OperationCancelled("x").retryable
    assert issubclass(VideoOpenError, UpstreamDecodeError)
    assert isinstance(VideoOpenError("x"), PreprocessError)
