"""帧选择解析测试：越界过滤、去重排序与时间戳保留。"""

import logging

import pytest

from vlmprep.core import AllFrames, EmptySelectionError, FrameNumbers, InvalidSelectionError, ResolvedFrame, Timestamps
from vlmprep.media import cap_frames, resolve_frames, video_sampling_rate


def test_all_frames_yields_floor_duration_times_rate() -> None:
    frames = resolve_frames(AllFrames(), 10.0, 2.0)

    assert len(frames) == 20
    assert frames[0] == ResolvedFrame(index=0, timestamp=0.0)
    assert frames[-1] == ResolvedFrame(index=19, timestamp=9.5)
    assert len(resolve_frames(AllFrames(), 2.9, 1.0)) == 2


def test_frame_numbers_sorted_and_deduplicated() -> None:
    frames = resolve_frames(FrameNumbers((5, 1, 5)), 10.0, 2.0)

    assert [frame.index for frame in frames] == [1, 5]
    assert [frame.timestamp for frame in frames] == [0.5, 2.5]


def test_out_of_range_frame_numbers_are_dropped_and_logged(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING):
        frames = resolve_frames(FrameNumbers((3, -1, 20, 1000)), 10.0, 2.0)

    assert [frame.index for frame in frames] == [3]
    assert "out-of-range frame numbers" in caplog.text


def test_all_dropped_raises_only_when_frames_required() -> None:
    selection = FrameNumbers((30, -1, 1000))

    assert resolve_frames(selection, 10.0, 2.0) == []
    with pytest.raises(EmptySelectionError):
        resolve_frames(selection, 10.0, 2.0, require_frames=True)


def test_timestamps_keep_requested_time() -> None:
    frames = resolve_frames(Timestamps((0.74, 11.0, -1.0, 3.2)), 10.0, 2.0)

    assert frames == [ResolvedFrame(index=1, timestamp=0.74), ResolvedFrame(index=6, timestamp=3.2)]


def test_timestamps_round_half_up_and_drop_collisions() -> None:
    frames = resolve_frames(Timestamps((1.0, 1.1, 2.5)), 10.0, 1.0)

    assert [(frame.index, frame.timestamp) for frame in frames] == [(1, 1.0), (3, 2.5)]


def test_timestamp_at_exact_duration_is_kept() -> None:
    frames = resolve_frames(Timestamps((10.0,)), 10.0, 1.0)

    assert frames == [ResolvedFrame(index=10, timestamp=10.0)]


@pytest.mark.parametrize("duration, rate", [(10.0, 0.0), (10.0, -1.0), (-1.0, 1.0), (float("nan"), 1.0)])
def test_invalid_duration_or_rate(duration: float, rate: float) -> None:
    with pytest.raises(InvalidSelectionError):
        resolve_frames(AllFrames(), duration, rate)


def test_video_sampling_rate_is_denser_for_short_clips() -> None:
    assert video_sampling_rate(5.0, 1.0) == pytest.approx(5.5)
    assert video_sampling_rate(20.0, 1.0) == 1.0


def test_cap_frames_keeps_first_and_last_in_order() -> None:
    frames = resolve_frames(AllFrames(), 40.0, 1.0)

    capped = cap_frames(frames, 20)

    assert len(capped) == 20
    assert capped[0].index == 0
    assert capped[-1].index == 39
    assert all(a.index < b.index for a, b in zip(capped, capped[1:]))
    assert cap_frames(frames[:3], 20) == frames[:3]
