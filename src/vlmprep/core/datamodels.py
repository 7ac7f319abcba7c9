"""核心数据结构定义，覆盖帧选择、已解析帧与场景边界等最基本实体。"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, Optional, Tuple, Union

from .errors import InvalidSelectionError


@dataclass(frozen=True, slots=True)
class AllFrames:
    """处理视频的全部采样帧（默认行为）。"""

    def describe(self) -> str:
        return "all"


@dataclass(frozen=True, slots=True)
class FrameNumbers:
    """按帧号（0 起始）选择，构造时去重并升序。"""

    numbers: Tuple[int, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "numbers", tuple(sorted({int(n) for n in self.numbers})))

    def describe(self) -> str:
        return "frames:" + ",".join(str(n) for n in self.numbers)


@dataclass(frozen=True, slots=True)
class Timestamps:
    """按时间戳（秒）选择，构造时去重并升序。"""

    seconds: Tuple[float, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "seconds", tuple(sorted({float(t) for t in self.seconds})))

    def describe(self) -> str:
        return "times:" + ",".join(f"{t:g}" for t in self.seconds)


FrameSelection = Union[AllFrames, FrameNumbers, Timestamps]


def parse_frame_selection(text: Optional[str]) -> FrameSelection:
    """解析 CLI 字符串：`all`、`frames:0,10,20`、`times:0.5,2`。"""

    if text is None or not text.strip() or text.strip().lower() == "all":
        return AllFrames()
    kind, sep, values = text.partition(":")
    if not sep:
        raise InvalidSelectionError(f"无法解析帧选择: {text!r}")
    items = _split_values(values)
    try:
        if kind.strip().lower() == "frames":
            return FrameNumbers(tuple(int(item) for item in items))
        if kind.strip().lower() == "times":
            return Timestamps(tuple(float(item) for item in items))
    except ValueError as exc:
        raise InvalidSelectionError(f"帧选择中包含非法数值: {text!r}") from exc
    raise InvalidSelectionError(f"未知帧选择类型: {kind!r}")


def _split_values(values: str) -> Iterable[str]:
    return [item.strip() for item in values.split(",") if item.strip()]


@dataclass(frozen=True, slots=True)
class ResolvedFrame:
    """解析后的具体帧：用于抽帧的帧号，以及对外报告的时间戳。"""

    index: int
    timestamp: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class SceneBoundary:
    """场景起点；reason 记录触发原因：start / duration_cap / distance。"""

    frame_index: int
    timestamp: float
    reason: str = "start"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SceneBoundary":
        return cls(
            frame_index=int(data["frame_index"]),
            timestamp=float(data["timestamp"]),
            reason=str(data.get("reason", "start")),
        )


@dataclass(frozen=True, slots=True)
class SceneSpan:
    """相邻边界之间的场景区间；end_frame 为闭区间，最后一段未知时为 None。"""

    scene_index: int
    start_frame: int
    end_frame: Optional[int]
    start_time: float
    end_time: Optional[float]

    @property
    def frame_count(self) -> Optional[int]:
        if self.end_frame is None:
            return None
        return self.end_frame - self.start_frame + 1

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["frame_count"] = self.frame_count
        return payload
