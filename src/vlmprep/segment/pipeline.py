"""封装从视频到场景边界的流程：解析帧 -> 抽帧 -> 特征 -> 状态机切分。"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import threading
import time
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from vlmprep.core import PipelineConfig
from vlmprep.core.datamodels import AllFrames, FrameSelection, ResolvedFrame, SceneBoundary, SceneSpan
from vlmprep.core.errors import OperationCancelled, PreprocessError, UpstreamDecodeError
from vlmprep.core.logging_utils import get_logger
from vlmprep.media.loader import OpenCVVideoSource, extract_frames, iter_frames, probe_video
from vlmprep.media.selection import resolve_frames
from vlmprep.media.types import FrameSample

from .embedding import EmbeddingBackend, create_embedder
from .scene_detector import SceneSegmenter, scene_spans, segment_stream
from .types import EmbeddedSample

logger = get_logger(__name__)


@dataclass(slots=True)
class SceneResult:
    """单个视频的场景切分结果，便于后续统计与序列化。"""

    video_id: str
    boundaries: List[SceneBoundary]
    spans: List[SceneSpan]
    frame_count: int
    threshold: float
    emb_model: str
    processing_seconds: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "video_id": self.video_id,
            "threshold": self.threshold,
            "emb_model": self.emb_model,
            "frame_count": self.frame_count,
            "processing_seconds": self.processing_seconds,
            "boundaries": [boundary.to_dict() for boundary in self.boundaries],
            "spans": [span.to_dict() for span in self.spans],
        }


@dataclass(slots=True)
class DistanceReport:
    """每个采样帧到首帧的特征距离及统计量。"""

    frames: List[ResolvedFrame]
    distances: List[float] = field(default_factory=list)

    @property
    def min_distance(self) -> float:
        return min(self.distances) if self.distances else 0.0

    @property
    def max_distance(self) -> float:
        return max(self.distances) if self.distances else 0.0

    @property
    def mean_distance(self) -> float:
        return float(np.mean(self.distances)) if self.distances else 0.0


def plan_frames(video_path: str | Path, selection: FrameSelection, sampling_fps: float) -> List[ResolvedFrame]:
    """按场景配置的采样率解析帧，至少需要一帧。"""

    duration, _, _ = probe_video(video_path)
    return resolve_frames(selection, duration, sampling_fps, require_frames=True)


def iter_embedded(
    video_path: str | Path,
    frames: Sequence[ResolvedFrame],
    selection: FrameSelection,
    embedder: EmbeddingBackend,
    *,
    max_workers: int = 4,
    cancel_event: Optional[threading.Event] = None,
) -> Iterator[EmbeddedSample]:
    """全部帧走顺序解码；指定帧走并行随机访问，输出均按帧号升序。"""

    samples: Iterator[FrameSample]
    if isinstance(selection, AllFrames):
        samples = iter_frames(video_path, frames, cancel_event=cancel_event)
    else:
        with OpenCVVideoSource(video_path) as source:
            extracted = extract_frames(source, frames, max_workers=max_workers, cancel_event=cancel_event)
        samples = iter(extracted)
    for sample in samples:
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelled(f"处理在第 {sample.frame_index} 帧前被取消")
        try:
            embedding = embedder.embed_frame(sample.frame)
        except PreprocessError:
            raise
        except Exception as exc:
            raise UpstreamDecodeError(f"第 {sample.frame_index} 帧特征提取失败: {exc}") from exc
        yield EmbeddedSample(sample=sample, embedding=embedding)


def detect_scenes(
    video_path: str | Path,
    config: PipelineConfig,
    *,
    video_id: Optional[str] = None,
    selection: Optional[FrameSelection] = None,
    embedder: EmbeddingBackend | None = None,
    cancel_event: Optional[threading.Event] = None,
    progress_callback: Callable[[float], None] | None = None,
) -> SceneResult:
    """主入口：读取视频 -> 采样 -> 特征 -> 场景切分。取消时抛 OperationCancelled。"""

    scene_cfg = config.scene
    selection = selection or AllFrames()
    embedder = embedder or create_embedder(config.embedding)
    started = time.perf_counter()

    frames = plan_frames(video_path, selection, scene_cfg.sampling_fps)
    logger.info(
        "Detecting scenes on %d frames, threshold=%.3f, scene length %.1f-%.1fs",
        len(frames),
        scene_cfg.threshold,
        scene_cfg.min_scene_seconds,
        scene_cfg.max_scene_seconds,
    )
    segmenter = SceneSegmenter(
        threshold=scene_cfg.threshold,
        min_scene_seconds=scene_cfg.min_scene_seconds,
        max_scene_seconds=scene_cfg.max_scene_seconds,
        distance_fn=embedder.distance,
        reference_policy=scene_cfg.reference_policy,
    )

    total = len(frames)
    step = max(total // 100, 1)
    processed = 0
    last: Optional[ResolvedFrame] = None

    def _features() -> Iterator[Tuple[ResolvedFrame, Any]]:
        nonlocal processed, last
        for item in iter_embedded(
            video_path,
            frames,
            selection,
            embedder,
            max_workers=config.processor.max_workers,
            cancel_event=cancel_event,
        ):
            processed += 1
            last = item.resolved
            if progress_callback is not None and (processed % step == 0 or processed == total):
                progress_callback(min(processed / total, 1.0))
            yield item.resolved, item.embedding

    boundaries = segment_stream(_features(), segmenter, cancel_event=cancel_event)
    spans = scene_spans(
        boundaries,
        last_frame_index=last.index if last else None,
        end_time=last.timestamp if last else None,
    )
    elapsed = time.perf_counter() - started
    logger.info("Detected %d scenes in %.2fs", len(boundaries), elapsed)
    return SceneResult(
        video_id=video_id or Path(video_path).stem,
        boundaries=boundaries,
        spans=spans,
        frame_count=processed,
        threshold=scene_cfg.threshold,
        emb_model=embedder.emb_model_name,
        processing_seconds=elapsed,
    )


def frame_distances(
    video_path: str | Path,
    config: PipelineConfig,
    *,
    selection: Optional[FrameSelection] = None,
    embedder: EmbeddingBackend | None = None,
    cancel_event: Optional[threading.Event] = None,
) -> DistanceReport:
    """计算每个采样帧到首帧的距离，用于挑选阈值。"""

    selection = selection or AllFrames()
    embedder = embedder or create_embedder(config.embedding)
    frames = plan_frames(video_path, selection, config.scene.sampling_fps)

    report = DistanceReport(frames=[])
    reference = None
    for item in iter_embedded(
        video_path,
        frames,
        selection,
        embedder,
        max_workers=config.processor.max_workers,
        cancel_event=cancel_event,
    ):
        if reference is None:
            reference = item.embedding
        report.frames.append(item.resolved)
        report.distances.append(float(embedder.distance(reference, item.embedding)))
    return report


def format_scene_report(result: SceneResult) -> str:
    """生成可读的场景报告：边界列表与每个场景的帧数。"""

    lines = [
        "Scene Change Detection Results:",
        f"Threshold: {result.threshold:.2f}",
        f"Total scenes detected: {len(result.boundaries)}",
        f"Processing time: {result.processing_seconds:.2f} seconds",
        "",
        "Scene boundaries:",
    ]
    for span in result.spans:
        lines.append(f"Scene {span.scene_index + 1}: starts at frame {span.start_frame} ({span.start_time:.2f}s, {_reason(result, span)})")
    if len(result.spans) > 1:
        lines.append("")
        lines.append("Scene durations (in frames):")
        for span in result.spans:
            if span.end_frame is None or span.scene_index == len(result.spans) - 1:
                lines.append(f"Scene {span.scene_index + 1}: from frame {span.start_frame} to end")
            else:
                lines.append(
                    f"Scene {span.scene_index + 1}: {span.frame_count} frames "
                    f"(frames {span.start_frame}-{span.end_frame})"
                )
    return "\n".join(lines)


def format_distance_report(report: DistanceReport) -> str:
    lines = ["Distances to reference frame (Frame 1):"]
    for position, (frame, distance) in enumerate(zip(report.frames, report.distances), start=1):
        lines.append(f"Frame {position} (index {frame.index}, {frame.timestamp:.2f}s): {distance:.4f}")
    lines.append("")
    lines.append(f"Min distance: {report.min_distance:.4f}")
    lines.append(f"Max distance: {report.max_distance:.4f}")
    lines.append(f"Average distance: {report.mean_distance:.4f}")
    lines.append(f"Total frames: {len(report.distances)}")
    return "\n".join(lines)


def _reason(result: SceneResult, span: SceneSpan) -> str:
    return result.boundaries[span.scene_index].reason
