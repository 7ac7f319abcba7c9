"""场景切分模块，聚合帧特征、状态机与端到端流程。"""

from .embedding import EmbeddingBackend, HistogramEmbedding, MeanColorEmbedding, cosine_distance, create_embedder
from .pipeline import (
    DistanceReport,
    SceneResult,
    detect_scenes,
    format_distance_report,
    format_scene_report,
    frame_distances,
)
from .scene_detector import SceneDecision, SceneSegmenter, SegmenterState, scene_spans, segment_stream
from .types import EmbeddedSample

__all__ = [
    "EmbeddingBackend",
    "HistogramEmbedding",
    "MeanColorEmbedding",
    "cosine_distance",
    "create_embedder",
    "DistanceReport",
    "SceneResult",
    "detect_scenes",
    "format_distance_report",
    "format_scene_report",
    "frame_distances",
    "SceneDecision",
    "SceneSegmenter",
    "SegmenterState",
    "scene_spans",
    "segment_stream",
    "EmbeddedSample",
]
