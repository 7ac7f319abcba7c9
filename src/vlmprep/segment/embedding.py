"""帧特征后端：均值颜色、HSV 直方图与 OpenCLIP，各自提供对称的距离函数。"""

from __future__ import annotations

from typing import Protocol

import cv2
import numpy as np
from numpy.typing import NDArray

try:  # 延迟导入，避免无 GPU 环境报错
    import open_clip  # type: ignore
except ModuleNotFoundError:  # pragma: no cover - 在未安装 open_clip 的环境下执行
    open_clip = None

import torch
import torch.nn.functional as F

try:  # Pillow 可选依赖，仅在使用 OpenCLIP 时需要
    from PIL import Image
except ModuleNotFoundError:  # pragma: no cover
    Image = None

from vlmprep.core.config import EmbeddingConfig

OPEN_CLIP_PRESETS = {
    "cpu-small": ("ViT-B-32", "laion400m_e32"),
    "gpu-large": ("ViT-H-14", "laion2b_s32b_b79k"),
}


class EmbeddingBackend(Protocol):
    """特征接口：embed_frame 生成特征，distance 给出非负、对称的距离。"""

    emb_model_name: str

    def embed_frame(self, frame: NDArray[np.uint8]) -> NDArray[np.float32]:
        """生成单帧特征向量。"""

    def distance(self, a: NDArray[np.float32], b: NDArray[np.float32]) -> float:
        """两帧特征的距离，相同输入返回 0。"""


def cosine_distance(a: NDArray[np.float32], b: NDArray[np.float32]) -> float:
    """1 - 余弦相似度，截断到 [0, 2]；两个零向量视为相同。"""

    a_norm = np.linalg.norm(a)
    b_norm = np.linalg.norm(b)
    if a_norm == 0 and b_norm == 0:
        return 0.0
    if a_norm == 0 or b_norm == 0:
        return 1.0
    similarity = float(np.dot(a, b) / (a_norm * b_norm))
    return min(max(0.0, 1.0 - similarity), 2.0)


class MeanColorEmbedding:
    """极简占位 embedding：使用 RGB 均值，便于本地开发和测试。"""

    emb_model_name = "mean-color-v1"

    def embed_frame(self, frame: NDArray[np.uint8]) -> NDArray[np.float32]:
        mean_rgb = frame.mean(axis=(0, 1))  # type: ignore[arg-type]
        norm = np.linalg.norm(mean_rgb)
        if norm == 0:
            return np.zeros(3, dtype=np.float32)
        return (mean_rgb / norm).astype(np.float32)

    def distance(self, a: NDArray[np.float32], b: NDArray[np.float32]) -> float:
        return cosine_distance(a, b)


class HistogramEmbedding:
    """HSV 颜色直方图，距离为 Bhattacharyya 距离，范围 0-1。"""

    emb_model_name = "hsv-histogram-8x8x8"

    def embed_frame(self, frame: NDArray[np.uint8]) -> NDArray[np.float32]:
        hsv = cv2.cvtColor(frame, cv2.COLOR_BGR2HSV)
        hist = cv2.calcHist([hsv], [0, 1, 2], None, [8, 8, 8], [0, 180, 0, 256, 0, 256])
        cv2.normalize(hist, hist)
        return hist.astype(np.float32).ravel()

    def distance(self, a: NDArray[np.float32], b: NDArray[np.float32]) -> float:
        distance = cv2.compareHist(
            np.ascontiguousarray(a, dtype=np.float32),
            np.ascontiguousarray(b, dtype=np.float32),
            cv2.HISTCMP_BHATTACHARYYA,
        )
        return float(min(max(distance, 0.0), 1.0))


class OpenClipEmbedding:
    """OpenCLIP 封装，支持 CPU 小模型与 GPU 大模型切换。"""

    def __init__(
        self,
        model_name: str,
        pretrained: str,
        device: str = "cpu",
        precision: str = "fp32",
    ) -> None:
        if open_clip is None:
            raise RuntimeError("open-clip-torch 未安装，无法使用 OpenCLIP 模式")
        if Image is None:
            raise RuntimeError("Pillow 未安装，无法使用 OpenCLIP 模式")

        self.device = torch.device(device)
        self.model, _, self.preprocess = open_clip.create_model_and_transforms(
            model_name,
            pretrained=pretrained,
            device=device,
        )
        self.model.eval()
        self.precision = precision
        self.emb_model_name = f"openclip::{model_name}::{pretrained}"

    def embed_frame(self, frame: NDArray[np.uint8]) -> NDArray[np.float32]:
        rgb = frame[..., ::-1]  # BGR -> RGB
        image = Image.fromarray(np.ascontiguousarray(rgb))
        tensor = self.preprocess(image).unsqueeze(0).to(self.device)
        if self.precision.lower() != "fp32" and self.device.type != "cpu":
            tensor = tensor.half()
        with torch.inference_mode():
            feats = self.model.encode_image(tensor)
        feats = F.normalize(feats, dim=-1)
        return feats.squeeze(0).to("cpu", dtype=torch.float32).numpy()

    def distance(self, a: NDArray[np.float32], b: NDArray[np.float32]) -> float:
        return cosine_distance(a, b)


def create_embedder(config: EmbeddingConfig) -> EmbeddingBackend:
    """根据配置创建 embedder，默认回退到均值颜色。"""

    backend = config.backend.lower()
    if backend == "open_clip":
        model_name = config.model_name
        pretrained = config.pretrained
        if config.preset:
            preset_key = config.preset.lower()
            if preset_key not in OPEN_CLIP_PRESETS:
                raise ValueError(f"未知 OpenCLIP 预设: {config.preset}")
            model_name, pretrained = OPEN_CLIP_PRESETS[preset_key]
        return OpenClipEmbedding(
            model_name=model_name,
            pretrained=pretrained,
            device=config.device,
            precision=config.precision,
        )
    if backend == "histogram":
        return HistogramEmbedding()
    if backend == "mean_color":  # 默认路径
        return MeanColorEmbedding()
    raise ValueError(f"未知 embedding backend: {config.backend}")
