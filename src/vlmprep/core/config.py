"""配置加载工具，集中管理仓内/环境参数。"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable, Dict, Literal, Mapping, MutableMapping, Optional, Sequence, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field

CONFIG_ENV_KEY = "VLMPREP_CONFIG_PATH"

DEFAULT_VIDEO_SYSTEM_MESSAGE = (
    "You are a helpful assistant that can understand videos. "
    "Describe what type of video this is and what's happening in it."
)


class ImageBudget(BaseModel):
    """单张图片的像素预算：先按最长边缩放，再按 tile 边长切块。"""

    model_config = ConfigDict(frozen=True)

    max_edge: int = Field(default=2048, gt=0)
    tile_edge: int = Field(default=512, gt=0)
    upscale: bool = False


class VideoBudget(BaseModel):
    """视频帧预算：采样率、最大帧数以及每帧缩放后的边长。"""

    model_config = ConfigDict(frozen=True)

    fps: float = Field(default=1.0, gt=0)
    max_frames: int = Field(default=20, gt=0)
    frame_edge: int = Field(default=512, gt=0)


class TokenConfig(BaseModel):
    """prompt 中使用的占位 token 与拼接标记。"""

    model_config = ConfigDict(frozen=True)

    image_token: str = "<image>"
    fake_token: str = "<fake_token_around_image>"
    global_token: str = "<global-img>"
    video_role_prefix: str = "User: "


class ProcessorConfig(BaseModel):
    """模型侧预处理参数，冻结后按请求复制，不在原对象上就地修改。"""

    model_config = ConfigDict(frozen=True)

    variant: Literal["tiled", "global"] = "tiled"
    image: ImageBudget = Field(default_factory=ImageBudget)
    video: VideoBudget = Field(default_factory=VideoBudget)
    image_seq_len: int = Field(default=64, gt=0)
    image_mean: Tuple[float, float, float] = (0.5, 0.5, 0.5)
    image_std: Tuple[float, float, float] = (0.5, 0.5, 0.5)
    tokens: TokenConfig = Field(default_factory=TokenConfig)
    video_system_message: str = DEFAULT_VIDEO_SYSTEM_MESSAGE
    max_workers: int = Field(default=4, gt=0)

    def budget_for(self, kind: str) -> Union[ImageBudget, VideoBudget]:
        """按媒体类型取像素预算，image/video 两套互不干扰。"""

        if kind == "image":
            return self.image
        if kind == "video":
            return self.video
        raise ValueError(f"未知媒体类型: {kind}")


class SceneConfig(BaseModel):
    """场景切分参数；阈值与时长约束由调用方决定，这里只提供默认值。"""

    sampling_fps: float = Field(default=1.0, gt=0)
    threshold: float = Field(default=0.05, ge=0)
    min_scene_seconds: float = Field(default=2.0, ge=0)
    max_scene_seconds: float = Field(default=15.0, gt=0)
    reference_policy: Literal["pinned", "sliding"] = "pinned"


class EmbeddingConfig(BaseModel):
    """帧特征后端配置，默认使用无需模型的均值颜色。"""

    backend: str = "mean_color"
    model_name: str = "ViT-B-32"
    pretrained: str = "laion400m_e32"
    preset: Optional[str] = None
    device: str = "cpu"
    precision: str = "fp32"


class PipelineConfig(BaseModel):
    """聚合各阶段配置。"""

    processor: ProcessorConfig = Field(default_factory=ProcessorConfig)
    scene: SceneConfig = Field(default_factory=SceneConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    raw: Dict[str, Any] = Field(default_factory=dict, description="原始配置字典，便于调试。")

    def model_post_init(self, __context: Any) -> None:  # type: ignore[override]
        # 保留原始配置便于后续 diff/日志输出
        if not self.raw:
            self.raw = self.to_raw_dict()

    def to_raw_dict(self) -> Dict[str, Any]:
        """导出基础 dict，供日志或远程存储使用。"""

        return {
            "processor": self.processor.model_dump(),
            "scene": self.scene.model_dump(),
            "embedding": self.embedding.model_dump(),
        }


def _default_config_path() -> Path:
    return Path(__file__).resolve().parents[3] / "configs" / "baseline.yaml"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
        if not isinstance(data, dict):
            raise ValueError(f"配置文件 {path} 内容需为字典")
        return data


ENV_OVERRIDE_MAP: Dict[str, Tuple[Sequence[str], Callable[[str], Any]]] = {
    "VLMPREP_SCENE_FPS": (("scene", "sampling_fps"), float),
    "VLMPREP_SCENE_THRESHOLD": (("scene", "threshold"), float),
    "VLMPREP_EMBEDDING_BACKEND": (("embedding", "backend"), str),
    "VLMPREP_TILE_EDGE": (("processor", "image", "tile_edge"), int),
}


def _apply_env_overrides(data: MutableMapping[str, Any], env: Mapping[str, str]) -> None:
    for env_key, (path, caster) in ENV_OVERRIDE_MAP.items():
        if env_key in env:
            _set_nested_value(data, path, caster(env[env_key]))


def _set_nested_value(target: MutableMapping[str, Any], path: Sequence[str], value: Any) -> None:
    cursor: MutableMapping[str, Any] = target
    *parents, last = path
    for key in parents:
        if key not in cursor or not isinstance(cursor[key], MutableMapping):
            cursor[key] = {}
        cursor = cursor[key]  # type: ignore[assignment]
    cursor[last] = value


def load_config(path: str | Path | None = None, *, env: Mapping[str, str] | None = None) -> PipelineConfig:
    """加载配置：优先显式路径，其次环境变量，最后回退默认 baseline。"""

    env_map = os.environ if env is None else env
    config_path = path or env_map.get(CONFIG_ENV_KEY)
    target_path = Path(config_path).expanduser() if config_path else _default_config_path()
    data = _load_yaml(target_path)
    _apply_env_overrides(data, env_map)

    cfg = PipelineConfig.model_validate({**data, "raw": data})
    return cfg
