"""Per-model input processors.

Each variant turns a chat plus at most one image or one video into token ids
and a normalized pixel batch. The variant is chosen from configuration via
``create_processor``; configuration objects are frozen and never adjusted
in place between requests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import threading
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple, Type, Union

import numpy as np
from numpy.typing import NDArray

from vlmprep.core.config import ProcessorConfig
from vlmprep.core.datamodels import AllFrames, FrameSelection, ResolvedFrame
from vlmprep.core.errors import EmptySelectionError, PreprocessError, UnsupportedInputError, UpstreamDecodeError
from vlmprep.core.logging_utils import get_logger
from vlmprep.media.loader import OpenCVVideoSource, VideoSource, extract_frames, iter_frames
from vlmprep.media.pixels import build_pixel_batch, frame_shapes
from vlmprep.media.selection import cap_frames, resolve_frames, video_sampling_rate
from vlmprep.media.tiling import global_tile, resample, tile_image
from vlmprep.media.types import FrameSample

from .assembler import (
    count_prompt_units,
    ensure_unit_count,
    format_timestamp,
    global_image_prompt_text,
    image_prompt_text,
    splice,
    video_prompt_text,
)
from .tokenizer import Message, Tokenizer

logger = get_logger(__name__)

VideoInput = Union[str, Path, VideoSource]


@dataclass(slots=True)
class UserInput:
    """One request: chat messages plus optional media."""

    messages: List[Message]
    images: List[NDArray[np.uint8]] = field(default_factory=list)
    videos: List[VideoInput] = field(default_factory=list)


@dataclass(slots=True)
class ModelInput:
    """Token ids and pixels ready for the model forward pass."""

    prompt: str
    token_ids: List[int]
    pixels: Optional[NDArray[np.float32]] = None
    frame_shapes: Optional[List[Tuple[int, int, int]]] = None
    frames: List[ResolvedFrame] = field(default_factory=list)

    @property
    def attention_mask(self) -> NDArray[np.int64]:
        return np.ones(len(self.token_ids), dtype=np.int64)


class MediaProcessor(Protocol):
    variant: str

    def prepare(
        self,
        user_input: UserInput,
        selection: Optional[FrameSelection] = None,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> ModelInput:
        ...


def with_system_message(messages: Sequence[Message], text: str) -> List[Message]:
    """Insert a default system message unless the chat already has one."""

    if any(message.get("role") == "system" for message in messages):
        return list(messages)
    system: Message = {"role": "system", "content": [{"type": "text", "text": text}]}
    return [system, *messages]


class TiledProcessor:
    """Images are split into a tile grid plus a global tile; video frames become global units."""

    variant = "tiled"

    def __init__(
        self,
        config: ProcessorConfig,
        tokenizer: Tokenizer,
        *,
        source_factory: Callable[[Path], VideoSource] = OpenCVVideoSource,
    ) -> None:
        self.config = config
        self.tokenizer = tokenizer
        self._source_factory = source_factory

    def prepare(
        self,
        user_input: UserInput,
        selection: Optional[FrameSelection] = None,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> ModelInput:
        images, videos = user_input.images, user_input.videos
        if not images and not videos:
            token_ids = list(self.tokenizer.apply_chat_template(user_input.messages))
            return ModelInput(prompt=self.tokenizer.decode(token_ids), token_ids=token_ids)
        if images and videos:
            raise UnsupportedInputError("一次请求只能包含一种媒体类型")
        if images:
            if len(images) != 1:
                raise UnsupportedInputError("一次请求只支持一张图片")
            return self._prepare_image(user_input.messages, images[0])
        if len(videos) != 1:
            raise UnsupportedInputError("一次请求只支持一个视频")
        return self._prepare_video(user_input.messages, videos[0], selection or AllFrames(), cancel_event)

    # -- image -------------------------------------------------------------

    def image_units(self, image: NDArray[np.uint8]) -> Tuple[List[NDArray[np.uint8]], str]:
        """Pixel buffers and the expanded prompt block for one image."""

        budget = self.config.image
        tokens = self.config.tokens
        grid = tile_image(image, budget.max_edge, budget.tile_edge, upscale=budget.upscale)
        logger.debug("Tiled image %s into %dx%d grid", image.shape, grid.rows, grid.cols)
        block = image_prompt_text(
            grid.rows,
            grid.cols,
            self.config.image_seq_len,
            tokens.fake_token,
            tokens.image_token,
            tokens.global_token,
        )
        return grid.pixel_buffers(), block

    def _prepare_image(self, messages: Sequence[Message], image: NDArray[np.uint8]) -> ModelInput:
        tokens = self.config.tokens
        decoded = self.tokenizer.decode(self.tokenizer.apply_chat_template(messages))
        buffers, block = self.image_units(image)
        ensure_unit_count(count_prompt_units(block, tokens.image_token, self.config.image_seq_len), len(buffers))
        pixels = build_pixel_batch(buffers, self.config.image_mean, self.config.image_std)
        prompt = splice(decoded, tokens.image_token, block)
        return ModelInput(prompt=prompt, token_ids=self.tokenizer.encode(prompt), pixels=pixels)

    # -- video -------------------------------------------------------------

    def select_frames(self, selection: FrameSelection, duration: float) -> List[ResolvedFrame]:
        budget = self.config.video
        if isinstance(selection, AllFrames):
            rate = video_sampling_rate(duration, budget.fps)
            frames = resolve_frames(selection, duration, rate, require_frames=True)
            return cap_frames(frames, budget.max_frames)
        return resolve_frames(selection, duration, budget.fps, require_frames=True)

    def _prepare_video(
        self,
        messages: Sequence[Message],
        video: VideoInput,
        selection: FrameSelection,
        cancel_event: Optional[threading.Event],
    ) -> ModelInput:
        tokens = self.config.tokens
        budget = self.config.video
        chat = with_system_message(messages, self.config.video_system_message)
        decoded = self.tokenizer.decode(self.tokenizer.apply_chat_template(chat))

        samples, duration = self._load_video(video, selection, cancel_event)
        if not samples:
            raise EmptySelectionError("没有成功解码的视频帧")

        buffers = [resample(sample.frame, budget.frame_edge, budget.frame_edge) for sample in samples]
        block = video_prompt_text(
            len(samples),
            [format_timestamp(sample.timestamp) for sample in samples],
            format_timestamp(duration),
            self.config.image_seq_len,
            tokens.fake_token,
            tokens.image_token,
            tokens.global_token,
        )
        ensure_unit_count(count_prompt_units(block, tokens.image_token, self.config.image_seq_len), len(buffers))
        pixels = build_pixel_batch(buffers, self.config.image_mean, self.config.image_std)
        prompt = splice(decoded, tokens.video_role_prefix, block, keep_marker=True)
        return ModelInput(
            prompt=prompt,
            token_ids=self.tokenizer.encode(prompt),
            pixels=pixels,
            frame_shapes=frame_shapes(len(samples), budget.frame_edge),
            frames=[sample.resolved for sample in samples],
        )

    def _load_video(
        self,
        video: VideoInput,
        selection: FrameSelection,
        cancel_event: Optional[threading.Event],
    ) -> Tuple[List[FrameSample], float]:
        owned = isinstance(video, (str, Path))
        source: VideoSource = self._source_factory(Path(video)) if owned else video  # type: ignore[arg-type]
        try:
            try:
                duration = float(source.duration())
            except PreprocessError:
                raise
            except Exception as exc:
                raise UpstreamDecodeError(f"无法读取视频时长: {exc}") from exc
            frames = self.select_frames(selection, duration)
            logger.info("Processing %d video frames (%s)", len(frames), type(selection).__name__)
            if owned and isinstance(selection, AllFrames):
                samples = list(iter_frames(Path(video), frames, cancel_event=cancel_event))  # type: ignore[arg-type]
            else:
                samples = extract_frames(
                    source,
                    frames,
                    max_workers=self.config.max_workers,
                    cancel_event=cancel_event,
                )
        finally:
            if owned:
                source.close()
        return samples, duration


class GlobalImageProcessor(TiledProcessor):
    """Images are resized to one global unit without a tile grid."""

    variant = "global"

    def image_units(self, image: NDArray[np.uint8]) -> Tuple[List[NDArray[np.uint8]], str]:
        tokens = self.config.tokens
        summary = global_tile(image, self.config.image.tile_edge)
        block = global_image_prompt_text(
            self.config.image_seq_len,
            tokens.fake_token,
            tokens.image_token,
            tokens.global_token,
        )
        return [summary.pixels], block


PROCESSOR_REGISTRY: Dict[str, Type[TiledProcessor]] = {
    TiledProcessor.variant: TiledProcessor,
    GlobalImageProcessor.variant: GlobalImageProcessor,
}


def create_processor(config: ProcessorConfig, tokenizer: Tokenizer, **kwargs: Any) -> MediaProcessor:
    """按配置中的 variant 选择处理器实现。"""

    try:
        processor_cls = PROCESSOR_REGISTRY[config.variant]
    except KeyError as exc:
        raise ValueError(f"未知处理器类型: {config.variant}") from exc
    return processor_cls(config, tokenizer, **kwargs)
