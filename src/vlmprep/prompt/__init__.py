"""Prompt 组装模块：占位 token 展开、模板拼接与按模型划分的处理器。"""

from .assembler import (
    count_prompt_units,
    ensure_unit_count,
    format_timestamp,
    global_image_prompt_text,
    image_prompt_text,
    splice,
    video_prompt_text,
)
from .processor import (
    GlobalImageProcessor,
    MediaProcessor,
    ModelInput,
    TiledProcessor,
    UserInput,
    create_processor,
    with_system_message,
)
from .tokenizer import HuggingFaceTokenizer, Tokenizer

__all__ = [
    "count_prompt_units",
    "ensure_unit_count",
    "format_timestamp",
    "global_image_prompt_text",
    "image_prompt_text",
    "splice",
    "video_prompt_text",
    "GlobalImageProcessor",
    "MediaProcessor",
    "ModelInput",
    "TiledProcessor",
    "UserInput",
    "create_processor",
    "with_system_message",
    "HuggingFaceTokenizer",
    "Tokenizer",
]
