"""分词器协议：预处理只依赖模板渲染、解码与编码三个操作。"""

from __future__ import annotations

from typing import Any, Dict, List, Protocol, Sequence

try:  # 延迟导入，未安装 transformers 时仍可使用其余模块
    from transformers import AutoTokenizer  # type: ignore
except ModuleNotFoundError:  # pragma: no cover - 在未安装 transformers 的环境下执行
    AutoTokenizer = None

Message = Dict[str, Any]


class Tokenizer(Protocol):
    """渲染聊天模板并在文本与 token id 之间转换。"""

    def apply_chat_template(self, messages: Sequence[Message]) -> List[int]:
        """渲染聊天模板（含 generation prompt），返回 token id。"""

    def decode(self, token_ids: Sequence[int]) -> str:
        """解码时保留特殊 token，保证拼接标记仍在文本中。"""

    def encode(self, text: str) -> List[int]:
        ...


class HuggingFaceTokenizer:
    """transformers AutoTokenizer 封装。"""

    def __init__(self, model_id: str, **kwargs: Any) -> None:
        if AutoTokenizer is None:
            raise RuntimeError("transformers 未安装，无法加载分词器；请安装 vlmprep[hf]")
        self.model_id = model_id
        self._tokenizer = AutoTokenizer.from_pretrained(model_id, **kwargs)

    def apply_chat_template(self, messages: Sequence[Message]) -> List[int]:
        text = self._tokenizer.apply_chat_template(
            list(messages),
            tokenize=False,
            add_generation_prompt=True,
        )
        return self.encode(text)

    def decode(self, token_ids: Sequence[int]) -> str:
        return self._tokenizer.decode(list(token_ids), skip_special_tokens=False)

    def encode(self, text: str) -> List[int]:
        return list(self._tokenizer.encode(text, add_special_tokens=False))
