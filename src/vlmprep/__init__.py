"""vlmprep：视觉语言模型的输入预处理（帧选择、切块、prompt 组装）与场景切分。"""

__version__ = "0.1.0"
