"""场景切分阶段内部使用的结构体。"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from vlmprep.core.datamodels import ResolvedFrame
from vlmprep.media.types import FrameSample


@dataclass(slots=True)
class EmbeddedSample:
    """采样帧加上特征向量，便于后续场景切分直接消费。"""

    sample: FrameSample
    embedding: NDArray[np.float32]

    @property
    def timestamp(self) -> float:
        return self.sample.timestamp

    @property
    def frame(self) -> NDArray[np.uint8]:
        return self.sample.frame

    @property
    def resolved(self) -> ResolvedFrame:
        return self.sample.resolved
