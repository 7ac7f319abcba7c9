"""媒体阶段内部使用的结构体。"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from vlmprep.core.datamodels import ResolvedFrame


@dataclass(slots=True)
class FrameSample:
    """抽帧结果，包含采样帧号、时间戳以及原始像素（BGR）。"""

    frame_index: int
    timestamp: float
    frame: NDArray[np.uint8]
    video_path: Optional[Path] = None

    @property
    def resolved(self) -> ResolvedFrame:
        return ResolvedFrame(index=self.frame_index, timestamp=self.timestamp)
