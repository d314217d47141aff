"""进度相关的数据模型与换算工具。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional


@dataclass(frozen=True, slots=True)
class UploadProgress:
    """单次传输的字节级进度。"""

    loaded: int
    total: int

    @property
    def percentage(self) -> float:
        if self.total <= 0:
            return 100.0
        return min(100.0, self.loaded * 100.0 / self.total)


@dataclass(frozen=True, slots=True)
class ProgressBand:
    """流水线某一阶段在总进度中占据的区间。"""

    start: float
    end: float

    def scale(self, percentage: float) -> float:
        """把阶段内 0~100 的进度映射到该区间。"""

        clamped = max(0.0, min(percentage, 100.0))
        return self.start + (self.end - self.start) * clamped / 100.0


RASTER_BAND = ProgressBand(0.0, 50.0)
DRAWABLE_BAND = ProgressBand(50.0, 75.0)
VECTOR_BAND = ProgressBand(75.0, 100.0)
REGISTRATION_PIN = 80.0


class MonotonicProgress:
    """向回调转发进度，只允许非递减的值。"""

    def __init__(self, callback: Optional[Callable[[float], None]]) -> None:
        self._callback = callback
        self.value = 0.0

    def report(self, value: float) -> None:
        value = max(0.0, min(value, 100.0))
        if value < self.value:
            return
        self.value = value
        if self._callback:
            self._callback(value)


@dataclass(frozen=True, slots=True)
class BatchRunState:
    """批处理过程中的进度信息。"""

    is_running: bool = False
    overall_percentage: int = 0
    current_index: int = 0
    total: int = 0
    success_count: int = 0
    failure_count: int = 0
    message: Optional[str] = None


def overall_percentage(completed: int, current_fraction: float, total: int) -> int:
    """整批进度：((已完成数 + 当前项进度) / 总数) * 100，取整。"""

    if total <= 0:
        return 0
    fraction = max(0.0, min(current_fraction, 1.0))
    return round((completed + fraction) / total * 100)
