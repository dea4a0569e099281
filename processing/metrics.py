# processing/metrics.py
from __future__ import annotations
"""
ECG 間期數值（PR / QT / QRS / ST）
注意：這是佔位實作。每個數值都是在固定範圍內獨立均勻亂數，
完全不看輸入樣本，也沒有任何訊號處理；不可當作臨床量測。
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np

# (下限, 上限)
RANGES: Dict[str, Tuple[float, float]] = {
    "pr_interval_ms": (0.0, 200.0),
    "qt_interval_ms": (0.0, 400.0),
    "qrs_duration_ms": (0.0, 100.0),
    "st_segment_mv": (0.0, 50.0),
}


@dataclass(frozen=True)
class DerivedMetrics:
    pr_interval_ms: float = 0.0
    qt_interval_ms: float = 0.0
    qrs_duration_ms: float = 0.0
    st_segment_mv: float = 0.0


class PlaceholderIntervalEstimator:
    """隨機佔位估計器；rng 可注入固定種子的 numpy Generator 以利測試。"""

    def __init__(self, rng: Optional[np.random.Generator] = None):
        self.rng = rng if rng is not None else np.random.default_rng()

    def estimate(self, ecg_sample: float) -> DerivedMetrics:
        # ecg_sample 故意不使用
        vals = {k: float(self.rng.uniform(lo, hi)) for k, (lo, hi) in RANGES.items()}
        return DerivedMetrics(**vals)
