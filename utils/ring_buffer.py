# utils/ring_buffer.py
"""
Fixed-capacity ECG window for the live chart
- Starts as N zeros, length is always N
- push() drops the oldest sample and appends the newest (FIFO, O(1))
- to_numpy() hands the window to pyqtgraph
"""
from __future__ import annotations

from collections import deque
from typing import Deque, List

import numpy as np

DEFAULT_CAPACITY = 100


class EcgBuffer:
    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        capacity = int(capacity)
        if capacity < 1:
            raise ValueError(f"capacity 必須 >= 1，目前為 {capacity}")
        self.capacity = capacity
        self._buf: Deque[float] = deque([0.0] * capacity, maxlen=capacity)

    def push(self, sample: float) -> "EcgBuffer":
        # deque 滿了會自動丟掉最左邊（最舊）的值
        self._buf.append(float(sample))
        return self

    @property
    def last(self) -> float:
        return self._buf[-1]

    def values(self) -> List[float]:
        return list(self._buf)

    def to_numpy(self) -> np.ndarray:
        return np.fromiter(self._buf, dtype=float, count=self.capacity)

    def __len__(self) -> int:
        return len(self._buf)

    def __repr__(self) -> str:
        return f"EcgBuffer(capacity={self.capacity}, last={self.last:.3f})"
