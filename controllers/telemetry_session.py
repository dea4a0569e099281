# controllers/telemetry_session.py
from __future__ import annotations
"""
TelemetrySession：一個視窗的即時狀態（不依賴 Qt，方便單元測試）
  - 心率 / SpO2 / ECG 視窗 / 間期數值 / 連線狀態 / 最後錯誤
  - 所有事件都在 GUI 執行緒依序呼叫（由 controller 的 DataBridge 轉送）
  - teardown() 之後的任何事件一律忽略
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple

from processing.decoder import MalformedPayload, TelemetrySample, decode_payload
from processing.metrics import DerivedMetrics, PlaceholderIntervalEstimator
from telemetry_helpers import ConnectionState
from utils.ring_buffer import DEFAULT_CAPACITY, EcgBuffer

logger = logging.getLogger("TelemetrySession")


@dataclass(frozen=True)
class Snapshot:
    heart_rate: int
    spo2: float
    metrics: DerivedMetrics
    status: ConnectionState
    error: str
    ecg: Tuple[float, ...]
    taken_at: datetime = field(default_factory=datetime.now)


class TelemetrySession:
    def __init__(self, capacity: int = DEFAULT_CAPACITY,
                 estimator: Optional[PlaceholderIntervalEstimator] = None):
        self.heart_rate = 0
        self.spo2 = 0.0
        self.buffer = EcgBuffer(capacity)
        self.estimator = estimator or PlaceholderIntervalEstimator()
        self.metrics = DerivedMetrics()
        self.status = ConnectionState.DISCONNECTED
        self.error = ""
        self.accepted = 0
        self.rejected = 0
        self._closed = False

    @property
    def is_connected(self) -> bool:
        return self.status is ConnectionState.CONNECTED

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------ 事件 ------------
    def apply_state(self, state: ConnectionState, message: str = "") -> None:
        if self._closed:
            return
        self.status = state
        if state is ConnectionState.CONNECTED:
            self.error = ""
        elif state is ConnectionState.DISCONNECTED:
            self.error = message or "Disconnected"
        elif state is ConnectionState.ERROR:
            self.error = message or "Connection error"

    def ingest(self, topic: str, payload: bytes | str) -> Optional[TelemetrySample]:
        """解析一筆訊息並更新狀態；格式錯誤只記 log、丟棄，回傳 None。"""
        if self._closed:
            return None
        try:
            sample = decode_payload(payload)
        except MalformedPayload as e:
            self.rejected += 1
            logger.warning("訊息解析失敗（%s）：%s", topic, e)
            return None

        self.heart_rate = sample.heart_rate
        self.spo2 = sample.spo2
        self.buffer.push(sample.ecg)
        self.metrics = self.estimator.estimate(self.buffer.last)
        self.accepted += 1
        return sample

    def teardown(self) -> None:
        if self._closed:
            return
        self._closed = True
        logger.info("session 結束：accepted=%d, rejected=%d", self.accepted, self.rejected)

    # ------------ 匯出用 ------------
    def snapshot(self) -> Snapshot:
        return Snapshot(
            heart_rate=self.heart_rate,
            spo2=self.spo2,
            metrics=self.metrics,
            status=self.status,
            error=self.error,
            ecg=tuple(self.buffer.values()),
        )
