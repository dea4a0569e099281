# controllers/telemetry_controller.py
from __future__ import annotations
"""
TelemetryController：MQTT 訂閱 → 解析 → ECG 視窗 → 繪圖/標籤（含自動回主執行緒）
相依：PyQt6, pyqtgraph, numpy；連線由 telemetry_helpers.TelemetryClient 提供
"""

import logging
from contextlib import ExitStack
from pathlib import Path
from typing import Callable, Dict, Optional

import numpy as np
import pyqtgraph as pg
from PyQt6.QtCore import QObject, pyqtSignal

from controllers.telemetry_session import TelemetrySession
from telemetry_helpers import ConnectionState, TelemetryClient
from utils.config import AppConfig, BrokerConfig
from utils.pdf_report import export_report

logger = logging.getLogger("TelemetryController")

_STATUS_TEXT = {
    ConnectionState.CONNECTED: "Connected",
    ConnectionState.CONNECTING: "Connecting…",
    ConnectionState.DISCONNECTED: "Disconnected",
    ConnectionState.ERROR: "Disconnected",
}

_METRIC_FMT = {
    "pr_interval_ms": "{:.0f} ms",
    "qt_interval_ms": "{:.0f} ms",
    "qrs_duration_ms": "{:.0f} ms",
    "st_segment_mv": "{:.1f} mV",
}


# ========== Qt 資料橋 ==========
class DataBridge(QObject):
    """將 paho 背景執行緒的事件回送到主執行緒"""
    # 第一個參數是 activate 的世代編號，舊連線殘留在佇列裡的事件靠它丟掉
    message = pyqtSignal(int, str, bytes)
    state = pyqtSignal(int, object, str)  # (generation, ConnectionState, message)


# ========== 主控制器 ==========
class TelemetryController:
    """
    把 UI 與 TelemetryClient 接起來：
      - activate()：建立 session + 訂閱（ExitStack 保證之後釋放）
      - deactivate()：session 停止接收、關閉連線（每次 activate 只執行一次）
      - 背景回呼 → Qt 訊號 → 主執行緒更新 session / 重繪
    """
    def __init__(
        self,
        plot_widget: pg.PlotWidget,
        lbl_hr,
        lbl_spo2,
        lbl_status,
        lbl_error,
        metric_labels: Dict[str, object],
        status_bar,
        cfg: AppConfig,
        client_factory: Optional[Callable[[BrokerConfig], object]] = None,
    ):
        # --- UI 控件 ---
        self.plot = plot_widget
        self.lbl_hr = lbl_hr
        self.lbl_spo2 = lbl_spo2
        self.lbl_status = lbl_status
        self.lbl_error = lbl_error
        self.metric_labels = metric_labels
        self.status_bar = status_bar

        # --- 設定 ---
        self.cfg = cfg
        self._client_factory = client_factory
        self.points = int(cfg.plot.points)
        ui = cfg.ui
        self._ok_style = ui.get("status_ok_style", "background:#C8E6C9; border-radius:10px; padding:4px 12px;")
        self._bad_style = ui.get("status_bad_style", "background:#FFCDD2; border-radius:10px; padding:4px 12px;")
        self._err_style = ui.get("error_style", "background:#FFF59D; border-radius:10px; padding:4px 12px;")

        # --- X 軸：0..N-1（固定不變）---
        self._x = np.arange(self.points, dtype=float)
        self.curve = self.plot.plot(
            self._x, np.zeros(self.points),
            pen=pg.mkPen(color=cfg.plot.line_color, width=cfg.plot.line_width),
        )
        self.plot.setLabel("left", "ECG")
        self.plot.setLabel("bottom", "Sample")
        self.plot.showGrid(x=True, y=True)
        self.plot.setXRange(0, self.points - 1, padding=0)

        # --- 橋接 ---
        self.bridge = DataBridge()
        self.bridge.message.connect(self._on_message_mainthread)
        self.bridge.state.connect(self._on_state_mainthread)

        self.session: Optional[TelemetrySession] = None
        self.client: Optional[TelemetryClient] = None
        self._stack: Optional[ExitStack] = None
        self._generation = 0

        self._render_status(ConnectionState.DISCONNECTED, "")

    # ------------ 控制 ------------
    def activate(self) -> None:
        if self._stack is not None:
            logger.info("已在訂閱中，略過 activate()")
            return

        self._generation += 1
        gen = self._generation
        self.session = TelemetrySession(capacity=self.points)
        self.client = TelemetryClient(self.cfg.broker, client_factory=self._client_factory)
        # 背景回呼 → Qt 訊號（帶上這次的世代編號）
        self.client.message_callback = lambda topic, payload: self.bridge.message.emit(gen, topic, payload)
        self.client.state_callback = lambda state, msg: self.bridge.state.emit(gen, state, msg)

        self.status_bar.showMessage(f"連線中：{self.cfg.broker.host}")
        stack = ExitStack()
        stack.enter_context(self.client.subscription())
        stack.callback(self.session.teardown)
        self._stack = stack
        self._refresh()

    def deactivate(self) -> None:
        stack, self._stack = self._stack, None
        if stack is None:
            return
        # 之後才到主執行緒的舊事件一律作廢
        self._generation += 1
        # LIFO：先 session.teardown()，再關連線
        stack.close()
        self.status_bar.showMessage("已斷線", 3000)

    def export_pdf(self) -> Optional[Path]:
        if self.session is None:
            logger.warning("尚未開始接收資料，無法匯出")
            return None
        path = export_report(self.plot, self.session.snapshot(),
                             self.cfg.export.dir, title=self.cfg.export.title)
        if path is not None:
            self.status_bar.showMessage(f"已匯出：{path}", 5000)
        return path

    # ------------ 資料處理（主執行緒）------------
    def _is_current(self, gen: int) -> bool:
        return gen == self._generation and self.session is not None and not self.session.closed

    def _on_message_mainthread(self, gen: int, topic: str, payload: bytes):
        if not self._is_current(gen):
            logger.debug("略過舊連線的訊息（gen=%d）", gen)
            return
        if self.session.ingest(topic, payload) is None:
            return
        self._refresh()

    def _on_state_mainthread(self, gen: int, state: ConnectionState, message: str):
        if not self._is_current(gen):
            return
        self.session.apply_state(state, message)
        self._render_status(self.session.status, self.session.error)

    # ------------ 繪圖 / 標籤 ------------
    def _refresh(self):
        s = self.session
        if s is None:
            return
        self.curve.setData(self._x, s.buffer.to_numpy())
        self.lbl_hr.setText(f"{s.heart_rate} BPM")
        self.lbl_spo2.setText(f"{s.spo2:g}%")
        for key, lbl in self.metric_labels.items():
            lbl.setText(_METRIC_FMT[key].format(getattr(s.metrics, key)))

    def _render_status(self, state: ConnectionState, error: str):
        self.lbl_status.setText(_STATUS_TEXT[state])
        self.lbl_status.setStyleSheet(self._ok_style if state is ConnectionState.CONNECTED else self._bad_style)
        self.lbl_error.setText(error)
        self.lbl_error.setStyleSheet(self._err_style)
        self.lbl_error.setVisible(bool(error))
        if state is ConnectionState.CONNECTED:
            self.status_bar.showMessage("MQTT 連線成功", 3000)
        elif state is ConnectionState.ERROR:
            self.status_bar.showMessage(f"連線失敗：{error}")
