"""
App entrypoint.
- Builds the dashboard window: status pills, Heart Rate / SpO2 cards, ECG interval row, ECG chart
- Loads config.toml (+ environment for broker credentials) into AppConfig
- Instantiates TelemetryController with config + UI widgets
- On launch: subscribe to the MQTT topic; on close: release the subscription
"""
import logging
import sys
from pathlib import Path

import pyqtgraph as pg
from PyQt6 import QtCore, QtWidgets
from PyQt6.QtGui import QFont
from PyQt6.QtWidgets import QFrame, QGridLayout, QHBoxLayout, QLabel, QVBoxLayout, QWidget

from controllers.telemetry_controller import TelemetryController
from utils.config import AppConfig, ConfigError, default_config, load_config
from utils.logging_setup import setup_logging

logger = logging.getLogger("Main")

CONFIG_PATH = Path("config.toml")

_METRICS = [
    ("pr_interval_ms", "PR Interval"),
    ("qt_interval_ms", "QT Interval"),
    ("qrs_duration_ms", "QRS Duration"),
    ("st_segment_mv", "ST Segment"),
]


def _card(title: str, value: str, color: str) -> tuple[QFrame, QLabel]:
    frame = QFrame()
    frame.setObjectName("card")
    lay = QVBoxLayout(frame)
    lay.setAlignment(QtCore.Qt.AlignmentFlag.AlignCenter)
    t = QLabel(title)
    t.setAlignment(QtCore.Qt.AlignmentFlag.AlignCenter)
    t.setStyleSheet(f"color:{color}; font-size:16pt;")
    v = QLabel(value)
    v.setAlignment(QtCore.Qt.AlignmentFlag.AlignCenter)
    v.setStyleSheet("font-size:28pt; font-weight:700;")
    lay.addWidget(t)
    lay.addWidget(v)
    return frame, v


class MainWindow(QtWidgets.QMainWindow):
    def __init__(self, cfg: AppConfig):
        super().__init__()
        self.cfg = cfg
        self.setWindowTitle(cfg.ui.get("window_title", "Health Monitoring Dashboard"))

        central = QWidget(self)
        self.setCentralWidget(central)
        root = QVBoxLayout(central)

        # ① 標題 + 狀態
        header = QLabel(cfg.ui.get("header", "Health Monitoring Dashboard"))
        header.setStyleSheet("font-size:22pt; font-weight:700;")
        root.addWidget(header)

        pills = QHBoxLayout()
        self.lblStatus = QLabel("Disconnected")
        self.lblError = QLabel("")
        pills.addWidget(self.lblStatus)
        pills.addWidget(self.lblError)
        pills.addStretch(1)
        root.addLayout(pills)

        # ② 心率 / SpO2 卡片
        cards = QHBoxLayout()
        hr_card, self.lblHR = _card("Heart Rate", "0 BPM", cfg.ui.get("hr_color", "#EF4444"))
        spo2_card, self.lblSpO2 = _card("SpO2", "0%", cfg.ui.get("spo2_color", "#3B82F6"))
        cards.addWidget(hr_card)
        cards.addWidget(spo2_card)
        root.addLayout(cards)

        # ③ ECG 間期（佔位數值）
        grid = QGridLayout()
        self.metricLabels = {}
        for col, (key, title) in enumerate(_METRICS):
            grid.addWidget(QLabel(title), 0, col)
            lbl = QLabel("--")
            lbl.setStyleSheet("font-weight:700;")
            grid.addWidget(lbl, 1, col)
            self.metricLabels[key] = lbl
        note = QLabel("ECG intervals: placeholder values, not clinical measurements")
        note.setStyleSheet("color:#9E9E9E; font-style:italic;")
        grid.addWidget(note, 2, 0, 1, len(_METRICS))
        root.addLayout(grid)

        # ④ ECG 波形
        chart = QFrame()
        chart.setObjectName("card")
        chartLayout = QVBoxLayout(chart)
        title = QLabel("ECG Monitor")
        title.setStyleSheet(f"color:{cfg.ui.get('ecg_color', '#8B5CF6')}; font-size:16pt;")
        chartLayout.addWidget(title)
        self.plot = pg.PlotWidget()
        vb = self.plot.getViewBox()
        vb.enableAutoRange(axis=pg.ViewBox.YAxis, enable=True)
        vb.setDefaultPadding(0.1)
        chartLayout.addWidget(self.plot)
        root.addWidget(chart, 1)

        # ⑤ Controller
        self.controller = TelemetryController(
            plot_widget=self.plot,
            lbl_hr=self.lblHR,
            lbl_spo2=self.lblSpO2,
            lbl_status=self.lblStatus,
            lbl_error=self.lblError,
            metric_labels=self.metricLabels,
            status_bar=self.statusBar(),
            cfg=cfg,
        )

        # ⑥ 工具列
        tb = self.addToolBar("工具")
        actExport = tb.addAction("匯出 PDF")
        actExport.triggered.connect(self._on_export_clicked)
        actReconnect = tb.addAction("重新連線")
        actReconnect.triggered.connect(self._on_reconnect_clicked)

        self._apply_ui_from_config(cfg.ui)

        # 啟動後再訂閱（確保視窗已顯示）
        QtCore.QTimer.singleShot(0, self.controller.activate)

        if bool(cfg.ui.get("center_on_start", True)):
            QtCore.QTimer.singleShot(0, self._center_on_screen)

    def _apply_ui_from_config(self, ui: dict):
        """從 config.toml 的 [ui] 讀取字型、背景與卡片樣式。"""
        fam = ui.get("font_family", "Segoe UI")
        self.setFont(QFont(fam, int(ui.get("font_size", 11))))
        bg = ui.get("background", "#F3F4F6")
        card_bg = ui.get("card_background", "#FFFFFF")
        self.setStyleSheet(
            f"QMainWindow {{ background:{bg}; }}"
            f"QFrame#card {{ background:{card_bg}; border-radius:8px; padding:12px; }}"
        )
        status_col = ui.get("status_text_color", "#616161")
        self.statusBar().setStyleSheet(f"QStatusBar {{ color:{status_col}; }}")

    def _center_on_screen(self):
        screen = self.screen() or QtWidgets.QApplication.primaryScreen()
        rect = QtWidgets.QStyle.alignedRect(
            QtCore.Qt.LayoutDirection.LeftToRight,
            QtCore.Qt.AlignmentFlag.AlignCenter,
            self.size(),
            screen.availableGeometry(),
        )
        self.setGeometry(rect)

    def _on_export_clicked(self):
        if self.controller.export_pdf() is None:
            self.statusBar().showMessage("匯出失敗，請稍後再試。", 4000)

    def _on_reconnect_clicked(self):
        self.controller.deactivate()
        self.controller.activate()

    # ---- 關閉事件 ----
    def closeEvent(self, event):
        try:
            self.controller.deactivate()
        except Exception as e:
            logger.exception("關閉連線時出錯：%s", e)
        event.accept()


def _load_config_or_defaults() -> AppConfig:
    try:
        return load_config(CONFIG_PATH)
    except ConfigError as e:
        QtWidgets.QMessageBox.critical(
            None, "設定檔格式錯誤",
            f"{CONFIG_PATH.name} 解析失敗：\n{e}\n將使用內建預設值。"
        )
        return default_config()


def run() -> int:
    app = QtWidgets.QApplication(sys.argv)
    cfg = _load_config_or_defaults()
    setup_logging(cfg.logging.level, cfg.logging.file)
    logger.info("broker=%r", cfg.broker)
    if not cfg.broker.username:
        logger.warning("未設定 MQTT 帳號（環境變數 VITALS_MQTT_USERNAME），以匿名連線")

    w = MainWindow(cfg)
    w.resize(1100, 760)
    w.show()
    return app.exec()


if __name__ == "__main__":
    sys.exit(run())
