from __future__ import annotations

import os
import threading

import pyqtgraph as pg
import pytest
from PyQt6 import QtWidgets

from controllers.telemetry_controller import TelemetryController
from telemetry_helpers import ConnectionState
from utils.config import AppConfig, PlotConfig

METRIC_KEYS = ("pr_interval_ms", "qt_interval_ms", "qrs_duration_ms", "st_segment_mv")


@pytest.fixture(scope="module")
def qapp():
    os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")
    app = QtWidgets.QApplication.instance() or QtWidgets.QApplication([])
    yield app


@pytest.fixture
def controller(qapp, broker_cfg, paho_factory, tmp_path):
    cfg = AppConfig(broker=broker_cfg, plot=PlotConfig(points=10))
    cfg.export.dir = str(tmp_path / "results")
    ctl = TelemetryController(
        plot_widget=pg.PlotWidget(),
        lbl_hr=QtWidgets.QLabel(),
        lbl_spo2=QtWidgets.QLabel(),
        lbl_status=QtWidgets.QLabel(),
        lbl_error=QtWidgets.QLabel(),
        metric_labels={k: QtWidgets.QLabel() for k in METRIC_KEYS},
        status_bar=QtWidgets.QStatusBar(),
        cfg=cfg,
        client_factory=paho_factory,
    )
    yield ctl
    ctl.deactivate()


def _from_network_thread(fn, *args):
    # 模擬 paho 的背景執行緒：訊號會排進主執行緒的事件佇列
    t = threading.Thread(target=fn, args=args)
    t.start()
    t.join()


def test_activate_and_receive(controller, paho_factory, qapp):
    controller.activate()
    fake = paho_factory.created[0]
    assert fake.count("connect_async") == 1
    assert controller.lbl_status.text().startswith("Connecting")

    _from_network_thread(fake.ack)
    _from_network_thread(fake.deliver, b'{"heart_rate":72,"spo2":98,"ecg":0.5}')
    qapp.processEvents()

    assert controller.session.status is ConnectionState.CONNECTED
    assert controller.lbl_status.text() == "Connected"
    assert controller.session.heart_rate == 72
    assert controller.lbl_hr.text() == "72 BPM"
    assert controller.lbl_spo2.text() == "98%"
    assert controller.session.buffer.last == 0.5
    assert controller.metric_labels["pr_interval_ms"].text().endswith("ms")


def test_activate_twice_keeps_one_connection(controller, paho_factory):
    controller.activate()
    controller.activate()
    assert len(paho_factory.created) == 1


def test_queued_events_from_old_connection_are_dropped_after_reconnect(controller, paho_factory, qapp):
    controller.activate()
    old = paho_factory.created[0]
    old.ack()
    qapp.processEvents()

    # 舊連線的訊息與斷線事件還在佇列裡，使用者就按了重新連線
    _from_network_thread(old.deliver, b'{"heart_rate":150,"spo2":80,"ecg":9.9}')
    _from_network_thread(old.drop)
    controller.deactivate()
    controller.activate()
    qapp.processEvents()

    assert len(paho_factory.created) == 2
    s = controller.session
    assert s.heart_rate == 0
    assert s.spo2 == 0
    assert s.buffer.values() == [0.0] * 10
    assert s.accepted == 0
    assert s.status is ConnectionState.CONNECTING
    assert s.error == ""
    assert controller.lbl_hr.text() == "0 BPM"

    # 新連線照常運作
    new = paho_factory.created[1]
    _from_network_thread(new.ack)
    _from_network_thread(new.deliver, b'{"heart_rate":64,"spo2":97,"ecg":0.1}')
    qapp.processEvents()
    assert s.heart_rate == 64
    assert s.buffer.values() == [0.0] * 9 + [0.1]


def test_deactivate_with_queued_message_leaves_session_untouched(controller, paho_factory, qapp):
    controller.activate()
    fake = paho_factory.created[0]
    fake.ack()
    fake.deliver(b'{"heart_rate":70,"spo2":96,"ecg":0.2}')
    qapp.processEvents()
    s = controller.session
    before = (s.heart_rate, s.spo2, s.buffer.values(), s.metrics)

    _from_network_thread(fake.deliver, b'{"heart_rate":150,"spo2":80,"ecg":9.9}')
    controller.deactivate()
    qapp.processEvents()

    assert s.closed
    assert (s.heart_rate, s.spo2, s.buffer.values(), s.metrics) == before
    assert controller.lbl_hr.text() == "70 BPM"
    assert fake.count("loop_stop") == 1

    controller.deactivate()
    assert fake.count("loop_stop") == 1


def test_export_pdf_before_activate_returns_none(controller):
    assert controller.export_pdf() is None
