# telemetry_helpers.py
# 與 MQTT broker（HiveMQ Cloud 等）互動的輔助類別：連線狀態機 + 訂閱
# 需求：pip install paho-mqtt>=2.0

from __future__ import annotations

import enum
import logging
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

import paho.mqtt.client as mqtt

from utils.config import BrokerConfig

logger = logging.getLogger("TelemetryClient")

MSG_CONNECT_FAILED = "MQTT Connection Failed"
MSG_DISCONNECTED = "Disconnected from MQTT"

_PROTOCOLS = {
    3: mqtt.MQTTv31,
    4: mqtt.MQTTv311,
    5: mqtt.MQTTv5,
}


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


def build_paho_client(cfg: BrokerConfig) -> mqtt.Client:
    """依 BrokerConfig 建立 paho Client（尚未連線）。"""
    c = mqtt.Client(
        mqtt.CallbackAPIVersion.VERSION2,
        client_id=cfg.client_id or "",
        transport=cfg.transport,
        protocol=_PROTOCOLS[cfg.protocol_version],
    )
    if cfg.transport == "websockets":
        c.ws_set_options(path=cfg.ws_path)
    if cfg.use_tls:
        c.tls_set()
    if cfg.username:
        c.username_pw_set(cfg.username, cfg.password)
    # 斷線後由 paho 自動重連（1s 起跳，最多 30s）
    c.reconnect_delay_set(min_delay=1, max_delay=30)
    return c


class TelemetryClient:
    """
    高階 MQTT 客戶端：
      - open() 非阻塞：connect_async + loop_start（網路迴圈在背景執行緒）
      - 連線成功 → 訂閱 topic；失敗 / 斷線 → 狀態回呼
      - message_callback: (topic, payload bytes) -> None
      - state_callback: (ConnectionState, message) -> None
      - close() 每次 open() 只會真正執行一次；之後所有回呼一律丟棄
    """

    def __init__(
        self,
        cfg: BrokerConfig,
        client_factory: Optional[Callable[[BrokerConfig], mqtt.Client]] = None,
    ):
        self.cfg = cfg
        self._factory = client_factory or build_paho_client

        self.client: Optional[mqtt.Client] = None
        self.state = ConnectionState.DISCONNECTED
        self.last_error = ""
        self.connect_count = 0

        self.message_callback: Optional[Callable[[str, bytes], None]] = None
        self.state_callback: Optional[Callable[[ConnectionState, str], None]] = None

        self._lock = threading.Lock()
        self._closed = False

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def is_closed(self) -> bool:
        return self._closed

    # ---------- 連線 / 關閉 ----------
    def open(self) -> None:
        if self.client is not None:
            logger.info("已建立連線，略過 open()")
            return

        self._closed = False
        logger.info("連線到 %s:%s（%s）…", self.cfg.host, self.cfg.port, self.cfg.transport)
        self._set_state(ConnectionState.CONNECTING, "")
        try:
            c = self._factory(self.cfg)
            c.on_connect = self._on_connect
            c.on_connect_fail = self._on_connect_fail
            c.on_disconnect = self._on_disconnect
            c.on_message = self._on_message
            c.connect_async(self.cfg.host, int(self.cfg.port), keepalive=int(self.cfg.keepalive))
            c.loop_start()
        except Exception as e:
            logger.exception("建立 MQTT 連線失敗：%s", e)
            self._set_state(ConnectionState.ERROR, f"{MSG_CONNECT_FAILED}: {e}")
            return
        self.client = c

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            was_connected = self.state is ConnectionState.CONNECTED
            self.state = ConnectionState.DISCONNECTED

        logger.info("清理 MQTT client")
        c, self.client = self.client, None
        if c is None:
            return
        try:
            if was_connected:
                c.disconnect()
        except Exception as e:
            logger.debug("disconnect() 出錯：%s", e)
        finally:
            c.loop_stop()

    @contextmanager
    def subscription(self) -> Iterator["TelemetryClient"]:
        """with client.subscription(): ... 離開時保證 close()。"""
        self.open()
        try:
            yield self
        finally:
            self.close()

    # ---------- paho 回呼（背景執行緒） ----------
    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if self._closed:
            return
        if reason_code.is_failure:
            logger.error("MQTT 連線被拒：%s", reason_code)
            self._set_state(ConnectionState.ERROR, f"{MSG_CONNECT_FAILED}: {reason_code}")
            return

        self.connect_count += 1
        logger.info("已連線到 MQTT broker（第 %d 次）", self.connect_count)
        self._set_state(ConnectionState.CONNECTED, "")
        client.subscribe(self.cfg.topic, qos=int(self.cfg.qos))
        logger.info("已訂閱 %s", self.cfg.topic)

    def _on_connect_fail(self, client, userdata):
        if self._closed:
            return
        logger.error("MQTT 連線失敗（網路 / TLS）")
        self._set_state(ConnectionState.ERROR, MSG_CONNECT_FAILED)

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        if self._closed:
            return
        logger.info("與 MQTT broker 斷線：%s", reason_code)
        self._set_state(ConnectionState.DISCONNECTED, MSG_DISCONNECTED)

    def _on_message(self, client, userdata, msg):
        if self._closed:
            return
        logger.debug("收到 %s：%r", msg.topic, msg.payload)
        if self.message_callback:
            try:
                self.message_callback(msg.topic, bytes(msg.payload))
            except Exception as e:
                logger.exception("message_callback 發生例外：%s", e)

    # ---------- 小工具 ----------
    def _set_state(self, state: ConnectionState, message: str) -> None:
        with self._lock:
            if self._closed:
                return
            self.state = state
            if state is ConnectionState.CONNECTED:
                self.last_error = ""
            elif message:
                self.last_error = message
        if self.state_callback:
            try:
                self.state_callback(state, message)
            except Exception as e:
                logger.exception("state_callback 發生例外：%s", e)
