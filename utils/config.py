# utils/config.py
"""
App configuration
- config.toml（tomllib）→ AppConfig dataclasses，交給 controller
- 帳號密碼只從環境變數讀（VITALS_MQTT_USERNAME / VITALS_MQTT_PASSWORD）
- 檔案缺失時回傳預設值；格式錯誤 / 數值錯誤丟 ConfigError
"""
from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlsplit

from utils.ring_buffer import DEFAULT_CAPACITY

logger = logging.getLogger("Config")

ENV_USERNAME = "VITALS_MQTT_USERNAME"
ENV_PASSWORD = "VITALS_MQTT_PASSWORD"
ENV_BROKER_URL = "VITALS_MQTT_URL"

# scheme -> (transport, tls, 預設 port)
_SCHEMES = {
    "wss": ("websockets", True, 443),
    "ws": ("websockets", False, 80),
    "mqtts": ("tcp", True, 8883),
    "ssl": ("tcp", True, 8883),
    "mqtt": ("tcp", False, 1883),
    "tcp": ("tcp", False, 1883),
}


class ConfigError(ValueError):
    pass


@dataclass
class BrokerConfig:
    url: str = "wss://localhost:8884/mqtt"
    topic: str = "esp32/health"
    protocol_version: int = 4
    client_id: str = ""
    keepalive: int = 60
    qos: int = 0
    username: Optional[str] = None
    password: Optional[str] = None

    def __post_init__(self):
        try:
            parts = urlsplit(self.url)
            parts.port  # port 超出範圍時這裡會丟 ValueError
        except ValueError as e:
            raise ConfigError(f"broker.url 格式錯誤：{self.url!r}（{e}）") from e
        scheme = parts.scheme.lower()
        if scheme not in _SCHEMES:
            raise ConfigError(f"broker.url 的 scheme 不支援：{self.url!r}（可用 {sorted(_SCHEMES)}）")
        if not parts.hostname:
            raise ConfigError(f"broker.url 缺少主機名稱：{self.url!r}")
        if self.protocol_version not in (3, 4, 5):
            raise ConfigError(f"broker.protocol_version 必須是 3/4/5，目前為 {self.protocol_version}")
        if self.qos not in (0, 1, 2):
            raise ConfigError(f"broker.qos 必須是 0/1/2，目前為 {self.qos}")
        if not self.topic:
            raise ConfigError("broker.topic 不可為空")

    @property
    def transport(self) -> str:
        return _SCHEMES[urlsplit(self.url).scheme.lower()][0]

    @property
    def use_tls(self) -> bool:
        return _SCHEMES[urlsplit(self.url).scheme.lower()][1]

    @property
    def host(self) -> str:
        return urlsplit(self.url).hostname or ""

    @property
    def port(self) -> int:
        parts = urlsplit(self.url)
        return parts.port or _SCHEMES[parts.scheme.lower()][2]

    @property
    def ws_path(self) -> str:
        return urlsplit(self.url).path or "/mqtt"

    def __repr__(self) -> str:
        # 不把密碼印進 log
        pw = "***" if self.password else None
        return (f"BrokerConfig(url={self.url!r}, topic={self.topic!r}, "
                f"protocol_version={self.protocol_version}, username={self.username!r}, password={pw})")


@dataclass
class PlotConfig:
    points: int = DEFAULT_CAPACITY
    line_width: float = 2.0
    line_color: str = "#4BC0C0"

    def __post_init__(self):
        if self.points < 1:
            raise ConfigError(f"plot.points 必須 >= 1，目前為 {self.points}")
        if self.line_width <= 0:
            raise ConfigError(f"plot.line_width 必須 > 0，目前為 {self.line_width}")


@dataclass
class ExportConfig:
    dir: str = "results"
    title: str = "Health Monitoring Report"


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: Optional[str] = None


@dataclass
class AppConfig:
    broker: BrokerConfig = field(default_factory=BrokerConfig)
    plot: PlotConfig = field(default_factory=PlotConfig)
    export: ExportConfig = field(default_factory=ExportConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    ui: Dict[str, Any] = field(default_factory=dict)


def _section(cfg: Mapping[str, Any], name: str) -> Dict[str, Any]:
    sec = cfg.get(name, {})
    if not isinstance(sec, dict):
        raise ConfigError(f"[{name}] 必須是 table")
    return dict(sec)


def _as_int(sec: Mapping[str, Any], key: str, default: int) -> int:
    v = sec.get(key, default)
    try:
        return int(v)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{key} 必須是整數，目前為 {v!r}") from e


def _as_float(sec: Mapping[str, Any], key: str, default: float) -> float:
    v = sec.get(key, default)
    if isinstance(v, bool):
        raise ConfigError(f"{key} 必須是數值，目前為 {v!r}")
    try:
        return float(v)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{key} 必須是數值，目前為 {v!r}") from e


def _as_str(sec: Mapping[str, Any], key: str, default: Optional[str]) -> Optional[str]:
    v = sec.get(key, default)
    if v is not None and not isinstance(v, str):
        raise ConfigError(f"{key} 必須是字串，目前為 {v!r}")
    return v


def build_config(cfg: Mapping[str, Any], env: Optional[Mapping[str, str]] = None) -> AppConfig:
    """把 tomllib 讀進來的 dict 轉成 AppConfig；env 預設為 os.environ。"""
    env = os.environ if env is None else env

    b = _section(cfg, "broker")
    if "username" in b or "password" in b:
        logger.warning("config.toml 的 [broker] 不應寫帳號密碼，已忽略；請改用環境變數 %s / %s",
                       ENV_USERNAME, ENV_PASSWORD)
    defaults = BrokerConfig()
    broker = BrokerConfig(
        url=env.get(ENV_BROKER_URL) or _as_str(b, "url", defaults.url),
        topic=_as_str(b, "topic", defaults.topic),
        protocol_version=_as_int(b, "protocol_version", defaults.protocol_version),
        client_id=_as_str(b, "client_id", ""),
        keepalive=_as_int(b, "keepalive", defaults.keepalive),
        qos=_as_int(b, "qos", defaults.qos),
        username=env.get(ENV_USERNAME) or None,
        password=env.get(ENV_PASSWORD) or None,
    )

    p = _section(cfg, "plot")
    plot = PlotConfig(
        points=_as_int(p, "points", DEFAULT_CAPACITY),
        line_width=_as_float(p, "line_width", 2.0),
        line_color=_as_str(p, "line_color", "#4BC0C0"),
    )

    e = _section(cfg, "export")
    export = ExportConfig(
        dir=_as_str(e, "dir", "results"),
        title=_as_str(e, "title", ExportConfig.title),
    )

    lg = _section(cfg, "logging")
    log_cfg = LoggingConfig(level=_as_str(lg, "level", "INFO"), file=_as_str(lg, "file", None) or None)

    return AppConfig(broker=broker, plot=plot, export=export, logging=log_cfg, ui=_section(cfg, "ui"))


def load_config(path: Path | str = "config.toml", env: Optional[Mapping[str, str]] = None) -> AppConfig:
    """
    讀 config.toml。
    - 檔案不存在：回傳預設值（仍套用環境變數）
    - 讀不到 / 不是 UTF-8 / TOML 格式錯誤：ConfigError
    """
    p = Path(path)
    if not p.exists():
        logger.warning("找不到 %s，使用內建預設值", p)
        return build_config({}, env)
    try:
        text = p.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"{p.name} 無法讀取：{e}") from e
    try:
        raw = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{p.name} 解析失敗：{e}") from e
    return build_config(raw, env)


def default_config(env: Optional[Mapping[str, str]] = None) -> AppConfig:
    """config.toml 壞掉時的後備：內建預設值 + 環境變數；連環境變數都不合法才用純預設。"""
    try:
        return build_config({}, env)
    except ConfigError as e:
        logger.error("環境變數設定錯誤（%s），改用純預設值", e)
        return AppConfig()
