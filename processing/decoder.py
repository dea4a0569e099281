"""
Telemetry payload decoder
- One MQTT message = one JSON object {"heart_rate", "spo2", "ecg"}
- Missing / null fields become 0; unknown keys are ignored
- Anything that is not a JSON object with numeric fields is MalformedPayload
- Pure function, no logging here (the caller logs and drops)
"""
from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any, Dict, Union

FIELDS = ("heart_rate", "spo2", "ecg")


class MalformedPayload(ValueError):
    """Payload 無法解析成遙測資料。"""


@dataclass(frozen=True)
class TelemetrySample:
    heart_rate: int = 0
    spo2: float = 0.0
    ecg: float = 0.0


def _number(obj: Dict[str, Any], key: str) -> float:
    v = obj.get(key)
    if v is None:
        return 0.0
    # bool 是 int 的子類別，要先排除
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        raise MalformedPayload(f"{key} 不是數值：{v!r}")
    try:
        v = float(v)
    except OverflowError as e:
        # 超長整數 JSON 合法，但轉不成 float
        raise MalformedPayload(f"{key} 超出數值範圍") from e
    if not math.isfinite(v):
        raise MalformedPayload(f"{key} 不是有限數值：{v!r}")
    return v


def decode_payload(raw: Union[bytes, bytearray, str]) -> TelemetrySample:
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedPayload(f"payload 不是 UTF-8：{e}") from e

    try:
        obj = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedPayload(f"payload 不是 JSON：{e}") from e

    if not isinstance(obj, dict):
        raise MalformedPayload(f"payload 必須是 JSON 物件，收到 {type(obj).__name__}")

    hr = max(0, int(round(_number(obj, "heart_rate"))))
    spo2 = min(100.0, max(0.0, _number(obj, "spo2")))
    ecg = _number(obj, "ecg")
    return TelemetrySample(heart_rate=hr, spo2=spo2, ecg=ecg)


def encode_sample(sample: TelemetrySample) -> bytes:
    data = {
        "heart_rate": int(sample.heart_rate),
        "spo2": sample.spo2,
        "ecg": sample.ecg,
    }
    return json.dumps(data, separators=(",", ":")).encode("utf-8")
