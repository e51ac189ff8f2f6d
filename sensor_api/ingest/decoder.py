"""Turns raw MQTT messages into typed reading candidates.

Devices publish the bare text of one number per message, e.g. ``b"21.75"``.
There is no envelope, unit or timestamp.
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping

from sensor_api.models.reading import SensorKind

# Plain decimal or exponent notation only; no "1_000", no non-ASCII digits.
_NUMBER = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?", re.ASCII)


class PayloadError(ValueError):
    """Message body is not the text of a single finite number."""


def decode_value(payload: bytes) -> float:
    try:
        text = payload.decode("utf-8").strip()
    except UnicodeDecodeError as e:
        raise PayloadError("payload is not UTF-8 text") from e
    if not text:
        raise PayloadError("empty payload")
    if _NUMBER.fullmatch(text) is None:
        raise PayloadError(f"not a number: {text[:32]!r}")
    value = float(text)
    if not math.isfinite(value):
        raise PayloadError(f"not a finite number: {text[:32]!r}")
    return value


def resolve_kind(topic: str, channels: Mapping[str, SensorKind]) -> SensorKind | None:
    return channels.get(topic)
