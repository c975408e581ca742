from __future__ import annotations

import math
import re
from enum import IntEnum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

_RATE_RE = re.compile(r"^\d+(\.\d+)?(bit|kbit|mbit|gbit|tbit|bps|kbps|mbps|gbps|tbps)?$")


class Status(IntEnum):
    OK = 0
    INVALID_ARGUMENT = 2
    NOT_FOUND = 4
    UNKNOWN_ERROR = 9


def normalize_rate(v: Any) -> Optional[str]:
    """Return a tc rate string, None for unset.  Unitless numbers are kbit."""
    if v is None:
        return None
    if isinstance(v, bool):
        raise ValueError(f"invalid rate: {v!r}")
    if isinstance(v, int):
        if v <= 0:
            raise ValueError(f"invalid rate: {v!r}")
        return f"{v}kbit"
    if isinstance(v, float):
        if not math.isfinite(v) or v <= 0:
            raise ValueError(f"invalid rate: {v!r}")
        v = repr(v)
    s = str(v).strip().lower()
    if not s:
        return None
    if s.isdigit():
        return normalize_rate(int(s))
    m = _RATE_RE.match(s)
    if not m or float(re.sub(r"[a-z]+$", "", s)) <= 0:
        raise ValueError(f"invalid rate: {v!r}")
    # tc reads a unitless rate as bytes per second
    return s if m.group(2) else s + "kbit"


class _RateFields(BaseModel):
    rate: Optional[str] = Field(None, description="applies to both directions")
    rate_egress: Optional[str] = None
    rate_ingress: Optional[str] = None

    @field_validator("rate", "rate_egress", "rate_ingress", mode="before")
    @classmethod
    def _check_rate(cls, v: Any) -> Optional[str]:
        return normalize_rate(v)


class DefaultsSet(_RateFields):
    name: str = ""


class ClientSet(_RateFields):
    device: str = ""
    address: str = ""
    defaults: Optional[str] = None


class ClientDelete(BaseModel):
    address: str = ""
    device: Optional[str] = None


class DeviceDelete(BaseModel):
    device: str = ""
