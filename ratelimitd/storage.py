from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Dict, Optional, Tuple

from .models import normalize_rate

logger = logging.getLogger(__name__)

Profile = Tuple[Optional[str], Optional[str]]


def _default_doc() -> Dict[str, Any]:
    return {"defaults": []}


def load_json(path: str) -> Dict[str, Any]:
    if not os.path.exists(path) or os.path.getsize(path) == 0:
        return _default_doc()
    try:
        with open(path, "r", encoding="utf-8") as f:
            obj = json.load(f)
        if not isinstance(obj, dict):
            return _default_doc()
        if not isinstance(obj.get("defaults"), list):
            obj["defaults"] = []
        return obj
    except Exception:
        logger.exception("defaults file %s unreadable, ignoring", path)
        # backup corrupted
        try:
            ts = int(time.time())
            os.rename(path, f"{path}.corrupt.{ts}")
        except Exception:
            pass
        return _default_doc()


def load_profiles(path: str) -> Dict[str, Profile]:
    """Named (egress, ingress) profiles from the startup configuration."""
    out: Dict[str, Profile] = {}
    for idx, entry in enumerate(load_json(path).get("defaults", [])):
        if not isinstance(entry, dict):
            continue
        name = str(entry.get("name") or "").strip()
        try:
            egress = normalize_rate(entry.get("limit_egress"))
            ingress = normalize_rate(entry.get("limit_ingress"))
        except ValueError as exc:
            logger.warning("defaults[%d]: %s, skipped", idx, exc)
            continue
        if not name or (egress is None and ingress is None):
            logger.warning("defaults[%d]: needs a name and at least one limit, skipped", idx)
            continue
        out[name] = (egress, ingress)
    logger.info("loaded %d default profile(s) from %s", len(out), path)
    return out
