from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass
class DaemonConfig:
    # Files
    defaults_file: str = os.getenv("RATELIMIT_DEFAULTS_FILE", "/etc/ratelimit/defaults.json")

    # HTTP listener
    host: str = os.getenv("RATELIMIT_HOST", "127.0.0.1")
    port: int = int(os.getenv("RATELIMIT_PORT", "18790"))

    # Command execution
    tc_bin: str = os.getenv("RATELIMIT_TC_BIN", "")
    ip_bin: str = os.getenv("RATELIMIT_IP_BIN", "")
    cmd_timeout: float = float(os.getenv("RATELIMIT_CMD_TIMEOUT", "5") or "5")
    dry_run: bool = os.getenv("RATELIMIT_DRY_RUN", "0") in ("1", "true", "True")

    # Shaping policy
    root_rate: str = os.getenv("RATELIMIT_ROOT_RATE", "10gbit").strip() or "10gbit"
    default_rate: str = os.getenv("RATELIMIT_DEFAULT_RATE", "1mbit").strip() or "1mbit"
    burst: str = os.getenv("RATELIMIT_BURST", "2k").strip() or "2k"

    # Link state polling, 0 disables
    link_poll_interval: float = float(os.getenv("RATELIMIT_LINK_POLL_INTERVAL", "2") or "0")

    # Logging
    log_level: str = os.getenv("RATELIMIT_LOG_LEVEL", "INFO")
    log_file: str = os.getenv("RATELIMIT_LOG_FILE", "/var/log/ratelimit/ratelimitd.log")


CFG = DaemonConfig()
