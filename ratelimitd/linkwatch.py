from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional

logger = logging.getLogger(__name__)

SYS_CLASS_NET = Path("/sys/class/net")
_UP_STATES = ("up", "unknown")


def read_operstate(name: str, base: Path = SYS_CLASS_NET) -> str:
    try:
        return (base / name / "operstate").read_text(encoding="utf-8").strip().lower()
    except OSError:
        return "absent"


class LinkWatcher:
    """Triggers a full reload when a managed interface comes back up.

    A link flap or interface re-creation wipes its qdiscs; the registry still
    holds the desired state, so a reload puts it back.
    """

    def __init__(
        self,
        devices: Callable[[], Iterable[str]],
        on_link_up: Callable[[], object],
        interval: float,
        read_state: Callable[[str], str] = read_operstate,
    ):
        self.devices = devices
        self.on_link_up = on_link_up
        self.interval = interval
        self.read_state = read_state
        self._last: Dict[str, str] = {}
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def poll(self) -> bool:
        """One scan; returns True when a reload was triggered."""
        flapped = []
        current: Dict[str, str] = {}
        for name in self.devices():
            state = self.read_state(name)
            current[name] = state
            prev = self._last.get(name)
            if prev is not None and prev not in _UP_STATES and state in _UP_STATES:
                flapped.append(name)
        self._last = current
        if not flapped:
            return False
        logger.warning("link up again on %s, reloading shaping state", ", ".join(sorted(flapped)))
        self.on_link_up()
        return True

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.poll()
            except Exception:
                logger.exception("link watcher poll failed")

    def start(self) -> None:
        if self.interval <= 0:
            return
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        th = threading.Thread(target=self._loop, name="ratelimit-linkwatch", daemon=True)
        th.start()
        self._thread = th

    def stop(self, timeout: float = 2.0) -> None:
        self._stop.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        self._thread = None
