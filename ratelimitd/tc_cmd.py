from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
from functools import lru_cache
from typing import Sequence, Tuple

from .config import CFG

logger = logging.getLogger(__name__)


def _resolve_override(raw: str) -> str:
    cand = str(raw or "").strip()
    if not cand:
        return ""
    if "/" in cand:
        if os.path.isfile(cand) and os.access(cand, os.X_OK):
            return cand
        return ""
    found = shutil.which(cand)
    return str(found or "")


@lru_cache(maxsize=None)
def tool_command(tool: str) -> str:
    """Absolute path of ``tc`` or ``ip``, honouring the config overrides."""
    override = {"tc": CFG.tc_bin, "ip": CFG.ip_bin}.get(tool, "")
    env_cmd = _resolve_override(override)
    if env_cmd:
        return env_cmd
    # sbin is often missing from PATH under service managers
    for cand in (tool, f"/usr/sbin/{tool}", f"/sbin/{tool}"):
        found = _resolve_override(cand)
        if found:
            return found
    return ""


class RuleExecutor:
    """Runs one shaping command at a time.

    Commands are argv lists whose first element names the tool (``tc`` or
    ``ip``).  ``run`` is strict and reports failure to the caller,
    ``run_best_effort`` is used for teardown and pre-clean where the object
    may legitimately be missing.
    """

    def __init__(self, timeout: float = CFG.cmd_timeout, dry_run: bool = CFG.dry_run):
        self.timeout = timeout
        self.dry_run = dry_run

    def execute(self, argv: Sequence[str]) -> Tuple[int, str, str]:
        if self.dry_run:
            logger.info("dry-run: %s", shlex.join(argv))
            return 0, "", ""
        tool, args = argv[0], list(argv[1:])
        cmd = tool_command(tool)
        if not cmd:
            return 127, "", f"{tool} command not found"
        try:
            proc = subprocess.run(
                [cmd, *args],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
            return int(proc.returncode), str(proc.stdout or ""), str(proc.stderr or "")
        except Exception as exc:
            return 127, "", str(exc)

    def run(self, argv: Sequence[str]) -> bool:
        rc, _out, err = self.execute(argv)
        if rc == 0:
            return True
        logger.warning("command failed rc=%s: %s: %s", rc, shlex.join(argv), err.strip())
        return False

    def run_best_effort(self, argv: Sequence[str]) -> None:
        rc, _out, err = self.execute(argv)
        if rc != 0:
            logger.debug("ignored rc=%s: %s: %s", rc, shlex.join(argv), err.strip())
