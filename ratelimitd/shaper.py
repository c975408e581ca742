from __future__ import annotations

import hashlib
import logging
from enum import Enum
from typing import List, Optional

from .config import CFG
from .registry import Client, Device
from .tc_cmd import RuleExecutor

logger = logging.getLogger(__name__)

IFNAMSIZ = 16
MIRROR_PREFIX = "ifb-"
# hashed mirrors never contain "-" after "ifb", so they cannot clash with the plain form
HASHED_MIRROR_PREFIX = "ifb"

# 1:0 is the root qdisc, 1:1 the base class, 1:2 the default class
BASE_CLASS = 1
DEFAULT_CLASS = 2
CLIENT_ID_OFFSET = 3

# u32 node ids are 12 bits, leaf ids share them with the filter handle
MAX_LEAF_ID = 0xFFF
MAX_CLIENTS = MAX_LEAF_ID - CLIENT_ID_OFFSET + 1

FILTER_PRIO = "1"
REDIRECT_PRIO = "10"
FQ_CODEL_OPTS = ["flows", "128", "limit", "800", "quantum", "300", "noecn"]


def mirror_name(name: str) -> str:
    """IFB device name for ``name``, unique per interface within IFNAMSIZ."""
    plain = MIRROR_PREFIX + name
    if len(plain) <= IFNAMSIZ - 1:
        return plain
    digest = hashlib.sha1(name.encode("utf-8")).hexdigest()
    return HASHED_MIRROR_PREFIX + digest[: IFNAMSIZ - 1 - len(HASHED_MIRROR_PREFIX)]


def leaf_id(client_id: int) -> str:
    return f"{client_id + CLIENT_ID_OFFSET:x}"


class Direction(Enum):
    """Which device a client rule lives on and which MAC field it matches."""

    EGRESS = "dst"
    INGRESS = "src"

    def target(self, device_name: str) -> str:
        if self is Direction.EGRESS:
            return device_name
        return mirror_name(device_name)

    def rate_of(self, client: Client) -> Optional[str]:
        if self is Direction.EGRESS:
            return client.rate_egress
        return client.rate_ingress


class Shaper:
    """Translates device and client state into tc/ip commands."""

    def __init__(
        self,
        executor: RuleExecutor,
        root_rate: str = CFG.root_rate,
        default_rate: str = CFG.default_rate,
        burst: str = CFG.burst,
    ):
        self.executor = executor
        self.root_rate = root_rate
        self.default_rate = default_rate
        self.burst = burst

    # ------------------------------------------------------------------
    # device lifecycle

    def _root_hierarchy_cmds(self, dev: str) -> List[List[str]]:
        return [
            ["tc", "qdisc", "replace", "dev", dev, "root", "handle", "1:", "htb", "default", str(DEFAULT_CLASS)],
            [
                "tc", "class", "replace", "dev", dev, "parent", "1:", "classid", f"1:{BASE_CLASS:x}",
                "htb", "rate", self.root_rate, "ceil", self.root_rate, "burst", self.burst,
            ],
            [
                "tc", "class", "replace", "dev", dev, "parent", f"1:{BASE_CLASS:x}", "classid", f"1:{DEFAULT_CLASS:x}",
                "htb", "rate", self.default_rate, "ceil", self.root_rate, "burst", self.burst, "prio", "1",
            ],
            [
                "tc", "qdisc", "replace", "dev", dev, "parent", f"1:{DEFAULT_CLASS:x}",
                "handle", f"{DEFAULT_CLASS:x}:", "fq_codel", *FQ_CODEL_OPTS,
            ],
        ]

    def _mirror_cmds(self, dev: str, ifb: str) -> List[List[str]]:
        return [
            ["ip", "link", "add", "name", ifb, "type", "ifb"],
            ["ip", "link", "set", "dev", ifb, "up"],
            ["tc", "qdisc", "replace", "dev", dev, "handle", "ffff:", "ingress"],
            [
                "tc", "filter", "add", "dev", dev, "parent", "ffff:", "protocol", "all", "prio", REDIRECT_PRIO,
                "u32", "match", "u32", "0", "0", "action", "mirred", "egress", "redirect", "dev", ifb,
            ],
        ]

    def install_device(self, name: str) -> bool:
        """Rebuild root hierarchy and ingress mirror from scratch.

        On failure everything installed so far is torn down again and False
        is returned.
        """
        self.uninstall_device(name)
        ifb = mirror_name(name)
        cmds = self._root_hierarchy_cmds(name) + self._mirror_cmds(name, ifb) + self._root_hierarchy_cmds(ifb)
        for argv in cmds:
            if not self.executor.run(argv):
                logger.error("device %s: install failed, rolling back", name)
                self.uninstall_device(name)
                return False
        logger.info("device %s: shaping installed (mirror %s)", name, ifb)
        return True

    def uninstall_device(self, name: str) -> None:
        ifb = mirror_name(name)
        self.executor.run_best_effort(["tc", "qdisc", "del", "dev", name, "ingress"])
        self.executor.run_best_effort(["ip", "link", "del", "dev", ifb])
        self.executor.run_best_effort(["tc", "qdisc", "del", "dev", name, "root"])

    # ------------------------------------------------------------------
    # per-client rules

    def _leaf_cmds(self, direction: Direction, device: Device, client: Client, rate: str) -> List[List[str]]:
        dev = direction.target(device.name)
        lid = leaf_id(client.id)
        return [
            [
                "tc", "class", "replace", "dev", dev, "parent", f"1:{BASE_CLASS:x}", "classid", f"1:{lid}",
                "htb", "rate", rate, "ceil", rate, "burst", self.burst,
            ],
            ["tc", "qdisc", "replace", "dev", dev, "parent", f"1:{lid}", "handle", f"{lid}:", "fq_codel", *FQ_CODEL_OPTS],
            [
                "tc", "filter", "add", "dev", dev, "parent", "1:", "protocol", "all", "prio", FILTER_PRIO,
                "handle", f"800::{lid}", "u32", "match", "ether", direction.value, client.address,
                "flowid", f"1:{lid}",
            ],
        ]

    def _remove_leaf(self, direction: Direction, device: Device, client: Client) -> None:
        dev = direction.target(device.name)
        lid = leaf_id(client.id)
        # filter first, the class cannot go while a filter points at it
        self.executor.run_best_effort(
            ["tc", "filter", "del", "dev", dev, "parent", "1:", "protocol", "all", "prio", FILTER_PRIO,
             "handle", f"800::{lid}", "u32"]
        )
        self.executor.run_best_effort(
            ["tc", "class", "del", "dev", dev, "parent", f"1:{BASE_CLASS:x}", "classid", f"1:{lid}"]
        )

    def apply_client(self, device: Device, client: Client) -> bool:
        for direction in Direction:
            self._remove_leaf(direction, device, client)

        for direction in Direction:
            rate = direction.rate_of(client)
            if not rate:
                continue
            for argv in self._leaf_cmds(direction, device, client, rate):
                if not self.executor.run(argv):
                    logger.warning(
                        "device %s client %s: %s rule failed, rolling back",
                        device.name, client.address, direction.name.lower(),
                    )
                    for d in Direction:
                        self._remove_leaf(d, device, client)
                    return False
        return True

    def remove_client(self, device: Device, client: Client) -> None:
        for direction in Direction:
            if direction.rate_of(client):
                self._remove_leaf(direction, device, client)
