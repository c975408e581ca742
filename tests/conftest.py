"""Test configuration for pytest."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

import pytest

# Ensure the project root is on ``sys.path`` so tests can import the package
# without requiring an editable install.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from ratelimitd.service import RateLimitService  # noqa: E402
from ratelimitd.shaper import mirror_name  # noqa: E402
from ratelimitd.tc_cmd import RuleExecutor  # noqa: E402


def _opt(argv: Sequence[str], key: str) -> Optional[str]:
    for i, tok in enumerate(argv[:-1]):
        if tok == key:
            return argv[i + 1]
    return None


@dataclass
class DevState:
    root: bool = False
    classes: Set[str] = field(default_factory=set)
    # handle -> (direction, mac, flowid)
    filters: Dict[str, Tuple[str, str, str]] = field(default_factory=dict)
    ingress: bool = False
    redirect: Optional[str] = None


class FakeKernel(RuleExecutor):
    """In-memory model of the tc/ip objects the shaper manipulates."""

    def __init__(self, interfaces: Sequence[str] = ("lan0", "lan1", "wan")):
        super().__init__(timeout=1.0, dry_run=False)
        self.interfaces: Set[str] = set(interfaces)
        self.ifbs: Set[str] = set()
        self.devs: Dict[str, DevState] = {}
        self.calls: List[List[str]] = []
        self._failures: List[List] = []

    # -- test helpers --------------------------------------------------

    def fail_when(self, pred: Callable[[List[str]], bool], times: Optional[int] = None) -> None:
        self._failures.append([pred, times])

    def clear_failures(self) -> None:
        self._failures.clear()

    def flap(self, name: str) -> None:
        """Link down/up: the kernel drops all qdiscs of the interface."""
        self.devs.pop(name, None)

    def client_rules(self) -> Set[Tuple[str, str, str, str]]:
        out = set()
        for dev, st in self.devs.items():
            for _handle, (direction, mac, flowid) in st.filters.items():
                out.add((dev, direction, mac, flowid))
        return out

    def leaf_classes(self, dev: str) -> Set[str]:
        st = self.devs.get(dev)
        if st is None:
            return set()
        return {c for c in st.classes if c not in ("1:1", "1:2")}

    def installed(self, name: str) -> bool:
        st = self.devs.get(name)
        ifb = mirror_name(name)
        return bool(st and st.root and st.redirect == ifb and ifb in self.ifbs and self.devs.get(ifb, DevState()).root)

    # -- executor --------------------------------------------------------

    def _exists(self, dev: str) -> bool:
        return dev in self.interfaces or dev in self.ifbs

    def execute(self, argv: Sequence[str]) -> Tuple[int, str, str]:
        argv = list(argv)
        self.calls.append(argv)
        for entry in self._failures:
            pred, times = entry
            if pred(argv) and (times is None or times > 0):
                if times is not None:
                    entry[1] = times - 1
                return 2, "", "injected failure"
        try:
            ok = self._apply(argv)
        except KeyError:
            ok = False
        return (0, "", "") if ok else (2, "", "RTNETLINK answers: No such file or directory")

    def _apply(self, argv: List[str]) -> bool:
        tool = argv[0]
        if tool == "ip":
            return self._ip(argv)
        obj, verb = argv[1], argv[2]
        dev = _opt(argv, "dev")
        if dev is None or not self._exists(dev):
            return False
        st = self.devs.setdefault(dev, DevState())

        if obj == "qdisc":
            if "root" in argv:
                if verb == "del":
                    if not st.root:
                        return False
                    st.root, st.classes, st.filters = False, set(), {}
                    return True
                if not st.root:
                    st.root, st.classes, st.filters = True, set(), {}
                return True
            if "ingress" in argv:
                if verb == "del":
                    if not st.ingress:
                        return False
                    st.ingress, st.redirect = False, None
                    return True
                st.ingress = True
                return True
            # leaf qdisc under a class
            return _opt(argv, "parent") in st.classes

        if obj == "class":
            classid = _opt(argv, "classid")
            parent = _opt(argv, "parent")
            if not st.root:
                return False
            if verb == "del":
                if classid not in st.classes:
                    return False
                if any(flowid == classid for (_d, _m, flowid) in st.filters.values()):
                    return False
                st.classes.discard(classid)
                return True
            if parent != "1:" and parent not in st.classes:
                return False
            st.classes.add(classid)
            return True

        if obj == "filter":
            parent = _opt(argv, "parent")
            if parent == "ffff:":
                # ... action mirred egress redirect dev <ifb>
                target = argv[-1]
                if not st.ingress or target not in self.ifbs:
                    return False
                st.redirect = target
                return True
            handle = _opt(argv, "handle")
            if verb == "del":
                if not st.root or handle not in st.filters:
                    return False
                del st.filters[handle]
                return True
            flowid = _opt(argv, "flowid")
            if not st.root or handle in st.filters or flowid not in st.classes:
                return False
            direction = "dst" if "dst" in argv else "src"
            st.filters[handle] = (direction, _opt(argv, direction), flowid)
            return True
        return False

    def _ip(self, argv: List[str]) -> bool:
        verb = argv[2]
        if verb == "add":
            name = _opt(argv, "name")
            if name in self.ifbs or name in self.interfaces:
                return False
            self.ifbs.add(name)
            return True
        name = _opt(argv, "dev")
        if name not in self.ifbs:
            return False
        if verb == "del":
            self.ifbs.discard(name)
            self.devs.pop(name, None)
        return True


@pytest.fixture
def kernel() -> FakeKernel:
    return FakeKernel()


@pytest.fixture
def service(kernel: FakeKernel) -> RateLimitService:
    return RateLimitService(kernel)
