from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

from .slots import SlotArena

_MAC_RE = re.compile(r"^[0-9a-f]{2}([:-][0-9a-f]{2}){5}$")
_IFNAME_RE = re.compile(r"^[A-Za-z0-9_.@:+-]{1,15}$")


def normalize_mac(addr: str) -> str:
    s = str(addr or "").strip().lower()
    if not _MAC_RE.match(s):
        raise ValueError(f"invalid link-layer address: {addr!r}")
    return s.replace("-", ":")


def validate_ifname(name: str) -> str:
    s = str(name or "").strip()
    if not _IFNAME_RE.match(s) or s in (".", ".."):
        raise ValueError(f"invalid interface name: {name!r}")
    return s


@dataclass
class Client:
    address: str
    id: int
    rate_egress: Optional[str] = None
    rate_ingress: Optional[str] = None

    @property
    def rates(self) -> Tuple[Optional[str], Optional[str]]:
        return self.rate_egress, self.rate_ingress


@dataclass
class Device:
    name: str
    clients: Dict[str, Client] = field(default_factory=dict)
    slots: SlotArena[Client] = field(default_factory=SlotArena)
    # set when a reload could not rebuild the base hierarchy
    degraded: bool = False

    def get_client(self, address: str) -> Optional[Client]:
        return self.clients.get(address)

    def add_client(self, address: str) -> Client:
        client = Client(address=address, id=-1)
        client.id = self.slots.allocate(client)
        self.clients[address] = client
        return client

    def drop_client(self, address: str) -> Optional[Client]:
        client = self.clients.pop(address, None)
        if client is not None:
            self.slots.free(client.id)
        return client


class DeviceRegistry:
    """Interface name -> Device.  Presence means the base hierarchy is installed."""

    def __init__(self) -> None:
        self._devices: Dict[str, Device] = {}

    def get(self, name: str) -> Optional[Device]:
        return self._devices.get(name)

    def add(self, name: str) -> Device:
        dev = Device(name=name)
        self._devices[name] = dev
        return dev

    def pop(self, name: str) -> Optional[Device]:
        return self._devices.pop(name, None)

    def names(self) -> List[str]:
        return sorted(self._devices)

    def find_clients(self, address: str) -> List[Tuple[Device, Client]]:
        out: List[Tuple[Device, Client]] = []
        for dev in self._devices.values():
            client = dev.get_client(address)
            if client is not None:
                out.append((dev, client))
        return out

    def clear(self) -> None:
        self._devices.clear()

    def __iter__(self) -> Iterator[Device]:
        return iter(list(self._devices.values()))

    def __len__(self) -> int:
        return len(self._devices)

    def __contains__(self, name: object) -> bool:
        return name in self._devices
