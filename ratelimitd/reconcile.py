from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .registry import Client, Device, DeviceRegistry
from .shaper import Shaper, mirror_name

logger = logging.getLogger(__name__)


class Reconciler:
    """Keeps the kernel in line with the registry.

    The registry is the source of truth.  A client only stays recorded while
    its rates are enforced; the single exception is a device whose base
    hierarchy could not be rebuilt during ``reload``, which is kept and
    flagged ``degraded`` until the next successful install.
    """

    def __init__(self, registry: DeviceRegistry, shaper: Shaper):
        self.registry = registry
        self.shaper = shaper

    def ensure_device(self, name: str) -> Optional[Device]:
        dev = self.registry.get(name)
        if dev is not None:
            return dev
        clash = self._mirror_clash(name)
        if clash is not None:
            logger.error(
                "device %s: mirror %s collides with device %s, refusing", name, mirror_name(name), clash
            )
            return None
        if not self.shaper.install_device(name):
            return None
        return self.registry.add(name)

    def _mirror_clash(self, name: str) -> Optional[str]:
        """Registered device whose interface or mirror overlaps with those of ``name``."""
        mine = {name, mirror_name(name)}
        for dev in self.registry:
            if mine & {dev.name, mirror_name(dev.name)}:
                return dev.name
        return None

    def evict(self, device: Device, client: Client) -> None:
        self.shaper.remove_client(device, client)
        device.drop_client(client.address)

    def forget_device(self, device: Device) -> None:
        self.shaper.uninstall_device(device.name)
        self.registry.pop(device.name)

    def _recover_device(self, device: Device, retry: Client) -> bool:
        """Reinstall ``device`` and replay every client except ``retry``."""
        if not self.shaper.install_device(device.name):
            logger.error(
                "device %s: recovery install failed, dropping device and %d client(s)",
                device.name, len(device.clients),
            )
            self.registry.pop(device.name)
            return False
        device.degraded = False
        for client in sorted(device.clients.values(), key=lambda c: c.id):
            if client is retry:
                continue
            if not self.shaper.apply_client(device, client):
                logger.error("device %s client %s: replay failed after recovery, evicting", device.name, client.address)
                device.drop_client(client.address)
        return True

    def set_client(self, device: Device, client: Client, egress: Optional[str], ingress: Optional[str]) -> bool:
        if client.rates == (egress, ingress):
            return True

        client.rate_egress = egress
        client.rate_ingress = ingress

        if not device.degraded and self.shaper.apply_client(device, client):
            return True

        logger.warning("device %s client %s: apply failed, resetting device and retrying", device.name, client.address)
        if self._recover_device(device, client) and self.shaper.apply_client(device, client):
            logger.info("device %s client %s: applied after device reset", device.name, client.address)
            return True

        logger.error("device %s client %s: cannot enforce rates, evicting", device.name, client.address)
        device.drop_client(client.address)
        return False

    def reload(self) -> Dict[str, Any]:
        summary: Dict[str, Any] = {"devices": 0, "clients": 0, "degraded": [], "evicted": []}
        for device in self.registry:
            summary["devices"] += 1
            if not self.shaper.install_device(device.name):
                device.degraded = True
                summary["degraded"].append(device.name)
                logger.error(
                    "reload: device %s could not be reinstalled, %d client(s) recorded but NOT enforced",
                    device.name, len(device.clients),
                )
                continue
            device.degraded = False

            evicted: List[str] = []
            for client in sorted(device.clients.values(), key=lambda c: c.id):
                if self.shaper.apply_client(device, client):
                    summary["clients"] += 1
                    continue
                logger.error("reload: device %s client %s: replay failed, evicting", device.name, client.address)
                evicted.append(client.address)
            for address in evicted:
                device.drop_client(address)
                summary["evicted"].append(f"{device.name}/{address}")

        logger.info(
            "reload done: devices=%d clients=%d degraded=%d evicted=%d",
            summary["devices"], summary["clients"], len(summary["degraded"]), len(summary["evicted"]),
        )
        return summary

    def shutdown(self) -> None:
        for device in self.registry:
            self.shaper.uninstall_device(device.name)
        self.registry.clear()
