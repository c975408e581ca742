from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

from .models import Status, normalize_rate
from .reconcile import Reconciler
from .registry import DeviceRegistry, normalize_mac, validate_ifname
from .shaper import MAX_CLIENTS, Shaper, mirror_name
from .storage import Profile
from .tc_cmd import RuleExecutor

logger = logging.getLogger(__name__)


class RateLimitService:
    """Request dispatcher.

    Every operation runs to completion under one lock, so the registry only
    ever sees a single logical thread of control.
    """

    def __init__(
        self,
        executor: Optional[RuleExecutor] = None,
        defaults: Optional[Dict[str, Profile]] = None,
        shaper: Optional[Shaper] = None,
    ):
        self.shaper = shaper or Shaper(executor or RuleExecutor())
        self.registry = DeviceRegistry()
        self.reconciler = Reconciler(self.registry, self.shaper)
        self.defaults: Dict[str, Profile] = dict(defaults or {})
        self._lock = threading.Lock()

    @staticmethod
    def _resolve_rates(
        rate: Any, rate_egress: Any, rate_ingress: Any
    ) -> Tuple[Optional[str], Optional[str]]:
        both = normalize_rate(rate)
        egress = normalize_rate(rate_egress) or both
        ingress = normalize_rate(rate_ingress) or both
        return egress, ingress

    def defaults_set(
        self,
        name: Optional[str],
        rate: Any = None,
        rate_egress: Any = None,
        rate_ingress: Any = None,
    ) -> Status:
        name = str(name or "").strip()
        if not name:
            return Status.INVALID_ARGUMENT
        try:
            egress, ingress = self._resolve_rates(rate, rate_egress, rate_ingress)
        except ValueError as exc:
            logger.info("defaults.set %s rejected: %s", name, exc)
            return Status.INVALID_ARGUMENT
        if egress is None and ingress is None:
            return Status.INVALID_ARGUMENT
        with self._lock:
            self.defaults[name] = (egress, ingress)
        logger.info("defaults %s: egress=%s ingress=%s", name, egress, ingress)
        return Status.OK

    def client_set(
        self,
        device: Optional[str],
        address: Optional[str],
        rate: Any = None,
        rate_egress: Any = None,
        rate_ingress: Any = None,
        defaults: Optional[str] = None,
    ) -> Status:
        if not device or not address:
            return Status.INVALID_ARGUMENT
        try:
            name = validate_ifname(device)
            mac = normalize_mac(address)
            egress, ingress = self._resolve_rates(rate, rate_egress, rate_ingress)
        except ValueError as exc:
            logger.info("client.set rejected: %s", exc)
            return Status.INVALID_ARGUMENT

        with self._lock:
            profile = self.defaults.get(defaults) if defaults else None
            if profile is not None:
                egress = egress or profile[0]
                ingress = ingress or profile[1]
            if egress is None and ingress is None:
                return Status.INVALID_ARGUMENT

            dev = self.reconciler.ensure_device(name)
            if dev is None:
                return Status.INVALID_ARGUMENT

            client = dev.get_client(mac)
            if client is None:
                if len(dev.slots) >= MAX_CLIENTS:
                    logger.error("client.set %s on %s: device is full (%d clients)", mac, name, MAX_CLIENTS)
                    return Status.UNKNOWN_ERROR
                client = dev.add_client(mac)
            if not self.reconciler.set_client(dev, client, egress, ingress):
                return Status.UNKNOWN_ERROR
        logger.info("client %s on %s: egress=%s ingress=%s id=%d", mac, name, egress, ingress, client.id)
        return Status.OK

    def client_delete(self, address: Optional[str], device: Optional[str] = None) -> Status:
        if not address:
            return Status.INVALID_ARGUMENT
        try:
            mac = normalize_mac(address)
        except ValueError:
            return Status.INVALID_ARGUMENT

        with self._lock:
            if device:
                dev = self.registry.get(device)
                client = dev.get_client(mac) if dev is not None else None
                if dev is None or client is None:
                    return Status.NOT_FOUND
                self.reconciler.evict(dev, client)
                logger.info("client %s removed from %s", mac, dev.name)
                return Status.OK

            for dev, client in self.registry.find_clients(mac):
                self.reconciler.evict(dev, client)
                logger.info("client %s removed from %s", mac, dev.name)
        return Status.OK

    def device_delete(self, device: Optional[str]) -> Status:
        if not device:
            return Status.INVALID_ARGUMENT
        with self._lock:
            dev = self.registry.get(device)
            if dev is None:
                return Status.NOT_FOUND
            self.reconciler.forget_device(dev)
        logger.info("device %s removed", device)
        return Status.OK

    def reload(self) -> Tuple[Status, Dict[str, Any]]:
        with self._lock:
            summary = self.reconciler.reload()
        return Status.OK, summary

    def status(self) -> Dict[str, Any]:
        with self._lock:
            devices = [
                {
                    "name": dev.name,
                    "mirror": mirror_name(dev.name),
                    "degraded": dev.degraded,
                    "clients": [
                        {
                            "address": c.address,
                            "id": c.id,
                            "rate_egress": c.rate_egress,
                            "rate_ingress": c.rate_ingress,
                        }
                        for _idx, c in dev.slots.items()
                    ],
                }
                for dev in self.registry
            ]
            defaults = {k: {"rate_egress": v[0], "rate_ingress": v[1]} for k, v in sorted(self.defaults.items())}
        return {"devices": devices, "defaults": defaults}

    def device_names(self) -> List[str]:
        with self._lock:
            return self.registry.names()

    def shutdown(self) -> None:
        with self._lock:
            self.reconciler.shutdown()
        logger.info("all devices uninstalled")
