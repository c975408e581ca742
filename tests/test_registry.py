from __future__ import annotations

import pytest

from ratelimitd.registry import Device, DeviceRegistry, normalize_mac, validate_ifname


def test_normalize_mac():
    assert normalize_mac("AA:BB:CC:DD:EE:FF") == "aa:bb:cc:dd:ee:ff"
    assert normalize_mac(" aa-bb-cc-dd-ee-ff ") == "aa:bb:cc:dd:ee:ff"


@pytest.mark.parametrize("bad", ["", "aa:bb:cc:dd:ee", "zz:bb:cc:dd:ee:ff", "aa:bb:cc:dd:ee:ff:00"])
def test_normalize_mac_rejects(bad):
    with pytest.raises(ValueError):
        normalize_mac(bad)


def test_validate_ifname():
    assert validate_ifname("lan0") == "lan0"
    assert validate_ifname("br-lan.10") == "br-lan.10"
    for bad in ("", "a" * 16, "eth 0", "lan0;rm"):
        with pytest.raises(ValueError):
            validate_ifname(bad)


def test_device_client_ids_reuse_gaps():
    dev = Device(name="lan0")
    macs = [f"aa:bb:cc:dd:ee:0{i}" for i in range(3)]
    assert [dev.add_client(m).id for m in macs] == [0, 1, 2]

    dropped = dev.drop_client(macs[1])
    assert dropped is not None and dropped.id == 1
    assert dev.get_client(macs[1]) is None

    new = dev.add_client("aa:bb:cc:dd:ee:99")
    assert new.id == 1
    assert dev.slots.get(1) is new


def test_drop_unknown_client_is_noop():
    dev = Device(name="lan0")
    assert dev.drop_client("aa:bb:cc:dd:ee:ff") is None
    assert len(dev.slots) == 0


def test_registry_find_clients_across_devices():
    reg = DeviceRegistry()
    lan, wan = reg.add("lan0"), reg.add("wan")
    lan.add_client("aa:bb:cc:dd:ee:ff")
    wan.add_client("11:22:33:44:55:66")
    wan.add_client("aa:bb:cc:dd:ee:ff")

    found = reg.find_clients("aa:bb:cc:dd:ee:ff")
    assert sorted(d.name for d, _c in found) == ["lan0", "wan"]
    assert reg.names() == ["lan0", "wan"]
    assert "lan0" in reg and len(reg) == 2

    reg.pop("lan0")
    assert reg.get("lan0") is None
