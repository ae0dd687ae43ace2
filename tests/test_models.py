"""Tests for the device catalog."""

import json

import pytest

from wch_isp.errors import DeviceNotFoundError
from wch_isp.models import (
    Connection,
    find_device_by_index,
    find_device_index_by_name,
    get_device,
    list_devices,
    list_families,
    load_catalog,
    reset_catalog,
)


@pytest.fixture(autouse=True)
def builtin_catalog():
    reset_catalog()
    yield
    reset_catalog()


def test_families_are_ordered_and_non_empty():
    families = list_families()
    assert families[0].name == "CH32V003"
    assert all(family.devices for family in families)


def test_lookup_by_index():
    device = find_device_by_index("0:0")
    assert device.name == "CH32V003F4P6"
    assert (device.variant, device.type) == (0x30, 0x21)
    assert device.flash_size == 16 * 1024


@pytest.mark.parametrize("specifier", ["0", "a:b", "0:0:0", "99:0", "0:99", "-1:0"])
def test_bad_index(specifier):
    with pytest.raises(DeviceNotFoundError, match="invalid specifier"):
        find_device_by_index(specifier)


def test_lookup_by_name_is_case_insensitive():
    assert find_device_index_by_name("ch32v003f4p6") == "0:0"
    assert get_device(" ch32v003j4m6 ").name == "CH32V003J4M6"
    assert find_device_index_by_name("nope") is None


def test_get_device_unknown_name():
    with pytest.raises(DeviceNotFoundError, match="Unknown device"):
        get_device("CH32V999")


def test_get_device_accepts_index():
    assert get_device("0:1").name == "CH32V003F4U6"


def test_every_index_round_trips():
    for device in list_devices():
        index = find_device_index_by_name(device.name)
        assert find_device_by_index(index).name == device.name


def test_connections():
    assert not get_device("CH32V003F4P6").supports(Connection.USB)
    assert get_device("CH32V203C8T6").supports(Connection.USB)


def test_label_and_dict():
    device = get_device("CH32V003F4P6")
    assert device.label == "CH32V003F4P6 (TSSOP20, 16 KiB)"
    assert device.to_dict()["variant"] == "0x30"
    assert device.to_dict()["connections"] == ["serial"]


class TestCatalogFile:
    def test_load(self, tmp_path):
        path = tmp_path / "devices.json"
        path.write_text(json.dumps([{
            "family": "Test",
            "devices": [{
                "name": "TESTCHIP",
                "package": "QFN8",
                "variant": 0x10,
                "type": 0x20,
                "flash": {"size": 8192},
                "connections": ["usb"],
            }],
        }]))
        families = load_catalog(path)
        assert [f.name for f in families] == ["Test"]
        device = get_device("0:0")
        assert device.name == "TESTCHIP"
        assert device.connections == (Connection.USB,)

    def test_missing_field(self, tmp_path):
        path = tmp_path / "devices.json"
        path.write_text(json.dumps([{"family": "Test", "devices": [{"name": "X"}]}]))
        with pytest.raises(ValueError, match="device catalog"):
            load_catalog(path)
        assert list_families()[0].name == "CH32V003"

    def test_reset_restores_builtin(self, tmp_path):
        path = tmp_path / "devices.json"
        path.write_text("[]")
        load_catalog(path)
        assert list_families() == []
        reset_catalog()
        assert find_device_index_by_name("CH32V003F4P6") == "0:0"
