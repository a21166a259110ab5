import json
from unittest.mock import patch

import pytest

from multipath_utils import install
from multipath_utils.multipathConfig import generate_multipath_config, list_multipath_entries

ENTRY = {
    "storageId": "iscsi-storage1",
    "target": "iqn.2001-04.com.example:storage.target",
    "lun": 1,
    "wwid": "36001405abcd1234",
    "alias": "mydisk1",
}

EXISTING = """defaults {
    user_friendly_names yes
}

multipaths {
    multipath {
        wwid "36001405aaaa"
        alias "disk1"
    }
}
"""


@pytest.fixture
def conf(tmp_path):
    return tmp_path / "multipath.conf"


@pytest.fixture
def externals():
    """Replace every external command used by the flows."""
    names = ["ensure_iscsi_tools", "ensure_multipath_tools", "bind_iscsi_luns",
             "restart_multipath_service", "show_multipath_status"]
    patchers = {name: patch(f"multipath_utils.install.{name}", return_value=True) for name in names}
    mocks = {name: patcher.start() for name, patcher in patchers.items()}
    yield mocks
    for patcher in patchers.values():
        patcher.stop()


def write_config(tmp_path, data):
    path = tmp_path / "config.json"
    path.write_text(json.dumps(data))
    return str(path)


class TestLoadConfig:
    def test_valid_config(self, tmp_path):
        path = write_config(tmp_path, {"portal": "192.168.10.5", "entries": [ENTRY]})
        assert install.load_config(path)["entries"] == [ENTRY]

    def test_invalid_entry(self, tmp_path):
        path = write_config(tmp_path, {"portal": "192.168.10.5", "entries": [dict(ENTRY, alias="my disk")]})
        with pytest.raises(ValueError, match="Entry 1: Invalid alias"):
            install.load_config(path)

    def test_not_an_object(self, tmp_path):
        path = write_config(tmp_path, [ENTRY])
        with pytest.raises(ValueError):
            install.load_config(path)


def test_install_flow_writes_new_config(conf, externals):
    conf.write_text(EXISTING)
    config = {"portal": "192.168.10.5", "entries": [ENTRY], "device": {"vendor": "PURE", "product": "FlashArray"}}

    assert install.main("install", config, str(conf)) == 0

    assert conf.read_text() == generate_multipath_config([ENTRY], vendor="PURE", product="FlashArray")
    assert len(list(conf.parent.glob("multipath.conf.backup.*"))) == 1
    externals["bind_iscsi_luns"].assert_called_once_with([ENTRY], "192.168.10.5")
    externals["restart_multipath_service"].assert_called_once()
    externals["show_multipath_status"].assert_called_once()


def test_install_flow_stops_when_binding_fails(conf, externals):
    externals["bind_iscsi_luns"].return_value = False

    with pytest.raises(SystemExit):
        install.main("install", {"portal": "192.168.10.5", "entries": [ENTRY]}, str(conf))

    assert not conf.exists()
    externals["ensure_multipath_tools"].assert_not_called()


def test_add_flow_inserts_entries(conf, externals):
    conf.write_text(EXISTING)

    install.main("add", {"portal": "192.168.10.5", "entries": [ENTRY]}, str(conf), restart=False)

    assert list_multipath_entries(conf.read_text()) == [
        {"wwid": "36001405aaaa", "alias": "disk1"},
        {"wwid": "36001405abcd1234", "alias": "mydisk1"},
    ]
    assert conf.read_text().startswith(EXISTING[:-2])
    externals["restart_multipath_service"].assert_not_called()


def test_add_flow_requires_existing_config(conf, externals):
    with pytest.raises(SystemExit):
        install.main("add", {"portal": "192.168.10.5", "entries": [ENTRY]}, str(conf), restart=False)
    externals["bind_iscsi_luns"].assert_not_called()


def test_remove_flow(conf, externals):
    conf.write_text(EXISTING)

    install.main("remove", multipathConf=str(conf), wwid="36001405aaaa", restart=True)

    assert conf.read_text() == "defaults {\n    user_friendly_names yes\n}\n\nmultipaths {\n}\n"
    assert len(list(conf.parent.glob("multipath.conf.backup.*"))) == 1
    externals["restart_multipath_service"].assert_called_once()


def test_remove_flow_unknown_wwid(conf, externals, capsys):
    conf.write_text(EXISTING)

    install.main("remove", multipathConf=str(conf), wwid="36001405ffff", restart=True)

    assert conf.read_text() == EXISTING
    assert "Nothing changed" in capsys.readouterr().out
    externals["restart_multipath_service"].assert_not_called()


@patch("multipath_utils.install.ask_yes_no", return_value=False)
@patch("multipath_utils.install.ask_wwid_to_remove", return_value="36001405aaaa")
def test_remove_flow_interactive(mock_ask_wwid, mock_ask_restart, conf, externals):
    conf.write_text(EXISTING)

    install.main("remove", multipathConf=str(conf))

    mock_ask_wwid.assert_called_once_with([{"wwid": "36001405aaaa", "alias": "disk1"}])
    mock_ask_restart.assert_called_once()
    assert "36001405aaaa" not in conf.read_text()
    externals["restart_multipath_service"].assert_not_called()


@patch("multipath_utils.install.main_menu", return_value="exit")
def test_menu_exit(mock_menu, externals):
    assert install.main() == 0
    mock_menu.assert_called_once()


def test_cli_requires_root(monkeypatch, capsys):
    monkeypatch.setattr(install.os, "geteuid", lambda: 1000)
    assert install.cli(["--action", "remove", "--wwid", "3600"]) == 1
    assert "root privileges" in capsys.readouterr().err


def test_cli_with_config_file(tmp_path, conf, monkeypatch, externals):
    monkeypatch.setattr(install.os, "geteuid", lambda: 0)
    conf.write_text(EXISTING)
    path = write_config(tmp_path, {"portal": "192.168.10.5", "entries": [ENTRY], "multipathConf": str(conf)})

    assert install.cli(["--action", "add", "--config", path, "--no-restart"]) == 0

    assert '"36001405abcd1234"' in conf.read_text()
    externals["restart_multipath_service"].assert_not_called()


def test_cli_rejects_bad_config(tmp_path, monkeypatch, capsys):
    monkeypatch.setattr(install.os, "geteuid", lambda: 0)
    path = tmp_path / "config.json"
    path.write_text("{not json")

    assert install.cli(["--action", "install", "--config", str(path)]) == 1
    assert "Error reading config file" in capsys.readouterr().err


@pytest.mark.parametrize("wwid", [" ", "", "{", "}", "disk 1", '"36001405aaaa"'])
def test_remove_flow_rejects_unsafe_wwid(conf, externals, wwid):
    conf.write_text(EXISTING)

    with pytest.raises(SystemExit):
        install.main("remove", multipathConf=str(conf), wwid=wwid, restart=True)

    assert conf.read_text() == EXISTING
    assert list(conf.parent.glob("multipath.conf.backup.*")) == []


def test_cli_blank_wwid_keeps_every_alias(tmp_path, conf, monkeypatch, externals, capsys):
    monkeypatch.setattr(install.os, "geteuid", lambda: 0)
    conf.write_text(EXISTING.replace("}\n}\n", "}\n    multipath {\n        wwid \"36001405bbbb\"\n    }\n}\n"))
    before = conf.read_text()

    with pytest.raises(SystemExit):
        install.cli(["--action", "remove", "--wwid", " ", "--multipath-conf", str(conf), "--no-restart"])

    assert conf.read_text() == before
    assert "Invalid WWID" in capsys.readouterr().err


def test_remove_flow_strips_wwid(conf, externals):
    conf.write_text(EXISTING)

    install.main("remove", multipathConf=str(conf), wwid="  36001405aaaa\n", restart=False)

    assert "36001405aaaa" not in conf.read_text()


@pytest.mark.parametrize("data, message", [
    ({"portal": "192.168.10.5", "entries": {"wwid": "3600"}}, "'entries' must be a list"),
    ({"portal": "192.168.10.5", "entries": ["3600"]}, "Entry 1: must be an object"),
    ({"portal": "192.168.10.5", "entries": []}, "'entries' must not be empty"),
    ({"portal": "192.168.10.5", "entries": [ENTRY], "device": "Nimble"}, "'device' must be an object"),
    ({"portal": "192.168.10.5", "entries": [ENTRY], "device": {"vendor": 'Nim"ble'}}, "Invalid device vendor"),
    ({"portal": "192.168.10.5", "entries": [ENTRY], "device": {"product": "Server}"}}, "Invalid device product"),
    ({"entries": [ENTRY]}, "Missing 'portal'"),
    ({"portal": "192.168.10.5"}, "Missing 'entries'"),
    ({"multipathConf": ["/etc/multipath.conf"]}, "'multipathConf' must be a path string"),
])
def test_load_config_rejects_malformed_shapes(tmp_path, data, message):
    with pytest.raises(ValueError, match=message):
        install.load_config(write_config(tmp_path, data))


def test_load_config_allows_device_with_spaces(tmp_path):
    path = write_config(tmp_path, {"portal": "192.168.10.5", "entries": [ENTRY],
                                   "device": {"vendor": "HPE", "product": "MSA 2050"}})
    assert install.load_config(path)["device"]["product"] == "MSA 2050"


def test_load_config_without_portal_and_entries(tmp_path):
    path = write_config(tmp_path, {"multipathConf": "/etc/multipath.conf"})
    assert install.load_config(path) == {"multipathConf": "/etc/multipath.conf"}


def test_cli_reports_malformed_config(tmp_path, monkeypatch, capsys):
    monkeypatch.setattr(install.os, "geteuid", lambda: 0)
    path = write_config(tmp_path, {"portal": "192.168.10.5", "entries": [ENTRY], "device": "Nimble"})

    assert install.cli(["--action", "install", "--config", path]) == 1
    assert "Error reading config file" in capsys.readouterr().err
