import io
import json

import pytest

from netavark.plugin_api import API_VERSION, Info, Plugin, PluginExec
from netavark.types import Network, StatusBlock

NETWORK = {
    "dns_enabled": False,
    "driver": "myplugin",
    "id": "abc123",
    "internal": False,
    "ipv6_enabled": False,
    "name": "net1",
    "network_interface": None,
    "options": None,
    "ipam_options": None,
    "subnets": None,
    "routes": None,
    "network_dns_servers": None,
}

PER_NETWORK = {
    "aliases": None,
    "interface_name": "eth0",
    "static_ips": None,
    "static_mac": None,
}

EXEC_INPUT = {
    "container_id": "cid",
    "container_name": "cname",
    "port_mappings": None,
    "network": NETWORK,
    "network_options": PER_NETWORK,
}

STATUS = {
    "dns_search_domains": [],
    "dns_server_ips": [],
    "interfaces": {"eth0": {"mac_address": "02:00:00:00:00:01", "subnets": None}},
}


class RecordingPlugin(Plugin):
    def __init__(self):
        self.calls = []

    def create(self, network):
        data = network.to_dict()
        data["network_interface"] = "created0"
        return Network.from_dict(data)

    def setup(self, netns, opts):
        self.calls.append(("setup", netns, opts.to_dict()))
        return StatusBlock.from_dict(STATUS)

    def teardown(self, netns, opts):
        self.calls.append(("teardown", netns, opts.to_dict()))


def run(argv, stdin_data=""):
    plugin = RecordingPlugin()
    out = io.StringIO()
    runner = PluginExec(
        plugin,
        Info("0.1.0", API_VERSION, {"author": "someone"}),
        stdin=io.StringIO(stdin_data),
        stdout=out,
    )
    runner.exec(argv)
    return plugin, out.getvalue()


def run_failing(argv, stdin_data=""):
    out = io.StringIO()
    runner = PluginExec(
        RecordingPlugin(), Info("0.1.0"), stdin=io.StringIO(stdin_data), stdout=out
    )
    with pytest.raises(SystemExit) as exc:
        runner.exec(argv)
    return exc.value.code, json.loads(out.getvalue())


def test_api_version_is_default_in_info():
    assert Info("0.1.0").to_dict()["api_version"] == "1.0.0"


def test_info_flattens_extra_fields():
    info = Info("0.1.0", "1.0.0", {"author": "someone"})
    assert info.to_dict() == {
        "version": "0.1.0",
        "api_version": "1.0.0",
        "author": "someone",
    }


def test_info_without_extra():
    assert Info("2.0").to_dict() == {"version": "2.0", "api_version": API_VERSION}


@pytest.mark.parametrize("argv", [["plugin"], ["plugin", "info"]])
def test_info_command(argv):
    _, output = run(argv)
    assert json.loads(output) == {
        "version": "0.1.0",
        "api_version": API_VERSION,
        "author": "someone",
    }


def test_create_round_trip():
    _, output = run(["plugin", "create"], json.dumps(NETWORK))
    result = json.loads(output)
    assert result["network_interface"] == "created0"
    assert result["id"] == NETWORK["id"]
    assert result["name"] == NETWORK["name"]


def test_setup_passes_netns_and_prints_status():
    plugin, output = run(["plugin", "setup", "/run/netns/x"], json.dumps(EXEC_INPUT))
    assert json.loads(output)["interfaces"]["eth0"]["mac_address"] == "02:00:00:00:00:01"
    kind, netns, opts = plugin.calls[0]
    assert (kind, netns) == ("setup", "/run/netns/x")
    assert opts["container_id"] == "cid"
    assert opts["network_options"]["interface_name"] == "eth0"


def test_teardown_prints_nothing():
    plugin, output = run(["plugin", "teardown", "/run/netns/y"], json.dumps(EXEC_INPUT))
    assert output == ""
    assert plugin.calls[0][:2] == ("teardown", "/run/netns/y")


@pytest.mark.parametrize("command", ["setup", "teardown"])
def test_missing_netns(command):
    code, error = run_failing(["plugin", command], json.dumps(EXEC_INPUT))
    assert code == 1
    assert error == {"error": "netns path argument is missing"}


def test_unknown_subcommand():
    code, error = run_failing(["plugin", "frobnicate"])
    assert code == 1
    assert error == {"error": "unknown subcommand: frobnicate"}


def test_zero_arguments():
    code, error = run_failing([])
    assert code == 1
    assert error == {"error": "zero arguments given"}


def test_invalid_json_input():
    code, error = run_failing(["plugin", "create"], "{not json")
    assert code == 1
    assert error["error"]