import json
import sys
import textwrap

import pytest

from netavark.errors import NetavarkError
from netavark.plugin_driver import PluginDriver
from netavark.types import Network, PerNetworkOptions
from netavark.vlan import DriverInfo

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


def make_info(netns_path="/run/netns/test"):
    return DriverInfo(
        network=Network.from_dict(NETWORK),
        per_network_opts=PerNetworkOptions.from_dict(PER_NETWORK),
        container_id="cid",
        container_name="cname",
        netns_path=netns_path,
    )


def write_plugin(tmp_path, body):
    record = tmp_path / "record.json"
    script = tmp_path / "myplugin"
    script.write_text(
        f"#!{sys.executable}\n"
        "import json, os, signal, sys\n"
        f"RECORD = {str(record)!r}\n"
        "data = json.load(sys.stdin)\n"
        "with open(RECORD, 'w') as fh:\n"
        "    json.dump({'argv': sys.argv[1:], 'input': data}, fh)\n"
        + textwrap.dedent(body)
    )
    script.chmod(0o755)
    return script, record


STATUS_BODY = """
status = {
    "dns_search_domains": [],
    "dns_server_ips": [],
    "interfaces": {
        data["network_options"]["interface_name"]: {
            "mac_address": "02:00:00:00:00:01",
            "subnets": None,
        }
    },
}
json.dump(status, sys.stdout)
"""


def test_setup_returns_status_block(tmp_path):
    script, record = write_plugin(tmp_path, STATUS_BODY)
    driver = PluginDriver(script, make_info())
    driver.validate()
    status, entry = driver.setup(None, None)
    assert entry is None
    assert status.to_dict()["interfaces"]["eth0"]["mac_address"] == "02:00:00:00:00:01"
    recorded = json.loads(record.read_text())
    assert recorded["argv"] == ["setup", "/run/netns/test"]
    assert recorded["input"]["container_id"] == "cid"
    assert recorded["input"]["container_name"] == "cname"
    assert recorded["input"]["network"]["name"] == "net1"


def test_teardown_runs_teardown_command(tmp_path):
    script, record = write_plugin(tmp_path, "")
    driver = PluginDriver(script, make_info("/run/netns/other"))
    assert driver.teardown(None, None) is None
    recorded = json.loads(record.read_text())
    assert recorded["argv"] == ["teardown", "/run/netns/other"]


def test_error_exit_code_reports_message(tmp_path):
    script, _ = write_plugin(
        tmp_path, 'json.dump({"error": "boom"}, sys.stdout)\nsys.exit(3)\n'
    )
    driver = PluginDriver(script, make_info())
    with pytest.raises(NetavarkError) as exc:
        driver.setup(None, None)
    assert str(exc.value) == 'plugin "myplugin" failed: exit code 3, message: boom'


def test_killed_by_signal(tmp_path):
    script, _ = write_plugin(tmp_path, "os.kill(os.getpid(), signal.SIGKILL)\n")
    driver = PluginDriver(script, make_info())
    with pytest.raises(NetavarkError) as exc:
        driver.teardown(None, None)
    assert str(exc.value).endswith("plugin killed by signal")


def test_invalid_status_output(tmp_path):
    script, _ = write_plugin(tmp_path, "sys.stdout.write('not json')\n")
    driver = PluginDriver(script, make_info())
    with pytest.raises(NetavarkError) as exc:
        driver.setup(None, None)
    assert str(exc.value).startswith('plugin "myplugin" failed')


def test_missing_binary(tmp_path):
    driver = PluginDriver(tmp_path / "absent", make_info())
    with pytest.raises(NetavarkError) as exc:
        driver.setup(None, None)
    assert str(exc.value).startswith('plugin "absent" failed')


def test_network_name():
    driver = PluginDriver("/nonexistent/plugin", make_info())
    assert driver.network_name() == "net1"