import ipaddress

import pytest

from netavark import core_utils
from netavark.core_utils import (
    IpVlanMode,
    MacVlanMode,
    add_default_routes,
    apply_sysctl_value,
    create_network_hash,
    create_route_list,
    decode_address_from_hex,
    disable_ipv6_autoconf,
    encode_address_to_hex,
    exec_netns,
    get_ipam_addresses,
    get_ipvlan_mode_from_string,
    get_macvlan_mode_from_string,
    get_netavark_dns_port,
    join_netns,
    open_netlink_sockets,
    parse_option,
)
from netavark.errors import NetavarkError, SysctlError
from netavark.types import Network, PerNetworkOptions, Route, Subnet


def _network(subnets=None, ipam_options=None, routes=None):
    return Network(
        dns_enabled=False,
        driver="bridge",
        id="abc",
        internal=False,
        ipv6_enabled=False,
        name="podman",
        subnets=subnets,
        ipam_options=ipam_options,
        routes=routes,
    )


class _FakeSocket:
    def __init__(self):
        self.routes = []

    def add_route(self, route):
        self.routes.append(route)


def test_encode_address_to_hex():
    assert encode_address_to_hex(bytes([0xAA, 0xBB, 0xCC, 0x00, 0x11, 0x22])) == "aa:bb:cc:00:11:22"


@pytest.mark.parametrize("sep", [":", "-"])
def test_decode_round_trip(sep):
    raw = bytes([0x02, 0x42, 0xAC, 0x11, 0x00, 0x02])
    text = encode_address_to_hex(raw).replace(":", sep)
    assert decode_address_from_hex(text) == raw


def test_decode_wrong_length():
    with pytest.raises(NetavarkError, match="invalid mac length"):
        decode_address_from_hex("aa:bb:cc")


@pytest.mark.parametrize("text", ["zz:bb:cc:dd:ee:ff", "aa::cc:dd:ee:ff", "100:bb:cc:dd:ee:ff"])
def test_decode_invalid(text):
    with pytest.raises(NetavarkError, match="unable to parse mac address"):
        decode_address_from_hex(text)


@pytest.mark.parametrize(
    "mode,expected",
    [
        (None, MacVlanMode.BRIDGE),
        ("", MacVlanMode.BRIDGE),
        ("bridge", MacVlanMode.BRIDGE),
        ("private", MacVlanMode.PRIVATE),
        ("vepa", MacVlanMode.VEPA),
        ("passthru", MacVlanMode.PASSTHRU),
        ("source", MacVlanMode.SOURCE),
    ],
)
def test_macvlan_modes(mode, expected):
    assert get_macvlan_mode_from_string(mode) is expected


def test_macvlan_invalid_mode():
    with pytest.raises(NetavarkError, match='invalid macvlan mode "foo"'):
        get_macvlan_mode_from_string("foo")


@pytest.mark.parametrize(
    "mode,expected",
    [(None, IpVlanMode.L2), ("", IpVlanMode.L2), ("l2", IpVlanMode.L2),
     ("l3", IpVlanMode.L3), ("l3s", IpVlanMode.L3S)],
)
def test_ipvlan_modes(mode, expected):
    assert get_ipvlan_mode_from_string(mode) is expected


def test_ipvlan_invalid_mode():
    with pytest.raises(NetavarkError, match='invalid ipvlan mode "l4"'):
        get_ipvlan_mode_from_string("l4")


def test_network_hash_invariants():
    short = create_network_hash("podman", 13)
    long = create_network_hash("podman", 40)
    assert len(short) == 13
    assert long.startswith(short)
    assert all(c in "0123456789ABCDEF" for c in long)
    assert create_network_hash("other", 40) != long


def test_dns_port_default(monkeypatch):
    monkeypatch.delenv("NETAVARK_DNS_PORT", raising=False)
    assert get_netavark_dns_port() == 53


def test_dns_port_from_env(monkeypatch):
    monkeypatch.setenv("NETAVARK_DNS_PORT", "5353")
    assert get_netavark_dns_port() == 5353


@pytest.mark.parametrize("value", ["abc", "70000", "-1", ""])
def test_dns_port_invalid(monkeypatch, value):
    monkeypatch.setenv("NETAVARK_DNS_PORT", value)
    with pytest.raises(NetavarkError, match="Invalid NETAVARK_DNS_PORT"):
        get_netavark_dns_port()


def test_parse_option_missing():
    assert parse_option(None, "mtu", int) is None
    assert parse_option({"other": "1"}, "mtu", int) is None


def test_parse_option_values():
    opts = {"mtu": "1500", "no_default_route": "true", "vrf": "blue"}
    assert parse_option(opts, "mtu", int) == 1500
    assert parse_option(opts, "no_default_route", bool) is True
    assert parse_option(opts, "vrf", str) == "blue"


@pytest.mark.parametrize("opts,name,kind", [
    ({"no_default_route": "yes"}, "no_default_route", bool),
    ({"mtu": "-5"}, "mtu", int),
    ({"mtu": "big"}, "mtu", int),
])
def test_parse_option_invalid(opts, name, kind):
    with pytest.raises(NetavarkError, match=f'unable to parse "{name}"'):
        parse_option(opts, name, kind)


def test_create_route_list():
    assert create_route_list(None) == []
    routes = create_route_list([
        Route(gateway=ipaddress.ip_address("10.0.0.1"),
              destination=ipaddress.ip_interface("10.1.0.0/24"), metric=50)
    ])
    assert len(routes) == 1
    assert routes[0].gw == ipaddress.ip_address("10.0.0.1")
    assert routes[0].dest == ipaddress.ip_interface("10.1.0.0/24")
    assert routes[0].metric == 50


def test_create_route_list_family_mismatch():
    with pytest.raises(NetavarkError, match="Route with ipv6 destination and ipv4 gateway"):
        create_route_list([
            Route(gateway=ipaddress.ip_address("10.0.0.1"),
                  destination=ipaddress.ip_interface("fd00::/64"))
        ])
    with pytest.raises(NetavarkError, match="Route with ipv4 destination and ipv6 gateway"):
        create_route_list([
            Route(gateway=ipaddress.ip_address("fd00::1"),
                  destination=ipaddress.ip_interface("10.1.0.0/24"))
        ])


def test_ipam_host_local():
    subnet = Subnet(subnet=ipaddress.ip_interface("10.88.0.0/16"),
                    gateway=ipaddress.ip_address("10.88.0.1"))
    opts = PerNetworkOptions(interface_name="eth0",
                             static_ips=[ipaddress.ip_address("10.88.0.2")])
    ipam = get_ipam_addresses(opts, _network(subnets=[subnet]))
    assert ipam.container_addresses == [ipaddress.ip_interface("10.88.0.2/16")]
    assert ipam.gateway_addresses == [ipaddress.ip_interface("10.88.0.1/16")]
    assert ipam.nameservers == [ipaddress.ip_address("10.88.0.1")]
    assert ipam.ipv6_enabled is False
    assert ipam.dhcp_enabled is False
    assert ipam.net_addresses[0].ipnet == ipaddress.ip_interface("10.88.0.2/16")
    assert ipam.net_addresses[0].gateway == ipaddress.ip_address("10.88.0.1")


def test_ipam_dual_stack_enables_ipv6():
    subnets = [
        Subnet(subnet=ipaddress.ip_interface("10.88.0.0/16")),
        Subnet(subnet=ipaddress.ip_interface("fd00::/64")),
    ]
    opts = PerNetworkOptions(
        interface_name="eth0",
        static_ips=[ipaddress.ip_address("10.88.0.2"), ipaddress.ip_address("fd00::2")],
    )
    ipam = get_ipam_addresses(opts, _network(subnets=subnets))
    assert ipam.ipv6_enabled is True
    assert ipam.gateway_addresses == []
    assert [a.version for a in ipam.container_addresses] == [4, 6]


def test_ipam_none_and_dhcp():
    opts = PerNetworkOptions(interface_name="eth0")
    none = get_ipam_addresses(opts, _network(ipam_options={"driver": "none"}))
    assert none.container_addresses == [] and none.dhcp_enabled is False
    dhcp = get_ipam_addresses(opts, _network(ipam_options={"driver": "dhcp"}))
    assert dhcp.dhcp_enabled is True
    assert dhcp.container_addresses == []


def test_ipam_errors():
    opts = PerNetworkOptions(interface_name="eth0")
    with pytest.raises(NetavarkError, match="unsupported ipam driver foo"):
        get_ipam_addresses(opts, _network(ipam_options={"driver": "foo"}))
    with pytest.raises(NetavarkError, match="no static ips provided"):
        get_ipam_addresses(opts, _network())


def test_add_default_routes_one_per_family():
    sock = _FakeSocket()
    gateways = [
        ipaddress.ip_interface("10.88.0.1/16"),
        ipaddress.ip_interface("10.89.0.1/16"),
        ipaddress.ip_interface("fd00::1/64"),
    ]
    add_default_routes(sock, gateways, 100)
    assert [r.gw for r in sock.routes] == [
        ipaddress.ip_address("10.88.0.1"), ipaddress.ip_address("fd00::1")
    ]
    assert all(r.dest.network.prefixlen == 0 for r in sock.routes)
    assert all(r.metric == 100 for r in sock.routes)


def test_apply_sysctl_value_writes(tmp_path, monkeypatch):
    monkeypatch.setattr(core_utils, "_SYSCTL_ROOT", str(tmp_path))
    target = tmp_path / "net" / "ipv4" / "ip_forward"
    target.parent.mkdir(parents=True)
    target.write_text("0\n")
    assert apply_sysctl_value("net.ipv4.ip_forward", "1") == "1"
    assert target.read_text() == "1"
    assert apply_sysctl_value("/proc/sys/net/ipv4/ip_forward", "1") == "1"


def test_apply_sysctl_value_not_found(tmp_path, monkeypatch):
    monkeypatch.setattr(core_utils, "_SYSCTL_ROOT", str(tmp_path))
    with pytest.raises(SysctlError) as info:
        apply_sysctl_value("net.ipv4.missing", "1")
    assert info.value.not_found is True


def test_disable_ipv6_autoconf_missing_is_ignored(tmp_path, monkeypatch):
    monkeypatch.setattr(core_utils, "_SYSCTL_ROOT", str(tmp_path))
    assert disable_ipv6_autoconf("eth0") is None
    assert list(tmp_path.iterdir()) == []


def test_disable_ipv6_autoconf_sets_zero(tmp_path, monkeypatch):
    monkeypatch.setattr(core_utils, "_SYSCTL_ROOT", str(tmp_path))
    target = tmp_path / "net" / "ipv6" / "conf" / "eth0" / "autoconf"
    target.parent.mkdir(parents=True)
    target.write_text("1\n")
    disable_ipv6_autoconf("eth0")
    assert target.read_text() == "0"
    assert apply_sysctl_value("/proc/sys/net/ipv6/conf/eth0/autoconf", "0") == "0"
    assert target.read_text() == "0"


def test_disable_ipv6_autoconf_other_error(tmp_path, monkeypatch):
    monkeypatch.setattr(core_utils, "_SYSCTL_ROOT", str(tmp_path))
    (tmp_path / "net" / "ipv6" / "conf" / "eth0" / "autoconf").mkdir(parents=True)
    with pytest.raises(NetavarkError, match="failed to set autoconf sysctl"):
        disable_ipv6_autoconf("eth0")


def test_open_netlink_sockets_missing_path(tmp_path):
    with pytest.raises(NetavarkError, match="open container netns"):
        open_netlink_sockets(str(tmp_path / "missing"))