"""The macvlan and ipvlan network drivers."""

from __future__ import annotations

import errno
import logging
import random
import re
import string
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Any, Protocol

from netavark import constants
from netavark.core_utils import (
    IpVlanMode,
    MacVlanMode,
    add_default_routes,
    create_route_list,
    decode_address_from_hex,
    disable_ipv6_autoconf,
    encode_address_to_hex,
    exec_netns,
    get_ipam_addresses,
    get_ipvlan_mode_from_string,
    get_macvlan_mode_from_string,
    parse_option,
)
from netavark.errors import NetavarkError, NetlinkError
from netavark.internal_types import IPAMAddresses
from netavark.netlink import (
    IFLA_ADDRESS,
    IFLA_IFNAME,
    IFLA_IPVLAN_MODE,
    IFLA_MACVLAN_BC_CUTOFF,
    IFLA_MACVLAN_MODE,
    RTA_DST,
    RTA_OIF,
    CreateLinkOptions,
    InfoKind,
    Socket,
)
from netavark.types import (
    IPAddress,
    NetAddress,
    NetInterface,
    Network,
    PerNetworkOptions,
    PortMapping,
    StatusBlock,
)

log = logging.getLogger(__name__)

_TMP_NAME_ATTEMPTS = 3
_TMP_NAME_CHARS = string.ascii_letters + string.digits
_SIGNED = re.compile(r"[+-]?[0-9]+")


class DhcpLeaseClient(Protocol):
    """Obtains and releases DHCP leases on behalf of a container interface."""

    def get_lease(
        self, host_iface: str, container_iface: str, ns_path: str, mac: str
    ) -> list[NetAddress]: ...

    def release_lease(
        self, host_iface: str, container_iface: str, ns_path: str, mac: str
    ) -> None: ...


@dataclass
class DriverInfo:
    """Everything a network driver needs to know about one container on one network."""

    network: Network
    per_network_opts: PerNetworkOptions
    container_id: str = ""
    container_name: str = ""
    container_dns_servers: list[IPAddress] | None = None
    netns_host: Any = None
    netns_container: Any = None
    netns_path: str = ""
    port_mappings: list[PortMapping] | None = None
    dns_port: int = 53
    config_dir: str = constants.DEFAULT_CONFIG_DIR
    rootless: bool = False
    firewall: Any = None
    dhcp_client: DhcpLeaseClient | None = None


@dataclass
class _MacVlan:
    mode: MacVlanMode
    mac_address: bytes | None = None
    bclim: int | None = None

    def __str__(self) -> str:
        return "macvlan"


@dataclass
class _IpVlan:
    mode: IpVlanMode

    def __str__(self) -> str:
        return "ipvlan"


@dataclass
class _InternalData:
    container_interface_name: str
    host_interface_name: str
    ipam: IPAMAddresses
    mtu: int
    metric: int | None
    kind: _MacVlan | _IpVlan
    no_default_route: bool


def _parse_i32(text: str) -> int:
    if not _SIGNED.fullmatch(text):
        raise ValueError("invalid digit found in string")
    value = int(text)
    if value > 2**31 - 1:
        raise ValueError("number too large to fit in target type")
    if value < -(2**31):
        raise ValueError("number too small to fit in target type")
    return value


@contextmanager
def _context(message: str) -> Iterator[None]:
    try:
        yield
    except NetavarkError as err:
        raise NetavarkError.wrap(message, err) from err


class Vlan:
    """Driver for macvlan and ipvlan networks."""

    def __init__(self, info: DriverInfo) -> None:
        self.info = info
        self._data: _InternalData | None = None

    def network_name(self) -> str:
        return self.info.network.name

    def validate(self) -> None:
        """Check the driver options and prepare the data needed by setup."""
        info = self.info
        options = info.network.options
        if not info.per_network_opts.interface_name:
            raise NetavarkError(constants.NO_CONTAINER_INTERFACE_ERROR)

        mode = parse_option(options, constants.OPTION_MODE, str)
        ipam = get_ipam_addresses(info.per_network_opts, info.network)

        mtu = parse_option(options, constants.OPTION_MTU, int)
        metric = parse_option(options, constants.OPTION_METRIC, int)
        no_default_route = parse_option(options, constants.OPTION_NO_DEFAULT_ROUTE, bool)

        # internal networks have no gateways
        if info.network.internal:
            ipam.gateway_addresses = []

        kind: _MacVlan | _IpVlan
        match info.network.driver:
            case constants.DRIVER_IPVLAN:
                kind = _IpVlan(mode=get_ipvlan_mode_from_string(mode))
            case constants.DRIVER_MACVLAN:
                bclim = parse_option(options, constants.OPTION_BCLIM, _parse_i32)
                static_mac = info.per_network_opts.static_mac
                kind = _MacVlan(
                    mode=get_macvlan_mode_from_string(mode),
                    mac_address=None
                    if static_mac is None
                    else decode_address_from_hex(static_mac),
                    bclim=bclim,
                )
            case other:
                raise NetavarkError(f"unsupported VLAN type {other}")

        self._data = _InternalData(
            container_interface_name=info.per_network_opts.interface_name,
            host_interface_name=info.network.network_interface or "",
            ipam=ipam,
            mtu=0 if mtu is None else mtu,
            metric=constants.DEFAULT_METRIC if metric is None else metric,
            kind=kind,
            no_default_route=bool(no_default_route),
        )

    def setup(self, host_sock: Socket, netns_sock: Socket) -> tuple[StatusBlock, None]:
        """Create the interface in the container namespace and report its settings."""
        data = self._data
        if data is None:
            raise NetavarkError("must call validate() before setup()")
        info = self.info
        if_name = info.per_network_opts.interface_name

        log.debug("Setup network %s", info.network.name)
        log.debug(
            "Container interface name: %s with IP addresses %s",
            if_name,
            data.ipam.container_addresses,
        )

        mac = _setup(host_sock, netns_sock, if_name, data, info.netns_host, info.netns_container)

        # with dhcp the proxy obtains the lease and assigns the address
        if data.ipam.dhcp_enabled:
            client = info.dhcp_client
            if client is None:
                raise NetavarkError("unable to obtain lease: no dhcp proxy client configured")
            subnets = client.get_lease(
                data.host_interface_name, data.container_interface_name, info.netns_path, mac
            )
        else:
            subnets = list(data.ipam.net_addresses)

        response = StatusBlock(
            dns_search_domains=[],
            dns_server_ips=[],
            interfaces={if_name: NetInterface(mac_address=mac, subnets=subnets)},
        )
        return response, None

    def teardown(self, host_sock: Socket, netns_sock: Socket) -> None:
        """Release any dhcp lease, remove the static routes and delete the interface."""
        info = self.info
        if_name = info.per_network_opts.interface_name
        ipam = get_ipam_addresses(info.per_network_opts, info.network)

        # the proxy must learn about the teardown so that the lease is released
        if ipam.dhcp_enabled:
            with _context(f"get macvlan interface {if_name}"):
                dev = netns_sock.get_link(if_name)
            mac = get_mac_address(dev.attributes)
            client = info.dhcp_client
            if client is None:
                raise NetavarkError("unable to release lease: no dhcp proxy client configured")
            client.release_lease(
                info.network.network_interface or "", if_name, info.netns_path, mac
            )

        for route in create_route_list(info.network.routes):
            netns_sock.del_route(route)

        netns_sock.del_link(if_name)


def _link_options(if_name: str, data: _InternalData, link_index: int, netns_fd: Any) -> CreateLinkOptions:
    kind_data = data.kind
    if isinstance(kind_data, _IpVlan):
        return CreateLinkOptions(
            name=if_name,
            kind=InfoKind.IPVLAN,
            info_data=[(IFLA_IPVLAN_MODE, kind_data.mode)],
            mtu=data.mtu,
            link=link_index,
            netns=netns_fd,
        )
    mv_opts: list[tuple[int, Any]] = [(IFLA_MACVLAN_MODE, kind_data.mode)]
    if kind_data.bclim is not None:
        log.debug("setting macvlan bclim to %d", kind_data.bclim)
        mv_opts.append((IFLA_MACVLAN_BC_CUTOFF, kind_data.bclim))
    return CreateLinkOptions(
        name=if_name,
        kind=InfoKind.MACVLAN,
        info_data=mv_opts,
        mtu=data.mtu,
        link=link_index,
        mac=kind_data.mac_address or b"",
        netns=netns_fd,
    )


def _is_eexist(err: BaseException) -> bool:
    return isinstance(err, NetlinkError) and err.code == errno.EEXIST


def _create_with_tmp_name(
    host: Socket, netns: Socket, if_name: str, opts: CreateLinkOptions, kind: str
) -> None:
    # The kernel creates the interface in the host namespace before moving it,
    # so a name already used on the host fails with EEXIST. Create it under a
    # temporary name and rename it inside the namespace.
    for attempt in range(_TMP_NAME_ATTEMPTS):
        tmp_name = "mv-" + "".join(random.choices(_TMP_NAME_CHARS, k=10))
        try:
            host.create_link(replace(opts, name=tmp_name))
        except NetavarkError as err:
            if attempt == _TMP_NAME_ATTEMPTS - 1:
                raise NetavarkError(f"create {kind} interface: {err}") from err
            if _is_eexist(err):
                continue
            raise NetavarkError.wrap(f"create {kind} interface", err) from err

        with _context(f"get tmp {kind} interface"):
            link = netns.get_link(tmp_name)
        try:
            netns.set_link_name(link.index, if_name)
        except NetavarkError as err:
            # most likely the name is already used in the namespace
            try:
                netns.del_link(link.index)
            except NetavarkError as del_err:
                log.error("failed to delete tmp %s link %s: %s", kind, tmp_name, del_err)
            raise NetavarkError.wrap(f"rename tmp {kind} interface", err) from err
        return


def _setup(
    host: Socket,
    netns: Socket,
    if_name: str,
    data: _InternalData,
    hostns_fd: Any,
    netns_fd: Any,
) -> str:
    kind = str(data.kind)
    primary_ifname = data.host_interface_name or get_default_route_interface(host)
    link = host.get_link(primary_ifname)
    opts = _link_options(if_name, data, link.index, netns_fd)

    try:
        host.create_link(opts)
    except NetavarkError as err:
        if not _is_eexist(err):
            raise NetavarkError.wrap(f"create {kind} interface", err) from err
        _create_with_tmp_name(host, netns, if_name, opts, kind)

    with exec_netns(hostns_fd, netns_fd):
        disable_ipv6_autoconf(if_name)

    with _context(f"get {kind} interface"):
        dev = netns.get_link(if_name)

    for addr in data.ipam.container_addresses:
        with _context(f"add ip addr to {kind}"):
            netns.add_addr(dev.index, addr)

    with _context(f"set {kind} up"):
        netns.set_up(dev.index)

    if not data.no_default_route:
        add_default_routes(netns, data.ipam.gateway_addresses, data.metric)

    for route in data.ipam.routes:
        netns.add_route(route)

    return get_mac_address(dev.attributes)


def get_mac_address(attributes: Iterable[tuple[int, Any]]) -> str:
    """Return the hardware address among link attributes as a hex string."""
    for attr, value in attributes:
        if attr == IFLA_ADDRESS:
            return encode_address_to_hex(value)
    raise NetavarkError("failed to get the the container mac address")


def get_default_route_interface(host: Socket) -> str:
    """Return the name of the interface the default route goes out of."""
    with _context("dump routes"):
        routes = host.dump_routes()

    for route in routes:
        has_dest = False
        out_if = 0
        for attr, value in route.attributes:
            if attr == RTA_DST:
                has_dest = True
            elif attr == RTA_OIF:
                out_if = value
        # a route without destination is a default route
        if not has_dest and out_if > 0:
            link = host.get_link(out_if)
            name = next((v for a, v in link.attributes if a == IFLA_IFNAME), None)
            if name is not None:
                return name
    raise NetavarkError("failed to get default route interface")