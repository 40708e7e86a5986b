"""Helpers shared by the network drivers: options, IPAM, sysctl and namespaces."""

from __future__ import annotations

import errno
import hashlib
import ipaddress
import logging
import os
import re
from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from enum import IntEnum
from typing import IO, Any, TypeVar

from netavark import constants
from netavark.errors import NetavarkError, SysctlError
from netavark.internal_types import IPAMAddresses
from netavark.netlink import Route, Socket
from netavark.types import IPInterface, NetAddress, Network, PerNetworkOptions
from netavark.types import Route as NetworkRoute

log = logging.getLogger(__name__)

T = TypeVar("T")

_SYSCTL_ROOT = "/proc/sys"
_PROC_SYS_PREFIX = "/proc/sys/"

_UNSIGNED = re.compile(r"\+?[0-9]+")
_SIGNED = re.compile(r"[+-]?[0-9]+")
_HEX_BYTE = re.compile(r"\+?[0-9a-fA-F]+")


class MacVlanMode(IntEnum):
    """Mode of a macvlan interface, as the kernel numbers it."""

    PRIVATE = 1
    VEPA = 2
    BRIDGE = 4
    PASSTHRU = 8
    SOURCE = 16


class IpVlanMode(IntEnum):
    """Mode of an ipvlan interface, as the kernel numbers it."""

    L2 = 0
    L3 = 1
    L3S = 2


@dataclass
class NamespaceOptions:
    """An open network namespace file and a netlink socket inside it.

    The file must stay open for as long as its descriptor is used.
    """

    file: IO[bytes]
    netlink: Socket

    def close(self) -> None:
        """Close the netlink socket and the namespace file."""
        try:
            self.netlink.close()
        finally:
            self.file.close()


def _parse_int(text: str, signed: bool, bits: int) -> int:
    if not text:
        raise ValueError("cannot parse integer from empty string")
    pattern = _SIGNED if signed else _UNSIGNED
    if not pattern.fullmatch(text):
        raise ValueError("invalid digit found in string")
    value = int(text)
    if signed:
        low, high = -(1 << (bits - 1)), (1 << (bits - 1)) - 1
    else:
        low, high = 0, (1 << bits) - 1
    if value > high:
        raise ValueError("number too large to fit in target type")
    if value < low:
        raise ValueError("number too small to fit in target type")
    return value


def _u16(text: str) -> int:
    return _parse_int(text, signed=False, bits=16)


def _u32(text: str) -> int:
    return _parse_int(text, signed=False, bits=32)


def _i32(text: str) -> int:
    return _parse_int(text, signed=True, bits=32)


def _bool(text: str) -> bool:
    if text == "true":
        return True
    if text == "false":
        return False
    raise ValueError("provided string was not `true` or `false`")


def get_netavark_dns_port() -> int:
    """Return the DNS port from NETAVARK_DNS_PORT, or 53 if it is unset."""
    port = os.environ.get("NETAVARK_DNS_PORT")
    if port is None:
        return 53
    try:
        return _u16(port)
    except ValueError as err:
        raise NetavarkError(f"Invalid NETAVARK_DNS_PORT {port}: {err}") from err


def parse_option(
    opts: Mapping[str, str] | None,
    name: str,
    kind: Callable[[str], T] | type = str,
) -> Any:
    """Parse option ``name`` from ``opts`` with ``kind``; None if it is not set.

    ``bool`` accepts only "true" and "false", ``int`` means an unsigned
    32-bit value; any other callable is applied to the raw string.
    """
    if opts is None or name not in opts:
        return None
    value = opts[name]
    parser: Callable[[str], Any]
    if kind is bool:
        parser = _bool
    elif kind is int:
        parser = _u32
    else:
        parser = kind
    try:
        return parser(value)
    except (ValueError, TypeError) as err:
        raise NetavarkError(f'unable to parse "{name}": {err}') from err


def _host_local_addresses(
    per_network_opts: PerNetworkOptions, network: Network
) -> IPAMAddresses:
    static_ips = per_network_opts.static_ips
    if static_ips is None:
        raise NetavarkError("no static ips provided")

    result = IPAMAddresses()
    subnets = network.subnets or []
    for subnet, static_ip in zip(subnets, static_ips):
        prefix = subnet.subnet.network.prefixlen
        if subnet.gateway is not None:
            try:
                gw_net = ipaddress.ip_interface(f"{subnet.gateway}/{prefix}")
            except ValueError as err:
                raise NetavarkError(
                    f"failed to parse address {subnet.gateway}/{prefix}: {err}"
                ) from err
            result.gateway_addresses.append(gw_net)
            result.nameservers.append(subnet.gateway)

        # a dual-stack network may not have network.ipv6_enabled set
        if subnet.subnet.version == 6:
            result.ipv6_enabled = True

        try:
            container_address = ipaddress.ip_interface(f"{static_ip}/{prefix}")
        except ValueError as err:
            raise NetavarkError(str(err)) from err
        result.container_addresses.append(container_address)
        result.net_addresses.append(
            NetAddress(ipnet=container_address, gateway=subnet.gateway)
        )

    if len(static_ips) < len(subnets):
        missing = subnets[len(static_ips)].subnet
        raise NetavarkError(f"no static ip provided for subnet {missing}")

    try:
        result.routes = create_route_list(network.routes)
    except NetavarkError as err:
        raise NetavarkError(str(err)) from err
    return result


def get_ipam_addresses(
    per_network_opts: PerNetworkOptions, network: Network
) -> IPAMAddresses:
    """Compute the addresses, gateways and routes IPAM assigns to the container."""
    driver = (network.ipam_options or {}).get("driver")
    if driver is None or driver == constants.IPAM_HOSTLOCAL:
        return _host_local_addresses(per_network_opts, network)
    if driver == constants.IPAM_NONE:
        return IPAMAddresses()
    if driver == constants.IPAM_DHCP:
        return IPAMAddresses(dhcp_enabled=True)
    raise NetavarkError(f"unsupported ipam driver {driver}")


def encode_address_to_hex(data: bytes | Iterable[int]) -> str:
    """Format bytes as lower-case hex pairs joined by colons."""
    return ":".join(f"{b:02x}" for b in bytes(data))


def _hex_byte(part: str) -> int:
    if not part:
        raise ValueError("cannot parse integer from empty string")
    if not _HEX_BYTE.fullmatch(part):
        raise ValueError("invalid digit found in string")
    value = int(part, 16)
    if value > 0xFF:
        raise ValueError("number too large to fit in target type")
    return value


def decode_address_from_hex(text: str) -> bytes:
    """Parse a MAC address written with ':' or '-' separators."""
    try:
        data = bytes(_hex_byte(part) for part in re.split(r"[:-]", text))
    except ValueError as err:
        raise NetavarkError(f"unable to parse mac address {text}: {err}") from err
    if len(data) != 6:
        raise NetavarkError(f"invalid mac length for address: {text}")
    return data


def get_macvlan_mode_from_string(mode: str | None) -> MacVlanMode:
    """Map a macvlan mode name to its mode; unset means bridge."""
    match mode:
        case None | "" | "bridge":
            return MacVlanMode.BRIDGE
        case "private":
            return MacVlanMode.PRIVATE
        case "vepa":
            return MacVlanMode.VEPA
        case "passthru":
            return MacVlanMode.PASSTHRU
        case "source":
            return MacVlanMode.SOURCE
        case _:
            raise NetavarkError(f'invalid macvlan mode "{mode}"')


def get_ipvlan_mode_from_string(mode: str | None) -> IpVlanMode:
    """Map an ipvlan mode name to its mode; unset means l2."""
    match mode:
        case None | "" | "l2":
            return IpVlanMode.L2
        case "l3":
            return IpVlanMode.L3
        case "l3s":
            return IpVlanMode.L3S
        case _:
            raise NetavarkError(f'invalid ipvlan mode "{mode}"')


def create_network_hash(network_name: str, length: int) -> str:
    """Return the first ``length`` upper-case hex digits of the SHA-512 of the name."""
    digest = hashlib.sha512(network_name.encode()).hexdigest().upper()
    if length > len(digest):
        raise ValueError(f"hash length {length} exceeds {len(digest)}")
    return digest[:length]


def _sysctl_path(name: str) -> str:
    if name.startswith(_PROC_SYS_PREFIX):
        relative = name[len(_PROC_SYS_PREFIX):]
    else:
        relative = name.replace(".", "/")
    return os.path.join(_SYSCTL_ROOT, relative)


def _sysctl_io_error(name: str, err: OSError) -> SysctlError:
    return SysctlError(f"sysctl {name}: {err}", errno=err.errno)


def apply_sysctl_value(name: str, value: str) -> str:
    """Set sysctl ``name`` to ``value`` unless it already has it; return the value."""
    log.debug("Setting sysctl value for %s to %s", name, value)
    path = _sysctl_path(name)
    if not os.path.exists(path):
        raise SysctlError(f"no such sysctl: {name}", not_found=True)
    try:
        with open(path, encoding="utf-8") as fh:
            current = fh.read().rstrip("\n")
    except FileNotFoundError:
        raise SysctlError(f"no such sysctl: {name}", not_found=True) from None
    except OSError as err:
        raise _sysctl_io_error(name, err) from err
    if current == value:
        return current
    try:
        with open(path, "w", encoding="utf-8") as fh:
            fh.write(value)
        with open(path, encoding="utf-8") as fh:
            return fh.read().rstrip("\n")
    except OSError as err:
        raise _sysctl_io_error(name, err) from err


def _fileno(fd: Any) -> int:
    return fd if isinstance(fd, int) else fd.fileno()


def join_netns(fd: Any) -> None:
    """Move the calling thread into the network namespace referred to by ``fd``."""
    try:
        os.setns(_fileno(fd), os.CLONE_NEWNET)
    except OSError as err:
        raise NetavarkError.wrap("setns", err) from err


@contextmanager
def exec_netns(host_fd: Any, netns_fd: Any) -> Iterator[None]:
    """Run the body inside ``netns_fd`` and return to ``host_fd`` afterwards."""
    join_netns(netns_fd)
    try:
        yield
    finally:
        join_netns(host_fd)


def _open_netns(path: str) -> IO[bytes]:
    try:
        return open(path, "rb")
    except OSError as err:
        raise NetavarkError.wrap(f"open {path}", err) from err


def _new_socket(context: str) -> Socket:
    try:
        return Socket()
    except NetavarkError as err:
        raise NetavarkError.wrap(context, err) from err


def open_netlink_sockets(netns_path: str) -> tuple[NamespaceOptions, NamespaceOptions]:
    """Open netlink sockets on the host and inside the namespace at ``netns_path``."""
    try:
        netns = _open_netns(netns_path)
    except NetavarkError as err:
        raise NetavarkError.wrap("open container netns", err) from err
    try:
        try:
            hostns = _open_netns("/proc/self/ns/net")
        except NetavarkError as err:
            raise NetavarkError.wrap("open host netns", err) from err
        try:
            host_socket = _new_socket("host netlink socket")
            try:
                with exec_netns(hostns, netns):
                    netns_socket = _new_socket("netns netlink socket")
            except BaseException:
                host_socket.close()
                raise
        except BaseException:
            hostns.close()
            raise
    except BaseException:
        netns.close()
        raise
    return (
        NamespaceOptions(file=hostns, netlink=host_socket),
        NamespaceOptions(file=netns, netlink=netns_socket),
    )


def add_default_routes(
    sock: Socket, gateways: Iterable[IPInterface], metric: int | None
) -> None:
    """Add one default route per address family through the first gateway of it."""
    seen: set[int] = set()
    for gateway in gateways:
        if gateway.version in seen:
            continue
        seen.add(gateway.version)
        any_net = "0.0.0.0/0" if gateway.version == 4 else "::/0"
        route = Route(dest=ipaddress.ip_interface(any_net), gw=gateway.ip, metric=metric)
        try:
            sock.add_route(route)
        except NetavarkError as err:
            raise NetavarkError.wrap(f"add default route {route}", err) from err


def create_route_list(routes: Iterable[NetworkRoute] | None) -> list[Route]:
    """Turn the static routes of a network into netlink routes."""
    result: list[Route] = []
    for route in routes or []:
        dest, gw = route.destination, route.gateway
        if dest.version == 6 and gw.version == 4:
            raise NetavarkError(
                f"Route with ipv6 destination and ipv4 gateway ({dest} via {gw})"
            )
        if dest.version == 4 and gw.version == 6:
            raise NetavarkError(
                f"Route with ipv4 destination and ipv6 gateway ({dest} via {gw})"
            )
        result.append(Route(dest=dest, gw=gw, metric=route.metric))
    return result


def disable_ipv6_autoconf(if_name: str) -> None:
    """Turn off ipv6 autoconf on the interface; ignore hosts without ipv6 or with read-only /proc."""
    try:
        apply_sysctl_value(f"/proc/sys/net/ipv6/conf/{if_name}/autoconf", "0")
    except SysctlError as err:
        if err.not_found or err.errno == errno.EROFS:
            return
        raise NetavarkError.wrap("failed to set autoconf sysctl", err) from err