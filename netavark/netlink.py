"""A small rtnetlink client: links, addresses and routes."""

from __future__ import annotations

import errno
import ipaddress
import logging
import socket
import struct
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import StrEnum
from ipaddress import IPv4Address, IPv4Interface, IPv4Network, IPv6Address, IPv6Interface, IPv6Network
from typing import Any

from netavark.constants import DEFAULT_METRIC
from netavark.errors import NetavarkError, NetlinkError

log = logging.getLogger(__name__)

NETLINK_ROUTE = 0

# netlink message types
NLMSG_NOOP = 1
NLMSG_ERROR = 2
NLMSG_DONE = 3
NLMSG_OVERRUN = 4

RTM_NEWLINK = 16
RTM_DELLINK = 17
RTM_GETLINK = 18
RTM_SETLINK = 19
RTM_NEWADDR = 20
RTM_DELADDR = 21
RTM_GETADDR = 22
RTM_NEWROUTE = 24
RTM_DELROUTE = 25
RTM_GETROUTE = 26

# netlink header flags
NLM_F_REQUEST = 0x1
NLM_F_MULTI = 0x2
NLM_F_ACK = 0x4
NLM_F_DUMP = 0x300
NLM_F_EXCL = 0x200
NLM_F_CREATE = 0x400

NLA_TYPE_MASK = 0x3FFF

AF_UNSPEC = 0
AF_INET = 2
AF_INET6 = 10

IFF_UP = 0x1

# link attributes
IFLA_ADDRESS = 1
IFLA_BROADCAST = 2
IFLA_IFNAME = 3
IFLA_MTU = 4
IFLA_LINK = 5
IFLA_QDISC = 6
IFLA_MASTER = 10
IFLA_TXQLEN = 13
IFLA_LINKINFO = 18
IFLA_IFALIAS = 20
IFLA_NET_NS_FD = 28
IFLA_PERM_ADDRESS = 54

IFLA_INFO_KIND = 1
IFLA_INFO_DATA = 2
IFLA_INFO_SLAVE_KIND = 4

VETH_INFO_PEER = 1
IFLA_MACVLAN_MODE = 1
IFLA_MACVLAN_BC_CUTOFF = 9
IFLA_IPVLAN_MODE = 1
IFLA_IPVLAN_FLAGS = 2

# address attributes
IFA_ADDRESS = 1
IFA_LOCAL = 2
IFA_LABEL = 3
IFA_BROADCAST = 4

# route attributes
RTA_DST = 1
RTA_SRC = 2
RTA_IIF = 3
RTA_OIF = 4
RTA_GATEWAY = 5
RTA_PRIORITY = 6
RTA_PREFSRC = 7
RTA_TABLE = 15

RT_TABLE_MAIN = 254
RTPROT_UNSPEC = 0
RTPROT_STATIC = 4
RT_SCOPE_UNIVERSE = 0
RTN_UNICAST = 1

# see NLMSG_GOODSIZE in the kernel
_BUFFER_SIZE = 8192

_NLMSGHDR = struct.Struct("=IHHII")
_IFINFOMSG = struct.Struct("=BxHIII")
_IFADDRMSG = struct.Struct("=BBBBI")
_RTMSG = struct.Struct("=BBBBBBBBI")
_RTATTR = struct.Struct("=HH")
_U16 = struct.Struct("=H")
_U32 = struct.Struct("=I")
_I32 = struct.Struct("=i")

IPAddress = IPv4Address | IPv6Address
IPInterface = IPv4Interface | IPv6Interface
Attributes = list[tuple[int, Any]]


class InfoKind(StrEnum):
    """Kind of a link as reported in IFLA_INFO_KIND."""

    BRIDGE = "bridge"
    VETH = "veth"
    DUMMY = "dummy"
    MACVLAN = "macvlan"
    IPVLAN = "ipvlan"
    VRF = "vrf"
    VLAN = "vlan"


def _align(length: int) -> int:
    return (length + 3) & ~3


def _pack_attr(kind: int, payload: bytes) -> bytes:
    header = _RTATTR.pack(_RTATTR.size + len(payload), kind)
    return header + payload + b"\0" * ((-len(payload)) % 4)


def _iter_attrs(data: bytes) -> Iterator[tuple[int, bytes]]:
    offset = 0
    while offset + _RTATTR.size <= len(data):
        length, kind = _RTATTR.unpack_from(data, offset)
        if length < _RTATTR.size or offset + length > len(data):
            break
        yield kind & NLA_TYPE_MASK, bytes(data[offset + _RTATTR.size : offset + length])
        offset += _align(length)


def _encode_value(value: Any) -> bytes:
    if isinstance(value, (IPv4Address, IPv6Address)):
        return value.packed
    if isinstance(value, str):
        return value.encode() + b"\0"
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, int) and not isinstance(value, bool):
        return _U32.pack(value)
    raise NetavarkError(f"cannot encode netlink attribute value {value!r}")


def _decode_str(payload: bytes) -> str:
    return payload.split(b"\0", 1)[0].decode(errors="replace")


def _decode_ip(payload: bytes) -> IPAddress | bytes:
    if len(payload) in (4, 16):
        return ipaddress.ip_address(payload)
    return payload


def _decode_u32(payload: bytes) -> int | bytes:
    return _U32.unpack(payload)[0] if len(payload) == 4 else payload


def _encode_info_data(kind: Any, data: Any) -> bytes:
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    parts = []
    for attr, value in data:
        if isinstance(value, LinkMessage):
            payload = value.pack()
        elif kind == InfoKind.MACVLAN and attr == IFLA_MACVLAN_BC_CUTOFF:
            payload = _I32.pack(value)
        elif kind == InfoKind.IPVLAN and attr in (IFLA_IPVLAN_MODE, IFLA_IPVLAN_FLAGS):
            payload = _U16.pack(value)
        else:
            payload = _encode_value(value)
        parts.append(_pack_attr(attr, payload))
    return b"".join(parts)


def _encode_link_info(info: Attributes) -> bytes:
    kind = next((value for attr, value in info if attr == IFLA_INFO_KIND), None)
    parts = []
    for attr, value in info:
        if attr == IFLA_INFO_DATA:
            payload = _encode_info_data(kind, value)
        elif attr in (IFLA_INFO_KIND, IFLA_INFO_SLAVE_KIND):
            payload = str(value).encode() + b"\0"
        else:
            payload = _encode_value(value)
        parts.append(_pack_attr(attr, payload))
    return b"".join(parts)


def _decode_link_info(data: bytes) -> Attributes:
    info: Attributes = []
    for attr, payload in _iter_attrs(data):
        if attr == IFLA_INFO_KIND:
            text = _decode_str(payload)
            try:
                info.append((attr, InfoKind(text)))
            except ValueError:
                info.append((attr, text))
        elif attr == IFLA_INFO_SLAVE_KIND:
            info.append((attr, _decode_str(payload)))
        else:
            info.append((attr, payload))
    return info


def _encode_link_attr(attr: int, value: Any) -> bytes:
    if attr == IFLA_LINKINFO:
        payload = _encode_link_info(value)
    elif attr == IFLA_NET_NS_FD:
        payload = _I32.pack(_fd(value))
    else:
        payload = _encode_value(value)
    return _pack_attr(attr, payload)


def _decode_link_attr(attr: int, payload: bytes) -> Any:
    if attr in (IFLA_IFNAME, IFLA_QDISC, IFLA_IFALIAS):
        return _decode_str(payload)
    if attr in (IFLA_MTU, IFLA_LINK, IFLA_MASTER, IFLA_TXQLEN):
        return _decode_u32(payload)
    if attr == IFLA_NET_NS_FD and len(payload) == 4:
        return _I32.unpack(payload)[0]
    if attr == IFLA_LINKINFO:
        return _decode_link_info(payload)
    return payload


def _fd(value: Any) -> int:
    return value if isinstance(value, int) else value.fileno()


@dataclass
class LinkMessage:
    """An ifinfomsg with its attributes."""

    family: int = AF_UNSPEC
    link_type: int = 0
    index: int = 0
    flags: int = 0
    change_mask: int = 0
    attributes: Attributes = field(default_factory=list)

    def pack(self) -> bytes:
        header = _IFINFOMSG.pack(
            self.family, self.link_type, self.index, self.flags, self.change_mask
        )
        return header + b"".join(_encode_link_attr(a, v) for a, v in self.attributes)

    @classmethod
    def unpack(cls, data: bytes) -> LinkMessage:
        if len(data) < _IFINFOMSG.size:
            raise NetavarkError("failed to deserialize netlink message: short link message")
        family, link_type, index, flags, change = _IFINFOMSG.unpack_from(data)
        attrs = [
            (attr, _decode_link_attr(attr, payload))
            for attr, payload in _iter_attrs(data[_IFINFOMSG.size :])
        ]
        return cls(family, link_type, index, flags, change, attrs)


def _decode_addr_attr(attr: int, payload: bytes) -> Any:
    if attr in (IFA_ADDRESS, IFA_LOCAL, IFA_BROADCAST):
        return _decode_ip(payload)
    if attr == IFA_LABEL:
        return _decode_str(payload)
    return payload


@dataclass
class AddressMessage:
    """An ifaddrmsg with its attributes."""

    family: int = AF_UNSPEC
    prefix_len: int = 0
    flags: int = 0
    scope: int = 0
    index: int = 0
    attributes: Attributes = field(default_factory=list)

    def pack(self) -> bytes:
        header = _IFADDRMSG.pack(self.family, self.prefix_len, self.flags, self.scope, self.index)
        return header + b"".join(_pack_attr(a, _encode_value(v)) for a, v in self.attributes)

    @classmethod
    def unpack(cls, data: bytes) -> AddressMessage:
        if len(data) < _IFADDRMSG.size:
            raise NetavarkError("failed to deserialize netlink message: short address message")
        family, prefix_len, flags, scope, index = _IFADDRMSG.unpack_from(data)
        attrs = [
            (attr, _decode_addr_attr(attr, payload))
            for attr, payload in _iter_attrs(data[_IFADDRMSG.size :])
        ]
        return cls(family, prefix_len, flags, scope, index, attrs)


def _decode_route_attr(attr: int, payload: bytes) -> Any:
    if attr in (RTA_DST, RTA_SRC, RTA_GATEWAY, RTA_PREFSRC):
        return _decode_ip(payload)
    if attr in (RTA_IIF, RTA_OIF, RTA_PRIORITY, RTA_TABLE):
        return _decode_u32(payload)
    return payload


@dataclass
class RouteMessage:
    """An rtmsg with its attributes."""

    family: int = AF_UNSPEC
    destination_prefix_length: int = 0
    source_prefix_length: int = 0
    tos: int = 0
    table: int = 0
    protocol: int = RTPROT_UNSPEC
    scope: int = RT_SCOPE_UNIVERSE
    kind: int = 0
    flags: int = 0
    attributes: Attributes = field(default_factory=list)

    def pack(self) -> bytes:
        header = _RTMSG.pack(
            self.family,
            self.destination_prefix_length,
            self.source_prefix_length,
            self.tos,
            self.table,
            self.protocol,
            self.scope,
            self.kind,
            self.flags,
        )
        return header + b"".join(_pack_attr(a, _encode_value(v)) for a, v in self.attributes)

    @classmethod
    def unpack(cls, data: bytes) -> RouteMessage:
        if len(data) < _RTMSG.size:
            raise NetavarkError("failed to deserialize netlink message: short route message")
        fields = _RTMSG.unpack_from(data)
        attrs = [
            (attr, _decode_route_attr(attr, payload))
            for attr, payload in _iter_attrs(data[_RTMSG.size :])
        ]
        return cls(*fields, attributes=attrs)


@dataclass(frozen=True)
class Route:
    """A route to a destination via a gateway of the same address family."""

    dest: IPInterface
    gw: IPAddress
    metric: int | None = None

    def __post_init__(self) -> None:
        if isinstance(self.dest, (IPv4Network, IPv6Network)):
            object.__setattr__(self, "dest", ipaddress.ip_interface(self.dest.with_prefixlen))
        if self.dest.version != self.gw.version:
            raise NetavarkError(
                f"route destination {self.dest} and gateway {self.gw} differ in address family"
            )

    def __str__(self) -> str:
        metric = DEFAULT_METRIC if self.metric is None else self.metric
        return f"(dest: {self.dest} ,gw: {self.gw}, metric {metric})"


@dataclass
class CreateLinkOptions:
    """Options for creating a new link."""

    name: str
    kind: InfoKind
    info_data: Any = None
    mtu: int = 0
    primary_index: int = 0
    link: int = 0
    mac: bytes = b""
    netns: Any = None


def parse_create_link_options(options: CreateLinkOptions) -> LinkMessage:
    """Build the link message that creates a link with ``options``."""
    msg = LinkMessage()
    link_info: Attributes = [(IFLA_INFO_KIND, options.kind)]
    if options.info_data is not None:
        link_info.append((IFLA_INFO_DATA, options.info_data))
    msg.attributes.append((IFLA_LINKINFO, link_info))
    if options.name:
        msg.attributes.append((IFLA_IFNAME, options.name))
    if options.mtu != 0:
        msg.attributes.append((IFLA_MTU, options.mtu))
    if options.mac:
        msg.attributes.append((IFLA_ADDRESS, bytes(options.mac)))
    if options.primary_index != 0:
        msg.attributes.append((IFLA_MASTER, options.primary_index))
    if options.link != 0:
        msg.attributes.append((IFLA_LINK, options.link))
    if options.netns is not None:
        msg.attributes.append((IFLA_NET_NS_FD, _fd(options.netns)))
    return msg


def _link_message(link: int | str) -> LinkMessage:
    msg = LinkMessage()
    if isinstance(link, str):
        msg.attributes.append((IFLA_IFNAME, link))
    else:
        msg.index = link
    return msg


def _expect_count(function: str, result: list[Any], count: int) -> None:
    if len(result) != count:
        raise NetavarkError(
            f"{function}: unexpected netlink result "
            f"(got {len(result)} result(s), want {count})"
        )


def _expect_type(item: tuple[int, bytes], want: int, cls: Any) -> Any:
    msg_type, body = item
    if msg_type != want:
        raise NetavarkError(f"unexpected netlink message type: {msg_type}")
    return cls.unpack(body)


def _create_addr_msg(index: int, addr: IPInterface) -> AddressMessage:
    msg = AddressMessage(index=index)
    if addr.version == 4:
        msg.family = AF_INET
        msg.attributes.append((IFA_BROADCAST, addr.network.broadcast_address))
    else:
        msg.family = AF_INET6
    msg.prefix_len = addr.network.prefixlen
    msg.attributes.append((IFA_LOCAL, addr.ip))
    return msg


def _create_route_msg(route: Route) -> RouteMessage:
    metric = DEFAULT_METRIC if route.metric is None else route.metric
    return RouteMessage(
        family=AF_INET if route.dest.version == 4 else AF_INET6,
        destination_prefix_length=route.dest.network.prefixlen,
        table=RT_TABLE_MAIN,
        protocol=RTPROT_STATIC,
        scope=RT_SCOPE_UNIVERSE,
        kind=RTN_UNICAST,
        attributes=[
            (RTA_DST, route.dest.ip),
            (RTA_GATEWAY, route.gw),
            (RTA_PRIORITY, metric),
        ],
    )


class Socket:
    """A route netlink socket bound to the current network namespace.

    ``sock`` may be any object with ``send``, ``recv`` and ``close``; by default
    a new kernel netlink socket is opened.
    """

    def __init__(self, sock: Any = None) -> None:
        if sock is None:
            sock = self._open()
        self._sock = sock
        self._sequence = 0

    @staticmethod
    def _open() -> socket.socket:
        try:
            sock = socket.socket(socket.AF_NETLINK, socket.SOCK_RAW, NETLINK_ROUTE)
        except OSError as err:
            raise NetavarkError.wrap("open", err) from err
        for step in ("bind", "connect"):
            try:
                getattr(sock, step)((0, 0))
            except OSError as err:
                sock.close()
                raise NetavarkError.wrap(step, err) from err
        return sock

    def __enter__(self) -> Socket:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying socket."""
        self._sock.close()

    def get_link(self, link: int | str) -> LinkMessage:
        """Return the link with the given index or name."""
        result = self._request(RTM_GETLINK, _link_message(link).pack(), 0)
        _expect_count("get_link", result, 1)
        return _expect_type(result[0], RTM_NEWLINK, LinkMessage)

    def create_link(self, options: CreateLinkOptions) -> None:
        """Create a new link."""
        msg = parse_create_link_options(options)
        result = self._request(RTM_NEWLINK, msg.pack(), NLM_F_ACK | NLM_F_EXCL | NLM_F_CREATE)
        _expect_count("create_link", result, 0)

    def set_link_name(self, index: int, name: str) -> None:
        """Rename the link with the given index."""
        msg = LinkMessage(index=index, attributes=[(IFLA_IFNAME, name)])
        result = self._request(RTM_SETLINK, msg.pack(), NLM_F_ACK)
        _expect_count("set_link_name", result, 0)

    def del_link(self, link: int | str) -> None:
        """Delete the link with the given index or name."""
        result = self._request(RTM_DELLINK, _link_message(link).pack(), NLM_F_ACK)
        _expect_count("del_link", result, 0)

    def set_link_ns(self, index: int, netns_fd: Any) -> None:
        """Move the link into the network namespace referred to by ``netns_fd``."""
        msg = LinkMessage(index=index, attributes=[(IFLA_NET_NS_FD, _fd(netns_fd))])
        result = self._request(RTM_SETLINK, msg.pack(), NLM_F_ACK)
        _expect_count("set_link_ns", result, 0)

    def add_addr(self, index: int, addr: IPInterface) -> None:
        """Add an address to the link with the given index."""
        msg = _create_addr_msg(index, addr)
        try:
            result = self._request(
                RTM_NEWADDR, msg.pack(), NLM_F_ACK | NLM_F_EXCL | NLM_F_CREATE
            )
        except NetlinkError as err:
            # the kernel returns EACCES for ipv6 addresses when ipv6 is disabled
            if err.code == errno.EACCES and addr.version == 6:
                raise NetavarkError.wrap(
                    "failed to add ipv6 address, is ipv6 enabled in the kernel?", err
                ) from err
            raise
        _expect_count("add_addr", result, 0)

    def del_addr(self, index: int, addr: IPInterface) -> None:
        """Remove an address from the link with the given index."""
        msg = _create_addr_msg(index, addr)
        result = self._request(RTM_DELADDR, msg.pack(), NLM_F_ACK)
        _expect_count("del_addr", result, 0)

    def add_route(self, route: Route) -> None:
        """Add a route to the main table."""
        log.info("Adding route %s", route)
        result = self._request(
            RTM_NEWROUTE, _create_route_msg(route).pack(), NLM_F_ACK | NLM_F_CREATE
        )
        _expect_count("add_route", result, 0)

    def del_route(self, route: Route) -> None:
        """Remove a route from the main table."""
        log.info("Deleting route %s", route)
        result = self._request(RTM_DELROUTE, _create_route_msg(route).pack(), NLM_F_ACK)
        _expect_count("del_route", result, 0)

    def dump_routes(self) -> list[RouteMessage]:
        """Return all routes of the main table."""
        msg = RouteMessage(
            table=RT_TABLE_MAIN,
            protocol=RTPROT_UNSPEC,
            scope=RT_SCOPE_UNIVERSE,
            kind=RTN_UNICAST,
        )
        results = self._request(RTM_GETROUTE, msg.pack(), NLM_F_DUMP | NLM_F_ACK)
        return [_expect_type(item, RTM_NEWROUTE, RouteMessage) for item in results]

    def dump_links(self, attributes: Attributes | None = None) -> list[LinkMessage]:
        """Return all links, filtered by the kernel on ``attributes``."""
        msg = LinkMessage(attributes=list(attributes or []))
        results = self._request(RTM_GETLINK, msg.pack(), NLM_F_DUMP | NLM_F_ACK)
        return [_expect_type(item, RTM_NEWLINK, LinkMessage) for item in results]

    def dump_addresses(self) -> list[AddressMessage]:
        """Return all addresses."""
        results = self._request(RTM_GETADDR, AddressMessage().pack(), NLM_F_DUMP | NLM_F_ACK)
        return [_expect_type(item, RTM_NEWADDR, AddressMessage) for item in results]

    def set_up(self, link: int | str) -> None:
        """Bring the link up."""
        msg = _link_message(link)
        msg.flags = IFF_UP
        msg.change_mask = IFF_UP
        result = self._request(RTM_SETLINK, msg.pack(), NLM_F_ACK | NLM_F_EXCL | NLM_F_CREATE)
        _expect_count("set_up", result, 0)

    def set_mac_address(self, link: int | str, mac: bytes) -> None:
        """Set the hardware address of the link."""
        msg = _link_message(link)
        msg.attributes.append((IFLA_ADDRESS, bytes(mac)))
        result = self._request(RTM_SETLINK, msg.pack(), NLM_F_ACK)
        _expect_count("set_mac_address", result, 0)

    def _request(self, msg_type: int, payload: bytes, flags: int) -> list[tuple[int, bytes]]:
        try:
            self._send(msg_type, payload, flags)
        except OSError as err:
            raise NetavarkError.wrap("send to netlink", err) from err
        return self._recv(flags & NLM_F_DUMP == NLM_F_DUMP)

    def _send(self, msg_type: int, payload: bytes, flags: int) -> None:
        self._sequence += 1
        header = _NLMSGHDR.pack(
            _NLMSGHDR.size + len(payload), msg_type, NLM_F_REQUEST | flags, self._sequence, 0
        )
        packet = header + payload
        log.debug("send netlink packet: type %d, %d bytes", msg_type, len(packet))
        self._sock.send(packet)

    def _recv(self, multi: bool) -> list[tuple[int, bytes]]:
        result: list[tuple[int, bytes]] = []
        while True:
            try:
                data = self._sock.recv(_BUFFER_SIZE)
            except OSError as err:
                raise NetavarkError.wrap("recv from netlink", err) from err
            if not data:
                raise NetavarkError("recv from netlink: socket closed")

            offset = 0
            while offset < len(data):
                if len(data) - offset < _NLMSGHDR.size:
                    raise NetavarkError("failed to deserialize netlink message: short header")
                length, msg_type, _flags, seq, _pid = _NLMSGHDR.unpack_from(data, offset)
                if length < _NLMSGHDR.size or offset + length > len(data):
                    raise NetavarkError(
                        f"failed to deserialize netlink message: invalid length {length}"
                    )
                body = bytes(data[offset + _NLMSGHDR.size : offset + length])
                log.debug("read netlink packet: type %d, %d bytes", msg_type, length)

                if seq != self._sequence:
                    raise NetavarkError(
                        f"netlink: sequence_number out of sync (got {seq}, want {self._sequence})"
                    )

                if msg_type == NLMSG_DONE:
                    return result
                if msg_type == NLMSG_ERROR:
                    if len(body) < _I32.size:
                        raise NetavarkError(
                            "failed to deserialize netlink message: short error message"
                        )
                    (code,) = _I32.unpack_from(body)
                    if code != 0:
                        raise NetlinkError(-code)
                    return result
                if msg_type == NLMSG_NOOP:
                    raise NetavarkError("unimplemented netlink message type NOOP")
                if msg_type == NLMSG_OVERRUN:
                    raise NetavarkError("unimplemented netlink message type OVERRUN")

                result.append((msg_type, body))
                if not multi:
                    return result
                offset += _align(length)