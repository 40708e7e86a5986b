"""Types accepted and returned by netavark, with JSON (de)serialisation."""

from __future__ import annotations

import ipaddress
import json
import sys
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from ipaddress import IPv4Address, IPv4Interface, IPv6Address, IPv6Interface
from os import PathLike
from typing import Any, TypeVar

from netavark.errors import NetavarkError

IPAddress = IPv4Address | IPv6Address
IPInterface = IPv4Interface | IPv6Interface

T = TypeVar("T")


def _expect_map(data: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise NetavarkError(f"invalid type: expected a map for {what}")
    return data


def _required(data: Mapping[str, Any], key: str) -> Any:
    try:
        return data[key]
    except KeyError:
        raise NetavarkError(f"missing field `{key}`") from None


def _string(value: Any, key: str) -> str:
    if not isinstance(value, str):
        raise NetavarkError(f"invalid type for `{key}`: expected a string")
    return value


def _boolean(value: Any, key: str) -> bool:
    if not isinstance(value, bool):
        raise NetavarkError(f"invalid type for `{key}`: expected a boolean")
    return value


def _unsigned(value: Any, key: str, bits: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise NetavarkError(f"invalid type for `{key}`: expected an integer")
    if not 0 <= value < (1 << bits):
        raise NetavarkError(f"invalid value for `{key}`: {value} out of range for u{bits}")
    return value


def _u16(value: Any, key: str) -> int:
    return _unsigned(value, key, 16)


def _u32(value: Any, key: str) -> int:
    return _unsigned(value, key, 32)


def _ip(value: Any, key: str) -> IPAddress:
    text = _string(value, key)
    try:
        return ipaddress.ip_address(text)
    except ValueError:
        raise NetavarkError(f"invalid IP address syntax for `{key}`: {text}") from None


def _ipnet(value: Any, key: str) -> IPInterface:
    text = _string(value, key)
    if "/" not in text:
        raise NetavarkError(f"invalid IP network syntax for `{key}`: {text}")
    try:
        return ipaddress.ip_interface(text)
    except ValueError:
        raise NetavarkError(f"invalid IP network syntax for `{key}`: {text}") from None


def _list(convert: Callable[[Any, str], T]) -> Callable[[Any, str], list[T]]:
    def parse(value: Any, key: str) -> list[T]:
        if not isinstance(value, list):
            raise NetavarkError(f"invalid type for `{key}`: expected a sequence")
        return [convert(item, key) for item in value]

    return parse


def _string_map(value: Any, key: str) -> dict[str, str]:
    mapping = _expect_map(value, f"`{key}`")
    return {_string(k, key): _string(v, key) for k, v in mapping.items()}


def _nested(cls: Any) -> Callable[[Any, str], Any]:
    return lambda value, key: cls.from_dict(_expect_map(value, f"`{key}`"))


def _optional(data: Mapping[str, Any], key: str, convert: Callable[[Any, str], T]) -> T | None:
    value = data.get(key)
    return None if value is None else convert(value, key)


def _get(data: Mapping[str, Any], key: str, convert: Callable[[Any, str], T]) -> T:
    return convert(_required(data, key), key)


def _str_or_none(value: Any) -> str | None:
    return None if value is None else str(value)


def _strs_or_none(values: list[Any] | None) -> list[str] | None:
    return None if values is None else [str(v) for v in values]


@dataclass
class LeaseRange:
    """Range of addresses from which IPs are leased."""

    end_ip: str | None = None
    start_ip: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> LeaseRange:
        data = _expect_map(data, "LeaseRange")
        return cls(
            end_ip=_optional(data, "end_ip", _string),
            start_ip=_optional(data, "start_ip", _string),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"end_ip": self.end_ip, "start_ip": self.start_ip}


@dataclass
class Subnet:
    """A subnet of a network with its optional gateway."""

    subnet: IPInterface
    gateway: IPAddress | None = None
    lease_range: LeaseRange | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Subnet:
        data = _expect_map(data, "Subnet")
        return cls(
            gateway=_optional(data, "gateway", _ip),
            lease_range=_optional(data, "lease_range", _nested(LeaseRange)),
            subnet=_get(data, "subnet", _ipnet),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "gateway": _str_or_none(self.gateway),
            "lease_range": None if self.lease_range is None else self.lease_range.to_dict(),
            "subnet": str(self.subnet),
        }


@dataclass
class Route:
    """A static route of a network."""

    gateway: IPAddress
    destination: IPInterface
    metric: int | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Route:
        data = _expect_map(data, "Route")
        return cls(
            gateway=_get(data, "gateway", _ip),
            destination=_get(data, "destination", _ipnet),
            metric=_optional(data, "metric", _u32),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "gateway": str(self.gateway),
            "destination": str(self.destination),
            "metric": self.metric,
        }


@dataclass
class Network:
    """Description of one network."""

    dns_enabled: bool
    driver: str
    id: str
    internal: bool
    ipv6_enabled: bool
    name: str
    network_interface: str | None = None
    options: dict[str, str] | None = None
    ipam_options: dict[str, str] | None = None
    subnets: list[Subnet] | None = None
    routes: list[Route] | None = None
    network_dns_servers: list[IPAddress] | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Network:
        data = _expect_map(data, "Network")
        return cls(
            dns_enabled=_get(data, "dns_enabled", _boolean),
            driver=_get(data, "driver", _string),
            id=_get(data, "id", _string),
            internal=_get(data, "internal", _boolean),
            ipv6_enabled=_get(data, "ipv6_enabled", _boolean),
            name=_get(data, "name", _string),
            network_interface=_optional(data, "network_interface", _string),
            options=_optional(data, "options", _string_map),
            ipam_options=_optional(data, "ipam_options", _string_map),
            subnets=_optional(data, "subnets", _list(_nested(Subnet))),
            routes=_optional(data, "routes", _list(_nested(Route))),
            network_dns_servers=_optional(data, "network_dns_servers", _list(_ip)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "dns_enabled": self.dns_enabled,
            "driver": self.driver,
            "id": self.id,
            "internal": self.internal,
            "ipv6_enabled": self.ipv6_enabled,
            "name": self.name,
            "network_interface": self.network_interface,
            "options": None if self.options is None else dict(self.options),
            "ipam_options": None if self.ipam_options is None else dict(self.ipam_options),
            "subnets": None if self.subnets is None else [s.to_dict() for s in self.subnets],
            "routes": None if self.routes is None else [r.to_dict() for r in self.routes],
            "network_dns_servers": _strs_or_none(self.network_dns_servers),
        }


@dataclass
class PerNetworkOptions:
    """Options set for one container on one network."""

    interface_name: str
    aliases: list[str] | None = None
    static_ips: list[IPAddress] | None = None
    static_mac: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PerNetworkOptions:
        data = _expect_map(data, "PerNetworkOptions")
        return cls(
            aliases=_optional(data, "aliases", _list(_string)),
            interface_name=_get(data, "interface_name", _string),
            static_ips=_optional(data, "static_ips", _list(_ip)),
            static_mac=_optional(data, "static_mac", _string),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "aliases": None if self.aliases is None else list(self.aliases),
            "interface_name": self.interface_name,
            "static_ips": _strs_or_none(self.static_ips),
            "static_mac": self.static_mac,
        }


@dataclass
class PortMapping:
    """One or more ports mapped from the host into the container."""

    container_port: int
    host_ip: str
    host_port: int
    protocol: str
    range: int

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PortMapping:
        data = _expect_map(data, "PortMapping")
        return cls(
            container_port=_get(data, "container_port", _u16),
            host_ip=_get(data, "host_ip", _string),
            host_port=_get(data, "host_port", _u16),
            protocol=_get(data, "protocol", _string),
            range=_get(data, "range", _u16),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "container_port": self.container_port,
            "host_ip": self.host_ip,
            "host_port": self.host_port,
            "protocol": self.protocol,
            "range": self.range,
        }


def _port_mappings_out(mappings: list[PortMapping] | None) -> list[dict[str, Any]] | None:
    return None if mappings is None else [m.to_dict() for m in mappings]


@dataclass
class NetworkOptions:
    """Everything needed to set up or tear down the networks of one container."""

    container_id: str
    container_name: str
    networks: dict[str, PerNetworkOptions]
    network_info: dict[str, Network]
    port_mappings: list[PortMapping] | None = None
    dns_servers: list[IPAddress] | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NetworkOptions:
        data = _expect_map(data, "NetworkOptions")
        networks = _expect_map(_required(data, "networks"), "`networks`")
        info = _expect_map(_required(data, "network_info"), "`network_info`")
        return cls(
            container_id=_get(data, "container_id", _string),
            container_name=_get(data, "container_name", _string),
            networks={
                name: PerNetworkOptions.from_dict(_expect_map(opts, f"network {name}"))
                for name, opts in networks.items()
            },
            network_info={
                name: Network.from_dict(_expect_map(net, f"network {name}"))
                for name, net in info.items()
            },
            port_mappings=_optional(data, "port_mappings", _list(_nested(PortMapping))),
            dns_servers=_optional(data, "dns_servers", _list(_ip)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "container_id": self.container_id,
            "container_name": self.container_name,
            "networks": {name: o.to_dict() for name, o in self.networks.items()},
            "network_info": {name: n.to_dict() for name, n in self.network_info.items()},
            "port_mappings": _port_mappings_out(self.port_mappings),
            "dns_servers": _strs_or_none(self.dns_servers),
        }

    @classmethod
    def load(cls, path: str | PathLike[str] | None = None) -> NetworkOptions:
        """Read options as JSON from ``path``, or from standard input if it is None."""
        try:
            if path is None:
                data = json.load(sys.stdin)
            else:
                with open(path, encoding="utf-8") as fh:
                    data = json.load(fh)
            return cls.from_dict(data)
        except (OSError, ValueError, NetavarkError) as err:
            raise NetavarkError.wrap("failed to load network options", err) from err


@dataclass
class NetAddress:
    """An address assigned to an interface, with its gateway."""

    ipnet: IPInterface
    gateway: IPAddress | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NetAddress:
        data = _expect_map(data, "NetAddress")
        return cls(
            gateway=_optional(data, "gateway", _ip),
            ipnet=_get(data, "ipnet", _ipnet),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"gateway": _str_or_none(self.gateway), "ipnet": str(self.ipnet)}


@dataclass
class NetInterface:
    """Settings of one network interface created in the container."""

    mac_address: str
    subnets: list[NetAddress] | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NetInterface:
        data = _expect_map(data, "NetInterface")
        return cls(
            mac_address=_get(data, "mac_address", _string),
            subnets=_optional(data, "subnets", _list(_nested(NetAddress))),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "mac_address": self.mac_address,
            "subnets": None if self.subnets is None else [s.to_dict() for s in self.subnets],
        }


@dataclass
class StatusBlock:
    """Network information about a container connected to one network."""

    dns_search_domains: list[str] | None = None
    dns_server_ips: list[IPAddress] | None = None
    interfaces: dict[str, NetInterface] | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StatusBlock:
        data = _expect_map(data, "StatusBlock")
        interfaces = data.get("interfaces")
        return cls(
            dns_search_domains=_optional(data, "dns_search_domains", _list(_string)),
            dns_server_ips=_optional(data, "dns_server_ips", _list(_ip)),
            interfaces=None
            if interfaces is None
            else {
                name: NetInterface.from_dict(_expect_map(iface, f"interface {name}"))
                for name, iface in _expect_map(interfaces, "`interfaces`").items()
            },
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "dns_search_domains": None
            if self.dns_search_domains is None
            else list(self.dns_search_domains),
            "dns_server_ips": _strs_or_none(self.dns_server_ips),
            "interfaces": None
            if self.interfaces is None
            else {name: i.to_dict() for name, i in self.interfaces.items()},
        }


@dataclass
class NetworkPluginExec:
    """Input handed to a network plugin for setup and teardown."""

    container_id: str
    container_name: str
    network: Network
    network_options: PerNetworkOptions
    port_mappings: list[PortMapping] | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NetworkPluginExec:
        data = _expect_map(data, "NetworkPluginExec")
        return cls(
            container_id=_get(data, "container_id", _string),
            container_name=_get(data, "container_name", _string),
            port_mappings=_optional(data, "port_mappings", _list(_nested(PortMapping))),
            network=_get(data, "network", _nested(Network)),
            network_options=_get(data, "network_options", _nested(PerNetworkOptions)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "container_id": self.container_id,
            "container_name": self.container_name,
            "port_mappings": _port_mappings_out(self.port_mappings),
            "network": self.network.to_dict(),
            "network_options": self.network_options.to_dict(),
        }