"""Types used between the drivers and the firewall code."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from netavark.errors import NetavarkError
from netavark.types import (
    IPAddress,
    IPInterface,
    NetAddress,
    PortMapping,
    _expect_map,
    _get,
    _ip,
    _ipnet,
    _list,
    _nested,
    _optional,
    _port_mappings_out,
    _str_or_none,
    _string,
    _strs_or_none,
    _u16,
)

if TYPE_CHECKING:
    from netavark.netlink import Route as NetlinkRoute


class IsolateOption(Enum):
    """How a network is isolated from other networks."""

    STRICT = "Strict"
    NORMAL = "Normal"
    NEVER = "Never"


def _isolation(value: Any, key: str) -> IsolateOption:
    text = _string(value, key)
    try:
        return IsolateOption(text)
    except ValueError:
        raise NetavarkError(f"unknown variant `{text}` for `{key}`") from None


@dataclass
class SetupNetwork:
    """Options for setting up the firewall of a network."""

    subnets: list[IPInterface] | None
    bridge_name: str
    network_hash_name: str
    isolation: IsolateOption
    dns_port: int
    network_id: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SetupNetwork:
        data = _expect_map(data, "SetupNetwork")
        return cls(
            subnets=_optional(data, "subnets", _list(_ipnet)),
            bridge_name=_get(data, "bridge_name", _string),
            network_id=_optional(data, "network_id", _string) or "",
            network_hash_name=_get(data, "network_hash_name", _string),
            isolation=_get(data, "isolation", _isolation),
            dns_port=_get(data, "dns_port", _u16),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "subnets": _strs_or_none(self.subnets),
            "bridge_name": self.bridge_name,
            "network_id": self.network_id,
            "network_hash_name": self.network_hash_name,
            "isolation": self.isolation.value,
            "dns_port": self.dns_port,
        }


@dataclass
class TearDownNetwork:
    """Options for tearing down the firewall of a network."""

    config: SetupNetwork
    complete_teardown: bool


@dataclass
class PortForwardConfig:
    """Port forwarding options for one container on one network."""

    container_id: str
    port_mappings: list[PortMapping] | None
    network_name: str
    network_hash_name: str
    container_ip_v4: IPAddress | None
    subnet_v4: IPInterface | None
    container_ip_v6: IPAddress | None
    subnet_v6: IPInterface | None
    dns_port: int
    dns_server_ips: list[IPAddress] = field(default_factory=list)
    network_id: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PortForwardConfig:
        data = _expect_map(data, "PortForwardConfig")
        return cls(
            container_id=_get(data, "container_id", _string),
            network_id=_optional(data, "network_id", _string) or "",
            port_mappings=_optional(data, "port_mappings", _list(_nested(PortMapping))),
            network_name=_get(data, "network_name", _string),
            network_hash_name=_get(data, "network_hash_name", _string),
            container_ip_v4=_optional(data, "container_ip_v4", _ip),
            subnet_v4=_optional(data, "subnet_v4", _ipnet),
            container_ip_v6=_optional(data, "container_ip_v6", _ip),
            subnet_v6=_optional(data, "subnet_v6", _ipnet),
            dns_port=_get(data, "dns_port", _u16),
            dns_server_ips=_get(data, "dns_server_ips", _list(_ip)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "container_id": self.container_id,
            "network_id": self.network_id,
            "port_mappings": _port_mappings_out(self.port_mappings),
            "network_name": self.network_name,
            "network_hash_name": self.network_hash_name,
            "container_ip_v4": _str_or_none(self.container_ip_v4),
            "subnet_v4": _str_or_none(self.subnet_v4),
            "container_ip_v6": _str_or_none(self.container_ip_v6),
            "subnet_v6": _str_or_none(self.subnet_v6),
            "dns_port": self.dns_port,
            "dns_server_ips": [str(ip) for ip in self.dns_server_ips],
        }


@dataclass
class TeardownPortForward:
    """Options for removing the port forwarding of a container."""

    config: PortForwardConfig
    complete_teardown: bool


@dataclass
class IPAMAddresses:
    """Addresses computed by IPAM for one container on one network."""

    container_addresses: list[IPInterface] = field(default_factory=list)
    dhcp_enabled: bool = False
    gateway_addresses: list[IPInterface] = field(default_factory=list)
    routes: list[NetlinkRoute] = field(default_factory=list)
    ipv6_enabled: bool = False
    net_addresses: list[NetAddress] = field(default_factory=list)
    nameservers: list[IPAddress] = field(default_factory=list)