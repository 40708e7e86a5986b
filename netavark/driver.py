"""The network driver interface and driver lookup."""

from __future__ import annotations

import os
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from netavark import constants
from netavark.errors import NetavarkError
from netavark.netlink import Socket
from netavark.plugin_driver import PluginDriver
from netavark.types import StatusBlock
from netavark.vlan import DriverInfo, Vlan


@runtime_checkable
class NetworkDriver(Protocol):
    """What every network driver provides."""

    def network_name(self) -> str:
        """Return the name of the network."""

    def validate(self) -> None:
        """Validate the driver options."""

    def setup(self, host_sock: Socket, netns_sock: Socket) -> tuple[StatusBlock, Any]:
        """Set up the interfaces for this driver and return its status block."""

    def teardown(self, host_sock: Socket, netns_sock: Socket) -> None:
        """Tear down the interfaces for this driver."""


def _is_executable_file(path: Path) -> bool:
    try:
        meta = path.stat()
    except OSError:
        return False
    return path.is_file() and meta.st_mode & 0o111 != 0


def get_network_driver(
    info: DriverInfo,
    plugin_directories: Iterable[str | os.PathLike[str]] | None,
) -> NetworkDriver:
    """Return the driver for the network: built in, or an executable plugin."""
    name = info.network.driver
    if name in (constants.DRIVER_IPVLAN, constants.DRIVER_MACVLAN):
        return Vlan(info)

    for directory in plugin_directories or ():
        path = Path(directory) / name
        if _is_executable_file(path):
            return PluginDriver(path, info)

    raise NetavarkError(f'unknown network driver "{name}"')