# netavark

A library of building blocks for setting up container networks on Linux:

- `netavark.types` – typed network configuration (`Network`,
  `NetworkOptions`, `PerNetworkOptions`, `PortMapping`, `StatusBlock`, …)
  that reads and writes the JSON documents a container engine hands over;
- `netavark.internal_types` – the data passed between drivers and firewall
  code (`SetupNetwork`, `PortForwardConfig`, `IPAMAddresses`,
  `IsolateOption`, …);
- `netavark.netlink` – a small rtnetlink client (`Socket`) for links,
  addresses and routes, plus the message classes `LinkMessage`,
  `AddressMessage` and `RouteMessage`;
- `netavark.core_utils` – helpers for options, IPAM, sysctls, network
  namespaces, MAC addresses and default routes;
- `netavark.vlan` – the macvlan and ipvlan network driver (`Vlan`) and
  `DriverInfo`, the description of one container on one network;
- `netavark.driver` – the `NetworkDriver` protocol and `get_network_driver()`;
- `netavark.plugin_driver` and `netavark.plugin_api` – calling external
  network plugins, and writing them;
- `netavark.errors` – `NetavarkError` and its subclasses `NetlinkError`,
  `SysctlError` and `NetavarkErrorList`;
- `netavark.validation` – `ns_checks()` for namespace paths;
- `netavark.constants` – option names, driver names and defaults.

Python 3.12 or newer is required; nothing outside the standard library is
used. Anything that touches interfaces, sysctls or namespaces needs root (or
`CAP_NET_ADMIN`) on Linux.

## Loading a configuration

```python
from netavark.types import NetworkOptions

opts = NetworkOptions.load("setup.json")   # None reads from standard input
print(opts.container_name)
for name, network in opts.network_info.items():
    print(name, network.driver, network.network_interface)
```

Every configuration type has `from_dict()` and `to_dict()`, so it can be
passed through `json` unchanged. Missing required fields, wrong types and
malformed addresses raise `NetavarkError`; `load()` wraps them as
`failed to load network options: …`.

## Checking a namespace path

```python
from netavark.validation import ns_checks

ns_checks("/run/netns/example")   # raises NetavarkError if it cannot be opened
```

## MAC address and option helpers

```python
from netavark.core_utils import (
    decode_address_from_hex,
    encode_address_to_hex,
    parse_option,
)

raw = decode_address_from_hex("02:00:00:00:00:01")
assert encode_address_to_hex(raw) == "02:00:00:00:00:01"

assert parse_option({"mtu": "1500"}, "mtu", int) == 1500
assert parse_option({}, "mtu", int) is None
```

Both `:` and `-` are accepted as MAC separators; anything that is not exactly
six hex bytes raises `NetavarkError`. `parse_option()` treats `int` as an
unsigned 32-bit value and `bool` as exactly `"true"` or `"false"`.

## Running a driver

`open_netlink_sockets()` opens a netlink socket on the host and one inside
the container namespace. `get_network_driver()` returns the `Vlan` driver for
the `macvlan` and `ipvlan` driver names and otherwise looks for an executable
file of the same name in the given plugin directories, raising
`NetavarkError` if none is found.

```python
from netavark.core_utils import open_netlink_sockets
from netavark.driver import get_network_driver
from netavark.vlan import DriverInfo

netns_path = "/run/netns/example"
host, container = open_netlink_sockets(netns_path)
try:
    info = DriverInfo(
        network=network,
        per_network_opts=per_network_opts,
        container_id="example-id",
        container_name="example",
        netns_host=host.file,
        netns_container=container.file,
        netns_path=netns_path,
    )
    driver = get_network_driver(info, ["/usr/libexec/netavark"])
    driver.validate()
    status, _ = driver.setup(host.netlink, container.netlink)
    print(status.to_dict())
finally:
    host.close()
    container.close()
```

For networks whose IPAM driver is `dhcp`, the `Vlan` driver obtains and
releases leases through `DriverInfo.dhcp_client`, an object with
`get_lease()` and `release_lease()` methods (see `DhcpLeaseClient` in
`netavark.vlan`); without one, setup and teardown raise `NetavarkError`.

## Writing a plugin

A plugin is an executable that receives `create`, `setup <netns>`,
`teardown <netns>` or `info` as arguments and JSON on standard input.
`PluginExec` handles the protocol; you supply the behaviour by subclassing
`Plugin`.

```python
import sys

from netavark.plugin_api import Info, Plugin, PluginExec
from netavark.types import StatusBlock


class MyPlugin(Plugin):
    def create(self, network):
        return network

    def setup(self, netns, opts):
        return StatusBlock(dns_search_domains=[], dns_server_ips=[], interfaces={})

    def teardown(self, netns, opts):
        pass


if __name__ == "__main__":
    info = Info(version="0.1.0", extra_info={"description": "example plugin"})
    PluginExec(MyPlugin(), info).exec(sys.argv)
```

With no subcommand, or with `info`, the plugin prints its `Info` as JSON,
with `extra_info` merged into the top level. Any error is written to
standard output as `{"error": "..."}` and the process exits with status 1.
`PluginDriver` is the other side: it runs such an executable and reads the
`StatusBlock` or the error it prints.

## What this package does not do

- There is no command-line program; everything is used as a library.
- There is no bridge driver: a network with driver `bridge` is only found if
  a plugin of that name exists.
- No firewall rules, port forwarding or DNS server configuration are set up;
  `internal_types` only holds the data such code would consume.
- There is no DHCP client or proxy; DHCP leases come from the object you
  pass as `dhcp_client`.