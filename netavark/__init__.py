"""Container network setup on Linux: configuration types, netlink, vlan drivers and plugins."""

__version__ = "0.1.0"