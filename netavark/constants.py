"""Network constants shared by the drivers."""

# default search domain
PODMAN_DEFAULT_SEARCH_DOMAIN = "dns.podman"

# IPAM drivers
IPAM_HOSTLOCAL = "host-local"
IPAM_DHCP = "dhcp"
IPAM_NONE = "none"

DRIVER_BRIDGE = "bridge"
DRIVER_IPVLAN = "ipvlan"
DRIVER_MACVLAN = "macvlan"

OPTION_ISOLATE = "isolate"
ISOLATE_OPTION_TRUE = "true"
ISOLATE_OPTION_FALSE = "false"
ISOLATE_OPTION_STRICT = "strict"
OPTION_MTU = "mtu"
OPTION_MODE = "mode"
OPTION_METRIC = "metric"
OPTION_NO_DEFAULT_ROUTE = "no_default_route"
OPTION_BCLIM = "bclim"
OPTION_VRF = "vrf"

# 100 is the default metric for most Linux networking tools.
DEFAULT_METRIC = 100

NO_CONTAINER_INTERFACE_ERROR = "no container interface name given"

# Must match the rootful default used by podman.
DEFAULT_CONFIG_DIR = "/run/containers/networks"