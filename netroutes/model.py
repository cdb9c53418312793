#!/usr/bin/env python3
"""
Value types shared by the route collection pipeline.

Everything here is pure Python: it does not touch netlink, so the pipeline
and its tests can import it without compiling the C helpers used by
link_info and route_info.
"""

import ipaddress
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

FAMILY_V4 = "IPv4"
FAMILY_V6 = "IPv6"

# Route types (rtm_type). The "destination" entry kind.
RTN_UNICAST = 1

# rtm_flags
RTM_F_CLONED = 0x200

# Reserved routing tables
RT_TABLE_UNSPEC = 0
RT_TABLE_DEFAULT = 253
RT_TABLE_MAIN = 254
RT_TABLE_LOCAL = 255

LINK_KIND_STANDARD = "standard"
LINK_KIND_VRF = "vrf"

# from linux kernel 'include/uapi/linux/rtnetlink.h'
ROUTE_PROTOCOL_NAMES = {
    0: "unspec", 1: "redirect", 2: "kernel", 3: "boot", 4: "static",
    8: "gated", 9: "ra", 10: "mrt", 11: "zebra", 12: "bird",
    13: "dnrouted", 14: "xorp", 15: "ntk", 16: "dhcp", 17: "mrouted",
    42: "babel", 186: "bgp", 187: "isis", 188: "ospf", 189: "rip", 192: "eigrp",
}

RESERVED_TABLE_NAMES = {
    RT_TABLE_DEFAULT: "default",
    RT_TABLE_MAIN: "main",
    RT_TABLE_LOCAL: "local",
}


class FetchError(RuntimeError):
    """Link or route enumeration against the kernel failed."""


@dataclass(frozen=True)
class Link:
    index: int
    name: str
    kind: str = LINK_KIND_STANDARD
    vrf_table: Optional[int] = None

    @classmethod
    def from_kind(cls, index: int, name: str, info_kind: Optional[str] = None,
                  vrf_table: Optional[int] = None) -> "Link":
        """Build a link from the kernel's IFLA_INFO_KIND string."""
        if info_kind == LINK_KIND_VRF:
            return cls(index, name, LINK_KIND_VRF, vrf_table)
        return cls(index, name)

    @property
    def is_vrf(self) -> bool:
        return self.kind == LINK_KIND_VRF


@dataclass(frozen=True)
class NextHop:
    link_index: int
    gateway: Optional[str] = None
    hops: int = 0


@dataclass(frozen=True)
class RawRoute:
    """One RTM_NEWROUTE message, decoded."""
    family: str
    type: int = RTN_UNICAST
    src: Optional[str] = None
    dst: Optional[str] = None
    gateway: Optional[str] = None
    link_index: int = 0
    multipath: Tuple[NextHop, ...] = field(default_factory=tuple)
    priority: int = 0
    protocol: int = 0
    table: int = RT_TABLE_MAIN
    flags: int = 0


@dataclass(frozen=True)
class RouteRecord:
    device: str
    src: str
    dest: str
    gw: str
    priority: str
    proto: str
    weight: str
    family: str
    table: str

    LABEL_NAMES = ("device", "src", "dest", "gw", "priority", "proto",
                   "weight", "family", "table")

    value = 1

    def labels(self) -> List[str]:
        return [getattr(self, name) for name in self.LABEL_NAMES]

    def to_dict(self) -> Dict[str, str]:
        return dict(zip(self.LABEL_NAMES, self.labels()))


@dataclass(frozen=True)
class DeviceRouteCount:
    device: str
    count: int


def protocol_name(protocol: int) -> str:
    return ROUTE_PROTOCOL_NAMES.get(protocol & 0xFF, "unknown")


def routing_table_names(links: Iterable[Link]) -> Dict[int, str]:
    """
    Map routing table ids to display names.

    Starts from the reserved tables and adds one entry per VRF device. When
    two VRFs claim the same table the later one wins.
    """
    names = dict(RESERVED_TABLE_NAMES)
    for link in links:
        if link.is_vrf and link.vrf_table is not None:
            names[link.vrf_table] = link.name
    return names


def table_name(names: Dict[int, str], table_id: int) -> str:
    return names.get(table_id, "")


def format_address(addr: Optional[str]) -> str:
    if not addr:
        return ""
    ip = ipaddress.ip_address(addr)
    # IPv4-mapped IPv6 addresses print as dotted quads
    if ip.version == 6 and ip.ipv4_mapped is not None:
        return str(ip.ipv4_mapped)
    return str(ip)


def format_destination(dst: Optional[str]) -> str:
    if dst is None:
        return "default"
    net = ipaddress.ip_network(dst, strict=False)
    if net.version == 6 and net.prefixlen >= 96 and net.network_address.ipv4_mapped is not None:
        return f"{net.network_address.ipv4_mapped}/{net.prefixlen - 96}"
    return str(net)


# Table criterion bit of the netlink library's RT_FILTER_* mask
RT_FILTER_TABLE = 1 << 9


@dataclass(frozen=True)
class RouteFilter:
    """
    Route dump filter.

    Only the table criterion is supported. A route outside the main table
    passes only when RT_FILTER_TABLE is set; a table of RT_TABLE_UNSPEC then
    matches every table. Cloned (cache) routes never pass.
    """
    table: int = RT_TABLE_UNSPEC
    mask: int = RT_FILTER_TABLE

    def accepts(self, route: RawRoute) -> bool:
        if route.flags & RTM_F_CLONED:
            return False
        filter_table = bool(self.mask & RT_FILTER_TABLE)
        if route.table != RT_TABLE_MAIN and not filter_table:
            return False
        if filter_table and self.table != RT_TABLE_UNSPEC and route.table != self.table:
            return False
        return True
