#!/usr/bin/env python3
"""
RTNetlink Route Dump with C Library via CFFI

Reads the kernel routing tables (IPv4 and IPv6) for the route collector:
- Destination prefix, preferred source and gateway
- Output interface index
- Route priority (metric), protocol, type and table id
- Multipath next-hops (ECMP) with their hop weights

The dump is narrowed with a RouteFilter that behaves like the netlink
library's RouteListFiltered(): cloned routes are dropped, routes outside the
main table need RT_FILTER_TABLE, and a filter table of 0 matches any table.

Requirements:
    - Python 3.8+
    - cffi>=1.0.0
    - setuptools (required for Python 3.12+)

Usage:
    python3 -m netroutes.route_info              # Full JSON output
    python3 -m netroutes.route_info --summary    # Human-readable summary
    python3 -m netroutes.route_info --ipv4       # IPv4 routes only
    python3 -m netroutes.route_info --table 254  # Routes of one table
"""

from cffi import FFI
import json
import sys
import ipaddress
from dataclasses import asdict
from typing import Dict, List, Optional

from netroutes.model import (
    FAMILY_V4, FAMILY_V6, RT_FILTER_TABLE, RT_TABLE_UNSPEC,
    FetchError, NextHop, RawRoute, RouteFilter,
)

# Check Python version
if sys.version_info < (3, 8):
    raise RuntimeError("Python 3.8 or higher is required")

# For Python 3.12+, verify setuptools is available
if sys.version_info >= (3, 12):
    try:
        import setuptools # @UnusedImport
    except ImportError:
        raise RuntimeError(
            "Python 3.12+ requires setuptools for CFFI.\n"
            "Install it with: pip install setuptools"
        )

# C library source code - RTM_GETROUTE support
C_SOURCE = r"""
#include <stdio.h>
#include <stdlib.h>
#include <string.h>
#include <unistd.h>
#include <sys/socket.h>
#include <linux/netlink.h>
#include <linux/rtnetlink.h>
#include <arpa/inet.h>
#include <time.h>
#include <errno.h>

#if !defined(NETLINK_ROUTE) || !defined(RTM_GETROUTE)
#error "Kernel headers too old - need Linux 2.6+ with rtnetlink support"
#endif

typedef struct {
    unsigned char* data;
    size_t length;
    size_t capacity;
    unsigned int seq;
} response_buffer_t;

typedef struct {
    unsigned char gateway[16];
    int ifindex;
    unsigned char hops;
    unsigned char flags;
    int has_gateway;
    int gateway_len;
} route_nexthop_t;

typedef struct {
    unsigned char family;
    unsigned char dst_len;
    unsigned char table;
    unsigned char protocol;
    unsigned char type;
    unsigned int flags;

    unsigned char dst_addr[16];
    unsigned char gateway[16];
    unsigned char prefsrc[16];

    int ifindex;
    unsigned int priority;
    unsigned int table_id;

    int has_dst_addr;
    int has_gateway;
    int has_prefsrc;
    int has_table_id;

    route_nexthop_t* nexthops;
    int nexthop_count;
} route_entry_t;

int nl_create_socket() {
    int sock = socket(AF_NETLINK, SOCK_RAW | SOCK_CLOEXEC, NETLINK_ROUTE);
    if (sock < 0) {
        return -1;
    }

    struct sockaddr_nl addr;
    memset(&addr, 0, sizeof(addr));
    addr.nl_family = AF_NETLINK;

    if (bind(sock, (struct sockaddr*)&addr, sizeof(addr)) < 0) {
        close(sock);
        return -1;
    }

    int bufsize = 1024 * 1024;
    setsockopt(sock, SOL_SOCKET, SO_RCVBUF, &bufsize, sizeof(bufsize));

    return sock;
}

void nl_close_socket(int sock) {
    if (sock >= 0) {
        close(sock);
    }
}

static unsigned int nl_generate_seq(void) {
    static int initialized = 0;
    if (!initialized) {
        srand(time(NULL) ^ getpid());
        initialized = 1;
    }
    return (unsigned int)rand();
}

int nl_send_getroute(int sock, unsigned int* seq_out, int family) {
    struct {
        struct nlmsghdr nlh;
        struct rtmsg rtm;
    } req;

    memset(&req, 0, sizeof(req));
    req.nlh.nlmsg_len = NLMSG_LENGTH(sizeof(struct rtmsg));
    req.nlh.nlmsg_type = RTM_GETROUTE;
    req.nlh.nlmsg_flags = NLM_F_REQUEST | NLM_F_DUMP;
    req.nlh.nlmsg_seq = nl_generate_seq();
    req.rtm.rtm_family = family;

    if (send(sock, &req, req.nlh.nlmsg_len, 0) < 0) {
        return -1;
    }

    if (seq_out) {
        *seq_out = req.nlh.nlmsg_seq;
    }

    return 0;
}

response_buffer_t* nl_receive_response(int sock, unsigned int expected_seq) {
    response_buffer_t* buf = calloc(1, sizeof(response_buffer_t));
    if (!buf) return NULL;

    buf->capacity = 65536;
    buf->data = malloc(buf->capacity);
    buf->seq = expected_seq;

    if (!buf->data) {
        free(buf);
        return NULL;
    }

    int done = 0;
    while (!done) {
        unsigned char temp_buf[32768];
        ssize_t len = recv(sock, temp_buf, sizeof(temp_buf), 0);

        if (len < 0) {
            if (errno == EINTR) continue;
            free(buf->data);
            free(buf);
            return NULL;
        }

        if (len == 0) break;

        while (buf->length + len > buf->capacity) {
            size_t new_capacity = buf->capacity * 2;
            unsigned char* new_data = realloc(buf->data, new_capacity);
            if (!new_data) {
                free(buf->data);
                free(buf);
                return NULL;
            }
            buf->data = new_data;
            buf->capacity = new_capacity;
        }

        memcpy(buf->data + buf->length, temp_buf, len);
        buf->length += len;

        struct nlmsghdr* nlh = (struct nlmsghdr*)temp_buf;
        int remaining = (int)len;
        for (; NLMSG_OK(nlh, remaining); nlh = NLMSG_NEXT(nlh, remaining)) {
            if (nlh->nlmsg_type == NLMSG_DONE || nlh->nlmsg_type == NLMSG_ERROR) {
                done = 1;
                break;
            }
        }
    }

    return buf;
}

void nl_free_response(response_buffer_t* buf) {
    if (buf) {
        if (buf->data) free(buf->data);
        free(buf);
    }
}

void nl_free_routes(route_entry_t* routes, int count) {
    if (!routes) return;
    for (int i = 0; i < count; i++) {
        free(routes[i].nexthops);
    }
    free(routes);
}

int nl_get_af_inet(void) { return AF_INET; }
int nl_get_af_inet6(void) { return AF_INET6; }

static int nl_parse_multipath(struct rtattr* rta, route_entry_t* entry) {
    struct rtnexthop* nh = RTA_DATA(rta);
    int nh_len = RTA_PAYLOAD(rta);
    int total = 0;

    for (; RTNH_OK(nh, nh_len); nh = RTNH_NEXT(nh)) {
        total++;
        nh_len -= RTNH_ALIGN(nh->rtnh_len);
    }

    free(entry->nexthops);
    entry->nexthops = NULL;
    entry->nexthop_count = 0;
    if (total == 0) return 0;

    entry->nexthops = calloc(total, sizeof(route_nexthop_t));
    if (!entry->nexthops) return -1;

    nh = RTA_DATA(rta);
    nh_len = RTA_PAYLOAD(rta);

    while (RTNH_OK(nh, nh_len) && entry->nexthop_count < total) {
        route_nexthop_t* nexthop = &entry->nexthops[entry->nexthop_count];

        nexthop->ifindex = nh->rtnh_ifindex;
        nexthop->hops = nh->rtnh_hops;
        nexthop->flags = nh->rtnh_flags;

        int attrlen = nh->rtnh_len - sizeof(*nh);
        if (attrlen > 0) {
            struct rtattr* nh_rta = RTNH_DATA(nh);
            for (; RTA_OK(nh_rta, attrlen); nh_rta = RTA_NEXT(nh_rta, attrlen)) {
                if (nh_rta->rta_type == RTA_GATEWAY) {
                    int gw_len = RTA_PAYLOAD(nh_rta);
                    if (gw_len > 0 && gw_len <= 16) {
                        memcpy(nexthop->gateway, RTA_DATA(nh_rta), gw_len);
                        nexthop->gateway_len = gw_len;
                        nexthop->has_gateway = 1;
                    }
                }
            }
        }

        entry->nexthop_count++;
        nh_len -= RTNH_ALIGN(nh->rtnh_len);
        nh = RTNH_NEXT(nh);
    }
    return 0;
}

int nl_parse_routes(response_buffer_t* buf, route_entry_t** routes, int* count) {
    if (!buf || !routes || !count) return -1;

    *count = 0;
    *routes = NULL;

    if (buf->length == 0) {
        return -1;
    }

    struct nlmsghdr* nlh = (struct nlmsghdr*)buf->data;
    int max_count = 0;
    size_t remaining = buf->length;

    for (; NLMSG_OK(nlh, remaining); nlh = NLMSG_NEXT(nlh, remaining)) {
        if (nlh->nlmsg_type == NLMSG_DONE) break;
        if (nlh->nlmsg_type == NLMSG_ERROR) {
            return -1;
        }
        if (nlh->nlmsg_type == RTM_NEWROUTE && nlh->nlmsg_seq == buf->seq) {
            max_count++;
        }
    }

    if (max_count == 0) return 0;

    *routes = calloc(max_count, sizeof(route_entry_t));
    if (!*routes) return -1;

    nlh = (struct nlmsghdr*)buf->data;
    remaining = buf->length;

    for (; NLMSG_OK(nlh, remaining); nlh = NLMSG_NEXT(nlh, remaining)) {
        if (nlh->nlmsg_type == NLMSG_DONE) break;
        if (nlh->nlmsg_type != RTM_NEWROUTE) continue;
        if (nlh->nlmsg_seq != buf->seq) continue;

        struct rtmsg* rtm = NLMSG_DATA(nlh);
        route_entry_t* entry = &(*routes)[*count];

        entry->family = rtm->rtm_family;
        entry->dst_len = rtm->rtm_dst_len;
        entry->table = rtm->rtm_table;
        entry->protocol = rtm->rtm_protocol;
        entry->type = rtm->rtm_type;
        entry->flags = rtm->rtm_flags;

        struct rtattr* rta = RTM_RTA(rtm);
        int rta_len = RTM_PAYLOAD(nlh);

        for (; RTA_OK(rta, rta_len); rta = RTA_NEXT(rta, rta_len)) {
            switch (rta->rta_type) {
                case RTA_DST:
                    if (RTA_PAYLOAD(rta) > 0 && RTA_PAYLOAD(rta) <= 16) {
                        memcpy(entry->dst_addr, RTA_DATA(rta), RTA_PAYLOAD(rta));
                        entry->has_dst_addr = 1;
                    }
                    break;

                case RTA_GATEWAY:
                    if (RTA_PAYLOAD(rta) > 0 && RTA_PAYLOAD(rta) <= 16) {
                        memcpy(entry->gateway, RTA_DATA(rta), RTA_PAYLOAD(rta));
                        entry->has_gateway = 1;
                    }
                    break;

                case RTA_PREFSRC:
                    if (RTA_PAYLOAD(rta) > 0 && RTA_PAYLOAD(rta) <= 16) {
                        memcpy(entry->prefsrc, RTA_DATA(rta), RTA_PAYLOAD(rta));
                        entry->has_prefsrc = 1;
                    }
                    break;

                case RTA_OIF:
                    if (RTA_PAYLOAD(rta) >= sizeof(int)) {
                        entry->ifindex = *(int*)RTA_DATA(rta);
                    }
                    break;

                case RTA_PRIORITY:
                    if (RTA_PAYLOAD(rta) >= sizeof(unsigned int)) {
                        entry->priority = *(unsigned int*)RTA_DATA(rta);
                    }
                    break;

                case RTA_TABLE:
                    if (RTA_PAYLOAD(rta) >= sizeof(unsigned int)) {
                        entry->table_id = *(unsigned int*)RTA_DATA(rta);
                        entry->has_table_id = 1;
                    }
                    break;

                case RTA_MULTIPATH:
                    if (nl_parse_multipath(rta, entry) < 0) {
                        nl_free_routes(*routes, *count + 1);
                        *routes = NULL;
                        *count = 0;
                        return -1;
                    }
                    break;
            }
        }

        (*count)++;
    }

    return 0;
}
"""

ffi = FFI()

# Define C function signatures
ffi.cdef("""
typedef struct {
    unsigned char* data;
    size_t length;
    size_t capacity;
    unsigned int seq;
} response_buffer_t;

typedef struct {
    unsigned char gateway[16];
    int ifindex;
    unsigned char hops;
    unsigned char flags;
    int has_gateway;
    int gateway_len;
} route_nexthop_t;

typedef struct {
    unsigned char family;
    unsigned char dst_len;
    unsigned char table;
    unsigned char protocol;
    unsigned char type;
    unsigned int flags;

    unsigned char dst_addr[16];
    unsigned char gateway[16];
    unsigned char prefsrc[16];

    int ifindex;
    unsigned int priority;
    unsigned int table_id;

    int has_dst_addr;
    int has_gateway;
    int has_prefsrc;
    int has_table_id;

    route_nexthop_t* nexthops;
    int nexthop_count;
} route_entry_t;

int nl_create_socket(void);
void nl_close_socket(int sock);
int nl_send_getroute(int sock, unsigned int* seq_out, int family);
response_buffer_t* nl_receive_response(int sock, unsigned int expected_seq);
void nl_free_response(response_buffer_t* buf);
int nl_parse_routes(response_buffer_t* buf, route_entry_t** routes, int* count);
void nl_free_routes(route_entry_t* routes, int count);
int nl_get_af_inet(void);
int nl_get_af_inet6(void);
""")

# Compile C code
try:
    lib = ffi.verify(C_SOURCE, libraries=[])
except Exception as e:
    if sys.version_info >= (3, 12) and "setuptools" in str(e).lower():
        raise RuntimeError(
            "Failed to compile C extension. Python 3.12+ requires setuptools.\n"
            "Install it with: pip install setuptools"
        ) from e
    raise

AF_INET = lib.nl_get_af_inet()
AF_INET6 = lib.nl_get_af_inet6()

FAMILY_NUMBERS = {
    FAMILY_V4: AF_INET,
    FAMILY_V6: AF_INET6,
}

ADDRESS_LENGTHS = {
    AF_INET: 4,
    AF_INET6: 16,
}

def _address(family: int, raw, length: Optional[int] = None) -> Optional[str]:
    size = length or ADDRESS_LENGTHS.get(family)
    if size == 4:
        return str(ipaddress.IPv4Address(bytes(raw[0:4])))
    if size == 16:
        return str(ipaddress.IPv6Address(bytes(raw[0:16])))
    return None


def _decode_route(family_name: str, entry) -> RawRoute:
    af = entry.family

    dst = None
    if entry.has_dst_addr:
        dst = f"{_address(af, entry.dst_addr)}/{entry.dst_len}"

    nexthops = []
    for j in range(entry.nexthop_count):
        nh = entry.nexthops[j]
        gateway = None
        if nh.has_gateway:
            gateway = _address(af, nh.gateway, nh.gateway_len)
        nexthops.append(NextHop(link_index=nh.ifindex, gateway=gateway, hops=nh.hops))

    return RawRoute(
        family=family_name,
        type=entry.type,
        src=_address(af, entry.prefsrc) if entry.has_prefsrc else None,
        dst=dst,
        gateway=_address(af, entry.gateway) if entry.has_gateway else None,
        link_index=entry.ifindex,
        multipath=tuple(nexthops),
        priority=entry.priority,
        protocol=entry.protocol,
        table=entry.table_id if entry.has_table_id else entry.table,
        flags=entry.flags,
    )


class RoutingTableQuery:
    """
    Query routing table entries using RTNETLINK via the C library.

    Can be used with context manager or direct calls:
        # Option 1: Context manager (socket auto-closed)
        with RoutingTableQuery() as rtq:
            v4 = rtq.get_routes(FAMILY_V4)
            v6 = rtq.get_routes(FAMILY_V6)

        # Option 2: Direct call (socket managed per-call)
        routes = RoutingTableQuery().get_routes(FAMILY_V4)

    All kernel failures raise FetchError.
    """

    def __init__(self):
        self.sock = -1

    def open(self):
        """Explicitly open the netlink socket"""
        if self.sock >= 0:
            return  # Already open

        self.sock = lib.nl_create_socket()
        if self.sock < 0:
            raise FetchError("Failed to create netlink socket")

    def close(self):
        """Explicitly close the netlink socket"""
        if self.sock >= 0:
            lib.nl_close_socket(self.sock)
            self.sock = -1

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, _exc_type, _exc_val, _exc_tb):
        self.close()
        return False

    def get_routes(self, family: str, route_filter: Optional[RouteFilter] = None) -> List[RawRoute]:
        """
        Dump the routes of one address family.

        Args:
            family: FAMILY_V4 ('IPv4') or FAMILY_V6 ('IPv6')
            route_filter: Optional RouteFilter; without one only the main
                table is returned

        Returns:
            List of RawRoute in kernel dump order
        """
        if family not in FAMILY_NUMBERS:
            raise ValueError(f"Invalid family: {family}. Use '{FAMILY_V4}' or '{FAMILY_V6}'")
        if route_filter is None:
            route_filter = RouteFilter(mask=0)

        need_auto_close = False
        if self.sock < 0:
            self.open()
            need_auto_close = True

        try:
            af_family = FAMILY_NUMBERS[family]
            seq = ffi.new("unsigned int*")

            if lib.nl_send_getroute(self.sock, seq, af_family) < 0:
                raise FetchError(f"Failed to send RTM_GETROUTE request for {family}")

            response = lib.nl_receive_response(self.sock, seq[0])
            if not response:
                raise FetchError(f"Failed to receive {family} routes")

            try:
                routes_ptr = ffi.new("route_entry_t**")
                count_ptr = ffi.new("int*")

                if lib.nl_parse_routes(response, routes_ptr, count_ptr) < 0:
                    raise FetchError(f"Failed to parse {family} route entries")

                routes_array = routes_ptr[0]
                try:
                    routes = []
                    for i in range(count_ptr[0]):
                        entry = routes_array[i]
                        if entry.family != af_family:
                            continue
                        route = _decode_route(family, entry)
                        if route_filter.accepts(route):
                            routes.append(route)
                    return routes
                finally:
                    lib.nl_free_routes(routes_array, count_ptr[0])

            finally:
                lib.nl_free_response(response)

        finally:
            if need_auto_close:
                self.close()


def main():
    """Main entry point for the command."""
    import argparse

    parser = argparse.ArgumentParser(description='Routing Table Dump Tool')
    parser.add_argument('--summary', '-s', action='store_true',
                        help='Show human-readable summary')
    parser.add_argument('--ipv4', action='store_true',
                        help='Show only IPv4 routes')
    parser.add_argument('--ipv6', action='store_true',
                        help='Show only IPv6 routes')
    parser.add_argument('--table', '-t', type=int, default=RT_TABLE_UNSPEC,
                        help='Only routes of this table id (default: 0, every table)')

    args = parser.parse_args()
    if args.ipv4 and args.ipv6:
        parser.error("--ipv4 and --ipv6 are mutually exclusive")

    families = [FAMILY_V4, FAMILY_V6]
    if args.ipv4:
        families = [FAMILY_V4]
    elif args.ipv6:
        families = [FAMILY_V6]

    route_filter = RouteFilter(table=args.table, mask=RT_FILTER_TABLE)

    try:
        with RoutingTableQuery() as query:
            routes: Dict[str, List[RawRoute]] = {
                family: query.get_routes(family, route_filter) for family in families
            }
    except FetchError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.summary:
        for family, entries in routes.items():
            print(f"\n{family}: {len(entries)} routes\n")
            for route in entries:
                print(f"  {route.dst or 'default':40s}", end='')
                if route.gateway:
                    print(f" via {route.gateway:20s}", end='')
                if route.link_index:
                    print(f" ifindex {route.link_index:<4d}", end='')
                print(f" metric {route.priority} table {route.table} proto {route.protocol}")
                for nh in route.multipath:
                    print(f"    nexthop", end='')
                    if nh.gateway:
                        print(f" via {nh.gateway}", end='')
                    print(f" ifindex {nh.link_index} weight {nh.hops + 1}")
    else:
        print(json.dumps({family: [asdict(r) for r in entries]
                          for family, entries in routes.items()}, indent=2))

    return 0


if __name__ == '__main__':
    sys.exit(main())
