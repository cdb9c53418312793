#!/usr/bin/env python3
"""
RTNetlink Link Dump with C Library via CFFI

Lists the network interfaces the route collector needs to label routes:
- Interface index and name
- Link kind (IFLA_INFO_KIND)
- Routing table owned by VRF devices (IFLA_VRF_TABLE)

Requirements:
    - Python 3.8+
    - cffi>=1.0.0
    - setuptools (required for Python 3.12+)

Usage:
    python3 -m netroutes.link_info              # Full JSON output
    python3 -m netroutes.link_info --summary    # Human-readable summary
"""

from cffi import FFI
import json
import sys
from dataclasses import asdict
from typing import List

from netroutes.model import FetchError, Link

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

# C library source code - RTM_GETLINK support
C_SOURCE = r"""
#include <stdio.h>
#include <stdlib.h>
#include <string.h>
#include <unistd.h>
#include <sys/socket.h>
#include <linux/netlink.h>
#include <linux/rtnetlink.h>
#include <linux/if_link.h>
#include <net/if.h>
#include <time.h>
#include <errno.h>

#if !defined(NETLINK_ROUTE) || !defined(RTM_GETLINK)
#error "Kernel headers too old - need Linux 2.6+ with rtnetlink support"
#endif

#ifndef IFLA_VRF_TABLE
#define IFLA_VRF_TABLE 1
#endif

#ifndef NLA_TYPE_MASK
#define NLA_TYPE_MASK 0x3fff
#endif

typedef struct {
    unsigned char* data;
    size_t length;
    size_t capacity;
    unsigned int seq;
} response_buffer_t;

typedef struct {
    int index;
    char name[IFNAMSIZ];
    char kind[32];
    unsigned int vrf_table;
    int has_name;
    int has_kind;
    int has_vrf_table;
} link_entry_t;

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

int nl_send_getlink(int sock, unsigned int* seq_out) {
    struct {
        struct nlmsghdr nlh;
        struct ifinfomsg ifi;
    } req;

    memset(&req, 0, sizeof(req));
    req.nlh.nlmsg_len = NLMSG_LENGTH(sizeof(struct ifinfomsg));
    req.nlh.nlmsg_type = RTM_GETLINK;
    req.nlh.nlmsg_flags = NLM_F_REQUEST | NLM_F_DUMP;
    req.nlh.nlmsg_seq = nl_generate_seq();
    req.ifi.ifi_family = AF_UNSPEC;

    if (seq_out) {
        *seq_out = req.nlh.nlmsg_seq;
    }

    return send(sock, &req, req.nlh.nlmsg_len, 0);
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

void nl_free_links(link_entry_t* links) {
    if (links) free(links);
}

static void nl_parse_info_data(struct rtattr* info_data_attr, link_entry_t* link) {
    int len = RTA_PAYLOAD(info_data_attr);
    struct rtattr* rta = RTA_DATA(info_data_attr);

    for (; RTA_OK(rta, len); rta = RTA_NEXT(rta, len)) {
        if ((rta->rta_type & NLA_TYPE_MASK) == IFLA_VRF_TABLE &&
            RTA_PAYLOAD(rta) >= sizeof(unsigned int)) {
            link->vrf_table = *(unsigned int*)RTA_DATA(rta);
            link->has_vrf_table = 1;
        }
    }
}

static void nl_parse_linkinfo(struct rtattr* linkinfo_attr, link_entry_t* link) {
    int info_len = RTA_PAYLOAD(linkinfo_attr);
    struct rtattr* rta = RTA_DATA(linkinfo_attr);
    struct rtattr* info_data_attr = NULL;

    for (; RTA_OK(rta, info_len); rta = RTA_NEXT(rta, info_len)) {
        switch (rta->rta_type & NLA_TYPE_MASK) {
            case IFLA_INFO_KIND:
                if (RTA_PAYLOAD(rta) > 0 && RTA_PAYLOAD(rta) < 32) {
                    strncpy(link->kind, RTA_DATA(rta), 31);
                    link->kind[31] = '\0';
                    link->has_kind = 1;
                }
                break;
            case IFLA_INFO_DATA:
                info_data_attr = rta;
                break;
        }
    }

    if (link->has_kind && info_data_attr && strcmp(link->kind, "vrf") == 0) {
        nl_parse_info_data(info_data_attr, link);
    }
}

int nl_parse_links(response_buffer_t* buf, link_entry_t** links, int* count) {
    if (!buf || !links || !count) return -1;

    *count = 0;
    *links = NULL;

    if (buf->length == 0) {
        return -1;
    }

    struct nlmsghdr* nlh = (struct nlmsghdr*)buf->data;
    int max_count = 0;
    size_t remaining = buf->length;

    // First pass: count messages with matching sequence number
    for (; NLMSG_OK(nlh, remaining); nlh = NLMSG_NEXT(nlh, remaining)) {
        if (nlh->nlmsg_type == NLMSG_DONE) break;
        if (nlh->nlmsg_type == NLMSG_ERROR) {
            return -1;
        }
        if (nlh->nlmsg_type == RTM_NEWLINK && nlh->nlmsg_seq == buf->seq) {
            max_count++;
        }
    }

    if (max_count == 0) return 0;

    *links = calloc(max_count, sizeof(link_entry_t));
    if (!*links) return -1;

    nlh = (struct nlmsghdr*)buf->data;
    remaining = buf->length;

    // Second pass: decode
    for (; NLMSG_OK(nlh, remaining); nlh = NLMSG_NEXT(nlh, remaining)) {
        if (nlh->nlmsg_type == NLMSG_DONE) break;
        if (nlh->nlmsg_type != RTM_NEWLINK) continue;
        if (nlh->nlmsg_seq != buf->seq) continue;

        struct ifinfomsg* ifi = NLMSG_DATA(nlh);
        link_entry_t* link = &(*links)[*count];
        link->index = ifi->ifi_index;

        struct rtattr* rta = IFLA_RTA(ifi);
        int rta_len = IFLA_PAYLOAD(nlh);

        for (; RTA_OK(rta, rta_len); rta = RTA_NEXT(rta, rta_len)) {
            switch (rta->rta_type) {
                case IFLA_IFNAME:
                    if (RTA_PAYLOAD(rta) > 0) {
                        strncpy(link->name, RTA_DATA(rta), IFNAMSIZ - 1);
                        link->name[IFNAMSIZ - 1] = '\0';
                        link->has_name = 1;
                    }
                    break;
                case IFLA_LINKINFO:
                    nl_parse_linkinfo(rta, link);
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
    int index;
    char name[16];
    char kind[32];
    unsigned int vrf_table;
    int has_name;
    int has_kind;
    int has_vrf_table;
} link_entry_t;

int nl_create_socket(void);
void nl_close_socket(int sock);
int nl_send_getlink(int sock, unsigned int* seq_out);
response_buffer_t* nl_receive_response(int sock, unsigned int expected_seq);
void nl_free_response(response_buffer_t* buf);
int nl_parse_links(response_buffer_t* buf, link_entry_t** links, int* count);
void nl_free_links(link_entry_t* links);
""")

# Compile the C library
try:
    lib = ffi.verify(C_SOURCE, libraries=[])
except Exception as e:
    if sys.version_info >= (3, 12) and "setuptools" in str(e).lower():
        raise RuntimeError(
            "Failed to compile C extension. Python 3.12+ requires setuptools.\n"
            "Install it with: pip install setuptools"
        ) from e
    raise


def _decode_link(entry) -> Link:
    name = ffi.string(entry.name).decode('utf-8', errors='replace') if entry.has_name else ''
    kind = ffi.string(entry.kind).decode('utf-8', errors='replace') if entry.has_kind else None
    vrf_table = entry.vrf_table if entry.has_vrf_table else None
    return Link.from_kind(entry.index, name, kind, vrf_table)


class LinkQuery:
    """
    Query network links using RTNETLINK via the C library.

    Same socket patterns as RoutingTableQuery: context manager, explicit
    open()/close(), or a direct call that opens and closes the socket.
    """

    def __init__(self):
        self.sock = -1

    def open(self):
        """Explicitly open the netlink socket"""
        if self.sock >= 0:
            return

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

    def get_links(self) -> List[Link]:
        """Dump every link in the current network namespace."""
        need_auto_close = False
        if self.sock < 0:
            self.open()
            need_auto_close = True

        try:
            seq_ptr = ffi.new("unsigned int*")
            if lib.nl_send_getlink(self.sock, seq_ptr) < 0:
                raise FetchError("Failed to send RTM_GETLINK request")

            response = lib.nl_receive_response(self.sock, seq_ptr[0])
            if not response:
                raise FetchError("Failed to receive response for RTM_GETLINK")

            try:
                links_ptr = ffi.new("link_entry_t**")
                count_ptr = ffi.new("int*")

                if lib.nl_parse_links(response, links_ptr, count_ptr) < 0:
                    raise FetchError("Failed to parse link messages")

                links_array = links_ptr[0]
                try:
                    return [_decode_link(links_array[i]) for i in range(count_ptr[0])]
                finally:
                    lib.nl_free_links(links_array)
            finally:
                lib.nl_free_response(response)

        finally:
            if need_auto_close:
                self.close()


def main():
    """Main entry point for the command."""
    import argparse

    parser = argparse.ArgumentParser(description='Network Link Dump Tool')
    parser.add_argument('--summary', '-s', action='store_true',
                        help='Show human-readable summary')
    args = parser.parse_args()

    try:
        links = LinkQuery().get_links()
    except FetchError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.summary:
        print(f"\nTotal links: {len(links)}\n")
        for link in links:
            line = f"  {link.index:>4d}: {link.name:16s} {link.kind}"
            if link.is_vrf:
                line += f" table {link.vrf_table if link.vrf_table is not None else '?'}"
            print(line)
    else:
        print(json.dumps([asdict(link) for link in links], indent=2))

    return 0


if __name__ == '__main__':
    sys.exit(main())
