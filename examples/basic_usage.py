#!/usr/bin/env python3
"""
Example: Basic usage of the netroutes package

Shows the three ways to use the package:
  - Pattern 1: One collection cycle and the resulting records
  - Pattern 2: Raw link and route queries sharing one socket each
  - Pattern 3: A Prometheus registry built from the collector factory map
"""

import sys


def pattern1_collect():
    """Pattern 1: One cycle of the route pipeline"""
    print("\nPattern 1: Collection Cycle")
    print("-" * 70)

    from netroutes.collector import NetworkRouteCollector

    records, counts = NetworkRouteCollector().collect()

    print(f"{len(records)} route records on {len(counts)} devices")
    for record in records[:5]:
        print(f"  {record.family} {record.dest:30s} via {record.gw or '-':20s}"
              f" dev {record.device or '?':10s} table {record.table or '?'}")
    for count in sorted(counts, key=lambda c: -c.count):
        print(f"  {count.device or '(no device)'}: {count.count} routes")


def pattern2_raw_queries():
    """Pattern 2: Context managers around the netlink queries"""
    print("\nPattern 2: Raw Queries")
    print("-" * 70)

    from netroutes.link_info import LinkQuery
    from netroutes.model import RouteFilter
    from netroutes.route_info import RoutingTableQuery

    with LinkQuery() as lq:
        links = lq.get_links()
    vrfs = [link for link in links if link.is_vrf]
    print(f"{len(links)} links, {len(vrfs)} VRFs")

    with RoutingTableQuery() as rtq:
        v4 = rtq.get_routes('IPv4', RouteFilter())
        v6 = rtq.get_routes('IPv6', RouteFilter())
    print(f"{len(v4)} IPv4 routes, {len(v6)} IPv6 routes (all tables)")

    ecmp = [route for route in v4 + v6 if route.multipath]
    if ecmp:
        print(f"First multipath route: {ecmp[0].dst or 'default'} "
              f"with {len(ecmp[0].multipath)} next-hops")


def pattern3_registry():
    """Pattern 3: Prometheus exposition"""
    print("\nPattern 3: Prometheus Registry")
    print("-" * 70)

    from prometheus_client import generate_latest
    from netroutes.exporter import build_registry

    registry = build_registry(["network_route"])
    text = generate_latest(registry).decode('utf-8')
    lines = [line for line in text.splitlines() if line.startswith('node_network_routes')]
    print("\n".join(lines))


def main():
    try:
        pattern1_collect()
        pattern2_raw_queries()
        pattern3_registry()
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
