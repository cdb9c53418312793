#!/usr/bin/env python3
"""
NetRoutes - Routing table metrics for Prometheus

Exposes the kernel routing table as two gauges:
- node_network_route_info: one sample per route/next-hop, value 1
- node_network_routes: number of routes per device

Collectors are created from an explicit factory map and registered into a
registry owned by the caller; importing this module registers nothing.

Requirements:
    - Python 3.8+
    - cffi>=1.0.0
    - prometheus_client

Usage:
    netroutes                         # One cycle as JSON
    netroutes --prometheus            # One cycle in Prometheus text format
    netroutes --listen 9100           # Serve /metrics until interrupted
"""

import argparse
import json
import sys
import time
from typing import Callable, Dict, Iterable, Optional

from prometheus_client import CollectorRegistry, generate_latest, start_http_server
from prometheus_client.core import GaugeMetricFamily
from prometheus_client.registry import Collector

from netroutes import __version__
from netroutes.collector import NetworkRouteCollector, summarize
from netroutes.model import RT_TABLE_UNSPEC, FetchError, RouteRecord

NAMESPACE = "node"
SUBSYSTEM = "network"


def build_fq_name(namespace: str, subsystem: str, name: str) -> str:
    return "_".join(part for part in (namespace, subsystem, name) if part)


class NetworkRouteExporter(Collector):
    """prometheus_client collector running one route cycle per scrape."""

    def __init__(self, collector: NetworkRouteCollector, namespace: str = NAMESPACE):
        self.collector = collector
        self.route_info_name = build_fq_name(namespace, SUBSYSTEM, "route_info")
        self.routes_name = build_fq_name(namespace, SUBSYSTEM, "routes")

    @classmethod
    def default(cls, table: int = RT_TABLE_UNSPEC, namespace: str = NAMESPACE) -> "NetworkRouteExporter":
        return cls(NetworkRouteCollector(table=table), namespace)

    def _families(self):
        route_info = GaugeMetricFamily(
            self.route_info_name,
            "network routing table information",
            labels=list(RouteRecord.LABEL_NAMES),
        )
        routes = GaugeMetricFamily(
            self.routes_name,
            "network routes by interface",
            labels=["device"],
        )
        return route_info, routes

    def describe(self):
        # no kernel query at registration time
        return list(self._families())

    def collect(self):
        records, counts = self.collector.collect()
        route_info, routes = self._families()
        for record in records:
            route_info.add_metric(record.labels(), record.value)
        for count in counts:
            routes.add_metric([count.device], count.count)
        yield route_info
        yield routes


COLLECTOR_FACTORIES: Dict[str, Callable[..., Collector]] = {
    "network_route": NetworkRouteExporter.default,
}


def build_registry(names: Iterable[str],
                   factories: Optional[Dict[str, Callable[..., Collector]]] = None,
                   **options) -> CollectorRegistry:
    """
    Create a registry holding the named collectors.

    Raises:
        ValueError: a name has no factory
    """
    if factories is None:
        factories = COLLECTOR_FACTORIES
    registry = CollectorRegistry(auto_describe=True)
    for name in names:
        if name not in factories:
            raise ValueError(f"Unknown collector: {name}. Available: {', '.join(sorted(factories))}")
        registry.register(factories[name](**options))
    return registry


def main(argv=None) -> int:
    """Main entry point"""
    parser = argparse.ArgumentParser(
        prog='netroutes',
        description='Routing table metrics - kernel routes as Prometheus gauges',
        epilog='Note: reads routes over RTNETLINK; no root needed on most systems',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument('--version', '-V', action='version',
                        version=f'netroutes {__version__}')
    parser.add_argument('--table', '-t', type=int, default=RT_TABLE_UNSPEC,
                        help='Routing table filter (default: 0, every table)')
    parser.add_argument('--namespace', default=NAMESPACE,
                        help=f'Metric namespace (default: {NAMESPACE})')
    parser.add_argument('--prometheus', '-p', action='store_true',
                        help='Print Prometheus text exposition instead of JSON')
    parser.add_argument('--compact', '-c', action='store_true',
                        help='Compact JSON output (default: pretty-print)')
    parser.add_argument('--device', '-d', action='append',
                        help='Only show routes of this device (repeatable, JSON output only)')
    parser.add_argument('--listen', '-l', type=int, metavar='PORT',
                        help='Serve /metrics on PORT until interrupted')
    parser.add_argument('--address', '-a', default='0.0.0.0',
                        help='Listen address for --listen (default: 0.0.0.0)')

    args = parser.parse_args(argv)
    if args.device and (args.prometheus or args.listen):
        parser.error("--device only applies to JSON output")

    try:
        if args.prometheus or args.listen:
            registry = build_registry(["network_route"], table=args.table,
                                      namespace=args.namespace)
            if args.listen:
                start_http_server(args.listen, addr=args.address, registry=registry)
                print(f"Serving metrics on {args.address}:{args.listen}", file=sys.stderr)
                while True:
                    time.sleep(3600)
            sys.stdout.write(generate_latest(registry).decode('utf-8'))
            return 0

        records, counts = NetworkRouteCollector(table=args.table).collect()
        snapshot = summarize(records, counts, args.device)
        if not args.compact:
            print(json.dumps(snapshot, indent=2, sort_keys=False))
        else:
            print(json.dumps(snapshot, separators=(',', ':')))
        return 0

    except FetchError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return 130


if __name__ == '__main__':
    sys.exit(main())
