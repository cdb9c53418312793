"""
NetRoutes - Linux routing table metrics

Reads links and routes over RTNETLINK and turns them into Prometheus style
records: one per route/next-hop plus a route count per device.

Modules:
    model: Links, routes, records and label helpers
    link_info: Network links via RTNETLINK (cffi)
    route_info: Routing tables via RTNETLINK (cffi)
    collector: The per-cycle collection pipeline
    exporter: Prometheus collector and command line tool

link_info and route_info compile their C helpers on import, so they are not
imported here.

Example:
    >>> from netroutes.collector import NetworkRouteCollector
    >>> records, counts = NetworkRouteCollector().collect()
"""

__version__ = "1.0.0"
__author__ = "Harry Coin"
__email__ = "hcoin@quietfountain.com"
__license__ = "MIT"

from .model import FetchError

__all__ = [
    "FetchError",
    "__version__",
]
