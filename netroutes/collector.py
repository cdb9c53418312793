#!/usr/bin/env python3
"""
Route collection pipeline.

One call to NetworkRouteCollector.collect() is one collection cycle:

    links  -> LinkDirectory (index -> name, table id -> name)
    routes -> RouteFetcher (IPv4 and IPv6, all tables)
           -> RouteTranslator (one RouteRecord per route/next-hop)
           -> Aggregator (routes per device)

Kernel access goes through two small query objects with get_links() and
get_routes(family, route_filter) methods. By default these are the cffi
backed LinkQuery and RoutingTableQuery; tests pass fakes instead.
"""

from collections import Counter
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from netroutes.model import (
    FAMILY_V4, FAMILY_V6, RT_FILTER_TABLE, RT_TABLE_UNSPEC, RTN_UNICAST,
    DeviceRouteCount, FetchError, Link, RawRoute, RouteFilter, RouteRecord,
    format_address, format_destination, protocol_name, routing_table_names,
    table_name,
)

FAMILIES = (FAMILY_V4, FAMILY_V6)


class LinkDirectory:
    """The links of one cycle, indexed for label lookups."""

    def __init__(self, links: Iterable[Link]):
        self.links: Tuple[Link, ...] = tuple(links)
        self._names: Dict[int, str] = {}
        for link in self.links:
            # first match wins, like a scan over the dump
            self._names.setdefault(link.index, link.name)

    @classmethod
    def from_query(cls, query) -> "LinkDirectory":
        try:
            links = query.get_links()
        except FetchError as e:
            raise FetchError(f"couldn't get links: {e}") from e
        return cls(links)

    def name_for_index(self, index: int) -> str:
        return self._names.get(index, "")

    def table_names(self) -> Dict[int, str]:
        return routing_table_names(self.links)


class RouteFetcher:
    """Reads both address families with the collector's table filter."""

    def __init__(self, query, table: int = RT_TABLE_UNSPEC):
        self.query = query
        self.table = table

    def route_filter(self) -> RouteFilter:
        return RouteFilter(table=self.table, mask=RT_FILTER_TABLE)

    def fetch(self) -> Dict[str, List[RawRoute]]:
        route_filter = self.route_filter()
        routes = {}
        for family in FAMILIES:
            try:
                routes[family] = list(self.query.get_routes(family, route_filter))
            except FetchError as e:
                raise FetchError(f"couldn't get routes: {e}") from e
        return routes


class Aggregator:
    """Counts emitted route records per device."""

    def __init__(self):
        self._counts: Counter = Counter()

    def increment(self, device: str):
        self._counts[device] += 1

    def flush(self) -> List[DeviceRouteCount]:
        counts = [DeviceRouteCount(device, total) for device, total in self._counts.items()]
        self._counts = Counter()
        return counts


class RouteTranslator:
    """
    Turns raw kernel routes into RouteRecords.

    Only unicast ("destination") routes are translated. A multipath route
    yields one record per next-hop with weight hops + 1; a single-path route
    yields one record with an empty weight. Unknown link indexes and table
    ids become empty labels.
    """

    def __init__(self, directory: LinkDirectory, table_names: Dict[int, str],
                 aggregator: Aggregator):
        self.directory = directory
        self.table_names = table_names
        self.aggregator = aggregator

    def translate(self, routes_by_family: Dict[str, Sequence[RawRoute]]) -> Iterator[RouteRecord]:
        for family, routes in routes_by_family.items():
            for route in routes:
                yield from self.translate_route(family, route)

    def translate_route(self, family: str, route: RawRoute) -> Iterator[RouteRecord]:
        if route.type != RTN_UNICAST:
            return

        src = format_address(route.src)
        dest = format_destination(route.dst)
        priority = str(route.priority)
        proto = protocol_name(route.protocol)
        table = table_name(self.table_names, route.table)

        if route.multipath:
            for nexthop in route.multipath:
                yield self._emit(RouteRecord(
                    device=self.directory.name_for_index(nexthop.link_index),
                    src=src,
                    dest=dest,
                    gw=format_address(nexthop.gateway),
                    priority=priority,
                    proto=proto,
                    weight=str(nexthop.hops + 1),
                    family=family,
                    table=table,
                ))
        else:
            yield self._emit(RouteRecord(
                device=self.directory.name_for_index(route.link_index),
                src=src,
                dest=dest,
                gw=format_address(route.gateway),
                priority=priority,
                proto=proto,
                weight="",
                family=family,
                table=table,
            ))

    def _emit(self, record: RouteRecord) -> RouteRecord:
        self.aggregator.increment(record.device)
        return record


class NetworkRouteCollector:
    """
    Runs the pipeline once per collect() call.

    Args:
        link_query: object with get_links(); defaults to link_info.LinkQuery
        route_query: object with get_routes(family, route_filter); defaults
            to route_info.RoutingTableQuery
        table: table id used in the route filter, 0 for every table
    """

    def __init__(self, link_query=None, route_query=None, table: int = RT_TABLE_UNSPEC):
        self.link_query = link_query
        self.route_query = route_query
        self.table = table

    def _link_query(self):
        if self.link_query is None:
            from netroutes.link_info import LinkQuery
            return LinkQuery()
        return self.link_query

    def _route_query(self):
        if self.route_query is None:
            from netroutes.route_info import RoutingTableQuery
            return RoutingTableQuery()
        return self.route_query

    def collect(self) -> Tuple[List[RouteRecord], List[DeviceRouteCount]]:
        """
        Run one collection cycle.

        Raises:
            FetchError: link or route enumeration failed; nothing is returned
        """
        directory = LinkDirectory.from_query(self._link_query())
        routes = RouteFetcher(self._route_query(), self.table).fetch()

        aggregator = Aggregator()
        translator = RouteTranslator(directory, directory.table_names(), aggregator)
        records = list(translator.translate(routes))
        return records, aggregator.flush()


def collect_routes(link_query=None, route_query=None,
                   table: int = RT_TABLE_UNSPEC) -> Tuple[List[RouteRecord], List[DeviceRouteCount]]:
    """Convenience wrapper for a single cycle."""
    return NetworkRouteCollector(link_query, route_query, table).collect()


def summarize(records: List[RouteRecord], counts: List[DeviceRouteCount],
              devices: Optional[Iterable[str]] = None) -> Dict[str, object]:
    """JSON-ready view of one cycle, optionally limited to some devices."""
    if devices is not None:
        wanted = set(devices)
        records = [r for r in records if r.device in wanted]
        counts = [c for c in counts if c.device in wanted]
    return {
        'routes': [r.to_dict() for r in records],
        'devices': {c.device: c.count for c in counts},
    }
