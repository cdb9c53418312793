#!/usr/bin/env python3
"""
Tests for the route collection pipeline, driven by fake netlink queries
"""

import pytest

from netroutes.collector import (
    Aggregator, LinkDirectory, NetworkRouteCollector, RouteFetcher,
    RouteTranslator, collect_routes, summarize,
)
from netroutes.model import (
    FAMILY_V4, FAMILY_V6, RT_FILTER_TABLE, RT_TABLE_UNSPEC,
    DeviceRouteCount, FetchError, Link, NextHop, RawRoute, RouteRecord,
)

from conftest import FakeLinkQuery

RTN_LOCAL = 2
RTN_BROADCAST = 3
RTN_MULTICAST = 5
RTN_BLACKHOLE = 6


def counts_by_device(counts):
    return {c.device: c.count for c in counts}


# ============================================================================
# Scenarios
# ============================================================================

class TestScenarios:

    def test_single_path_default_route(self, link_query, make_route_query):
        route = RawRoute(family=FAMILY_V4, dst=None, gateway="1.2.3.4",
                         link_index=1, priority=100, protocol=4, table=254)
        records, counts = collect_routes(link_query, make_route_query(v4=[route]))

        assert records == [
            RouteRecord("eth0", "", "default", "1.2.3.4", "100", "static", "", "IPv4", "main"),
        ]
        assert counts == [DeviceRouteCount("eth0", 1)]

    def test_multipath_route(self, link_query, make_route_query):
        route = RawRoute(
            family=FAMILY_V4,
            dst="10.0.0.0/24",
            multipath=(
                NextHop(link_index=1, gateway="9.9.9.9", hops=0),
                NextHop(link_index=2, gateway="8.8.8.8", hops=1),
            ),
            table=254,
        )
        records, counts = collect_routes(link_query, make_route_query(v4=[route]))

        assert [(r.device, r.gw, r.weight) for r in records] == [
            ("eth0", "9.9.9.9", "1"),
            ("eth1", "8.8.8.8", "2"),
        ]
        assert all(r.dest == "10.0.0.0/24" for r in records)
        assert all(r.table == "main" for r in records)
        assert counts_by_device(counts) == {"eth0": 1, "eth1": 1}

    def test_vrf_table_names(self, make_route_query):
        link_query = FakeLinkQuery([
            Link(1, "eth0"),
            Link(2, "eth1"),
            Link(3, "vrfA", "vrf", 10),
        ])
        routes = [
            RawRoute(family=FAMILY_V4, dst="192.0.2.0/24", link_index=1, table=10),
            RawRoute(family=FAMILY_V4, dst="198.51.100.0/24", link_index=1, table=11),
        ]
        records, _ = collect_routes(link_query, make_route_query(v4=routes))

        assert [r.table for r in records] == ["vrfA", ""]

    def test_link_failure_aborts_cycle(self, make_route_query):
        link_query = FakeLinkQuery(error="netlink socket refused")
        route_query = make_route_query(v4=[RawRoute(family=FAMILY_V4, link_index=1)])

        with pytest.raises(FetchError, match="couldn't get links"):
            collect_routes(link_query, route_query)
        assert route_query.calls == []

    def test_ipv6_failure_discards_ipv4(self, link_query, make_route_query):
        route_query = make_route_query(
            v4=[RawRoute(family=FAMILY_V4, link_index=1)],
            fail=[FAMILY_V6],
        )

        with pytest.raises(FetchError, match="couldn't get routes"):
            collect_routes(link_query, route_query)
        assert [family for family, _ in route_query.calls] == [FAMILY_V4, FAMILY_V6]


# ============================================================================
# Translation rules
# ============================================================================

class TestRouteTranslator:

    def translator(self, links):
        directory = LinkDirectory(links)
        return RouteTranslator(directory, directory.table_names(), Aggregator())

    @pytest.mark.parametrize("route_type", [RTN_LOCAL, RTN_BROADCAST, RTN_MULTICAST, RTN_BLACKHOLE, 0])
    def test_non_unicast_routes_skipped(self, links, route_type):
        translator = self.translator(links)
        route = RawRoute(family=FAMILY_V4, type=route_type, link_index=1)

        assert list(translator.translate({FAMILY_V4: [route]})) == []
        assert translator.aggregator.flush() == []

    def test_single_path_weight_empty(self, links):
        translator = self.translator(links)
        records = list(translator.translate({
            FAMILY_V4: [RawRoute(family=FAMILY_V4, dst="10.1.0.0/16", link_index=2)],
        }))
        assert len(records) == 1
        assert records[0].weight == ""
        assert records[0].device == "eth1"

    def test_multipath_weights_follow_nexthop_order(self, links):
        translator = self.translator(links)
        hops = tuple(NextHop(link_index=1, gateway=f"10.0.0.{i}", hops=i) for i in range(5))
        records = list(translator.translate({
            FAMILY_V4: [RawRoute(family=FAMILY_V4, multipath=hops)],
        }))
        assert [r.weight for r in records] == ["1", "2", "3", "4", "5"]
        assert [r.gw for r in records] == [f"10.0.0.{i}" for i in range(5)]

    def test_multipath_ignores_route_gateway(self, links):
        translator = self.translator(links)
        route = RawRoute(family=FAMILY_V4, gateway="1.1.1.1", link_index=2,
                         multipath=(NextHop(link_index=1, gateway="2.2.2.2"),))
        records = list(translator.translate({FAMILY_V4: [route]}))
        assert [(r.device, r.gw) for r in records] == [("eth0", "2.2.2.2")]

    def test_multipath_without_gateway(self, links):
        translator = self.translator(links)
        route = RawRoute(family=FAMILY_V4, multipath=(NextHop(link_index=1),))
        records = list(translator.translate({FAMILY_V4: [route]}))
        assert records[0].gw == ""

    def test_unknown_link_index_empty_device(self, links):
        translator = self.translator(links)
        records = list(translator.translate({
            FAMILY_V4: [RawRoute(family=FAMILY_V4, link_index=42)],
        }))
        assert records[0].device == ""
        assert counts_by_device(translator.aggregator.flush()) == {"": 1}

    def test_labels_from_route(self, links):
        translator = self.translator(links)
        route = RawRoute(family=FAMILY_V6, src="2001:db8::1", dst="2001:db8:1::/48",
                         gateway="fe80::1", link_index=1, priority=1024,
                         protocol=187, table=255)
        (record,) = translator.translate({FAMILY_V6: [route]})
        assert record == RouteRecord("eth0", "2001:db8::1", "2001:db8:1::/48", "fe80::1",
                                     "1024", "isis", "", "IPv6", "local")

    def test_unknown_protocol(self, links):
        translator = self.translator(links)
        (record,) = translator.translate({
            FAMILY_V4: [RawRoute(family=FAMILY_V4, link_index=1, protocol=250)],
        })
        assert record.proto == "unknown"

    def test_counts_match_records(self, links):
        translator = self.translator(links)
        routes = [
            RawRoute(family=FAMILY_V4, link_index=1),
            RawRoute(family=FAMILY_V4, link_index=1, dst="10.0.0.0/8"),
            RawRoute(family=FAMILY_V4, type=RTN_LOCAL, link_index=1),
            RawRoute(family=FAMILY_V4, multipath=(NextHop(1), NextHop(2), NextHop(2, hops=1))),
        ]
        records = list(translator.translate({FAMILY_V4: routes, FAMILY_V6: routes[:1]}))
        counts = translator.aggregator.flush()

        assert len(records) == 6
        assert sum(c.count for c in counts) == len(records)
        assert counts_by_device(counts) == {"eth0": 4, "eth1": 2}


# ============================================================================
# Building blocks
# ============================================================================

class TestLinkDirectory:

    def test_name_lookup(self, links):
        directory = LinkDirectory(links)
        assert directory.name_for_index(1) == "eth0"
        assert directory.name_for_index(2) == "eth1"
        assert directory.name_for_index(0) == ""

    def test_first_link_wins_on_duplicate_index(self):
        directory = LinkDirectory([Link(1, "first"), Link(1, "second")])
        assert directory.name_for_index(1) == "first"

    def test_from_query(self, link_query):
        directory = LinkDirectory.from_query(link_query)
        assert link_query.calls == 1
        assert [link.name for link in directory.links] == ["eth0", "eth1"]


class TestRouteFetcher:

    def test_queries_both_families_with_table_filter(self, make_route_query):
        route_query = make_route_query()
        routes = RouteFetcher(route_query).fetch()

        assert list(routes) == [FAMILY_V4, FAMILY_V6]
        assert [family for family, _ in route_query.calls] == [FAMILY_V4, FAMILY_V6]
        for _, route_filter in route_query.calls:
            assert route_filter.table == RT_TABLE_UNSPEC
            assert route_filter.mask == RT_FILTER_TABLE

    def test_custom_table(self, make_route_query):
        route_query = make_route_query()
        RouteFetcher(route_query, table=10).fetch()
        assert all(f.table == 10 for _, f in route_query.calls)

    def test_ipv4_failure(self, make_route_query):
        route_query = make_route_query(fail=[FAMILY_V4])
        with pytest.raises(FetchError):
            RouteFetcher(route_query).fetch()
        assert len(route_query.calls) == 1


class TestAggregator:

    def test_flush_counts_and_resets(self):
        aggregator = Aggregator()
        for device in ["eth0", "eth1", "eth0"]:
            aggregator.increment(device)

        assert counts_by_device(aggregator.flush()) == {"eth0": 2, "eth1": 1}
        assert aggregator.flush() == []


class TestNetworkRouteCollector:

    def test_cycles_are_independent(self, link_query, make_route_query):
        route_query = make_route_query(v4=[RawRoute(family=FAMILY_V4, link_index=1)])
        collector = NetworkRouteCollector(link_query, route_query)

        first = collector.collect()
        second = collector.collect()

        assert first == second
        assert second[1] == [DeviceRouteCount("eth0", 1)]
        assert link_query.calls == 2

    def test_links_refreshed_each_cycle(self, make_route_query):
        link_query = FakeLinkQuery([Link(1, "eth0")])
        route_query = make_route_query(v4=[RawRoute(family=FAMILY_V4, link_index=1)])
        collector = NetworkRouteCollector(link_query, route_query)

        assert collector.collect()[0][0].device == "eth0"
        link_query.links = [Link(1, "renamed0")]
        assert collector.collect()[0][0].device == "renamed0"

    def test_empty_tables(self, link_query, make_route_query):
        assert collect_routes(link_query, make_route_query()) == ([], [])


def test_summarize_filters_devices(links):
    records = [
        RouteRecord("eth0", "", "default", "", "0", "kernel", "", "IPv4", "main"),
        RouteRecord("eth1", "", "default", "", "0", "kernel", "", "IPv4", "main"),
    ]
    counts = [DeviceRouteCount("eth0", 1), DeviceRouteCount("eth1", 1)]

    snapshot = summarize(records, counts, ["eth1"])
    assert snapshot["devices"] == {"eth1": 1}
    assert [r["device"] for r in snapshot["routes"]] == ["eth1"]
    assert len(summarize(records, counts)["routes"]) == 2
