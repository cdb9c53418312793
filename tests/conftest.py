import pytest

from netroutes.model import FAMILY_V4, FAMILY_V6, FetchError, Link


class FakeLinkQuery:
    """Stands in for link_info.LinkQuery."""

    def __init__(self, links=(), error=None):
        self.links = list(links)
        self.error = error
        self.calls = 0

    def get_links(self):
        self.calls += 1
        if self.error:
            raise FetchError(self.error)
        return list(self.links)


class FakeRouteQuery:
    """Stands in for route_info.RoutingTableQuery."""

    def __init__(self, routes=None, fail=()):
        self.routes = routes or {}
        self.fail = set(fail)
        self.calls = []

    def get_routes(self, family, route_filter=None):
        self.calls.append((family, route_filter))
        if family in self.fail:
            raise FetchError(f"{family} dump failed")
        return list(self.routes.get(family, []))


@pytest.fixture
def links():
    return [Link(1, "eth0"), Link(2, "eth1")]


@pytest.fixture
def link_query(links):
    return FakeLinkQuery(links)


@pytest.fixture
def make_route_query():
    def factory(v4=(), v6=(), fail=()):
        return FakeRouteQuery({FAMILY_V4: list(v4), FAMILY_V6: list(v6)}, fail)
    return factory
