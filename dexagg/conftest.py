import pytest

from dexagg.cache import MetadataCache
from dexagg.errors import NotFoundError
from dexagg.source import MISSING


class Routes:
    """Canned venue responses standing in for Source.getJSON.

    GET requests are keyed by URL without its query string, POST requests by
    the payload's 'type' (plus ':dex' when a payload names one). A missing
    route behaves like a 404; an exception value is raised; a callable is
    called with (params, payload, headers)."""

    def __init__(self, routes):
        self.routes = routes
        self.calls = []

    async def __call__(
        self,
        url,
        method="GET",
        params=None,
        payload=None,
        headers=None,
        notFound=MISSING,
    ):
        if payload is not None:
            key = payload["type"]
            if payload.get("dex"):
                key = f"{key}:{payload['dex']}"
        else:
            key = url.split("?")[0]

        self.calls.append(dict(key=key, url=url, params=params, headers=headers))

        if key not in self.routes:
            if notFound is not MISSING:
                return notFound

            raise NotFoundError("test", f"{method} {url} not found", 404)

        value = self.routes[key]
        if isinstance(value, BaseException):
            raise value

        if callable(value):
            return value(params, payload, headers)

        return value

    def called(self, key):
        return [c for c in self.calls if c["key"] == key]


@pytest.fixture
def venue():
    """venue(SourceClass, routes) -> (adapter, routes)"""

    def build(cls, routes, cache=None):
        src = cls(None, cache or MetadataCache())
        fake = Routes(routes)
        src.getJSON = fake
        return src, fake

    return build
