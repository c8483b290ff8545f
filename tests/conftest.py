import asyncio
import logging
from urllib.parse import urlsplit

import httpx
import pytest

import sitecrawl

SEED = "https://example.com/"


class FakeSite:
    """Serves canned responses through httpx.MockTransport and records every hit.

    Route values: a str body (served as text/css for *.css paths, text/html
    otherwise), an int status code, or an async callable taking the request.
    """

    def __init__(self, routes, delay=0.0):
        self.routes = routes
        self.delay = delay
        self.hits = []

    async def handler(self, request):
        url = str(request.url)
        self.hits.append(url)
        if self.delay:
            await asyncio.sleep(self.delay)
        route = self.routes.get(url)
        if route is None:
            return httpx.Response(404, text="not found")
        if isinstance(route, int):
            return httpx.Response(route, text="error")
        if callable(route):
            return await route(request)
        content_type = "text/css" if urlsplit(url).path.endswith(".css") else "text/html; charset=utf-8"
        return httpx.Response(200, headers={"Content-Type": content_type}, content=route.encode("utf-8"))

    @property
    def transport(self):
        return httpx.MockTransport(self.handler)


@pytest.fixture
def make_config(tmp_path):
    def _make(**overrides):
        values = {"output_root": str(tmp_path), "concurrency": 4, "timeout": 5.0}
        values.update(overrides)
        return sitecrawl.Config(**values)

    return _make


@pytest.fixture
def run_crawl(make_config):
    def _run(routes, seed=SEED, delay=0.0, **overrides):
        site = FakeSite(routes, delay=delay)
        session = asyncio.run(sitecrawl.crawl(seed, make_config(**overrides), transport=site.transport))
        return session, site

    return _run


@pytest.fixture(autouse=True)
def reset_loggers():
    yield
    for name in list(logging.Logger.manager.loggerDict):
        if name == sitecrawl.LOGGER_NAME or name.startswith(f"{sitecrawl.LOGGER_NAME}."):
            sitecrawl.close_handlers(logging.getLogger(name))


@pytest.fixture
def fake_site():
    return FakeSite
