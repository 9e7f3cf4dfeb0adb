import pytest

from common.geo import parse_square_id
from square_render.fetch_cache import LayerFetchCache
from square_render.layers import LayerResolver
from square_render.overlays import StaticOverlayCache
from tests.helpers import TEST_H, TEST_W, FakeClock, FakeSession


@pytest.fixture
def resolver():
    return LayerResolver()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def fetch_cache(session, clock):
    cache = LayerFetchCache(ttl_s=300, max_entries=200, timeout_s=5.0, max_workers=16, session=session, clock=clock)
    yield cache
    cache.close()


@pytest.fixture
def overlays():
    return StaticOverlayCache(TEST_W, TEST_H)


@pytest.fixture
def h8():
    return parse_square_id("H8")
