from __future__ import annotations

import asyncio

import pytest

from meridian.clients import ClientCache
from meridian.errors import ConfigurationError
from tests.helpers import ManualClock

pytestmark = pytest.mark.unit

_ROLE = "arn:aws:iam::123456789012:role/inference|us-east-1"


@pytest.mark.asyncio
async def test_factory_runs_once_per_key() -> None:
    cache: ClientCache[object] = ClientCache()
    built: list[object] = []

    def factory() -> object:
        client = object()
        built.append(client)
        return client

    first = await cache.get_or_create(_ROLE, factory)
    second = await cache.get_or_create(_ROLE, factory)

    assert first is second
    assert len(built) == 1
    assert len(cache) == 1


@pytest.mark.asyncio
async def test_concurrent_population_converges_on_the_first_stored_value() -> None:
    cache: ClientCache[object] = ClientCache()
    built: list[object] = []

    async def factory() -> object:
        client = object()
        built.append(client)
        await asyncio.sleep(0.01)
        return client

    results = await asyncio.gather(*(cache.get_or_create(_ROLE, factory) for _ in range(3)))

    assert len({id(r) for r in results}) == 1
    assert results[0] is built[0]
    assert cache.get(_ROLE) is results[0]


def test_entries_never_expire_without_a_ttl() -> None:
    clock = ManualClock()
    cache: ClientCache[str] = ClientCache(clock=clock)
    cache.put(_ROLE, "client")

    clock.advance(10_000_000)

    assert cache.get(_ROLE) == "client"


def test_entries_expire_after_the_ttl() -> None:
    clock = ManualClock()
    cache: ClientCache[str] = ClientCache(ttl_seconds=60, clock=clock)
    cache.put(_ROLE, "old")

    clock.advance(59)
    assert cache.get(_ROLE) == "old"
    clock.advance(1)
    assert cache.get(_ROLE) is None
    assert cache.put(_ROLE, "new") == "new"


def test_put_keeps_a_live_entry() -> None:
    cache: ClientCache[str] = ClientCache()

    assert cache.put(_ROLE, "first") == "first"
    assert cache.put(_ROLE, "second") == "first"


def test_invalidate_and_clear() -> None:
    cache: ClientCache[str] = ClientCache()
    cache.put("a", "1")
    cache.put("b", "2")

    cache.invalidate("a")
    assert cache.get("a") is None
    assert len(cache) == 1

    cache.clear()
    assert len(cache) == 0


def test_negative_ttl_is_rejected() -> None:
    with pytest.raises(ConfigurationError):
        ClientCache(ttl_seconds=-1)
