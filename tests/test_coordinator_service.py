# tests/test_coordinator_service.py
import re
import asyncio

import pytest
from aioresponses import aioresponses

from conftest import FakeSource, row
from infra.http_client import HttpClient
from offers.errors import MalformedPayloadError, SourceError
from offers.models import OfferFilters
from offers.services.coordinator_service import (
    CoordinatorAggregator, CoordinatorSource, parse_book, probe_info,
)

BASE = "http://robosats.local:12596"


def book_url(coordinator):
    return re.compile(rf"^{re.escape(BASE)}/mainnet/{coordinator}/api/book/(\?.*)?$")


# ---------------- parse_book ----------------

def test_parse_book_rejects_non_list():
    with pytest.raises(MalformedPayloadError):
        parse_book({"bad_request": "no offers"}, "a")


def test_parse_book_skips_rows_without_id():
    offers = parse_book([row(1), {"currency": 1}, row("2")], "a")
    assert [o.id for o in offers] == [1, 2]
    assert all(o.source_id == "a" for o in offers)


# ---------------- CoordinatorSource over HTTP ----------------

@pytest.mark.asyncio
async def test_coordinator_source_fetches_book():
    async with HttpClient(BASE) as http:
        src = CoordinatorSource("moon", http)
        with aioresponses() as m:
            m.get(book_url("moon"), payload=[row(11), row(12, currency=2)])
            offers = await src.fetch_offers(OfferFilters(currencies=frozenset({1})))
    assert [o.id for o in offers] == [11, 12]
    assert offers[0].source_id == "moon"


@pytest.mark.asyncio
async def test_coordinator_source_http_error_is_source_error():
    async with HttpClient(BASE) as http:
        src = CoordinatorSource("moon", http)
        with aioresponses() as m:
            m.get(book_url("moon"), status=502, body="bad gateway")
            with pytest.raises(SourceError) as ei:
                await src.fetch_offers()
    assert ei.value.msg == "HTTP 502"
    assert not isinstance(ei.value, MalformedPayloadError)


@pytest.mark.asyncio
async def test_coordinator_source_malformed_payload():
    async with HttpClient(BASE) as http:
        src = CoordinatorSource("moon", http)
        with aioresponses() as m:
            m.get(book_url("moon"), payload={"detail": "maintenance"})
            with pytest.raises(MalformedPayloadError):
                await src.fetch_offers()


@pytest.mark.asyncio
async def test_probe_info_falls_through_to_next_coordinator():
    async with HttpClient(BASE) as http:
        srcs = [CoordinatorSource("lake", http), CoordinatorSource("temple", http)]
        with aioresponses() as m:
            m.get(f"{BASE}/mainnet/lake/api/info/", status=500)
            m.get(f"{BASE}/mainnet/temple/api/info/", payload={"version": {"major": 0}})
            info = await probe_info(srcs)
    assert info == {"version": {"major": 0}}


@pytest.mark.asyncio
async def test_probe_info_raises_when_all_fail():
    async with HttpClient(BASE) as http:
        srcs = [CoordinatorSource("lake", http)]
        with aioresponses() as m:
            m.get(f"{BASE}/mainnet/lake/api/info/", status=503)
            with pytest.raises(SourceError):
                await probe_info(srcs)


# ---------------- aggregator ----------------

@pytest.mark.asyncio
async def test_partial_failure_is_isolated(aggregator, sources):
    sources["a"].rows = [row(1), row(2)]
    sources["b"].error = SourceError("HTTP 500", source="b")

    res = await aggregator.fetch(["a", "b"])

    assert res.reachable == {"a"}
    assert [o.id for o in res.offers] == [1, 2]
    outcome_b = next(o for o in res.outcomes if o.source_id == "b")
    assert not outcome_b.ok and outcome_b.error == "HTTP 500"


@pytest.mark.asyncio
async def test_empty_book_is_reachable_but_malformed_is_not(aggregator, sources):
    sources["a"].rows = []
    sources["b"].error = MalformedPayloadError("invalid response format", source="b")

    res = await aggregator.fetch(["a", "b"])

    assert res.reachable == {"a"}
    assert res.offers == []


@pytest.mark.asyncio
async def test_unexpected_exception_marks_source_unreachable(aggregator, sources):
    sources["a"].error = KeyError("boom")
    res = await aggregator.fetch(["a"])
    assert res.reachable == set()


@pytest.mark.asyncio
async def test_filtered_to_empty_is_still_reachable(aggregator, sources):
    sources["a"].rows = [row(1, currency=2)]
    res = await aggregator.fetch(["a"], OfferFilters(currencies=frozenset({1})))
    assert res.reachable == {"a"}
    assert res.offers == []


@pytest.mark.asyncio
async def test_offer_type_filter(aggregator, sources):
    sources["a"].rows = [row(1, type_=0), row(2, type_=1)]
    res = await aggregator.fetch(["a"], OfferFilters(offer_type=1))
    assert [o.id for o in res.offers] == [2]


@pytest.mark.asyncio
async def test_duplicates_keep_their_own_source_tag(aggregator, sources):
    sources["a"].rows = [row(7)]
    sources["b"].rows = [row(7)]
    res = await aggregator.fetch(["a", "b"])
    assert sorted(o.source_id for o in res.offers) == ["a", "b"]


@pytest.mark.asyncio
async def test_sources_are_fetched_concurrently_once_each():
    started = []
    release = asyncio.Event()

    class Slow(FakeSource):
        async def fetch_offers(self, filters=None):
            started.append(self.source_id)
            await release.wait()
            return await super().fetch_offers(filters)

    srcs = {"a": Slow("a"), "b": Slow("b")}
    agg = CoordinatorAggregator(lambda sid: srcs[sid])
    task = asyncio.create_task(agg.fetch(["a", "b", "a"]))
    for _ in range(5):
        await asyncio.sleep(0)
    assert sorted(started) == ["a", "b"]
    release.set()
    res = await task
    assert res.reachable == {"a", "b"}
    assert srcs["a"].calls == 1


@pytest.mark.asyncio
async def test_timeout_marks_source_unreachable():
    class Hangs(FakeSource):
        async def fetch_offers(self, filters=None):
            await asyncio.sleep(10)

    agg = CoordinatorAggregator(lambda sid: Hangs(sid), timeout_s=0.01)
    res = await agg.fetch(["a"])
    assert res.reachable == set()
    assert res.outcomes[0].error == "timeout"
