"""
test_pb.py — PB cache policy, enrichment and the backend PB client.
"""

import asyncio

import httpx

from pacewatch.models import NormalizedRun
from pacewatch.pb import PbCache, PbClient, PbEnricher


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class CountingLookup:
    def __init__(self, values=None, fail=()):
        self.values = values or {}
        self.fail = set(fail)
        self.calls = []

    async def __call__(self, username):
        self.calls.append(username)
        if username in self.fail:
            raise RuntimeError("lookup exploded")
        return self.values.get(username)


def run(account, minecraft=None, display=None, pb=None):
    return NormalizedRun(live_account=account, display_name=display or account,
                         minecraft_name=minecraft, personal_best_seconds=pb)


# ======================================================================
# Cache policy
# ======================================================================

def test_cache_hit_within_ttl_calls_lookup_once():
    lookup = CountingLookup({"alicemc": 512.0})
    enricher = PbEnricher(lookup, PbCache(clock=FakeClock()))

    first = asyncio.run(enricher.enrich(run("alice", "AliceMC")))
    second = asyncio.run(enricher.enrich(run("alice", "AliceMC")))

    assert first.personal_best_seconds == second.personal_best_seconds == 512.0
    assert lookup.calls == ["alicemc"]
    assert enricher.cache.hits == 1
    assert enricher.cache.misses == 1


def test_cache_expires_after_ttl():
    clock = FakeClock()
    lookup = CountingLookup({"alicemc": 512.0})
    enricher = PbEnricher(lookup, PbCache(ttl=3600, clock=clock))

    asyncio.run(enricher.enrich(run("alice", "AliceMC")))
    clock.now += 3601
    asyncio.run(enricher.enrich(run("alice", "AliceMC")))
    assert len(lookup.calls) == 2


def test_missing_pb_is_cached():
    lookup = CountingLookup()
    enricher = PbEnricher(lookup, PbCache(clock=FakeClock()))

    for _ in range(3):
        result = asyncio.run(enricher.enrich(run("ghost", "Ghost")))
        assert result.personal_best_seconds is None
    assert lookup.calls == ["ghost"]


def test_key_falls_back_to_display_name():
    lookup = CountingLookup({"twitchname": 600.0})
    enricher = PbEnricher(lookup, PbCache(clock=FakeClock()))
    result = asyncio.run(enricher.enrich(run("chan", display="TwitchName")))
    assert result.personal_best_seconds == 600.0
    assert lookup.calls == ["twitchname"]


def test_prepopulated_pb_skips_lookup():
    lookup = CountingLookup()
    enricher = PbEnricher(lookup)
    result = asyncio.run(enricher.enrich(run("alice", "Alice", pb=499.0)))
    assert result.personal_best_seconds == 499.0
    assert lookup.calls == []


def test_sweep_evicts_expired_entries():
    clock = FakeClock()
    cache = PbCache(ttl=100, clock=clock)
    cache.put("old", 1.0)
    clock.now += 80
    cache.put("new", 2.0)
    clock.now += 30

    assert cache.sweep() == 1
    assert "old" not in cache
    assert "new" in cache
    assert cache.sweep_interval == 50


# ======================================================================
# Failure isolation and fan-out
# ======================================================================

def test_failed_lookup_does_not_affect_others():
    lookup = CountingLookup({"alice": 500.0, "carl": 700.0}, fail={"bob"})
    enricher = PbEnricher(lookup, PbCache(clock=FakeClock()))

    enriched = asyncio.run(enricher.enrich_all([run("a", "Alice"), run("b", "Bob"), run("c", "Carl")]))
    assert [r.personal_best_seconds for r in enriched] == [500.0, None, 700.0]
    # Failure not cached: retried on the next cycle
    assert "bob" not in enricher.cache


def test_enrich_all_runs_lookups_concurrently():
    names = ["a", "b", "c", "d"]

    async def scenario():
        in_flight = set()
        all_started = asyncio.Event()

        async def lookup(username):
            in_flight.add(username)
            if len(in_flight) == len(names):
                all_started.set()
            # Serialized lookups would never see all four in flight
            await asyncio.wait_for(all_started.wait(), timeout=1.0)
            return 100.0

        enricher = PbEnricher(lookup, PbCache(clock=FakeClock()))
        return await enricher.enrich_all([run(n, n) for n in names])

    enriched = asyncio.run(scenario())
    assert [r.live_account for r in enriched] == names
    assert all(r.personal_best_seconds == 100.0 for r in enriched)


def test_same_key_in_flight_shares_one_lookup():
    calls = []

    async def lookup(username):
        calls.append(username)
        await asyncio.sleep(0.01)
        return 480.0

    async def scenario():
        enricher = PbEnricher(lookup, PbCache(clock=FakeClock()))
        # Same runner in the live and the hidden pool of one cycle
        live, hidden = await asyncio.gather(
            enricher.enrich_all([run("alice", "Alice")]),
            enricher.enrich_all([run("alice_alt", "alice"), run("bob", "Bob")]),
        )
        return enricher, live + hidden

    enricher, enriched = asyncio.run(scenario())
    assert sorted(calls) == ["alice", "bob"]
    assert [r.personal_best_seconds for r in enriched] == [480.0, 480.0, 480.0]
    assert enricher._pending == {}


# ======================================================================
# PbClient
# ======================================================================

def make_pb_client(handler):
    return PbClient("https://backend.test",
                    client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def test_pb_client_reads_pb():
    def handler(request):
        assert request.url.path == "/paceman/pb"
        assert request.url.params["username"] == "alice"
        return httpx.Response(200, json={"pb": 512.3, "username": "alice"})

    assert asyncio.run(make_pb_client(handler)("alice")) == 512.3


def test_pb_client_error_field_means_no_pb():
    client = make_pb_client(lambda r: httpx.Response(
        200, json={"pb": None, "username": "", "error": "Username is required"}))
    assert asyncio.run(client("")) is None


def test_pb_client_http_failure_means_no_pb():
    assert asyncio.run(make_pb_client(lambda r: httpx.Response(502))("alice")) is None
    assert asyncio.run(make_pb_client(lambda r: httpx.Response(200, text="<html>"))("alice")) is None
