"""Tests for the per-cycle channel orchestrator."""

from __future__ import annotations

import httpx
import pytest

from chanwatch.errors import StoreQueryError
from chanwatch.runtime.discovery.discoverer import ModelDiscoverer
from chanwatch.runtime.logging_config import ctx_channel_id, ctx_cycle_id
from chanwatch.runtime.orchestrator import ChannelCycleOrchestrator
from chanwatch.runtime.prober import Prober


def _orchestrator(store, client, fallback=None, excluded=frozenset()):
    return ChannelCycleOrchestrator(
        store,
        ModelDiscoverer(client, fallback or []),
        Prober(client),
        excluded,
    )


class FailingUpdateStore:
    """Wraps a real store but rejects writes for chosen channels."""

    def __init__(self, inner, fail_ids):
        self._inner = inner
        self._fail_ids = set(fail_ids)
        self.updates: list[tuple[int, list[str]]] = []

    async def fetch_channels(self):
        return await self._inner.fetch_channels()

    async def update_models(self, channel_id, models):
        self.updates.append((channel_id, list(models)))
        if channel_id in self._fail_ids:
            raise StoreQueryError(f"write refused for {channel_id}")
        await self._inner.update_models(channel_id, models)


class BrokenFetchStore:
    async def fetch_channels(self):
        raise StoreQueryError("failed to fetch channels: disk I/O error")

    async def update_models(self, channel_id, models):  # pragma: no cover
        raise AssertionError("must not write after a failed fetch")


# ── Single channel ────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_working_subset_is_persisted(store, gateway):
    cid = await store.add_channel("x", "http://x/v1", "sk")
    gateway.listing["x"] = (200, {"data": [{"id": "m1"}, {"id": "m2"}]})
    gateway.probes.update({"m1": 200, "m2": 500})

    async with gateway.client() as client:
        report = await _orchestrator(store, client).run_cycle()

    assert (await store.get_channel(cid)).models == "m1"
    (result,) = report.channels
    assert result.persisted is True
    assert result.source == "endpoint"
    assert result.chat_url == "http://x/v1/chat/completions"
    assert [o.model for o in result.outcomes] == ["m1", "m2"]


@pytest.mark.asyncio
async def test_probes_go_to_resolved_chat_url(store, gateway):
    await store.add_channel("x", "http://x", "sk")
    gateway.listing["x"] = (200, {"data": [{"id": "m1"}]})
    gateway.probes["m1"] = 200

    async with gateway.client() as client:
        await _orchestrator(store, client).run_cycle()

    urls = [str(r.url) for r in gateway.requests]
    assert urls == ["http://x/v1/models", "http://x/v1/chat/completions"]


@pytest.mark.asyncio
async def test_unreachable_listing_uses_fallback(store, gateway):
    cid = await store.add_channel("y", "http://y", "sk")
    gateway.listing["y"] = httpx.ConnectError("Connection refused")
    gateway.probes.update({"a": 200, "b": 200})

    async with gateway.client() as client:
        report = await _orchestrator(store, client, fallback=["a", "b"]).run_cycle()

    assert (await store.get_channel(cid)).models == "a,b"
    assert report.channels[0].source == "fallback"


@pytest.mark.asyncio
async def test_no_working_models_writes_empty_string(store, gateway):
    cid = await store.add_channel("x", "http://x", "sk")
    await store.update_models(cid, ["stale"])
    gateway.listing["x"] = (200, {"data": [{"id": "m1"}]})
    gateway.probes["m1"] = 503

    async with gateway.client() as client:
        await _orchestrator(store, client).run_cycle()

    assert (await store.get_channel(cid)).models == ""


@pytest.mark.asyncio
async def test_empty_listing_writes_empty_string(store, gateway):
    cid = await store.add_channel("x", "http://x", "sk")
    await store.update_models(cid, ["stale"])
    gateway.listing["x"] = (200, {"data": []})

    async with gateway.client() as client:
        report = await _orchestrator(store, client).run_cycle()

    assert (await store.get_channel(cid)).models == ""
    assert report.channels[0].persisted is True
    assert gateway.probed_models() == []


@pytest.mark.asyncio
async def test_duplicate_models_are_probed_and_kept(store, gateway):
    cid = await store.add_channel("x", "http://x", "sk")
    gateway.listing["x"] = (200, {"data": [{"id": "m"}, {"id": "m"}]})
    gateway.probes["m"] = 200

    async with gateway.client() as client:
        await _orchestrator(store, client).run_cycle()

    assert gateway.probed_models() == ["m", "m"]
    assert (await store.get_channel(cid)).models == "m,m"


@pytest.mark.asyncio
async def test_working_order_follows_discovery_order(store, gateway):
    cid = await store.add_channel("x", "http://x", "sk")
    gateway.listing["x"] = (
        200,
        {"data": [{"id": "z"}, {"id": "bad"}, {"id": "a"}, {"id": "m"}]},
    )
    gateway.probes.update({"z": 200, "a": 200, "m": 200, "bad": 400})

    async with gateway.client() as client:
        await _orchestrator(store, client).run_cycle()

    assert (await store.get_channel(cid)).models == "z,a,m"


# ── Discovery failure ─────────────────────────────────────────────────────


@pytest.mark.asyncio
@pytest.mark.parametrize("listing", [(401, {"error": "bad key"}), (200, "not json")])
async def test_discovery_failure_skips_probe_and_persist(store, gateway, listing):
    cid = await store.add_channel("x", "http://x", "sk")
    await store.update_models(cid, ["previous"])
    gateway.listing["x"] = listing

    async with gateway.client() as client:
        report = await _orchestrator(store, client, fallback=["a"]).run_cycle()

    assert gateway.probed_models() == []
    assert (await store.get_channel(cid)).models == "previous"
    (result,) = report.channels
    assert result.skipped is True
    assert result.persisted is False
    assert result.error


@pytest.mark.asyncio
async def test_discovery_failure_does_not_stop_later_channels(store, gateway):
    await store.add_channel("bad", "http://bad", "sk")
    good = await store.add_channel("good", "http://good", "sk")
    gateway.listing["bad"] = (500, {"error": "boom"})
    gateway.listing["good"] = (200, {"data": [{"id": "m1"}]})
    gateway.probes["m1"] = 200

    async with gateway.client() as client:
        report = await _orchestrator(store, client).run_cycle()

    assert (await store.get_channel(good)).models == "m1"
    assert [r.skipped for r in report.channels] == [True, False]


# ── Exclusion ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_excluded_channel_gets_no_traffic(store, gateway):
    excluded = await store.add_channel("skip", "http://skip", "sk")
    await store.update_models(excluded, ["keep-me"])
    probed = await store.add_channel("probe", "http://probe", "sk")
    gateway.listing["skip"] = (200, {"data": [{"id": "m1"}]})
    gateway.listing["probe"] = (200, {"data": [{"id": "m1"}]})
    gateway.probes["m1"] = 200

    async with gateway.client() as client:
        report = await _orchestrator(store, client, excluded={excluded}).run_cycle()

    assert "skip" not in gateway.hosts()
    assert (await store.get_channel(excluded)).models == "keep-me"
    assert (await store.get_channel(probed)).models == "m1"
    assert report.fetched == 2
    assert report.excluded == 1
    assert [r.channel_id for r in report.channels] == [probed]


# ── Store failures ────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_persist_failure_continues_with_next_channel(store, gateway):
    first = await store.add_channel("a", "http://a", "sk")
    second = await store.add_channel("b", "http://b", "sk")
    gateway.listing["a"] = (200, {"data": [{"id": "m1"}]})
    gateway.listing["b"] = (200, {"data": [{"id": "m2"}]})
    gateway.probes.update({"m1": 200, "m2": 200})
    flaky = FailingUpdateStore(store, fail_ids={first})

    async with gateway.client() as client:
        report = await _orchestrator(flaky, client).run_cycle()

    assert flaky.updates == [(first, ["m1"]), (second, ["m2"])]
    assert (await store.get_channel(second)).models == "m2"
    assert (await store.get_channel(first)).models == ""
    assert [r.persisted for r in report.channels] == [False, True]
    assert "write refused" in report.channels[0].error


@pytest.mark.asyncio
async def test_fetch_failure_aborts_cycle(gateway):
    async with gateway.client() as client:
        report = await _orchestrator(BrokenFetchStore(), client).run_cycle()

    assert report.aborted is True
    assert "disk I/O error" in report.error
    assert report.channels == []
    assert report.finished_at is not None
    assert gateway.requests == []


@pytest.mark.asyncio
async def test_unexpected_channel_error_is_contained(store, gateway):
    await store.add_channel("a", "http://a", "sk")
    second = await store.add_channel("b", "http://b", "sk")
    gateway.listing["b"] = (200, {"data": [{"id": "m2"}]})
    gateway.probes["m2"] = 200

    class ExplodingDiscoverer(ModelDiscoverer):
        async def discover(self, channel):
            if channel.name == "a":
                raise RuntimeError("unexpected")
            return await super().discover(channel)

    async with gateway.client() as client:
        orchestrator = ChannelCycleOrchestrator(
            store, ExplodingDiscoverer(client, []), Prober(client)
        )
        report = await orchestrator.run_cycle()

    assert "RuntimeError" in report.channels[0].error
    assert (await store.get_channel(second)).models == "m2"


# ── Report and context ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_report_counts(store, gateway):
    await store.add_channel("a", "http://a", "sk")
    await store.add_channel("b", "http://b", "sk")
    gateway.listing["a"] = (200, {"data": [{"id": "m1"}, {"id": "m2"}]})
    gateway.listing["b"] = (200, {"data": [{"id": "m3"}]})
    gateway.probes.update({"m1": 200, "m3": 200})

    async with gateway.client() as client:
        report = await _orchestrator(store, client).run_cycle()

    assert report.fetched == 2
    assert report.probed == 3
    assert report.working == 2
    assert report.aborted is False
    assert len(report.cycle_id) == 12


@pytest.mark.asyncio
async def test_context_vars_are_reset_after_cycle(store, gateway):
    await store.add_channel("a", "http://a", "sk")
    gateway.listing["a"] = (200, {"data": []})

    async with gateway.client() as client:
        await _orchestrator(store, client).run_cycle()

    assert ctx_cycle_id.get() == ""
    assert ctx_channel_id.get() == ""


@pytest.mark.asyncio
async def test_probe_channel_does_not_write(store, gateway):
    cid = await store.add_channel("a", "http://a", "sk")
    await store.update_models(cid, ["old"])
    gateway.listing["a"] = (200, {"data": [{"id": "m1"}]})
    gateway.probes["m1"] = 200

    async with gateway.client() as client:
        result = await _orchestrator(store, client).probe_channel(await store.get_channel(cid))

    assert result.working_models == ["m1"]
    assert result.persisted is False
    assert (await store.get_channel(cid)).models == "old"


@pytest.mark.asyncio
async def test_run_channel_ignores_exclusion_list(store, gateway):
    cid = await store.add_channel("a", "http://a", "sk")
    gateway.listing["a"] = (200, {"data": [{"id": "m1"}]})
    gateway.probes["m1"] = 200

    async with gateway.client() as client:
        orchestrator = _orchestrator(store, client, excluded={cid})
        result = await orchestrator.run_channel(await store.get_channel(cid))

    assert result.persisted is True
    assert (await store.get_channel(cid)).models == "m1"


@pytest.mark.asyncio
async def test_listing_without_data_clears_stored_models(store, gateway):
    cid = await store.add_channel("x", "http://x", "sk")
    await store.update_models(cid, ["stale"])
    gateway.listing["x"] = (200, {"object": "list"})

    async with gateway.client() as client:
        report = await _orchestrator(store, client, fallback=["a"]).run_cycle()

    assert gateway.probed_models() == []
    assert report.channels[0].persisted is True
    assert (await store.get_channel(cid)).models == ""


@pytest.mark.asyncio
async def test_redirect_loop_on_listing_falls_back(store):
    cid = await store.add_channel("loop", "http://loop", "sk")

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(302, headers={"Location": str(request.url)})
        return httpx.Response(200, json={"choices": []})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, follow_redirects=True) as client:
        report = await _orchestrator(store, client, fallback=["a", "b"]).run_cycle()

    assert report.channels[0].source == "fallback"
    assert (await store.get_channel(cid)).models == "a,b"
