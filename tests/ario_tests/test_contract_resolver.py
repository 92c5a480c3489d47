"""
Tests for the contract state resolver: cache service first, local replay as
fallback, selector-keyed snapshots.
"""

from __future__ import annotations

import json
import logging

import httpx
import pytest

from ario.contracts.cache import ContractCacheClient
from ario.contracts.evaluator import ContractEvaluator
from ario.contracts.interactions import GatewayInteractionSource, InMemoryInteractionSource
from ario.contracts.resolver import ContractStateResolver
from ario.core.exceptions import (
    ContractUnavailableError,
    InvalidConfigurationError,
    ReplayError,
    SelectorConflictError,
)
from ario.core.models import ContractDefinition, EvaluationOptions

from fakes import make_interaction

CONTRACT_ID = "registry-contract"
ALICE = "alice-wallet"
BOB = "bob-wallet"


def _definition():
    return ContractDefinition(
        contract_id=CONTRACT_ID,
        initial_state={"balances": {ALICE: 1_000}, "records": {}, "gateways": {}},
    )


def _source():
    return InMemoryInteractionSource(
        definitions={CONTRACT_ID: _definition()},
        interactions={
            CONTRACT_ID: [
                make_interaction("t1", ALICE, 100, "transfer", target=BOB, qty=100),
                make_interaction("t2", ALICE, 200, "transfer", target=BOB, qty=200),
            ]
        },
    )


def _cache(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ContractCacheClient("https://cache.test", client=client)


class CountingHandler:
    """MockTransport handler that counts requests and replays a fixed response."""

    def __init__(self, status=200, body=None, text=None):
        self.status = status
        self.body = body
        self.text = text
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.text is not None:
            return httpx.Response(self.status, text=self.text)
        return httpx.Response(self.status, json=self.body)


class TestConstruction:
    """Resolver wiring."""

    def test_requires_cache_or_source(self):
        with pytest.raises(InvalidConfigurationError):
            ContractStateResolver(ContractEvaluator.for_registry())


class TestCacheFirst:
    """Cache service responses."""

    @pytest.mark.asyncio
    async def test_cache_hit_skips_replay(self):
        handler = CountingHandler(body={"state": {"balances": {ALICE: 7}}, "sortKey": "k"})
        source = _source()
        resolver = ContractStateResolver(ContractEvaluator.for_registry(), cache=_cache(handler), source=source)

        state = await resolver.resolve(CONTRACT_ID)

        assert state.source == "cache"
        assert state.state == {"balances": {ALICE: 7}}
        assert handler.requests[0].url.path == f"/contract/{CONTRACT_ID}"

    @pytest.mark.asyncio
    async def test_selector_passed_as_query(self):
        handler = CountingHandler(body={"state": {}, "blockHeight": 150})
        resolver = ContractStateResolver(ContractEvaluator.for_registry(), cache=_cache(handler))
        await resolver.resolve(CONTRACT_ID, EvaluationOptions(block_height=150))
        assert handler.requests[0].url.params["blockHeight"] == "150"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "handler",
        [
            CountingHandler(status=500, body={"error": "boom"}),
            CountingHandler(text="<html>not json</html>"),
            CountingHandler(body={"nothing": "here"}),
            CountingHandler(body={"state": {"balances": {}}, "blockHeight": 120}),
        ],
        ids=["server-error", "malformed-json", "no-state", "stale-height"],
    )
    async def test_bad_cache_falls_back_to_replay(self, handler, caplog):
        resolver = ContractStateResolver(ContractEvaluator.for_registry(), cache=_cache(handler), source=_source())
        selector = EvaluationOptions(block_height=150)

        with caplog.at_level(logging.WARNING, logger="ario"):
            state = await resolver.resolve(CONTRACT_ID, selector)

        replayed = ContractEvaluator.for_registry().evaluate(
            _definition(), await _source().fetch_interactions(CONTRACT_ID, selector), selector
        )
        assert state.source == "replay"
        assert state == replayed
        assert state.to_bytes() == replayed.to_bytes()
        assert state.state["balances"] == {ALICE: 900, BOB: 100}
        assert "replaying locally" in caplog.text

    @pytest.mark.asyncio
    async def test_sort_key_mismatch_falls_back(self):
        handler = CountingHandler(body={"state": {"balances": {}}, "sortKey": "other"})
        source = _source()
        target = make_interaction("t1", ALICE, 100, "transfer", target=BOB, qty=100).sort_key
        resolver = ContractStateResolver(ContractEvaluator.for_registry(), cache=_cache(handler), source=source)

        state = await resolver.resolve(CONTRACT_ID, EvaluationOptions(sort_key=target))

        assert state.source == "replay"
        assert state.sort_key == target
        assert state.state["balances"][BOB] == 100

    @pytest.mark.asyncio
    async def test_connection_error_falls_back(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        resolver = ContractStateResolver(ContractEvaluator.for_registry(), cache=_cache(handler), source=_source())
        state = await resolver.resolve(CONTRACT_ID)
        assert state.state["balances"] == {ALICE: 700, BOB: 300}


class TestUnavailable:
    """Both backends failing."""

    @pytest.mark.asyncio
    async def test_both_failing_raises(self):
        handler = CountingHandler(status=503, body={})
        resolver = ContractStateResolver(
            ContractEvaluator.for_registry(),
            cache=_cache(handler),
            source=InMemoryInteractionSource(),
        )
        with pytest.raises(ContractUnavailableError) as exc_info:
            await resolver.resolve(CONTRACT_ID)
        assert exc_info.value.contract_id == CONTRACT_ID
        assert exc_info.value.cache_error is not None
        assert exc_info.value.replay_error is not None

    @pytest.mark.asyncio
    async def test_cache_only_failing_raises(self):
        resolver = ContractStateResolver(
            ContractEvaluator.for_registry(), cache=_cache(CountingHandler(status=500, body={}))
        )
        with pytest.raises(ContractUnavailableError):
            await resolver.resolve(CONTRACT_ID)


class TestSnapshots:
    """Selector-keyed memoization."""

    @pytest.mark.asyncio
    async def test_pinned_selector_is_cached(self):
        handler = CountingHandler(body={"state": {"v": 1}, "blockHeight": 150})
        resolver = ContractStateResolver(ContractEvaluator.for_registry(), cache=_cache(handler))
        selector = EvaluationOptions(block_height=150)

        first = await resolver.resolve(CONTRACT_ID, selector)
        second = await resolver.resolve(CONTRACT_ID, EvaluationOptions(block_height=150))

        assert first is second
        assert len(handler.requests) == 1
        assert resolver.cached_keys() == [(CONTRACT_ID, selector.cache_key())]

    @pytest.mark.asyncio
    async def test_latest_is_never_cached(self):
        handler = CountingHandler(body={"state": {"v": 1}})
        resolver = ContractStateResolver(ContractEvaluator.for_registry(), cache=_cache(handler))

        await resolver.resolve(CONTRACT_ID)
        await resolver.resolve(CONTRACT_ID)

        assert len(handler.requests) == 2
        assert resolver.cached_keys() == []

    @pytest.mark.asyncio
    async def test_different_selectors_cached_separately(self):
        resolver = ContractStateResolver(ContractEvaluator.for_registry(), source=_source())
        early = await resolver.resolve(CONTRACT_ID, EvaluationOptions(block_height=100))
        late = await resolver.resolve(CONTRACT_ID, EvaluationOptions(block_height=200))
        assert early.state["balances"][BOB] == 100
        assert late.state["balances"][BOB] == 300
        assert len(resolver.cached_keys()) == 2

    @pytest.mark.asyncio
    async def test_clear_cache(self):
        handler = CountingHandler(body={"state": {}, "blockHeight": 5})
        resolver = ContractStateResolver(ContractEvaluator.for_registry(), cache=_cache(handler))
        await resolver.resolve(CONTRACT_ID, EvaluationOptions(block_height=5))
        resolver.clear_cache()
        await resolver.resolve(CONTRACT_ID, EvaluationOptions(block_height=5))
        assert len(handler.requests) == 2

    @pytest.mark.asyncio
    async def test_conflicting_selector_rejected_before_io(self):
        handler = CountingHandler(body={"state": {}})
        resolver = ContractStateResolver(ContractEvaluator.for_registry(), cache=_cache(handler))
        with pytest.raises(SelectorConflictError):
            await resolver.resolve(CONTRACT_ID, EvaluationOptions(block_height=1, sort_key="k"))
        assert handler.requests == []

    @pytest.mark.asyncio
    async def test_timestamp_selector_in_milliseconds(self):
        resolver = ContractStateResolver(ContractEvaluator.for_registry(), source=_source())
        cutoff_ms = (1_700_000_000 + 150 * 120) * 1000
        state = await resolver.resolve(CONTRACT_ID, EvaluationOptions(timestamp=cutoff_ms))
        assert state.state["balances"] == {ALICE: 900, BOB: 100}


def _graphql_node(tx_id, height, function, **inputs):
    return {
        "cursor": f"cursor-{tx_id}",
        "node": {
            "id": tx_id,
            "owner": {"address": ALICE},
            "tags": [
                {"name": "App-Name", "value": "SmartWeaveAction"},
                {"name": "Contract", "value": CONTRACT_ID},
                {"name": "Input", "value": json.dumps({"function": function, **inputs})},
            ],
            "block": {"height": height, "id": f"block-{height}", "timestamp": 1_700_000_000 + height},
        },
    }


class TestGatewayInteractionSource:
    """GraphQL paging and contract definition lookup."""

    @pytest.mark.asyncio
    async def test_pages_through_interactions(self):
        pages = [
            {"pageInfo": {"hasNextPage": True}, "edges": [_graphql_node("a", 1, "transfer", target=BOB, qty=1)]},
            {
                "pageInfo": {"hasNextPage": False},
                "edges": [
                    _graphql_node("b", 2, "transfer", target=BOB, qty=2),
                    {"cursor": "pending", "node": {"id": "c", "tags": [], "block": None}},
                ],
            },
        ]
        afters = []

        def handler(request):
            variables = json.loads(request.content)["variables"]
            afters.append(variables["after"])
            return httpx.Response(200, json={"data": {"transactions": pages[len(afters) - 1]}})

        source = GatewayInteractionSource(
            "https://gw.test", client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
        )
        interactions = await source.fetch_interactions(CONTRACT_ID, EvaluationOptions())

        assert [i.id for i in interactions] == ["a", "b"]
        assert afters == [None, "cursor-a"]
        assert interactions[1].input == {"function": "transfer", "target": BOB, "qty": 2}
        assert interactions[0].sort_key < interactions[1].sort_key

    @pytest.mark.asyncio
    async def test_block_height_bound_sent_to_gateway(self):
        seen = {}

        def handler(request):
            seen.update(json.loads(request.content))
            return httpx.Response(
                200, json={"data": {"transactions": {"pageInfo": {"hasNextPage": False}, "edges": []}}}
            )

        source = GatewayInteractionSource(
            "https://gw.test", client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
        )
        await source.fetch_interactions(CONTRACT_ID, EvaluationOptions(block_height=77))
        assert seen["variables"]["max"] == 77
        assert "block: {max: $max}" in seen["query"]

    @pytest.mark.asyncio
    async def test_contract_initial_state_from_tag(self):
        def handler(request):
            return httpx.Response(
                200,
                json={
                    "data": {
                        "transaction": {
                            "id": CONTRACT_ID,
                            "owner": {"address": ALICE},
                            "tags": [{"name": "Init-State", "value": '{"balances": {"x": 1}}'}],
                        }
                    }
                },
            )

        source = GatewayInteractionSource(
            "https://gw.test", client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
        )
        definition = await source.fetch_contract(CONTRACT_ID)
        assert definition.initial_state == {"balances": {"x": 1}}
        assert definition.owner == ALICE

    @pytest.mark.asyncio
    async def test_graphql_errors_fail_replay(self):
        def handler(request):
            return httpx.Response(200, json={"errors": [{"message": "rate limited"}]})

        gateway = GatewayInteractionSource(
            "https://gw.test", client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
        )
        resolver = ContractStateResolver(ContractEvaluator.for_registry(), source=gateway)
        with pytest.raises(ContractUnavailableError):
            await resolver.resolve(CONTRACT_ID)


def _gateway_serving(interactions_page):
    """Gateway that knows the contract but serves ``interactions_page`` for its log."""

    def handler(request):
        query = json.loads(request.content)["query"]
        if "transaction(id:" in query:
            return httpx.Response(
                200,
                json={
                    "data": {
                        "transaction": {
                            "id": CONTRACT_ID,
                            "owner": {"address": ALICE},
                            "tags": [{"name": "Init-State", "value": '{"balances": {}}'}],
                        }
                    }
                },
            )
        return httpx.Response(200, json=interactions_page)

    return GatewayInteractionSource(
        "https://gw.test", client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )


class TestMalformedGatewayResponses:
    """Malformed gateway bodies surface as an unavailable contract."""

    @pytest.mark.asyncio
    async def test_non_object_body_with_cache_down(self):
        def handler(request):
            return httpx.Response(200, json=[])

        gateway = GatewayInteractionSource(
            "https://gw.test", client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
        )
        resolver = ContractStateResolver(
            ContractEvaluator.for_registry(),
            cache=_cache(CountingHandler(status=500, body={})),
            source=gateway,
        )
        with pytest.raises(ContractUnavailableError) as exc_info:
            await resolver.resolve(CONTRACT_ID, EvaluationOptions(block_height=10))
        assert isinstance(exc_info.value.replay_error, ReplayError)
        assert exc_info.value.cache_error is not None

    @pytest.mark.asyncio
    async def test_node_with_null_timestamp(self):
        node = _graphql_node("a", 5, "transfer", target=BOB, qty=1)
        node["node"]["block"]["timestamp"] = None
        gateway = _gateway_serving(
            {"data": {"transactions": {"pageInfo": {"hasNextPage": False}, "edges": [node]}}}
        )
        resolver = ContractStateResolver(ContractEvaluator.for_registry(), source=gateway)
        with pytest.raises(ContractUnavailableError) as exc_info:
            await resolver.resolve(CONTRACT_ID, EvaluationOptions(block_height=10))
        assert isinstance(exc_info.value.replay_error, ReplayError)

    @pytest.mark.asyncio
    async def test_edge_without_cursor(self):
        node = _graphql_node("a", 5, "transfer", target=BOB, qty=1)
        del node["cursor"]
        gateway = _gateway_serving(
            {"data": {"transactions": {"pageInfo": {"hasNextPage": True}, "edges": [node]}}}
        )
        with pytest.raises(ReplayError):
            await gateway.fetch_interactions(CONTRACT_ID, EvaluationOptions())

    @pytest.mark.asyncio
    async def test_node_without_id(self):
        node = _graphql_node("a", 5, "transfer", target=BOB, qty=1)
        del node["node"]["id"]
        gateway = _gateway_serving(
            {"data": {"transactions": {"pageInfo": {"hasNextPage": False}, "edges": [node]}}}
        )
        with pytest.raises(ReplayError):
            await gateway.fetch_interactions(CONTRACT_ID, EvaluationOptions())
