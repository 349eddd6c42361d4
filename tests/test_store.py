"""Tests for the PostgREST client, stores, and audit sink."""

import json

import httpx
import pytest

from shared.errors import BackingStoreError
from shared.models import AuditRecord
from domains.base import PostgrestClient
from domains.store import InMemoryStore, PostgrestStore
from gateway.audit import PostgrestAuditSink
from gateway.policy import AccessPolicyEngine, PostgrestPolicyStore


def make_client(handler) -> PostgrestClient:
    return PostgrestClient(
        "https://project.example.co/",
        "service-key",
        transport=httpx.MockTransport(handler),
    )


class TestPostgrestClient:
    """Tests for the PostgREST HTTP client."""

    @pytest.mark.asyncio
    async def test_insert_returns_generated_columns(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["request"] = request
            return httpx.Response(201, json=[{"id": 7, "created_at": "2024-05-01T10:00:00Z"}])

        store = PostgrestStore(make_client(handler))
        inserted = await store.insert("merchants", {"name": "Shop", "category": "x", "country": "PT"})

        assert inserted.id == "7"
        assert inserted.created_at == "2024-05-01T10:00:00Z"

        request = seen["request"]
        assert request.method == "POST"
        assert request.url.path == "/rest/v1/merchants"
        assert request.url.params["select"] == "id,created_at"
        assert request.headers["prefer"] == "return=representation"
        assert request.headers["apikey"] == "service-key"
        assert request.headers["authorization"] == "Bearer service-key"
        assert json.loads(request.content) == {"name": "Shop", "category": "x", "country": "PT"}

    @pytest.mark.asyncio
    async def test_count_reads_content_range(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["request"] = request
            return httpx.Response(200, headers={"Content-Range": "0-4/42"})

        store = PostgrestStore(make_client(handler), {"intents": "purchase_intents"})

        assert await store.count("intents", {"user_name": "ana"}) == 42
        request = seen["request"]
        assert request.method == "HEAD"
        assert request.url.path == "/rest/v1/purchase_intents"
        assert request.url.params["user_name"] == "eq.ana"
        assert request.headers["prefer"] == "count=exact"

    @pytest.mark.asyncio
    async def test_count_without_total_fails(self):
        client = make_client(lambda request: httpx.Response(200, headers={"Content-Range": "*/*"}))

        with pytest.raises(BackingStoreError, match="exact count"):
            await client.count("merchants")

    @pytest.mark.asyncio
    async def test_error_response_message(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"message": 'relation "public.merchants" does not exist'})

        with pytest.raises(BackingStoreError) as exc_info:
            await make_client(handler).insert("merchants", {"name": "Shop"})

        assert exc_info.value.message == 'relation "public.merchants" does not exist'
        assert exc_info.value.details["status"] == 404

    @pytest.mark.asyncio
    async def test_connection_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(BackingStoreError, match="connection refused"):
            await make_client(handler).count("merchants")

    @pytest.mark.asyncio
    async def test_unknown_record_kind(self):
        with pytest.raises(BackingStoreError):
            await InMemoryStore().insert("orders", {})


class TestInMemoryStore:
    """Tests for the in-memory store."""

    @pytest.mark.asyncio
    async def test_insert_and_count(self):
        store = InMemoryStore()

        first = await store.insert("merchants", {"name": "A", "country": "PT"})
        second = await store.insert("merchants", {"name": "B", "country": "ES"})

        assert first.id != second.id
        assert await store.count("merchants") == 2
        assert await store.count("merchants", {"country": "PT"}) == 1
        assert await store.count("intents") == 0


class TestPostgrestPolicyStore:
    """Tests for policy and trust lookups over PostgREST."""

    @pytest.mark.asyncio
    async def test_rows_drive_enforcement(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/kb_corpus_policies"):
                assert request.url.params["corpus"] == "eq.technical"
                return httpx.Response(200, json=[{"corpus": "technical", "min_trust": 3, "mode": "gated"}])
            assert request.url.params["requester_id"] == "eq.A1"
            return httpx.Response(200, json=[
                {"requester_type": "agent", "requester_id": "A1", "trust_score": 2, "status": "active"}
            ])

        engine = AccessPolicyEngine(PostgrestPolicyStore(make_client(handler)))

        decision = await engine.enforce("agent", "A1", "technical")
        assert decision.reason == "trust_below_threshold:3"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("trust_score", [None, "not-a-number"])
    async def test_blocked_row_with_bad_score_stays_blocked(self, trust_score):
        """A stored block is honoured even when the score column is unusable."""
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/kb_corpus_policies"):
                return httpx.Response(200, json=[])
            return httpx.Response(200, json=[
                {"requester_type": "agent", "requester_id": "A1", "trust_score": trust_score, "status": "blocked"}
            ])

        engine = AccessPolicyEngine(PostgrestPolicyStore(make_client(handler)))

        decision = await engine.enforce("agent", "A1", "human")
        assert not decision.allowed
        assert decision.reason == "requester_blocked"

    @pytest.mark.asyncio
    async def test_null_columns_read_as_zero(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/kb_corpus_policies"):
                return httpx.Response(200, json=[{"corpus": "technical", "min_trust": None, "mode": "gated"}])
            return httpx.Response(200, json=[
                {"requester_type": "agent", "requester_id": "A1", "trust_score": None, "status": "active"}
            ])

        store = PostgrestPolicyStore(make_client(handler))

        policy = await store.get_corpus_policy("technical")
        trust = await store.get_requester_trust("agent", "A1")
        assert policy.min_trust == 0
        assert trust.trust_score == 0
        assert (await AccessPolicyEngine(store).enforce("agent", "A1", "technical")).allowed

    @pytest.mark.asyncio
    async def test_missing_rows_use_defaults(self):
        engine = AccessPolicyEngine(
            PostgrestPolicyStore(make_client(lambda request: httpx.Response(200, json=[])))
        )

        decision = await engine.enforce("agent", "A1", "technical")
        assert decision.allowed

    @pytest.mark.asyncio
    async def test_outage_fails_open(self):
        engine = AccessPolicyEngine(
            PostgrestPolicyStore(make_client(lambda request: httpx.Response(503, text="unavailable")))
        )

        decision = await engine.enforce("agent", "A1", "technical")
        assert decision.allowed


class TestPostgrestAuditSink:
    """Tests for the table-backed audit sink."""

    @pytest.mark.asyncio
    async def test_append_inserts_row(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["row"] = json.loads(request.content)
            seen["select"] = request.url.params["select"]
            return httpx.Response(201, json=[{"id": 1}])

        sink = PostgrestAuditSink(make_client(handler))
        await sink.append(AuditRecord(
            requester_type="agent",
            requester_id="A1",
            tool_name="kb_get",
            doc_ids=["t-policy"],
            ok=False,
            error="requester_blocked",
            source="tests",
        ))

        assert seen["select"] == "id"
        assert seen["row"]["doc_ids"] == ["t-policy"]
        assert seen["row"]["error"] == "requester_blocked"
        assert seen["row"]["ok"] is False
