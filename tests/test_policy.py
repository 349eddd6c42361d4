"""Tests for the trust-based access policy."""

import pytest

from shared.models import CorpusPolicy, RequesterTrust
from gateway.policy import AccessPolicyEngine, InMemoryPolicyStore, PolicyStore


class UnavailablePolicyStore(PolicyStore):
    """Every lookup fails, like a policy store outage."""

    async def get_corpus_policy(self, corpus: str) -> CorpusPolicy:
        raise ConnectionError("policy store down")

    async def get_requester_trust(self, requester_type: str, requester_id: str) -> RequesterTrust:
        raise ConnectionError("policy store down")


class TestEnforce:
    """Tests for AccessPolicyEngine.enforce."""

    @pytest.mark.asyncio
    async def test_trust_threshold_example(self):
        """A requester below the threshold is allowed once their score reaches it."""
        store = InMemoryPolicyStore()
        store.set_policy("technical", min_trust=3)
        store.set_trust("agent", "A1", trust_score=2)
        engine = AccessPolicyEngine(store)

        decision = await engine.enforce("agent", "A1", "technical")
        assert not decision.allowed
        assert decision.reason == "trust_below_threshold:3"

        store.set_trust("agent", "A1", trust_score=3)
        decision = await engine.enforce("agent", "A1", "technical")
        assert decision.allowed
        assert decision.reason == "allowed"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("score", [0, 3, 10, 1000])
    async def test_blocked_denied_regardless_of_score(self, score):
        """Status is checked before the threshold."""
        store = InMemoryPolicyStore()
        store.set_policy("technical", min_trust=3)
        store.set_trust("agent", "A1", trust_score=score, status="blocked")
        engine = AccessPolicyEngine(store)

        for corpus in ("human", "technical", "unconfigured"):
            decision = await engine.enforce("agent", "A1", corpus)
            assert not decision.allowed
            assert decision.reason == "requester_blocked"

    @pytest.mark.asyncio
    async def test_missing_rows_default_to_public_and_zero_trust(self):
        engine = AccessPolicyEngine(InMemoryPolicyStore())

        decision = await engine.enforce("human", "someone", "human")
        assert decision.allowed

    @pytest.mark.asyncio
    async def test_unknown_requester_denied_on_gated_corpus(self):
        store = InMemoryPolicyStore()
        store.set_policy("technical", min_trust=1)
        engine = AccessPolicyEngine(store)

        decision = await engine.enforce("agent", "stranger", "technical")
        assert decision.reason == "trust_below_threshold:1"

    @pytest.mark.asyncio
    async def test_fractional_threshold_in_reason(self):
        store = InMemoryPolicyStore()
        store.set_policy("technical", min_trust=2.5)
        engine = AccessPolicyEngine(store)

        decision = await engine.enforce("agent", "A1", "technical")
        assert decision.reason == "trust_below_threshold:2.5"

    @pytest.mark.asyncio
    async def test_store_outage_fails_open(self):
        """Lookup failures fall back to public policy and zero trust."""
        engine = AccessPolicyEngine(UnavailablePolicyStore())

        decision = await engine.enforce("agent", "A1", "technical")
        assert decision.allowed
        assert decision.reason == "allowed"

    @pytest.mark.asyncio
    async def test_enforce_has_no_side_effects(self):
        store = InMemoryPolicyStore()
        store.set_policy("technical", min_trust=3)
        store.set_trust("agent", "A1", trust_score=5)
        engine = AccessPolicyEngine(store)

        first = await engine.enforce("agent", "A1", "technical")
        second = await engine.enforce("agent", "A1", "technical")

        assert first == second
        assert list(store.policies) == ["technical"]
        assert list(store.trust) == [("agent", "A1")]
