"""Trust-based access policy for corpus reads.

The decision depends on two lookups: the corpus policy (minimum trust) and the
requester trust record. Store failures degrade to permissive defaults so that
an outage of the policy store does not disable retrieval; an explicit block is
checked before the trust threshold and can never be bypassed by a defaulted
score.
"""

from abc import ABC, abstractmethod
from typing import Optional

import pydantic

from shared.logging import get_logger
from shared.models import (
    AccessDecision,
    CorpusMode,
    CorpusPolicy,
    RequesterStatus,
    RequesterTrust,
)
from domains.base import PostgrestClient

logger = get_logger(__name__)

REASON_ALLOWED = "allowed"
REASON_BLOCKED = "requester_blocked"


def trust_below_threshold(min_trust: float) -> str:
    # Integral thresholds render without a trailing ".0"
    value = int(min_trust) if float(min_trust).is_integer() else min_trust
    return f"trust_below_threshold:{value}"


def default_policy(corpus: str) -> CorpusPolicy:
    return CorpusPolicy(corpus=corpus, min_trust=0, mode=CorpusMode.PUBLIC)


def default_trust(requester_type: str, requester_id: str) -> RequesterTrust:
    return RequesterTrust(
        requester_type=requester_type,
        requester_id=requester_id,
        trust_score=0,
        status=RequesterStatus.ACTIVE,
    )


class PolicyStore(ABC):
    """Single-row lookups of corpus policies and requester trust."""

    @abstractmethod
    async def get_corpus_policy(self, corpus: str) -> Optional[CorpusPolicy]:
        """Policy row for ``corpus`` or None when absent."""

    @abstractmethod
    async def get_requester_trust(self, requester_type: str, requester_id: str) -> Optional[RequesterTrust]:
        """Trust row for the requester or None when absent."""

    async def close(self) -> None:
        return None


class InMemoryPolicyStore(PolicyStore):
    """Policy store backed by dictionaries. Used for demos and tests."""

    def __init__(self) -> None:
        self.policies: dict[str, CorpusPolicy] = {}
        self.trust: dict[tuple[str, str], RequesterTrust] = {}

    def set_policy(self, corpus: str, min_trust: float, mode: CorpusMode | str = CorpusMode.GATED) -> None:
        self.policies[corpus] = CorpusPolicy(corpus=corpus, min_trust=min_trust, mode=CorpusMode(mode))

    def set_trust(
        self,
        requester_type: str,
        requester_id: str,
        trust_score: float,
        status: RequesterStatus | str = RequesterStatus.ACTIVE,
    ) -> None:
        self.trust[(requester_type, requester_id)] = RequesterTrust(
            requester_type=requester_type,
            requester_id=requester_id,
            trust_score=trust_score,
            status=RequesterStatus(status),
        )

    async def get_corpus_policy(self, corpus: str) -> Optional[CorpusPolicy]:
        return self.policies.get(corpus)

    async def get_requester_trust(self, requester_type: str, requester_id: str) -> Optional[RequesterTrust]:
        return self.trust.get((requester_type, requester_id))


class PostgrestPolicyStore(PolicyStore):
    """Policy store reading ``kb_corpus_policies`` and ``kb_requester_trust``."""

    def __init__(
        self,
        client: PostgrestClient,
        policies_table: str = "kb_corpus_policies",
        trust_table: str = "kb_requester_trust",
    ) -> None:
        self.client = client
        self.policies_table = policies_table
        self.trust_table = trust_table

    async def get_corpus_policy(self, corpus: str) -> Optional[CorpusPolicy]:
        row = await self.client.select_one(
            self.policies_table, {"corpus": corpus}, "corpus,min_trust,mode"
        )
        return CorpusPolicy.model_validate(row) if row else None

    async def get_requester_trust(self, requester_type: str, requester_id: str) -> Optional[RequesterTrust]:
        row = await self.client.select_one(
            self.trust_table,
            {"requester_type": requester_type, "requester_id": requester_id},
            "requester_type,requester_id,trust_score,status",
        )
        if not row:
            return None

        try:
            return RequesterTrust.model_validate(row)
        except pydantic.ValidationError:
            # A stored block holds even when the rest of the row is unusable
            if row.get("status") != RequesterStatus.BLOCKED.value:
                raise
            logger.warning(
                "Malformed trust row for blocked requester",
                requester_type=requester_type,
                requester_id=requester_id
            )
            return RequesterTrust(
                requester_type=requester_type,
                requester_id=requester_id,
                status=RequesterStatus.BLOCKED,
            )


class AccessPolicyEngine:
    """
    Decides whether a requester may read a corpus.

    ``enforce`` has no side effects; auditing is the caller's responsibility.
    """

    def __init__(self, store: PolicyStore) -> None:
        self.store = store

    async def _corpus_policy(self, corpus: str) -> CorpusPolicy:
        try:
            policy = await self.store.get_corpus_policy(corpus)
        except Exception as e:
            logger.warning("Corpus policy lookup failed, using public default", corpus=corpus, error=str(e))
            return default_policy(corpus)
        return policy or default_policy(corpus)

    async def _requester_trust(self, requester_type: str, requester_id: str) -> RequesterTrust:
        try:
            trust = await self.store.get_requester_trust(requester_type, requester_id)
        except Exception as e:
            logger.warning(
                "Requester trust lookup failed, using zero trust",
                requester_type=requester_type,
                requester_id=requester_id,
                error=str(e)
            )
            return default_trust(requester_type, requester_id)
        return trust or default_trust(requester_type, requester_id)

    async def enforce(self, requester_type: str, requester_id: str, corpus: str) -> AccessDecision:
        """
        Evaluate read access of one requester to one corpus.

        Args:
            requester_type: Kind of requester, e.g. agent or human
            requester_id: Requester identifier
            corpus: Corpus name

        Returns:
            Access decision with a machine-readable reason
        """
        policy = await self._corpus_policy(corpus)
        trust = await self._requester_trust(requester_type, requester_id)

        if trust.status == RequesterStatus.BLOCKED:
            decision = AccessDecision(allowed=False, reason=REASON_BLOCKED)
        elif trust.trust_score < policy.min_trust:
            decision = AccessDecision(allowed=False, reason=trust_below_threshold(policy.min_trust))
        else:
            decision = AccessDecision(allowed=True, reason=REASON_ALLOWED)

        logger.debug(
            "Access evaluated",
            requester_type=requester_type,
            requester_id=requester_id,
            corpus=corpus,
            allowed=decision.allowed,
            reason=decision.reason
        )
        return decision
