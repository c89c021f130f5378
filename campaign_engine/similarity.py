"""
campaign_engine/similarity.py -- Similarity Resolver

Wraps an externally supplied fuzzy name lookup and applies the engine's
two threshold policies on top of it:

    RESOLVED  (>= 0.9)  the candidate is a confirmed match
    MINIMUM   (>= 0.4)  the candidate is a plausible suggestion

Anything below MINIMUM is noise and never becomes a finding.  Lookup
errors are logged and treated as "no candidate"; text analysis never fails
because a single lookup failed.

Usage:
    from campaign_engine.similarity import SimilarityResolver

    resolver = SimilarityResolver(store.resolve_entity_by_name)
    best = resolver.best_match("campaign-1", "Arkam")
    if best and resolver.classify(best.similarity) is MatchStrength.SUGGESTED:
        ...
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from enum import Enum, auto
from typing import Callable, Optional, Sequence

from campaign_engine.models import ResolvedCandidate

logger = logging.getLogger(__name__)

SIMILARITY_RESOLVED = 0.9
SIMILARITY_MINIMUM = 0.4

ResolveFn = Callable[[str, str, int], Sequence[ResolvedCandidate]]


class MatchStrength(Enum):
    RESOLVED = auto()
    SUGGESTED = auto()
    NOISE = auto()


class SimilarityResolver:
    """Ranked, scored candidate lookup with threshold classification.

    Parameters
    ----------
    resolve_fn : callable
        ``resolve_fn(campaign_id, name, limit)`` returning candidates.
        Typically ``store.resolve_entity_by_name``.
    resolved : float
        Lower bound for a confirmed match.
    minimum : float
        Lower bound for a suggestion worth surfacing.
    workers : int
        Thread count for :meth:`best_matches`.  ``1`` resolves in the
        calling thread.
    """

    def __init__(
        self,
        resolve_fn: ResolveFn,
        resolved: float = SIMILARITY_RESOLVED,
        minimum: float = SIMILARITY_MINIMUM,
        workers: int = 1,
    ):
        if not 0.0 <= minimum <= resolved <= 1.0:
            raise ValueError(
                f"Invalid thresholds: minimum={minimum}, resolved={resolved}"
            )
        self._resolve_fn = resolve_fn
        self.resolved = resolved
        self.minimum = minimum
        self._workers = max(1, workers)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def resolve(
        self, campaign_id: str, name: str, limit: int = 1
    ) -> list[ResolvedCandidate]:
        """Return candidates for *name*, best first.

        Returns an empty list when the lookup fails or nothing clears the
        underlying engine's own floor.
        """
        try:
            candidates = list(self._resolve_fn(campaign_id, name, limit))
        except Exception as e:
            logger.warning(
                "Entity lookup failed for %r in campaign %s: %s",
                name, campaign_id, e,
            )
            return []
        candidates.sort(key=lambda c: c.similarity, reverse=True)
        return candidates[:limit] if limit > 0 else candidates

    def best_match(
        self, campaign_id: str, name: str
    ) -> Optional[ResolvedCandidate]:
        candidates = self.resolve(campaign_id, name, limit=1)
        return candidates[0] if candidates else None

    def best_matches(
        self, campaign_id: str, names: Sequence[str]
    ) -> list[Optional[ResolvedCandidate]]:
        """Resolve every name, returning results in the order given.

        Lookups are independent reads, so with ``workers > 1`` they run on
        a thread pool.
        """
        if self._workers == 1 or len(names) < 2:
            return [self.best_match(campaign_id, n) for n in names]
        with ThreadPoolExecutor(max_workers=self._workers) as pool:
            return list(pool.map(lambda n: self.best_match(campaign_id, n), names))

    # ------------------------------------------------------------------
    # Threshold policy
    # ------------------------------------------------------------------

    def classify(self, similarity: float) -> MatchStrength:
        if similarity >= self.resolved:
            return MatchStrength.RESOLVED
        if similarity >= self.minimum:
            return MatchStrength.SUGGESTED
        return MatchStrength.NOISE

    def is_near_miss(self, candidate: Optional[ResolvedCandidate]) -> bool:
        """True when *candidate* sits in ``[minimum, resolved)``."""
        return (
            candidate is not None
            and self.classify(candidate.similarity) is MatchStrength.SUGGESTED
        )
