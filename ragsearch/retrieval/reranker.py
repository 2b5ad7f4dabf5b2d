"""Rank fusion for hybrid retrieval.

Combines a lexical (BM25) ranked list and a vector ranked list into one
ranking without touching any store. Two algorithms are available:

- Reciprocal Rank Fusion, with each list discounted by its weight:
      score(d) = sum( w_i / (k + rank_i(d) + 1) )    (rank is 0-based)
  Reference: Cormack, Clarke & Buettcher (2009).
- Linear score fusion over min-max normalised scores:
      score(d) = w_lex * norm_lex(d) + w_vec * norm_vec(d)

Weights can be supplied or derived from the query (see
``compute_adaptive_weights``).
"""

import re
from dataclasses import dataclass
from enum import Enum

DEFAULT_RRF_K = 60  # Standard RRF constant

# CJK Unified Ideographs (+ Extension A and compatibility block)
CJK_RANGES = r"\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff"
CJK_PATTERN = re.compile(f"[{CJK_RANGES}]")

SHORT_QUERY_TOKENS = 3
LONG_QUERY_TOKENS = 15
CJK_LEXICAL_BONUS = 0.1
CJK_LEXICAL_CAP = 0.6


@dataclass
class Candidate:
    """An id with a score from a single search strategy or a fusion run."""

    id: str
    score: float


@dataclass
class FusionWeights:
    """Relative weight of the lexical and the vector ranking."""

    lexical_weight: float
    vector_weight: float


DEFAULT_WEIGHTS = FusionWeights(lexical_weight=0.3, vector_weight=0.7)


class FusionStrategy(str, Enum):
    RRF = "rrf"
    SCORE = "score"


def contains_cjk(text: str) -> bool:
    """True if ``text`` has at least one CJK ideograph."""
    return CJK_PATTERN.search(text) is not None


def compute_adaptive_weights(query: str) -> FusionWeights:
    """Pick fusion weights from the shape of the query.

    Short queries (<= 3 words) are usually exact terms, so lexical and
    vector are weighted equally. Long queries (>= 15 words) are descriptive
    and lean on semantic similarity. CJK text gets a lexical bonus because
    character-level matching works well for those scripts.
    """
    token_count = len(query.split())

    lexical_weight, vector_weight = 0.3, 0.7
    if token_count <= SHORT_QUERY_TOKENS:
        lexical_weight, vector_weight = 0.5, 0.5
    elif token_count >= LONG_QUERY_TOKENS:
        lexical_weight, vector_weight = 0.2, 0.8

    if contains_cjk(query):
        lexical_weight = min(lexical_weight + CJK_LEXICAL_BONUS, CJK_LEXICAL_CAP)
        vector_weight = 1.0 - lexical_weight

    return FusionWeights(lexical_weight=lexical_weight, vector_weight=vector_weight)


def reciprocal_rank_fusion(
    lexical: list[Candidate],
    vector: list[Candidate],
    weights: FusionWeights | None = None,
    k: int = DEFAULT_RRF_K,
) -> list[Candidate]:
    """Fuse two ranked lists with weighted RRF.

    Args:
        lexical: Lexical candidates, best first.
        vector: Vector candidates, best first.
        weights: Per-list weights (default 0.3 / 0.7).
        k: RRF smoothing constant; larger values flatten the rank curve.

    Returns:
        One Candidate per distinct id, sorted by descending fused score.
        Ties keep first-seen order (lexical list first).
    """
    weights = weights or DEFAULT_WEIGHTS
    fused_scores: dict[str, float] = {}

    for ranked, weight in (
        (lexical, weights.lexical_weight),
        (vector, weights.vector_weight),
    ):
        for rank, item in enumerate(ranked):
            fused_scores[item.id] = fused_scores.get(item.id, 0.0) + weight / (k + rank + 1)

    results = [Candidate(id=cid, score=score) for cid, score in fused_scores.items()]
    results.sort(key=lambda c: c.score, reverse=True)
    return results


def _min_max(candidates: list[Candidate]) -> dict[str, float]:
    """Normalise scores to [0, 1]; an empty or constant list uses range 1."""
    if not candidates:
        return {}
    scores = [c.score for c in candidates]
    low = min(scores)
    spread = (max(scores) - low) or 1.0
    return {c.id: (c.score - low) / spread for c in candidates}


def score_fusion(
    lexical: list[Candidate],
    vector: list[Candidate],
    weights: FusionWeights | None = None,
) -> list[Candidate]:
    """Fuse two scored lists by weighted sum of min-max normalised scores.

    An id missing from one list gets 0 for that side.
    """
    weights = weights or DEFAULT_WEIGHTS
    lexical_norm = _min_max(lexical)
    vector_norm = _min_max(vector)

    # dict keeps insertion order: lexical ids first, then vector-only ids
    all_ids = dict.fromkeys([c.id for c in lexical] + [c.id for c in vector])

    results = [
        Candidate(
            id=cid,
            score=(
                weights.lexical_weight * lexical_norm.get(cid, 0.0)
                + weights.vector_weight * vector_norm.get(cid, 0.0)
            ),
        )
        for cid in all_ids
    ]
    results.sort(key=lambda c: c.score, reverse=True)
    return results


def fuse(
    lexical: list[Candidate],
    vector: list[Candidate],
    strategy: FusionStrategy | str = FusionStrategy.RRF,
    weights: FusionWeights | None = None,
    query: str | None = None,
    k: int = DEFAULT_RRF_K,
) -> list[Candidate]:
    """Single entry point for fusion.

    When ``query`` is given and ``weights`` is not, weights are computed
    from the query. Raises ValueError for an unknown strategy.
    """
    strategy = FusionStrategy(strategy)

    if weights is None and query is not None:
        weights = compute_adaptive_weights(query)

    if strategy is FusionStrategy.SCORE:
        return score_fusion(lexical, vector, weights)
    return reciprocal_rank_fusion(lexical, vector, weights, k=k)
