"""Retrieval evaluation metrics.

Computes standard IR metrics for comparing retrieval strategies offline:
- Per query: reciprocal rank, NDCG@K, Precision@K, Recall@K, F1@K, HitRate@K
- Aggregate: mean over a labelled query set, and paired A/B comparison

All metrics use binary relevance and are total: empty rankings, empty
relevant sets and k <= 0 give 0.0 rather than raising.
"""

import math
from collections.abc import Callable, Iterable, Sequence
from dataclasses import asdict, dataclass

from ragsearch.retrieval.reranker import Candidate

# A ranked list may hold Candidates (with scores) or bare ids.
Ranked = Sequence[Candidate | str]
RetrievalFn = Callable[[str], Ranked]

NDCG_TIE_TOLERANCE = 0.001


def _as_ids(ranked: Ranked) -> list[str]:
    """Normalize to ids, keeping the first occurrence of any repeated id."""
    seen: set[str] = set()
    ids = []
    for item in ranked:
        item_id = item.id if isinstance(item, Candidate) else item
        if item_id not in seen:
            seen.add(item_id)
            ids.append(item_id)
    return ids


def _hits(ranked: Ranked, relevant_ids: set[str], k: int) -> int:
    return sum(1 for doc_id in _as_ids(ranked)[:k] if doc_id in relevant_ids)


# ── Rank metrics ─────────────────────────────────────────────────────


def reciprocal_rank(ranked: Ranked, relevant_ids: set[str]) -> float:
    """1/rank of the first relevant result (1-based), 0 if none."""
    for i, doc_id in enumerate(_as_ids(ranked)):
        if doc_id in relevant_ids:
            return 1.0 / (i + 1)
    return 0.0


def dcg_at_k(ranked: Ranked, relevant_ids: set[str], k: int) -> float:
    """Discounted cumulative gain over the top k."""
    if k <= 0:
        return 0.0
    return sum(
        1.0 / math.log2(i + 2)  # +2 because log2(1) = 0
        for i, doc_id in enumerate(_as_ids(ranked)[:k])
        if doc_id in relevant_ids
    )


def idcg_at_k(relevant_count: int, k: int) -> float:
    """DCG of the ideal ranking: every relevant item first."""
    ideal_k = max(0, min(relevant_count, k))
    return sum(1.0 / math.log2(i + 2) for i in range(ideal_k))


def ndcg_at_k(ranked: Ranked, relevant_ids: set[str], k: int) -> float:
    """Normalized DCG at k; 0 when there is nothing relevant to find."""
    idcg = idcg_at_k(len(relevant_ids), k)
    if idcg == 0:
        return 0.0
    return dcg_at_k(ranked, relevant_ids, k) / idcg


# ── Set metrics over the top-k slice ─────────────────────────────────


def precision_at_k(ranked: Ranked, relevant_ids: set[str], k: int) -> float:
    """Fraction of the top-k slots holding a relevant result."""
    if k <= 0:
        return 0.0
    return _hits(ranked, relevant_ids, k) / k


def recall_at_k(ranked: Ranked, relevant_ids: set[str], k: int) -> float:
    """Fraction of relevant results found in the top k."""
    if k <= 0 or not relevant_ids:
        return 0.0
    return _hits(ranked, relevant_ids, k) / len(relevant_ids)


def f1_at_k(ranked: Ranked, relevant_ids: set[str], k: int) -> float:
    p = precision_at_k(ranked, relevant_ids, k)
    r = recall_at_k(ranked, relevant_ids, k)
    if p + r == 0:
        return 0.0
    return 2 * p * r / (p + r)


def hit_rate_at_k(ranked: Ranked, relevant_ids: set[str], k: int) -> float:
    """1.0 if any relevant result appears in the top k, else 0.0."""
    if k <= 0:
        return 0.0
    return 1.0 if _hits(ranked, relevant_ids, k) > 0 else 0.0


# ── Aggregation ──────────────────────────────────────────────────────


@dataclass
class MetricsResult:
    """The six ranking-quality metrics for one query or a query-set mean."""

    mrr: float = 0.0
    ndcg: float = 0.0
    precision_at_k: float = 0.0
    recall_at_k: float = 0.0
    f1_at_k: float = 0.0
    hit_rate: float = 0.0

    def as_dict(self) -> dict[str, float]:
        return asdict(self)


def compute_query_metrics(
    ranked: Ranked, relevant_ids: Iterable[str], k: int = 5
) -> MetricsResult:
    """Compute every metric for a single ranked list."""
    relevant = set(relevant_ids)
    return MetricsResult(
        mrr=reciprocal_rank(ranked, relevant),
        ndcg=ndcg_at_k(ranked, relevant, k),
        precision_at_k=precision_at_k(ranked, relevant, k),
        recall_at_k=recall_at_k(ranked, relevant, k),
        f1_at_k=f1_at_k(ranked, relevant, k),
        hit_rate=hit_rate_at_k(ranked, relevant, k),
    )


def evaluate_retrieval(queries, retrieval_fn: RetrievalFn, k: int = 5) -> MetricsResult:
    """Mean metrics of ``retrieval_fn`` over a labelled query set.

    Args:
        queries: Objects with ``query`` and ``relevant_ids`` attributes
                 (e.g. EvalQuery).
        retrieval_fn: Maps a query string to a ranked list.
        k: Cutoff for the @K metrics.

    Returns:
        The per-query metrics averaged over the set; all zeros when the
        set is empty.
    """
    queries = list(queries)
    if not queries:
        return MetricsResult()

    totals = dict.fromkeys(MetricsResult().as_dict(), 0.0)
    for q in queries:
        per_query = compute_query_metrics(retrieval_fn(q.query), q.relevant_ids, k)
        for name, value in per_query.as_dict().items():
            totals[name] += value

    n = len(queries)
    return MetricsResult(**{name: total / n for name, total in totals.items()})


# ── A/B comparison ───────────────────────────────────────────────────


@dataclass
class RetrievalStrategy:
    """A named retrieval function under comparison."""

    name: str
    fn: RetrievalFn


@dataclass
class StrategyMetrics:
    name: str
    metrics: MetricsResult


@dataclass
class ABTestResult:
    """Outcome of a paired comparison.

    ``winner`` is "A", "B" or "tie" (NDCG within 0.001). ``improvement``
    maps each metric name to B's change relative to A, e.g. "+12.50%".
    """

    strategy_a: StrategyMetrics
    strategy_b: StrategyMetrics
    winner: str
    improvement: dict[str, str]


def pct_change(baseline: float, value: float) -> str:
    """Relative change from ``baseline`` to ``value`` as a signed percentage."""
    if baseline == 0:
        return "0.00%" if value == 0 else "+∞%"
    change = (value - baseline) / baseline * 100
    return f"{'+' if change >= 0 else ''}{change:.2f}%"


def ab_test(
    queries,
    strategy_a: RetrievalStrategy,
    strategy_b: RetrievalStrategy,
    k: int = 5,
) -> ABTestResult:
    """Evaluate two strategies on the same queries and pick a winner by NDCG."""
    queries = list(queries)
    metrics_a = evaluate_retrieval(queries, strategy_a.fn, k)
    metrics_b = evaluate_retrieval(queries, strategy_b.fn, k)

    if metrics_a.ndcg - metrics_b.ndcg > NDCG_TIE_TOLERANCE:
        winner = "A"
    elif metrics_b.ndcg - metrics_a.ndcg > NDCG_TIE_TOLERANCE:
        winner = "B"
    else:
        winner = "tie"

    a_values = metrics_a.as_dict()
    b_values = metrics_b.as_dict()
    improvement = {
        name: pct_change(a_values[name], b_values[name]) for name in a_values
    }

    return ABTestResult(
        strategy_a=StrategyMetrics(strategy_a.name, metrics_a),
        strategy_b=StrategyMetrics(strategy_b.name, metrics_b),
        winner=winner,
        improvement=improvement,
    )


def format_metrics(metrics: MetricsResult, k: int = 5) -> str:
    """Human-readable block of percentages, one metric per line."""
    rows = [
        ("MRR", metrics.mrr),
        (f"NDCG@{k}", metrics.ndcg),
        (f"Precision@{k}", metrics.precision_at_k),
        (f"Recall@{k}", metrics.recall_at_k),
        (f"F1@{k}", metrics.f1_at_k),
        (f"HitRate@{k}", metrics.hit_rate),
    ]
    return "\n".join(f"{label + ':':<14} {value * 100:.2f}%" for label, value in rows)
