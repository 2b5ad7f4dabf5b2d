"""Ablation study framework.

Compares retrieval strategies (single-source, RRF fusion, score fusion,
adaptive vs fixed weights) on the same labelled dataset and produces a
comparison table. Strategies are plain retrieval functions, built either
from the dataset's recorded candidate runs or from a live pipeline.
"""

import logging
from dataclasses import dataclass, field

from ragsearch.evaluation.dataset import EvalDataset
from ragsearch.evaluation.metrics import (
    ABTestResult,
    MetricsResult,
    RetrievalFn,
    RetrievalStrategy,
    ab_test,
    compute_query_metrics,
    evaluate_retrieval,
)
from ragsearch.retrieval.pipeline import RetrievalPipeline
from ragsearch.retrieval.reranker import Candidate, FusionStrategy, FusionWeights, fuse

logger = logging.getLogger(__name__)

RECORDED_SOURCES = ("lexical", "vector")


# ── Retrieval-fn builders ────────────────────────────────────────────


def recorded_retriever(dataset: EvalDataset, source: str) -> RetrievalFn:
    """Replay one adapter's recorded run; unknown queries return nothing."""
    if source not in RECORDED_SOURCES:
        raise ValueError(f"Unknown recorded source {source!r}, expected one of {RECORDED_SOURCES}")
    lookup = {q.query: getattr(q, f"{source}_results") for q in dataset}

    def retrieve(query: str) -> list[Candidate]:
        return list(lookup.get(query, []))

    return retrieve


def fused_retriever(
    dataset: EvalDataset,
    strategy: FusionStrategy | str,
    weights: FusionWeights | None = None,
) -> RetrievalFn:
    """Fuse the recorded lexical and vector runs.

    With ``weights=None`` the weights adapt to each query.
    """
    strategy = FusionStrategy(strategy)
    lexical = recorded_retriever(dataset, "lexical")
    vector = recorded_retriever(dataset, "vector")

    def retrieve(query: str) -> list[Candidate]:
        return fuse(
            lexical(query),
            vector(query),
            strategy=strategy,
            weights=weights,
            query=query,
        )

    return retrieve


def pipeline_retriever(pipeline: RetrievalPipeline, **options) -> RetrievalFn:
    """Adapt a live pipeline; ``options`` are passed to ``retrieve``."""

    def retrieve(query: str) -> list[Candidate]:
        return [
            Candidate(id=p.id, score=p.similarity)
            for p in pipeline.retrieve(query, **options)
        ]

    return retrieve


def default_strategies(dataset: EvalDataset) -> list[RetrievalStrategy]:
    """Standard strategies for studying each fusion component's contribution."""
    return [
        RetrievalStrategy("lexical_only", recorded_retriever(dataset, "lexical")),
        RetrievalStrategy("vector_only", recorded_retriever(dataset, "vector")),
        RetrievalStrategy("hybrid_rrf", fused_retriever(dataset, FusionStrategy.RRF)),
        RetrievalStrategy("hybrid_score", fused_retriever(dataset, FusionStrategy.SCORE)),
        RetrievalStrategy(
            "hybrid_rrf_fixed",
            fused_retriever(dataset, FusionStrategy.RRF, weights=FusionWeights(0.5, 0.5)),
        ),
    ]


# ── Runner ───────────────────────────────────────────────────────────


@dataclass
class AblationResult:
    """Results from a single strategy."""

    strategy_name: str
    num_queries: int
    metrics: MetricsResult
    per_query: list[dict] = field(default_factory=list)


@dataclass
class AblationReport:
    """Full ablation study report across all strategies."""

    results: list[AblationResult]
    dataset_name: str
    num_queries: int
    k: int

    def summary_table(self) -> list[dict]:
        """Produce a flat summary table for easy comparison."""
        rows = []
        for r in self.results:
            row = {"strategy": r.strategy_name}
            row.update(r.metrics.as_dict())
            rows.append(row)
        return rows

    def best(self) -> AblationResult | None:
        """Strategy with the highest NDCG (first listed wins ties)."""
        return max(self.results, key=lambda r: r.metrics.ndcg, default=None)


class AblationRunner:
    """Runs retrieval strategies over one labelled dataset."""

    def __init__(self, dataset: EvalDataset, k: int = 5):
        self.dataset = dataset
        self.k = k

    def run_strategy(self, strategy: RetrievalStrategy) -> AblationResult:
        """Evaluate one strategy, calling its retrieval fn once per query."""
        logger.info("Ablation: running strategy %r", strategy.name)

        ranked_by_query = {q.query: strategy.fn(q.query) for q in self.dataset}

        per_query = [
            {
                "query": q.query,
                "retrieved": [
                    c.id if isinstance(c, Candidate) else c
                    for c in ranked_by_query[q.query][: self.k]
                ],
                "metrics": compute_query_metrics(
                    ranked_by_query[q.query], q.relevant_ids, self.k
                ).as_dict(),
            }
            for q in self.dataset
        ]
        metrics = evaluate_retrieval(self.dataset, ranked_by_query.__getitem__, self.k)

        return AblationResult(
            strategy_name=strategy.name,
            num_queries=len(per_query),
            metrics=metrics,
            per_query=per_query,
        )

    def run_study(
        self, strategies: list[RetrievalStrategy] | None = None
    ) -> AblationReport:
        """Run every strategy and collect the report."""
        if strategies is None:
            strategies = default_strategies(self.dataset)

        logger.info(
            "Starting ablation study: %d strategies x %d queries",
            len(strategies), len(self.dataset),
        )

        results = [self.run_strategy(s) for s in strategies]
        report = AblationReport(
            results=results,
            dataset_name=self.dataset.name,
            num_queries=len(self.dataset),
            k=self.k,
        )

        k = self.k
        for row in report.summary_table():
            logger.info(
                "  %-18s  MRR=%.3f  NDCG@%d=%.3f  P@%d=%.3f  R@%d=%.3f  Hit@%d=%.3f",
                row["strategy"],
                row["mrr"],
                k, row["ndcg"],
                k, row["precision_at_k"],
                k, row["recall_at_k"],
                k, row["hit_rate"],
            )

        return report

    def compare(
        self, strategy_a: RetrievalStrategy, strategy_b: RetrievalStrategy
    ) -> ABTestResult:
        """Paired A/B comparison of two strategies on this dataset."""
        result = ab_test(self.dataset, strategy_a, strategy_b, self.k)
        logger.info(
            "A/B %s vs %s: winner=%s (NDCG %s)",
            strategy_a.name, strategy_b.name, result.winner, result.improvement["ndcg"],
        )
        return result
