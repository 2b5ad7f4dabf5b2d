"""Offline retrieval evaluation over recorded candidate runs.

Compares lexical-only, vector-only and fused strategies on a labelled
dataset, then runs two A/B comparisons and prints per-query hits. Needs
no database or model: fusion is applied to the recorded runs.

Usage:
    python scripts/eval_retrieval.py
    python scripts/eval_retrieval.py --dataset data/eval_set.json --k 10
"""

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from ragsearch.evaluation.ablation import (
    AblationReport,
    AblationRunner,
    default_strategies,
)
from ragsearch.evaluation.dataset import (
    EvalDataset,
    create_sample_dataset,
    load_eval_dataset,
)
from ragsearch.evaluation.metrics import ABTestResult

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def _pct(value: float) -> str:
    return f"{value * 100:.2f}%"


def print_metric_table(report: AblationReport) -> None:
    """Print one row per metric, one column per strategy."""
    k = report.k
    labels = {
        "mrr": "MRR",
        "ndcg": f"NDCG@{k}",
        "precision_at_k": f"Precision@{k}",
        "recall_at_k": f"Recall@{k}",
        "f1_at_k": f"F1@{k}",
        "hit_rate": f"HitRate@{k}",
    }
    rows = report.summary_table()

    header = f"{'Metric':<15}" + "".join(f"  {r['strategy']:>17}" for r in rows)
    print(header)
    print("-" * len(header))
    for key, label in labels.items():
        print(f"{label:<15}" + "".join(f"  {_pct(r[key]):>17}" for r in rows))


def print_ab(result: ABTestResult) -> None:
    a, b = result.strategy_a, result.strategy_b
    header = f"{'Metric':<15}  {a.name:>17}  {b.name:>17}  {'Change':>10}"
    print(header)
    print("-" * len(header))
    a_values, b_values = a.metrics.as_dict(), b.metrics.as_dict()
    for key in ("mrr", "ndcg", "f1_at_k"):
        print(
            f"{key:<15}  {_pct(a_values[key]):>17}  {_pct(b_values[key]):>17}"
            f"  {result.improvement[key]:>10}"
        )
    winner = {"A": a.name, "B": b.name}.get(result.winner, "tie")
    print(f"Winner: {winner}")


def print_per_query_hits(report: AblationReport, dataset: EvalDataset, strategy: str) -> None:
    result = next(r for r in report.results if r.strategy_name == strategy)
    for i, (q, row) in enumerate(zip(dataset, result.per_query), 1):
        hits = sum(1 for doc_id in row["retrieved"] if doc_id in q.relevant_ids)
        print(f"  [Q{i}] {q.query[:40]:<40} | hits {hits}/{len(q.relevant_ids)}")


def main():
    parser = argparse.ArgumentParser(description="Offline retrieval strategy evaluation")
    parser.add_argument(
        "--dataset", type=str, default=None,
        help="Eval dataset JSON (default: built-in sample runs)",
    )
    parser.add_argument("--k", type=int, default=5, help="Cutoff for @K metrics (default: 5)")
    args = parser.parse_args()

    dataset = load_eval_dataset(args.dataset) if args.dataset else create_sample_dataset()
    strategies = default_strategies(dataset)
    by_name = {s.name: s for s in strategies}

    runner = AblationRunner(dataset, k=args.k)
    report = runner.run_study(strategies)
    logger.info("Evaluated %d strategies on %r", len(strategies), dataset.name)

    print(f"\n=== Retrieval Evaluation: {dataset.name} ({len(dataset)} queries, K={args.k}) ===\n")
    print_metric_table(report)

    print("\n=== A/B: lexical vs hybrid (RRF) ===\n")
    print_ab(runner.compare(by_name["lexical_only"], by_name["hybrid_rrf"]))

    print("\n=== A/B: hybrid (RRF) vs hybrid (score) ===\n")
    print_ab(runner.compare(by_name["hybrid_rrf"], by_name["hybrid_score"]))

    print("\n=== Per-query hits (hybrid RRF) ===\n")
    print_per_query_hits(report, dataset, "hybrid_rrf")
    print()


if __name__ == "__main__":
    main()
