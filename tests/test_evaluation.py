"""Tests for the evaluation framework.

Covers per-query metrics, aggregation, A/B comparison, dataset loading
and the ablation runner. Everything runs on recorded candidate lists.
"""

import json
import math
from unittest.mock import MagicMock

import pytest

from ragsearch.evaluation.ablation import (
    AblationReport,
    AblationRunner,
    default_strategies,
    fused_retriever,
    pipeline_retriever,
    recorded_retriever,
)
from ragsearch.evaluation.dataset import (
    EvalDataset,
    EvalQuery,
    create_sample_dataset,
    load_eval_dataset,
)
from ragsearch.evaluation.metrics import (
    MetricsResult,
    RetrievalStrategy,
    ab_test,
    compute_query_metrics,
    dcg_at_k,
    evaluate_retrieval,
    f1_at_k,
    format_metrics,
    hit_rate_at_k,
    idcg_at_k,
    ndcg_at_k,
    pct_change,
    precision_at_k,
    recall_at_k,
    reciprocal_rank,
)
from ragsearch.retrieval.pipeline import RankedPassage
from ragsearch.retrieval.reranker import Candidate, FusionStrategy


# ══════════════════════════════════════════════════════════════════════
# PER-QUERY METRICS
# ══════════════════════════════════════════════════════════════════════


class TestReciprocalRank:
    def test_second_relevant(self):
        assert reciprocal_rank(["a", "b", "c"], {"b"}) == 0.5

    def test_accepts_candidates(self):
        ranked = [Candidate("a", 0.9), Candidate("b", 0.8), Candidate("c", 0.7)]
        assert reciprocal_rank(ranked, {"b"}) == 0.5

    def test_first_relevant(self):
        assert reciprocal_rank(["a", "b"], {"a", "b"}) == 1.0

    def test_no_relevant(self):
        assert reciprocal_rank(["x", "y"], {"a"}) == 0.0

    def test_empty_ranked(self):
        assert reciprocal_rank([], {"a"}) == 0.0


class TestNDCG:
    def test_dcg(self):
        assert dcg_at_k(["a", "b", "c"], {"a", "c"}, 3) == pytest.approx(1.5)

    def test_idcg(self):
        assert idcg_at_k(2, 3) == pytest.approx(1 + 1 / math.log2(3))
        assert idcg_at_k(5, 2) == pytest.approx(idcg_at_k(2, 2))
        assert idcg_at_k(0, 5) == 0.0

    def test_ground_truth_order_is_perfect(self):
        assert ndcg_at_k(["a", "b", "x", "y"], {"a", "b"}, 5) == pytest.approx(1.0)

    def test_imperfect_ranking(self):
        expected = (1 / math.log2(3)) / idcg_at_k(1, 3)
        assert ndcg_at_k(["x", "a", "y"], {"a"}, 3) == pytest.approx(expected)

    def test_zero(self):
        assert ndcg_at_k(["x", "y"], {"a"}, 2) == 0.0

    def test_k_zero(self):
        assert ndcg_at_k(["a"], {"a"}, 0) == 0.0

    def test_empty_relevant(self):
        assert ndcg_at_k(["a", "b"], set(), 5) == 0.0


class TestPrecisionRecallF1:
    def test_precision(self):
        assert precision_at_k(["a", "x", "b", "y", "z"], {"a", "b"}, 5) == pytest.approx(0.4)

    def test_precision_k_larger_than_results(self):
        assert precision_at_k(["a"], {"a", "b"}, 5) == pytest.approx(1 / 5)

    def test_recall(self):
        assert recall_at_k(["a", "x", "b"], {"a", "b", "c", "d"}, 3) == pytest.approx(0.5)

    def test_recall_cutoff(self):
        assert recall_at_k(["x", "a"], {"a"}, 1) == 0.0

    def test_f1(self):
        ranked = ["a", "x", "b", "y", "z"]
        assert f1_at_k(ranked, {"a", "b"}, 5) == pytest.approx(2 * 0.4 * 1.0 / 1.4)

    def test_f1_zero_when_no_hits(self):
        assert f1_at_k(["x"], {"a"}, 1) == 0.0

    def test_hit_rate(self):
        assert hit_rate_at_k(["x", "y", "a"], {"a"}, 3) == 1.0
        assert hit_rate_at_k(["x", "y", "a"], {"a"}, 2) == 0.0

    def test_repeated_ids_count_once(self):
        ranked = ["a", "a", "a"]
        assert recall_at_k(ranked, {"a"}, 3) == 1.0
        assert precision_at_k(ranked, {"a"}, 3) == pytest.approx(1 / 3)
        assert ndcg_at_k(ranked, {"a"}, 3) == pytest.approx(1.0)


class TestMetricBounds:
    @pytest.mark.parametrize("ranked", [[], ["a"], ["x", "y"], ["a", "a", "b", "b"]])
    @pytest.mark.parametrize("relevant", [set(), {"a"}, {"a", "b", "c"}])
    @pytest.mark.parametrize("k", [-1, 0, 1, 5])
    def test_all_metrics_in_unit_interval(self, ranked, relevant, k):
        metrics = compute_query_metrics(ranked, relevant, k)
        for value in metrics.as_dict().values():
            assert 0.0 <= value <= 1.0

    def test_empty_inputs_are_zero(self):
        assert compute_query_metrics([], set(), 5) == MetricsResult()


# ══════════════════════════════════════════════════════════════════════
# AGGREGATION & A/B
# ══════════════════════════════════════════════════════════════════════


def _queries(n: int) -> list[EvalQuery]:
    return [EvalQuery(query=f"q{i}", relevant_ids={f"d{i}"}) for i in range(n)]


def _perfect(query: str) -> list[str]:
    return [f"d{query[1:]}"]


def _nothing(query: str) -> list[str]:
    return []


class TestEvaluateRetrieval:
    def test_empty_query_set(self):
        fn = MagicMock()
        assert evaluate_retrieval([], fn, 5) == MetricsResult()
        fn.assert_not_called()

    def test_mean_over_queries(self):
        queries = _queries(2)
        metrics = evaluate_retrieval(queries, lambda q: _perfect(q) if q == "q0" else [], 5)
        assert metrics.mrr == pytest.approx(0.5)
        assert metrics.ndcg == pytest.approx(0.5)
        assert metrics.hit_rate == pytest.approx(0.5)
        assert metrics.recall_at_k == pytest.approx(0.5)
        assert metrics.precision_at_k == pytest.approx(0.1)

    def test_called_once_per_query(self):
        fn = MagicMock(return_value=[])
        evaluate_retrieval(_queries(3), fn, 5)
        assert fn.call_count == 3


class TestABTest:
    def test_b_wins(self):
        result = ab_test(
            _queries(3),
            RetrievalStrategy("empty", _nothing),
            RetrievalStrategy("perfect", _perfect),
        )
        assert result.winner == "B"
        assert result.strategy_a.name == "empty"
        assert result.strategy_b.metrics.ndcg == pytest.approx(1.0)
        assert result.improvement["ndcg"] == "+∞%"

    def test_a_wins_with_negative_change(self):
        queries = _queries(2)
        half = RetrievalStrategy("half", lambda q: _perfect(q) if q == "q0" else [])
        result = ab_test(queries, RetrievalStrategy("perfect", _perfect), half)
        assert result.winner == "A"
        assert result.improvement["mrr"] == "-50.00%"

    def test_both_zero(self):
        result = ab_test(
            _queries(2), RetrievalStrategy("a", _nothing), RetrievalStrategy("b", _nothing)
        )
        assert result.winner == "tie"
        assert set(result.improvement.values()) == {"0.00%"}

    def test_tie_within_tolerance(self):
        queries = _queries(2000)
        almost = RetrievalStrategy("almost", lambda q: [] if q == "q0" else _perfect(q))
        result = ab_test(queries, RetrievalStrategy("perfect", _perfect), almost)
        assert result.strategy_a.metrics.ndcg - result.strategy_b.metrics.ndcg < 0.001
        assert result.winner == "tie"
        assert result.improvement["ndcg"] == "-0.05%"

    def test_improvement_covers_every_metric(self):
        result = ab_test(
            _queries(1), RetrievalStrategy("a", _perfect), RetrievalStrategy("b", _perfect)
        )
        assert set(result.improvement) == set(MetricsResult().as_dict())
        assert result.improvement["mrr"] == "+0.00%"


class TestPctChange:
    def test_values(self):
        assert pct_change(0.5, 0.75) == "+50.00%"
        assert pct_change(0.5, 0.25) == "-50.00%"
        assert pct_change(0.0, 0.0) == "0.00%"
        assert pct_change(0.0, 0.1) == "+∞%"


def test_format_metrics():
    text = format_metrics(MetricsResult(mrr=0.5, ndcg=0.25, hit_rate=1.0), k=10)
    lines = text.splitlines()
    assert len(lines) == 6
    assert lines[0].startswith("MRR:") and lines[0].endswith("50.00%")
    assert "NDCG@10:" in text
    assert lines[-1].endswith("100.00%")


# ══════════════════════════════════════════════════════════════════════
# DATASET
# ══════════════════════════════════════════════════════════════════════


class TestEvalDataset:
    def test_relevant_ids_become_set(self):
        q = EvalQuery(query="q", relevant_ids=["a", "b", "a"])
        assert q.relevant_ids == {"a", "b"}
        assert q.lexical_results == [] and q.vector_results == []

    def test_len_and_iter(self):
        ds = EvalDataset(name="t", queries=_queries(3))
        assert len(ds) == 3
        assert [q.query for q in ds] == ["q0", "q1", "q2"]

    def test_sample_dataset(self):
        ds = create_sample_dataset()
        assert len(ds) == 5
        for q in ds:
            assert q.relevant_ids
            assert len(q.lexical_results) == 5
            assert len(q.vector_results) == 5


class TestLoadEvalDataset:
    def test_load(self, tmp_path):
        path = tmp_path / "eval.json"
        path.write_text(json.dumps({
            "name": "auth-v1",
            "description": "auth questions",
            "queries": [
                {
                    "query": "JWT 认证",
                    "relevant_ids": ["chunk-1"],
                    "lexical_results": [{"id": "chunk-1", "score": 0.9}],
                    "vector_results": [{"id": "chunk-2", "score": 0.8}],
                },
                {"query": "rate limits", "relevant_ids": ["chunk-7"]},
            ],
        }), encoding="utf-8")

        ds = load_eval_dataset(path)
        assert ds.name == "auth-v1"
        assert len(ds) == 2
        assert ds.queries[0].lexical_results == [Candidate("chunk-1", 0.9)]
        assert ds.queries[0].vector_results == [Candidate("chunk-2", 0.8)]
        assert ds.queries[1].relevant_ids == {"chunk-7"}
        assert ds.queries[1].vector_results == []

    def test_name_defaults_to_stem(self, tmp_path):
        path = tmp_path / "smoke.json"
        path.write_text(json.dumps({"queries": []}), encoding="utf-8")
        assert load_eval_dataset(path).name == "smoke"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_eval_dataset(tmp_path / "missing.json")


# ══════════════════════════════════════════════════════════════════════
# ABLATION
# ══════════════════════════════════════════════════════════════════════


@pytest.fixture
def sample_dataset():
    return create_sample_dataset()


class TestRetrieverBuilders:
    def test_recorded_retriever(self, sample_dataset):
        lexical = recorded_retriever(sample_dataset, "lexical")
        ranked = lexical("JWT 认证")
        assert [c.id for c in ranked][:2] == ["chunk-1", "chunk-2"]
        assert lexical("unknown query") == []

    def test_recorded_retriever_bad_source(self, sample_dataset):
        with pytest.raises(ValueError):
            recorded_retriever(sample_dataset, "keyword")

    def test_fused_retriever_uses_both_runs(self, sample_dataset):
        hybrid = fused_retriever(sample_dataset, FusionStrategy.RRF)
        ids = [c.id for c in hybrid("pgvector index ivfflat")]
        assert ids[:2] == ["chunk-80", "chunk-81"]
        assert {"chunk-90", "chunk-93"} <= set(ids)

    def test_fused_retriever_bad_strategy(self, sample_dataset):
        with pytest.raises(ValueError):
            fused_retriever(sample_dataset, "borda")

    def test_pipeline_retriever(self):
        pipeline = MagicMock()
        pipeline.retrieve.return_value = [
            RankedPassage("p1", "d1", "Doc", "text", 0.9),
            RankedPassage("p2", "d1", "Doc", "more", 0.7),
        ]
        fn = pipeline_retriever(pipeline, top_k=2, strategy="vector")
        assert fn("q") == [Candidate("p1", 0.9), Candidate("p2", 0.7)]
        pipeline.retrieve.assert_called_once_with("q", top_k=2, strategy="vector")

    def test_default_strategy_names(self, sample_dataset):
        names = [s.name for s in default_strategies(sample_dataset)]
        assert names == [
            "lexical_only", "vector_only", "hybrid_rrf", "hybrid_score", "hybrid_rrf_fixed",
        ]


class TestAblationRunner:
    def test_run_study(self, sample_dataset):
        report = AblationRunner(sample_dataset, k=5).run_study()
        assert isinstance(report, AblationReport)
        assert report.num_queries == 5
        assert len(report.results) == 5

        table = {row["strategy"]: row for row in report.summary_table()}
        # Scenario 4 has no relevant passage in the lexical run
        assert table["lexical_only"]["hit_rate"] == pytest.approx(0.8)
        assert table["vector_only"]["hit_rate"] == pytest.approx(1.0)

    def test_per_query_detail(self, sample_dataset):
        runner = AblationRunner(sample_dataset, k=3)
        result = runner.run_strategy(default_strategies(sample_dataset)[0])
        assert result.num_queries == 5
        assert result.per_query[0]["retrieved"] == ["chunk-1", "chunk-2", "chunk-8"]
        assert set(result.per_query[0]["metrics"]) == set(MetricsResult().as_dict())

    def test_strategy_called_once_per_query(self, sample_dataset):
        fn = MagicMock(return_value=[])
        AblationRunner(sample_dataset).run_strategy(RetrievalStrategy("spy", fn))
        assert fn.call_count == len(sample_dataset)

    def test_best(self, sample_dataset):
        report = AblationRunner(sample_dataset).run_study()
        best = report.best()
        assert best.metrics.ndcg == max(r.metrics.ndcg for r in report.results)

    def test_compare_hybrid_beats_lexical(self, sample_dataset):
        runner = AblationRunner(sample_dataset)
        by_name = {s.name: s for s in default_strategies(sample_dataset)}
        result = runner.compare(by_name["lexical_only"], by_name["hybrid_rrf"])
        assert result.winner == "B"
        assert result.improvement["ndcg"].startswith("+")

    def test_empty_dataset(self):
        report = AblationRunner(EvalDataset(name="empty", queries=[])).run_study()
        assert all(r.metrics == MetricsResult() for r in report.results)
