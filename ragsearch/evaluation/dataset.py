"""Evaluation dataset loader and schema.

Loads labelled queries from a JSON file. Each query lists the passage ids
judged relevant and may carry recorded lexical/vector candidate runs, so
fusion strategies can be compared offline without a live store.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from ragsearch.retrieval.reranker import Candidate

logger = logging.getLogger(__name__)


@dataclass
class EvalQuery:
    """A single labelled query."""

    query: str
    relevant_ids: set[str]
    lexical_results: list[Candidate] = field(default_factory=list)
    vector_results: list[Candidate] = field(default_factory=list)

    def __post_init__(self):
        self.relevant_ids = set(self.relevant_ids)


@dataclass
class EvalDataset:
    """Collection of labelled queries with metadata."""

    name: str
    queries: list[EvalQuery]
    description: str = ""

    def __len__(self) -> int:
        return len(self.queries)

    def __iter__(self):
        return iter(self.queries)


def _candidates(rows: list[dict]) -> list[Candidate]:
    return [Candidate(id=r["id"], score=float(r["score"])) for r in rows]


def load_eval_dataset(path: str | Path) -> EvalDataset:
    """Load an evaluation dataset from a JSON file.

    Expected JSON format:
    {
        "name": "auth-docs-v1",
        "description": "...",
        "queries": [
            {
                "query": "JWT 认证",
                "relevant_ids": ["chunk-1", "chunk-2"],
                "lexical_results": [{"id": "chunk-1", "score": 0.9}],
                "vector_results": [{"id": "chunk-2", "score": 0.88}]
            }
        ]
    }
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Eval dataset not found: {path}")

    with open(path, encoding="utf-8") as f:
        data = json.load(f)

    queries = [
        EvalQuery(
            query=q["query"],
            relevant_ids=q["relevant_ids"],
            lexical_results=_candidates(q.get("lexical_results", [])),
            vector_results=_candidates(q.get("vector_results", [])),
        )
        for q in data["queries"]
    ]

    ds = EvalDataset(
        name=data.get("name", path.stem),
        description=data.get("description", ""),
        queries=queries,
    )
    logger.info("Loaded eval dataset %r: %d queries", ds.name, len(ds))
    return ds


def _run(*pairs: tuple[str, float]) -> list[Candidate]:
    return [Candidate(id=doc_id, score=score) for doc_id, score in pairs]


def create_sample_dataset() -> EvalDataset:
    """Built-in recorded runs covering the main retrieval situations.

    1. Exact keyword query, lexical search strong.
    2. Long descriptive query, vector search strong.
    3. Both searches good.
    4. Only vector search finds the relevant passages.
    5. Technical terms, lexical ranks them higher than vector.
    """
    return EvalDataset(
        name="sample-recorded-runs",
        description="Recorded lexical/vector candidates for offline fusion comparison.",
        queries=[
            EvalQuery(
                query="JWT 认证",
                relevant_ids={"chunk-1", "chunk-2", "chunk-5"},
                lexical_results=_run(
                    ("chunk-1", 0.9), ("chunk-2", 0.8), ("chunk-8", 0.6),
                    ("chunk-5", 0.5), ("chunk-9", 0.3),
                ),
                vector_results=_run(
                    ("chunk-2", 0.88), ("chunk-11", 0.7), ("chunk-1", 0.65),
                    ("chunk-12", 0.6), ("chunk-5", 0.55),
                ),
            ),
            EvalQuery(
                query="如何设计一个可扩展的微服务架构来处理高并发请求并确保数据一致性",
                relevant_ids={"chunk-20", "chunk-21", "chunk-25"},
                lexical_results=_run(
                    ("chunk-30", 0.5), ("chunk-20", 0.45), ("chunk-31", 0.4),
                    ("chunk-32", 0.35), ("chunk-33", 0.3),
                ),
                vector_results=_run(
                    ("chunk-20", 0.92), ("chunk-21", 0.88), ("chunk-25", 0.80),
                    ("chunk-34", 0.65), ("chunk-35", 0.60),
                ),
            ),
            EvalQuery(
                query="用户权限管理",
                relevant_ids={"chunk-40", "chunk-41", "chunk-42"},
                lexical_results=_run(
                    ("chunk-40", 0.85), ("chunk-41", 0.80), ("chunk-50", 0.65),
                    ("chunk-42", 0.55), ("chunk-51", 0.45),
                ),
                vector_results=_run(
                    ("chunk-41", 0.91), ("chunk-40", 0.87), ("chunk-42", 0.83),
                    ("chunk-52", 0.70), ("chunk-53", 0.65),
                ),
            ),
            EvalQuery(
                query="新手引导流程",
                relevant_ids={"chunk-60", "chunk-62"},
                lexical_results=_run(
                    ("chunk-70", 0.55), ("chunk-71", 0.48), ("chunk-72", 0.42),
                    ("chunk-73", 0.38), ("chunk-74", 0.31),
                ),
                vector_results=_run(
                    ("chunk-60", 0.89), ("chunk-62", 0.84), ("chunk-75", 0.72),
                    ("chunk-76", 0.66), ("chunk-77", 0.60),
                ),
            ),
            EvalQuery(
                query="pgvector index ivfflat",
                relevant_ids={"chunk-80", "chunk-81"},
                lexical_results=_run(
                    ("chunk-80", 0.95), ("chunk-81", 0.90), ("chunk-90", 0.70),
                    ("chunk-91", 0.65), ("chunk-92", 0.60),
                ),
                vector_results=_run(
                    ("chunk-80", 0.88), ("chunk-93", 0.75), ("chunk-94", 0.70),
                    ("chunk-81", 0.67), ("chunk-95", 0.63),
                ),
            ),
        ],
    )
