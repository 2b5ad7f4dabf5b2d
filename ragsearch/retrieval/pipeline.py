"""End-to-end retrieval pipeline.

Orchestrates adaptive threshold → concurrent BM25 + vector search →
rank fusion → batched passage hydration, and hands a retrieval-log
record to a background writer without waiting for it.
"""

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum

from ragsearch.embeddings import EmbeddingGenerator
from ragsearch.retrieval.bm25_retriever import BM25Retriever
from ragsearch.retrieval.reranker import (
    CJK_RANGES,
    DEFAULT_RRF_K,
    Candidate,
    FusionWeights,
    compute_adaptive_weights,
    fuse,
)
from ragsearch.retrieval.vector_retriever import VectorRetriever
from ragsearch.storage.sqlite_db import SQLiteDB, query_fingerprint

logger = logging.getLogger(__name__)

BASE_THRESHOLD = 0.70
MIN_THRESHOLD = 0.55
MAX_THRESHOLD = 0.85

_ACRONYM = re.compile(r"[A-Z]{2,}")
_CJK_ONLY = re.compile(rf"^[{CJK_RANGES}\s]+$")


@dataclass
class RankedPassage:
    """A retrieved passage with its document context.

    ``similarity`` is cosine similarity on the vector-only path and a fused
    score on the hybrid path; fused scores only order one result list.
    """

    id: str
    parent_id: str
    parent_title: str
    content: str
    similarity: float


@dataclass
class RetrievalConfig:
    """Knobs for the retrieval pipeline."""

    top_k: int = 5
    rrf_k: int = DEFAULT_RRF_K
    fusion_strategy: str = "rrf"
    candidate_multiplier: int = 2
    workspace_threshold_offset: float = 0.0
    max_workers: int = 4
    log_retrievals: bool = True


class SearchStrategy(str, Enum):
    HYBRID = "hybrid"
    VECTOR = "vector"


def compute_threshold(query: str, workspace_offset: float = 0.0) -> float:
    """Similarity threshold for a query, clamped to [0.55, 0.85].

    Short queries (< 5 estimated tokens) get a looser cut and long ones
    (> 20) a stricter one. Acronyms tighten it; short CJK-only queries
    loosen it. Tokens are estimated as characters / 4.
    """
    estimated_tokens = len(query) / 4
    threshold = BASE_THRESHOLD + workspace_offset

    if estimated_tokens < 5:
        threshold -= 0.05
    elif estimated_tokens > 20:
        threshold += 0.05

    if _ACRONYM.search(query):
        threshold += 0.03

    if _CJK_ONLY.match(query) and estimated_tokens < 10:
        threshold -= 0.03

    return max(MIN_THRESHOLD, min(MAX_THRESHOLD, threshold))


def format_context(passages: list[RankedPassage]) -> str:
    """Render passages as numbered blocks for a generation prompt."""
    return "\n\n---\n\n".join(
        f"[{i}] \"{p.parent_title}\"\n{p.content}"
        for i, p in enumerate(passages, 1)
    )


class RetrievalPipeline:
    """Hybrid retrieval façade: query string in, ranked passages out.

    Usage:
        with RetrievalPipeline(db, bm25, vector, embedder) as pipeline:
            passages = pipeline.retrieve("how is login rate-limited?")
    """

    def __init__(
        self,
        db: SQLiteDB,
        lexical: BM25Retriever,
        vector: VectorRetriever,
        embedding_generator: EmbeddingGenerator,
        config: RetrievalConfig | None = None,
        log_sink=None,
    ):
        self.db = db
        self.lexical = lexical
        self.vector = vector
        self.embedding_generator = embedding_generator
        self.config = config or RetrievalConfig()
        # Anything with insert_retrieval_log(record); defaults to the store
        self.log_sink = log_sink if log_sink is not None else db

        self._search_executor = ThreadPoolExecutor(
            max_workers=max(2, self.config.max_workers),
            thread_name_prefix="ragsearch-search",
        )
        self._log_executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="ragsearch-log"
        )

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self, wait: bool = True) -> None:
        """Shut down the worker pools; pending log writes finish if ``wait``."""
        self._search_executor.shutdown(wait=wait)
        self._log_executor.shutdown(wait=wait)

    # ── Public surface ───────────────────────────────────────────────

    def retrieve(
        self,
        query: str,
        top_k: int | None = None,
        threshold: float | None = None,
        threshold_override: float | None = None,
        scope_ids: list[str] | None = None,
        owner_id: str | None = None,
        strategy: SearchStrategy | str = SearchStrategy.HYBRID,
        workspace_threshold_offset: float | None = None,
        workspace_id: str | None = None,
        user_id: str | None = None,
    ) -> list[RankedPassage]:
        """Retrieve ranked passages for a query.

        Threshold priority: ``threshold_override`` > ``threshold`` >
        ``compute_threshold(query, offset)``. Scoped queries and
        ``strategy="vector"`` run vector-only; everything else is hybrid.
        Adapter errors propagate unchanged.
        """
        strategy = SearchStrategy(strategy)
        final_k = top_k if top_k is not None else self.config.top_k

        if threshold_override is not None:
            effective_threshold = threshold_override
        elif threshold is not None:
            effective_threshold = threshold
        else:
            offset = (
                workspace_threshold_offset
                if workspace_threshold_offset is not None
                else self.config.workspace_threshold_offset
            )
            effective_threshold = compute_threshold(query, offset)

        if strategy is SearchStrategy.VECTOR or scope_ids:
            used = SearchStrategy.VECTOR
            results = self.vector_search(
                query,
                top_k=final_k,
                threshold=effective_threshold,
                scope_ids=scope_ids,
                owner_id=owner_id,
            )
        else:
            used = SearchStrategy.HYBRID
            results = self.hybrid_search(
                query,
                top_k=final_k,
                threshold=effective_threshold,
                owner_id=owner_id,
            )

        logger.debug(
            "retrieve strategy=%s threshold=%.3f results=%d",
            used.value, effective_threshold, len(results),
        )

        if self.config.log_retrievals and self.log_sink is not None:
            self._log_retrieval(
                query=query,
                results=results,
                strategy=used.value,
                threshold=effective_threshold,
                workspace_id=workspace_id,
                user_id=user_id,
            )

        return results

    def hybrid_search(
        self,
        query: str,
        top_k: int | None = None,
        threshold: float | None = None,
        scope_ids: list[str] | None = None,
        owner_id: str | None = None,
        weights: FusionWeights | None = None,
        fusion_strategy: str | None = None,
    ) -> list[RankedPassage]:
        """Run lexical and vector search concurrently and fuse the results.

        Each side is asked for ``candidate_multiplier * top_k`` candidates.
        Both receive the same scope filters.
        """
        final_k = top_k if top_k is not None else self.config.top_k
        fetch_k = final_k * self.config.candidate_multiplier
        if threshold is None:
            threshold = compute_threshold(query, self.config.workspace_threshold_offset)
        weights = weights or compute_adaptive_weights(query)

        lexical_future = self._search_executor.submit(
            self.lexical.search,
            query,
            top_k=fetch_k,
            owner_id=owner_id,
            scope_ids=scope_ids,
        )
        vector_future = self._search_executor.submit(
            self._vector_candidates, query, fetch_k, threshold, scope_ids
        )
        # Join on both; .result() re-raises the adapter's own exception
        lexical_results = lexical_future.result()
        vector_results = vector_future.result()

        logger.debug(
            "BM25 returned %d, vector returned %d candidates",
            len(lexical_results),
            len(vector_results),
        )

        fused = fuse(
            lexical_results,
            vector_results,
            strategy=fusion_strategy or self.config.fusion_strategy,
            weights=weights,
            k=self.config.rrf_k,
        )
        return self._hydrate(fused, owner_id=owner_id)[:final_k]

    def vector_search(
        self,
        query: str,
        top_k: int | None = None,
        threshold: float = 0.0,
        scope_ids: list[str] | None = None,
        owner_id: str | None = None,
    ) -> list[RankedPassage]:
        """Vector-only retrieval with hydration."""
        final_k = top_k if top_k is not None else self.config.top_k
        candidates = self._vector_candidates(query, final_k, threshold, scope_ids)
        return self._hydrate(candidates, owner_id=owner_id)[:final_k]

    # ── Internals ────────────────────────────────────────────────────

    def _vector_candidates(
        self,
        query: str,
        top_k: int,
        threshold: float,
        scope_ids: list[str] | None,
    ) -> list[Candidate]:
        query_embedding = self.embedding_generator.encode_query(query)
        return self.vector.search(
            query_embedding,
            top_k=top_k,
            threshold=threshold,
            scope_ids=scope_ids,
        )

    def _hydrate(
        self,
        candidates: list[Candidate],
        owner_id: str | None = None,
    ) -> list[RankedPassage]:
        """Resolve candidate ids to passages with two batched lookups.

        Candidates whose passage or document is missing are dropped, as are
        documents owned by someone other than ``owner_id`` (documents
        without an owner are always kept). Candidate order is preserved.
        """
        if not candidates:
            return []

        passages = self.db.get_passages_by_ids([c.id for c in candidates])
        documents = self.db.get_documents_by_ids(
            [p["document_id"] for p in passages.values()]
        )

        results = []
        missing = 0
        filtered = 0
        for candidate in candidates:
            passage = passages.get(candidate.id)
            document = documents.get(passage["document_id"]) if passage else None
            if document is None:
                missing += 1
                continue
            doc_owner = document.get("owner_id")
            if owner_id is not None and doc_owner and doc_owner != owner_id:
                filtered += 1
                continue
            results.append(RankedPassage(
                id=candidate.id,
                parent_id=document["id"],
                parent_title=document["title"],
                content=passage["content"],
                similarity=candidate.score,
            ))

        if missing or filtered:
            logger.debug(
                "Hydration dropped %d candidates (%d missing, %d owner-filtered)",
                missing + filtered, missing, filtered,
            )
        return results

    def _log_retrieval(
        self,
        query: str,
        results: list[RankedPassage],
        strategy: str,
        threshold: float,
        workspace_id: str | None,
        user_id: str | None,
    ) -> None:
        record = {
            "workspace_id": workspace_id,
            "user_id": user_id,
            "query_fingerprint": query_fingerprint(query),
            "result_ids": [r.id for r in results],
            "scores": [r.similarity for r in results],
            "strategy": strategy,
            "threshold": threshold,
            "result_count": len(results),
        }
        try:
            self._log_executor.submit(self._write_log, record)
        except RuntimeError as exc:
            # Executor already shut down
            logger.warning("Retrieval log dropped: %s", exc)

    def _write_log(self, record: dict) -> None:
        try:
            self.log_sink.insert_retrieval_log(record)
        except Exception as exc:
            logger.warning("Retrieval log write failed: %s", exc)
