"""Retrieval core — BM25, vector, rank fusion, adaptive threshold, hydration."""

from ragsearch.retrieval.bm25_retriever import BM25Retriever
from ragsearch.retrieval.pipeline import (
    RankedPassage,
    RetrievalConfig,
    RetrievalPipeline,
    SearchStrategy,
    compute_threshold,
    format_context,
)
from ragsearch.retrieval.reranker import (
    Candidate,
    FusionStrategy,
    FusionWeights,
    compute_adaptive_weights,
    fuse,
    reciprocal_rank_fusion,
    score_fusion,
)
from ragsearch.retrieval.vector_retriever import VectorRetriever

__all__ = [
    "BM25Retriever",
    "VectorRetriever",
    "Candidate",
    "FusionStrategy",
    "FusionWeights",
    "compute_adaptive_weights",
    "fuse",
    "reciprocal_rank_fusion",
    "score_fusion",
    "RetrievalPipeline",
    "RetrievalConfig",
    "RankedPassage",
    "SearchStrategy",
    "compute_threshold",
    "format_context",
]
