"""Vector retrieval via ChromaDB cosine similarity.

Takes a pre-computed query embedding and returns scored passage ids
from the ChromaDB collection, cut at a similarity threshold.
"""

import logging
import math

from ragsearch.retrieval.reranker import Candidate
from ragsearch.storage.chroma_store import ChromaStore

logger = logging.getLogger(__name__)


class VectorRetriever:
    """Dense vector retriever using ChromaDB."""

    def __init__(self, chroma_store: ChromaStore):
        self.chroma_store = chroma_store

    def search(
        self,
        query_embedding: list[float],
        top_k: int = 50,
        threshold: float = 0.0,
        scope_ids: list[str] | None = None,
    ) -> list[Candidate]:
        """Search by embedding similarity.

        Args:
            query_embedding: Query vector.
            top_k: Maximum results to return.
            threshold: Minimum cosine similarity to keep a result.
            scope_ids: Optional document ids to restrict the search to.

        Returns:
            Candidates with score = 1 - cosine_distance, at or above
            ``threshold``, sorted by descending score.
        """
        results = self.chroma_store.query(
            query_embedding=query_embedding,
            n_results=top_k,
            parent_ids=scope_ids,
        )

        # ChromaDB returns distances (lower = better for cosine).
        ids = results["ids"][0]
        distances = results["distances"][0]

        scored = []
        for passage_id, distance in zip(ids, distances):
            score = 1.0 - distance
            if not math.isfinite(score) or score < threshold:
                continue
            scored.append(Candidate(id=str(passage_id), score=score))

        scored.sort(key=lambda c: c.score, reverse=True)
        logger.debug(
            "Vector search kept %d/%d candidates at threshold %.2f",
            len(scored), len(ids), threshold,
        )
        return scored
