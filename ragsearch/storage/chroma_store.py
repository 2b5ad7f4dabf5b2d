"""Persistent ChromaDB index of passage embeddings.

Only ids, vectors and the owning document id (``parent_id`` metadata)
live here; passage text is resolved from SQLite after retrieval.
"""

import logging
from pathlib import Path

import chromadb

logger = logging.getLogger(__name__)


class ChromaStore:
    """Cosine-space Chroma collection keyed by passage id."""

    def __init__(self, persist_path: str | Path, collection_name: str = "passages"):
        self.persist_path = str(persist_path)
        self.collection_name = collection_name
        self._client = None
        self._collection = None

    @property
    def client(self) -> chromadb.ClientAPI:
        if self._client is None:
            self._client = chromadb.PersistentClient(path=self.persist_path)
        return self._client

    @property
    def collection(self) -> chromadb.Collection:
        if self._collection is None:
            self._collection = self.client.get_or_create_collection(
                name=self.collection_name,
                metadata={"hnsw:space": "cosine"},
            )
        return self._collection

    def upsert_embeddings(
        self,
        ids: list[str],
        embeddings: list[list[float]],
        parent_ids: list[str],
        batch_size: int = 500,
    ) -> int:
        """Insert or replace passage vectors, ``batch_size`` at a time.

        Returns:
            Number of vectors written.
        """
        if not len(ids) == len(embeddings) == len(parent_ids):
            raise ValueError("ids, embeddings and parent_ids must have equal length")

        for start in range(0, len(ids), batch_size):
            stop = start + batch_size
            self.collection.upsert(
                ids=ids[start:stop],
                embeddings=embeddings[start:stop],
                metadatas=[{"parent_id": pid} for pid in parent_ids[start:stop]],
            )
        logger.info("Upserted %d passage vectors into %r", len(ids), self.collection_name)
        return len(ids)

    def query(
        self,
        query_embedding: list[float],
        n_results: int = 20,
        parent_ids: list[str] | None = None,
    ) -> dict:
        """Nearest passages to ``query_embedding`` by cosine distance.

        ``n_results`` is capped at the collection size, and an empty
        collection short-circuits to an empty result. ``parent_ids``
        restricts the search to passages of those documents.
        """
        size = self.count()
        if size == 0 or n_results <= 0:
            return {"ids": [[]], "distances": [[]], "metadatas": [[]]}

        where = {"parent_id": {"$in": list(parent_ids)}} if parent_ids else None
        return self.collection.query(
            query_embeddings=[query_embedding],
            n_results=min(n_results, size),
            where=where,
            include=["metadatas", "distances"],
        )

    def delete_parents(self, parent_ids: list[str]) -> None:
        """Drop every vector belonging to the given documents."""
        if not parent_ids:
            return
        self.collection.delete(where={"parent_id": {"$in": list(parent_ids)}})
        logger.info("Deleted vectors for %d documents", len(parent_ids))

    def count(self) -> int:
        return self.collection.count()

    def reset(self):
        """Drop the collection; it is recreated empty on next use."""
        try:
            self.client.delete_collection(self.collection_name)
        except Exception as exc:
            # Raised when the collection was never created
            logger.debug("Nothing to reset: %s", exc)
        self._collection = None
        logger.info("Chroma collection %r reset", self.collection_name)
