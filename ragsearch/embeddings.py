"""Sentence-transformers wrapper shared by the indexer and the query path.

The model is loaded on first use so that building a pipeline (or
importing this module in tests) does not pull weights from disk.
Vectors are L2-normalised, which makes Chroma's cosine distance equal
to ``1 - dot``.
"""

import logging

from sentence_transformers import SentenceTransformer

logger = logging.getLogger(__name__)


class EmbeddingGenerator:
    """Lazily loaded encoder producing normalised float vectors."""

    def __init__(self, model_name: str = "BAAI/bge-m3", query_prefix: str = ""):
        self.model_name = model_name
        self.query_prefix = query_prefix
        self._model: SentenceTransformer | None = None

    @property
    def model(self) -> SentenceTransformer:
        if self._model is None:
            logger.info("Loading embedding model %s", self.model_name)
            self._model = SentenceTransformer(self.model_name)
            logger.info("Embedding model ready (dim=%d)", self.dimension)
        return self._model

    @property
    def dimension(self) -> int:
        return self.model.get_sentence_embedding_dimension()

    def encode(self, texts: list[str], batch_size: int = 64) -> list[list[float]]:
        """Embed passage texts, ``batch_size`` at a time on the model side."""
        if not texts:
            return []
        vectors = self.model.encode(
            list(texts),
            batch_size=batch_size,
            normalize_embeddings=True,
            show_progress_bar=len(texts) > batch_size,
        )
        return [v.tolist() for v in vectors]

    def encode_query(self, query: str) -> list[float]:
        # Some models (e.g. e5, bge-en) expect an instruction before queries
        text = f"{self.query_prefix}{query}" if self.query_prefix else query
        return self.model.encode(text, normalize_embeddings=True).tolist()
