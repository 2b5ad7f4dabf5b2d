"""Component wiring — builds a ready-to-use RetrievalPipeline from Config.

Everything is constructed per call and passed explicitly; there is no
module-level state.
"""

import logging

from ragsearch.config import Config, get_config
from ragsearch.embeddings import EmbeddingGenerator
from ragsearch.retrieval.bm25_retriever import BM25Retriever
from ragsearch.retrieval.pipeline import RetrievalPipeline
from ragsearch.retrieval.vector_retriever import VectorRetriever
from ragsearch.storage.chroma_store import ChromaStore
from ragsearch.storage.sqlite_db import SQLiteDB

logger = logging.getLogger(__name__)


def build_pipeline(config: Config | None = None) -> RetrievalPipeline:
    """Initialize stores, models and indexes and return the pipeline."""
    config = config or get_config()

    db = SQLiteDB(config.sqlite_db_path)
    db.create_schema()  # Ensure tables exist (idempotent)
    chroma = ChromaStore(config.chroma_db_path)

    embed_gen = EmbeddingGenerator(config.embedding_model, config.embedding_query_prefix)

    bm25 = BM25Retriever(db)
    if config.bm25_index_path.exists():
        bm25.load_index(config.bm25_index_path)
    else:
        logger.info("No BM25 index at %s — building from SQLite", config.bm25_index_path)
        bm25.build_index()

    pipeline = RetrievalPipeline(
        db=db,
        lexical=bm25,
        vector=VectorRetriever(chroma),
        embedding_generator=embed_gen,
        config=config.retrieval_config(),
    )
    logger.info("Retrieval pipeline initialized")
    return pipeline
