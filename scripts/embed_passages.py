"""Write passage vectors from SQLite into the Chroma index.

A full run drops the collection and re-embeds everything. Passing
``--document`` (repeatable) re-embeds just those documents: their old
vectors are deleted by parent id and the rest of the collection is left
alone. Work proceeds in slices of ``--slice`` passages so that only one
slice of vectors is held in memory at a time.

Usage:
    python scripts/embed_passages.py
    python scripts/embed_passages.py --slice 5000 --encode-batch 128
    python scripts/embed_passages.py --document doc-42 --document doc-43
"""

import argparse
import logging
import sys
import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from ragsearch.config import get_config
from ragsearch.embeddings import EmbeddingGenerator
from ragsearch.storage.chroma_store import ChromaStore
from ragsearch.storage.sqlite_db import SQLiteDB

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Embed passages into the vector index")
    parser.add_argument("--document", action="append", default=[],
                        help="Only re-embed this document id (repeatable)")
    parser.add_argument("--slice", type=int, default=10000,
                        help="Passages encoded and stored per cycle")
    parser.add_argument("--encode-batch", type=int, default=64,
                        help="Batch size passed to the model")
    parser.add_argument("--upsert-batch", type=int, default=500,
                        help="Vectors per Chroma upsert call")
    args = parser.parse_args()

    config = get_config()
    db = SQLiteDB(config.sqlite_db_path)
    chroma = ChromaStore(config.chroma_db_path)

    rows = db.get_passage_index_rows()
    if args.document:
        wanted = set(args.document)
        rows = [r for r in rows if r["document_id"] in wanted]
        chroma.delete_parents(sorted(wanted))
    else:
        chroma.reset()

    if not rows:
        logger.warning("No passages to embed")
        return

    generator = EmbeddingGenerator(config.embedding_model, config.embedding_query_prefix)
    started = time.perf_counter()
    for offset in range(0, len(rows), args.slice):
        part = rows[offset : offset + args.slice]
        vectors = generator.encode([r["content"] for r in part], batch_size=args.encode_batch)
        chroma.upsert_embeddings(
            ids=[r["id"] for r in part],
            embeddings=vectors,
            parent_ids=[r["document_id"] for r in part],
            batch_size=args.upsert_batch,
        )
        logger.info("Embedded %d/%d passages", offset + len(part), len(rows))

    logger.info("Done in %.1fs; collection holds %d vectors",
                time.perf_counter() - started, chroma.count())


if __name__ == "__main__":
    main()
