"""Tokenize every passage in SQLite and pickle the BM25 index.

build_pipeline() loads the pickle when it exists, so run this after each
ingest. The written file is reloaded once as a sanity check: the passage
count must match what was just built.

Usage:
    python scripts/build_bm25_index.py
    python scripts/build_bm25_index.py --output data/bm25_index.pkl --no-verify
"""

import argparse
import logging
import sys
import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from ragsearch.config import get_config
from ragsearch.retrieval.bm25_retriever import BM25Retriever
from ragsearch.storage.sqlite_db import SQLiteDB

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Build the pickled BM25 index")
    parser.add_argument("--output", type=Path, default=None,
                        help="Pickle path (defaults to BM25_INDEX_PATH)")
    parser.add_argument("--no-verify", action="store_true",
                        help="Skip reloading the written index")
    args = parser.parse_args()

    config = get_config()
    config.ensure_dirs()
    output = args.output or config.bm25_index_path
    db = SQLiteDB(config.sqlite_db_path)

    started = time.perf_counter()
    built = BM25Retriever(db)
    n_passages = built.build_index()
    if not n_passages:
        logger.warning("No passages in %s; writing an empty index", config.sqlite_db_path)
    built.save_index(output)
    logger.info("Indexed %d passages in %.1fs -> %s (%.1f KB)",
                n_passages, time.perf_counter() - started, output,
                output.stat().st_size / 1024)

    if args.no_verify:
        return
    reloaded = BM25Retriever(db).load_index(output)
    if reloaded != n_passages:
        logger.error("Reloaded index has %d passages, expected %d", reloaded, n_passages)
        sys.exit(1)
    logger.info("Verified reload of %d passages", reloaded)


if __name__ == "__main__":
    main()
