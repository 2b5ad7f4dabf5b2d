"""CLI: Summarize the retrieval log.

Prints hit rate, average similarity and the most-cited documents over a
recent window, optionally for one workspace.

Usage:
    python scripts/retrieval_stats.py
    python scripts/retrieval_stats.py --workspace ws-1 --days 30
"""

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from ragsearch.config import get_config
from ragsearch.storage.sqlite_db import SQLiteDB


def main():
    parser = argparse.ArgumentParser(description="Retrieval log statistics")
    parser.add_argument("--workspace", type=str, default=None, help="Workspace id filter")
    parser.add_argument("--days", type=int, default=7, help="Window in days (default: 7)")
    args = parser.parse_args()

    config = get_config()
    db = SQLiteDB(config.sqlite_db_path)
    stats = db.get_retrieval_stats(workspace_id=args.workspace, days=args.days)

    scope = f"workspace {args.workspace}" if args.workspace else "all workspaces"
    print(f"\n=== Retrieval stats: {scope}, last {args.days} days ===\n")
    print(f"  Retrievals:          {stats['total_retrievals']}")
    print(f"  Hit rate:            {stats['hit_rate']:.1%}")
    print(f"  Avg similarity:      {stats['average_similarity']:.3f}")
    print(f"  Unique passages:     {stats['unique_passages_cited']}")
    print(f"  Unique documents:    {stats['unique_documents_cited']}")

    if stats["top_documents"]:
        print(f"\n  {'Document':<40} {'Cited':>6} {'AvgSim':>7}")
        print(f"  {'-'*55}")
        for doc in stats["top_documents"]:
            print(f"  {doc['document_title'][:40]:<40} {doc['citation_count']:>6}"
                  f" {doc['average_similarity']:>7.3f}")
    if stats["zero_citation_documents"]:
        print("\n  Never cited in this window:")
        for doc in stats["zero_citation_documents"]:
            print(f"  - {doc['document_title']} ({doc['document_id']})")
    print()


if __name__ == "__main__":
    main()
