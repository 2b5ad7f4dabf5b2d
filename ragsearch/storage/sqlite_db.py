"""SQLite storage layer — hand-written SQL, no ORM.

Holds documents (the parent records), their passages, and the append-only
retrieval log. Lookups used on the request path are batched by id.
All queries are parameterized (no f-strings for values).
"""

import hashlib
import json
import logging
import sqlite3
from collections import Counter, defaultdict
from pathlib import Path

logger = logging.getLogger(__name__)

# Stay well below SQLITE_MAX_VARIABLE_NUMBER on older builds (999)
MAX_IN_PARAMS = 500

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS documents (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    owner_id TEXT,                    -- NULL for shared / legacy documents
    workspace_id TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS passages (
    id TEXT PRIMARY KEY,
    document_id TEXT NOT NULL REFERENCES documents(id),
    content TEXT NOT NULL,
    chunk_index INTEGER               -- order within document
);

CREATE TABLE IF NOT EXISTS retrieval_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    workspace_id TEXT,
    user_id TEXT,
    query_hash TEXT NOT NULL,         -- sha256 of the query, never the text
    result_ids TEXT,                  -- JSON array
    scores TEXT,                      -- JSON array
    strategy TEXT,
    threshold REAL,
    result_count INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_passages_document ON passages(document_id);
CREATE INDEX IF NOT EXISTS idx_documents_owner ON documents(owner_id);
CREATE INDEX IF NOT EXISTS idx_logs_workspace ON retrieval_logs(workspace_id, created_at);
"""


def query_fingerprint(query: str) -> str:
    """SHA-256 hex digest of a query string."""
    return hashlib.sha256(query.encode("utf-8")).hexdigest()


def _batched(ids: list[str], size: int = MAX_IN_PARAMS):
    for i in range(0, len(ids), size):
        yield ids[i : i + size]


class SQLiteDB:
    """SQLite database interface for ragsearch."""

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def get_connection(self) -> sqlite3.Connection:
        """Get a new database connection with row factory enabled."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    def create_schema(self):
        """Create all tables and indexes."""
        conn = self.get_connection()
        try:
            conn.executescript(SCHEMA_SQL)
            conn.commit()
            logger.info("Database schema created at %s", self.db_path)
        finally:
            conn.close()

    # ── Documents & passages ─────────────────────────────────────────

    def insert_documents(self, documents: list[dict], batch_size: int = 500):
        """Insert documents. Each dict: id, title, optional owner_id, workspace_id.

        Uses INSERT OR IGNORE to skip duplicates (by id).
        """
        conn = self.get_connection()
        try:
            for i in range(0, len(documents), batch_size):
                batch = documents[i : i + batch_size]
                conn.executemany(
                    """INSERT OR IGNORE INTO documents (id, title, owner_id, workspace_id)
                       VALUES (?, ?, ?, ?)""",
                    [
                        (d["id"], d["title"], d.get("owner_id"), d.get("workspace_id"))
                        for d in batch
                    ],
                )
            conn.commit()
            logger.info("Inserted %d documents into SQLite", len(documents))
        finally:
            conn.close()

    def insert_passages(self, passages: list[dict], batch_size: int = 1000):
        """Insert passages. Each dict: id, document_id, content, chunk_index."""
        conn = self.get_connection()
        try:
            for i in range(0, len(passages), batch_size):
                batch = passages[i : i + batch_size]
                conn.executemany(
                    """INSERT INTO passages (id, document_id, content, chunk_index)
                       VALUES (?, ?, ?, ?)""",
                    [
                        (p["id"], p["document_id"], p["content"], p.get("chunk_index", 0))
                        for p in batch
                    ],
                )
            conn.commit()
            logger.info("Inserted %d passages into SQLite", len(passages))
        finally:
            conn.close()

    def get_passages_by_ids(self, ids: list[str]) -> dict[str, dict]:
        """Batch lookup of passages, keyed by passage id. Unknown ids are absent."""
        return self._get_by_ids(
            "SELECT id, document_id, content, chunk_index FROM passages WHERE id IN ({})",
            ids,
        )

    def get_documents_by_ids(self, ids: list[str]) -> dict[str, dict]:
        """Batch lookup of documents, keyed by document id."""
        return self._get_by_ids(
            "SELECT id, title, owner_id, workspace_id FROM documents WHERE id IN ({})",
            ids,
        )

    def _get_by_ids(self, sql_template: str, ids: list[str]) -> dict[str, dict]:
        unique_ids = list(dict.fromkeys(ids))
        if not unique_ids:
            return {}
        found: dict[str, dict] = {}
        conn = self.get_connection()
        try:
            for batch in _batched(unique_ids):
                placeholders = ", ".join("?" for _ in batch)
                rows = conn.execute(sql_template.format(placeholders), batch).fetchall()
                for row in rows:
                    found[row["id"]] = dict(row)
            return found
        finally:
            conn.close()

    def get_passage_index_rows(self) -> list[dict]:
        """All passages with their document id and owner, for the lexical index."""
        conn = self.get_connection()
        try:
            rows = conn.execute(
                """SELECT p.id, p.content, p.document_id, d.owner_id
                   FROM passages p
                   JOIN documents d ON p.document_id = d.id
                   ORDER BY p.document_id, p.chunk_index"""
            ).fetchall()
            return [dict(row) for row in rows]
        finally:
            conn.close()

    def get_document_count(self) -> int:
        conn = self.get_connection()
        try:
            return conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]
        finally:
            conn.close()

    def get_passage_count(self) -> int:
        conn = self.get_connection()
        try:
            return conn.execute("SELECT COUNT(*) FROM passages").fetchone()[0]
        finally:
            conn.close()

    # ── Retrieval log ────────────────────────────────────────────────

    def insert_retrieval_log(self, record: dict):
        """Append one retrieval log row.

        ``record`` keys: workspace_id, user_id, query_fingerprint,
        result_ids, scores, strategy, threshold, result_count.
        """
        result_ids = record.get("result_ids") or []
        scores = record.get("scores") or []
        conn = self.get_connection()
        try:
            conn.execute(
                """INSERT INTO retrieval_logs
                   (workspace_id, user_id, query_hash, result_ids, scores,
                    strategy, threshold, result_count)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    record.get("workspace_id"),
                    record.get("user_id"),
                    record["query_fingerprint"],
                    json.dumps(result_ids) if result_ids else None,
                    json.dumps(scores) if scores else None,
                    record.get("strategy"),
                    record.get("threshold"),
                    record.get("result_count", 0),
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def get_retrieval_log_count(self) -> int:
        conn = self.get_connection()
        try:
            return conn.execute("SELECT COUNT(*) FROM retrieval_logs").fetchone()[0]
        finally:
            conn.close()

    def get_retrieval_stats(self, workspace_id: str | None = None, days: int = 7) -> dict:
        """Retrieval quality statistics over the last ``days`` days.

        Returns:
            Dict with total_retrievals, hit_rate (share of retrievals with at
            least one result), average_similarity, unique_passages_cited,
            unique_documents_cited, top_documents (up to 10, by citation
            count) and zero_citation_documents (up to 20 documents of the
            workspace never cited in the window, newest first; empty when
            no workspace is given).
        """
        conditions = ["created_at >= datetime('now', ?)"]
        params: list = [f"-{int(days)} days"]
        if workspace_id is not None:
            conditions.append("workspace_id = ?")
            params.append(workspace_id)
        where_clause = " AND ".join(conditions)

        conn = self.get_connection()
        try:
            rows = conn.execute(
                f"""SELECT result_ids, scores, result_count
                    FROM retrieval_logs WHERE {where_clause}""",
                params,
            ).fetchall()
        finally:
            conn.close()

        total = len(rows)
        hits = sum(1 for r in rows if r["result_count"] > 0)

        per_log_means: list[float] = []
        citations: Counter = Counter()
        similarity_by_passage: dict[str, list[float]] = defaultdict(list)
        for row in rows:
            ids = json.loads(row["result_ids"]) if row["result_ids"] else []
            scores = json.loads(row["scores"]) if row["scores"] else []
            if scores:
                per_log_means.append(sum(scores) / len(scores))
            for pid, score in zip(ids, scores):
                citations[pid] += 1
                similarity_by_passage[pid].append(score)

        doc_citations, doc_scores, documents = self._roll_up_documents(
            citations, similarity_by_passage
        )
        top_documents = [
            {
                "document_id": doc_id,
                "document_title": documents[doc_id]["title"],
                "citation_count": count,
                "average_similarity": round(
                    sum(doc_scores[doc_id]) / len(doc_scores[doc_id]), 3
                ),
            }
            for doc_id, count in doc_citations.most_common(10)
        ]
        zero_citation = (
            self._uncited_documents(workspace_id, set(doc_citations))
            if workspace_id is not None
            else []
        )

        return {
            "total_retrievals": total,
            "hit_rate": round(hits / total, 3) if total else 0.0,
            "average_similarity": (
                round(sum(per_log_means) / len(per_log_means), 3) if per_log_means else 0.0
            ),
            "unique_passages_cited": len(citations),
            "unique_documents_cited": len(doc_citations),
            "top_documents": top_documents,
            "zero_citation_documents": zero_citation,
        }

    def _roll_up_documents(
        self,
        citations: Counter,
        similarity_by_passage: dict[str, list[float]],
    ) -> tuple[Counter, dict[str, list[float]], dict[str, dict]]:
        """Map passage citations onto their documents.

        Passages or documents that no longer exist are skipped.
        """
        doc_citations: Counter = Counter()
        doc_scores: dict[str, list[float]] = defaultdict(list)
        if not citations:
            return doc_citations, doc_scores, {}

        passages = self.get_passages_by_ids(list(citations))
        documents = self.get_documents_by_ids(
            [p["document_id"] for p in passages.values()]
        )
        for pid, count in citations.items():
            passage = passages.get(pid)
            if passage is None or passage["document_id"] not in documents:
                continue
            doc_id = passage["document_id"]
            doc_citations[doc_id] += count
            doc_scores[doc_id].extend(similarity_by_passage[pid])
        return doc_citations, doc_scores, documents

    def _uncited_documents(
        self, workspace_id: str, cited: set[str], limit: int = 20
    ) -> list[dict]:
        conn = self.get_connection()
        try:
            rows = conn.execute(
                """SELECT id, title FROM documents
                   WHERE workspace_id = ?
                   ORDER BY created_at DESC, id""",
                (workspace_id,),
            ).fetchall()
        finally:
            conn.close()
        uncited = [
            {"document_id": row["id"], "document_title": row["title"]}
            for row in rows
            if row["id"] not in cited
        ]
        return uncited[:limit]
