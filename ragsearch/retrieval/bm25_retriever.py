"""BM25 lexical retrieval using rank-bm25.

Builds an in-memory BM25 index from SQLite passage texts and returns
scored passage ids for a given query. Tokenization is script-aware:
CJK text is indexed character by character, everything else as
lowercased Porter-stemmed words.
"""

import logging
import math
import pickle
from pathlib import Path

from nltk.stem import PorterStemmer
from nltk.tokenize import wordpunct_tokenize
from rank_bm25 import BM25Okapi

from ragsearch.retrieval.reranker import CJK_PATTERN, Candidate, contains_cjk
from ragsearch.storage.sqlite_db import SQLiteDB

logger = logging.getLogger(__name__)

_stemmer = PorterStemmer()


def _word_tokens(text: str) -> list[str]:
    return [
        _stemmer.stem(tok)
        for tok in wordpunct_tokenize(text.lower())
        if any(ch.isalnum() for ch in tok)
    ]


def _tokenize(text: str) -> list[str]:
    """Tokenize for BM25.

    Latin-script text becomes stemmed words. When the text contains CJK,
    each ideograph is its own token and the runs between them are
    word-tokenized as above.
    """
    if not contains_cjk(text):
        return _word_tokens(text)

    tokens: list[str] = []
    last = 0
    for match in CJK_PATTERN.finditer(text):
        tokens.extend(_word_tokens(text[last : match.start()]))
        tokens.append(match.group())
        last = match.end()
    tokens.extend(_word_tokens(text[last:]))
    return tokens


class BM25Retriever:
    """BM25 lexical retriever backed by SQLite passage texts."""

    def __init__(self, db: SQLiteDB):
        self.db = db
        self._index: BM25Okapi | None = None
        self._built = False
        self._passage_ids: list[str] = []
        self._document_ids: list[str] = []
        self._owner_ids: list[str | None] = []

    @property
    def is_built(self) -> bool:
        return self._built

    def build_index(self) -> int:
        """Build BM25 index from all passages in SQLite.

        Returns:
            Number of passages indexed.
        """
        rows = self.db.get_passage_index_rows()
        self._passage_ids = [r["id"] for r in rows]
        self._document_ids = [r["document_id"] for r in rows]
        self._owner_ids = [r["owner_id"] for r in rows]
        self._built = True

        if not rows:
            logger.warning("No passages found — BM25 index is empty")
            self._index = None
            return 0

        tokenized = [_tokenize(r["content"]) for r in rows]
        self._index = BM25Okapi(tokenized)
        logger.info("BM25 index built with %d passages", len(rows))
        return len(rows)

    def save_index(self, path: Path) -> None:
        """Serialize the BM25 index and its id columns to a pickle file."""
        if not self.is_built:
            raise RuntimeError("BM25 index not built — nothing to save")
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = (self._index, self._passage_ids, self._document_ids, self._owner_ids)
        with open(path, "wb") as f:
            pickle.dump(payload, f, protocol=pickle.HIGHEST_PROTOCOL)
        logger.info("BM25 index saved to %s (%d passages)", path, len(self._passage_ids))

    def load_index(self, path: Path) -> int:
        """Load a pre-built BM25 index from a pickle file.

        Returns:
            Number of passages in the loaded index.
        """
        with open(path, "rb") as f:
            (
                self._index,
                self._passage_ids,
                self._document_ids,
                self._owner_ids,
            ) = pickle.load(f)
        self._built = True
        logger.info("Loaded pre-built BM25 index (%d passages) from %s", len(self._passage_ids), path)
        return len(self._passage_ids)

    def _visible(self, i: int, owner_id: str | None, scope: set[str] | None) -> bool:
        if scope is not None and self._document_ids[i] not in scope:
            return False
        if owner_id is not None:
            owner = self._owner_ids[i]
            if owner and owner != owner_id:
                return False
        return True

    def search(
        self,
        query: str,
        top_k: int = 50,
        owner_id: str | None = None,
        scope_ids: list[str] | None = None,
    ) -> list[Candidate]:
        """Search the BM25 index.

        Args:
            query: Raw query string.
            top_k: Maximum results to return.
            owner_id: Keep only passages whose document is owned by this
                      id or has no owner.
            scope_ids: Keep only passages from these document ids.

        Returns:
            Candidates sorted by descending BM25 score (zero scores dropped).
        """
        if not self.is_built:
            raise RuntimeError("BM25 index not built — call build_index() first")
        if self._index is None:
            return []

        tokenized_query = _tokenize(query)
        if not tokenized_query:
            return []
        scores = self._index.get_scores(tokenized_query)
        scope = set(scope_ids) if scope_ids else None

        scored = [
            Candidate(id=self._passage_ids[i], score=float(scores[i]))
            for i in range(len(scores))
            if scores[i] > 0
            and math.isfinite(scores[i])
            and self._visible(i, owner_id, scope)
        ]
        scored.sort(key=lambda c: c.score, reverse=True)
        return scored[:top_k]
