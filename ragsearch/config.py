"""Central configuration for ragsearch."""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Project root is the repository directory holding ragsearch/
PROJECT_ROOT = Path(__file__).parent.parent


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Config:
    """Application configuration loaded from environment variables."""

    # Models
    embedding_model: str = field(
        default_factory=lambda: os.getenv("EMBEDDING_MODEL", "BAAI/bge-m3")
    )
    embedding_query_prefix: str = field(
        default_factory=lambda: os.getenv("EMBEDDING_QUERY_PREFIX", "")
    )

    # Retrieval knobs
    top_k: int = field(default_factory=lambda: int(os.getenv("RAG_TOP_K", "5")))
    fusion_strategy: str = field(
        default_factory=lambda: os.getenv("RAG_FUSION_STRATEGY", "rrf")
    )
    rrf_k: int = field(default_factory=lambda: int(os.getenv("RAG_RRF_K", "60")))
    threshold_offset: float = field(
        default_factory=lambda: float(os.getenv("RAG_THRESHOLD_OFFSET", "0.0"))
    )
    log_retrievals: bool = field(
        default_factory=lambda: _env_bool("RAG_LOG_RETRIEVALS", True)
    )
    max_workers: int = field(
        default_factory=lambda: int(os.getenv("RAG_MAX_WORKERS", "4"))
    )

    # Storage paths
    sqlite_db_path: Path = field(default=None)
    chroma_db_path: Path = field(default=None)
    bm25_index_path: Path = field(default=None)

    # Data
    data_dir: Path = field(default=None)

    def __post_init__(self):
        if self.data_dir is None:
            self.data_dir = Path(os.getenv("DATA_DIR", str(PROJECT_ROOT / "data")))
        if self.sqlite_db_path is None:
            self.sqlite_db_path = Path(
                os.getenv("SQLITE_DB_PATH", str(self.data_dir / "ragsearch.db"))
            )
        if self.chroma_db_path is None:
            self.chroma_db_path = Path(
                os.getenv("CHROMA_DB_PATH", str(self.data_dir / "chroma_db"))
            )
        if self.bm25_index_path is None:
            self.bm25_index_path = Path(
                os.getenv("BM25_INDEX_PATH", str(self.data_dir / "bm25_index.pkl"))
            )

    def ensure_dirs(self):
        """Create data directories if they don't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.chroma_db_path.mkdir(parents=True, exist_ok=True)

    def retrieval_config(self):
        """Translate env-level knobs into a RetrievalConfig."""
        from ragsearch.retrieval.pipeline import RetrievalConfig

        return RetrievalConfig(
            top_k=self.top_k,
            rrf_k=self.rrf_k,
            fusion_strategy=self.fusion_strategy,
            workspace_threshold_offset=self.threshold_offset,
            max_workers=self.max_workers,
            log_retrievals=self.log_retrievals,
        )


def get_config() -> Config:
    """Get a Config instance. Call this instead of constructing directly."""
    config = Config()
    config.ensure_dirs()
    return config
