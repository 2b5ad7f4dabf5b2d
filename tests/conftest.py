"""Shared pytest fixtures for ragsearch tests."""

import pytest

from ragsearch.storage.sqlite_db import SQLiteDB


@pytest.fixture
def sample_documents() -> list[dict]:
    """Documents covering shared, owned and CJK content."""
    return [
        {"id": "doc-auth", "title": "Authentication Guide", "owner_id": None, "workspace_id": "ws-1"},
        {"id": "doc-billing", "title": "Billing Handbook", "owner_id": "alice", "workspace_id": "ws-1"},
        {"id": "doc-ops", "title": "Operations Runbook", "owner_id": "bob", "workspace_id": "ws-2"},
        {"id": "doc-cjk", "title": "权限设计", "owner_id": None, "workspace_id": "ws-1"},
    ]


@pytest.fixture
def sample_passages() -> list[dict]:
    return [
        {
            "id": "p-jwt",
            "document_id": "doc-auth",
            "content": "JWT tokens are verified on every request before the session is refreshed.",
            "chunk_index": 0,
        },
        {
            "id": "p-login",
            "document_id": "doc-auth",
            "content": "Login attempts are rate limited per account to block brute force attacks.",
            "chunk_index": 1,
        },
        {
            "id": "p-invoice",
            "document_id": "doc-billing",
            "content": "Invoices are generated monthly and emailed to the billing contact.",
            "chunk_index": 0,
        },
        {
            "id": "p-deploy",
            "document_id": "doc-ops",
            "content": "Deployments roll out gradually with automatic rollback on failed health checks.",
            "chunk_index": 0,
        },
        {
            "id": "p-cjk",
            "document_id": "doc-cjk",
            "content": "用户权限管理支持角色和访问控制",
            "chunk_index": 0,
        },
    ]


@pytest.fixture
def tmp_db(tmp_path) -> SQLiteDB:
    """A temporary SQLite database for testing."""
    db = SQLiteDB(tmp_path / "test.db")
    db.create_schema()
    return db


@pytest.fixture
def seeded_db(tmp_db, sample_documents, sample_passages) -> SQLiteDB:
    """SQLiteDB with documents + passages inserted."""
    tmp_db.insert_documents(sample_documents)
    tmp_db.insert_passages(sample_passages)
    return tmp_db
