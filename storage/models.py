"""SQLite table definitions."""

CREATE_BLOBS_TABLE = """
CREATE TABLE IF NOT EXISTS blobs (
    key TEXT PRIMARY KEY,
    content BLOB NOT NULL,
    content_type TEXT NOT NULL DEFAULT 'application/octet-stream',
    updated_at TEXT NOT NULL
);
"""
