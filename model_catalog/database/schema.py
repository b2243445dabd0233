"""
Database schema definitions.
"""
import sqlite3
import logging

CURRENT_SCHEMA_VERSION = 1

def init_schema(conn: sqlite3.Connection):
    """
    Applies the core schema to the database.
    Idempotent: safe to run on every startup.
    """
    with conn:
        # 1. Version Tracking (For future migrations)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            );
        """)

        cur = conn.cursor()
        cur.execute("SELECT version FROM schema_version")
        if not cur.fetchone():
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (CURRENT_SCHEMA_VERSION,))

        # 2. Lookup Tables
        conn.execute("""
        CREATE TABLE IF NOT EXISTS authors (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            name        TEXT NOT NULL UNIQUE,
            url         TEXT NOT NULL DEFAULT '',
            created_at  TEXT NOT NULL
        );
        """)

        conn.execute("""
        CREATE TABLE IF NOT EXISTS tags (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            name        TEXT NOT NULL UNIQUE,
            color       TEXT NOT NULL DEFAULT '#6b7280'
        );
        """)

        # 3. Category Tree (rebuilt on every scan)
        conn.execute("""
        CREATE TABLE IF NOT EXISTS categories (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            name        TEXT NOT NULL,
            path        TEXT NOT NULL UNIQUE,       -- Root-relative folder path
            parent_id   INTEGER,
            depth       INTEGER NOT NULL,
            FOREIGN KEY(parent_id) REFERENCES categories(id) ON DELETE CASCADE
        );
        """)

        # 4. Models (one row per model leaf folder)
        conn.execute("""
        CREATE TABLE IF NOT EXISTS models (
            id              INTEGER PRIMARY KEY AUTOINCREMENT,
            name            TEXT NOT NULL,
            path            TEXT NOT NULL UNIQUE,   -- Join key with the filesystem
            author_id       INTEGER,
            category_id     INTEGER,
            notes           TEXT NOT NULL DEFAULT '',
            thumbnail_path  TEXT NOT NULL DEFAULT '',
            hidden          INTEGER NOT NULL DEFAULT 0,
            created_at      TEXT NOT NULL,
            updated_at      TEXT NOT NULL,
            scanned_at      TEXT NOT NULL,          -- Watermark for stale cleanup
            FOREIGN KEY(author_id) REFERENCES authors(id) ON DELETE SET NULL,
            FOREIGN KEY(category_id) REFERENCES categories(id) ON DELETE SET NULL
        );
        """)

        conn.execute("""
        CREATE TABLE IF NOT EXISTS model_files (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            model_id    INTEGER NOT NULL,
            file_path   TEXT NOT NULL,
            file_name   TEXT NOT NULL,
            file_ext    TEXT NOT NULL,
            file_size   INTEGER NOT NULL DEFAULT 0,
            FOREIGN KEY(model_id) REFERENCES models(id) ON DELETE CASCADE
        );
        """)

        conn.execute("""
        CREATE TABLE IF NOT EXISTS model_tags (
            model_id    INTEGER NOT NULL,
            tag_id      INTEGER NOT NULL,
            PRIMARY KEY (model_id, tag_id),
            FOREIGN KEY(model_id) REFERENCES models(id) ON DELETE CASCADE,
            FOREIGN KEY(tag_id) REFERENCES tags(id) ON DELETE CASCADE
        );
        """)

        # 5. Key-Value Settings
        conn.execute("""
        CREATE TABLE IF NOT EXISTS settings (
            key         TEXT PRIMARY KEY,
            value       TEXT NOT NULL,
            updated_at  TEXT NOT NULL
        );
        """)

        # 6. Indices for Performance
        conn.execute("CREATE INDEX IF NOT EXISTS idx_models_name ON models(name);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_models_scanned_at ON models(scanned_at);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_models_category ON models(category_id);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_categories_parent ON categories(parent_id);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_model_files_model ON model_files(model_id);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_model_files_path ON model_files(file_path);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_model_tags_tag ON model_tags(tag_id);")

    logging.debug("Database schema initialized.")
