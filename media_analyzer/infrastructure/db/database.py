# Copyright (c) 2025 Trae AI. All rights reserved.

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path


class Database:
    def __init__(self, db_path: Path):
        self.db_path = db_path
        # Analysis workers share the store, statements run one at a time
        self.lock = threading.RLock()
        self._init_db()

    def _init_db(self):
        # Allow using :memory: for testing, which is not a path
        if str(self.db_path) != ":memory:" and not Path(self.db_path).parent.exists():
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        with self.lock, self.get_connection() as conn:
            # 1. media_segments table
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS media_segments (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    segment_id TEXT UNIQUE,
                    item_id TEXT NOT NULL,
                    type TEXT NOT NULL,
                    analyzer_type TEXT,
                    start_seconds REAL NOT NULL,
                    end_seconds REAL NOT NULL,
                    note TEXT,
                    name TEXT,
                    series_name TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS ix_media_segments_item_id ON media_segments (item_id)")

            # 2. segment_metadata table (analyzer notes and blacklist)
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS segment_metadata (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    item_id TEXT NOT NULL,
                    segment_id TEXT,
                    type TEXT NOT NULL,
                    analyzer_type TEXT,
                    analyzer_note TEXT,
                    name TEXT,
                    series_name TEXT,
                    prevent_analyzing INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS ix_segment_metadata_item_id ON segment_metadata (item_id)")

            # 3. operation_logs table
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS operation_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    action_type TEXT,
                    target TEXT,
                    details TEXT
                )
                """
            )
            conn.commit()

    def get_connection(self):
        # :memory: databases vanish with their connection, so keep a single one around
        if str(self.db_path) == ":memory:":
            if not hasattr(self, '_memory_conn'):
                self._memory_conn = sqlite3.connect(":memory:", check_same_thread=False)
                self._memory_conn.row_factory = sqlite3.Row
            return self._memory_conn

        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def session(self):
        """
        Yields a connection while holding the store lock; commits on success.
        """
        with self.lock:
            conn = self.get_connection()
            try:
                with conn:
                    yield conn
            finally:
                if str(self.db_path) != ":memory:":
                    conn.close()
