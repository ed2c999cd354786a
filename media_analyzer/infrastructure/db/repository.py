# Copyright (c) 2025 Trae AI. All rights reserved.

from typing import Dict, Iterable, List, Optional, Set
from media_analyzer.core.models import (
    AnalyzerType,
    MediaSegment,
    QueuedMedia,
    SegmentMetadata,
    SegmentType,
)
from .database import Database


def _analyzer_type(value: Optional[str]) -> Optional[AnalyzerType]:
    return AnalyzerType(value) if value else None


class SegmentRepository:
    """
    Stores detected segments, at most one per item and segment type.
    """

    def __init__(self, db: Database):
        self.db = db

    def save_segments(self, segments: Iterable[MediaSegment]) -> int:
        """
        Replaces the stored segment of each (item, type) and records the analyzer note.
        Also lifts any blacklist entry for that pair.
        """
        count = 0
        with self.db.session() as conn:
            for segment in segments:
                conn.execute(
                    "DELETE FROM media_segments WHERE item_id = ? AND type = ?",
                    (segment.item_id, segment.type.value),
                )
                conn.execute(
                    """
                    INSERT INTO media_segments
                    (segment_id, item_id, type, analyzer_type, start_seconds, end_seconds, note, name, series_name)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        segment.segment_id,
                        segment.item_id,
                        segment.type.value,
                        segment.analyzer_type.value,
                        segment.start,
                        segment.end,
                        segment.note,
                        segment.name,
                        segment.series_name,
                    ),
                )
                conn.execute(
                    "DELETE FROM segment_metadata WHERE item_id = ? AND type = ?",
                    (segment.item_id, segment.type.value),
                )
                conn.execute(
                    """
                    INSERT INTO segment_metadata
                    (item_id, segment_id, type, analyzer_type, analyzer_note, name, series_name, prevent_analyzing)
                    VALUES (?, ?, ?, ?, ?, ?, ?, 0)
                    """,
                    (
                        segment.item_id,
                        segment.segment_id,
                        segment.type.value,
                        segment.analyzer_type.value,
                        segment.note,
                        segment.name,
                        segment.series_name,
                    ),
                )
                count += 1
        return count

    def get_item_ids_with_segments(self, item_ids: List[str], segment_type: SegmentType) -> Set[str]:
        if not item_ids:
            return set()
        placeholders = ",".join("?" for _ in item_ids)
        with self.db.session() as conn:
            cursor = conn.execute(
                f"SELECT DISTINCT item_id FROM media_segments WHERE type = ? AND item_id IN ({placeholders})",
                (segment_type.value, *item_ids),
            )
            return {row["item_id"] for row in cursor.fetchall()}

    def get_by_item(self, item_id: str) -> List[MediaSegment]:
        with self.db.session() as conn:
            cursor = conn.execute(
                "SELECT * FROM media_segments WHERE item_id = ? ORDER BY start_seconds", (item_id,)
            )
            return [self._to_segment(row) for row in cursor.fetchall()]

    def get_all(self, segment_type: Optional[SegmentType] = None) -> List[MediaSegment]:
        query = "SELECT * FROM media_segments"
        params = []
        if segment_type:
            query += " WHERE type = ?"
            params.append(segment_type.value)
        query += " ORDER BY series_name, name"

        with self.db.session() as conn:
            cursor = conn.execute(query, tuple(params))
            return [self._to_segment(row) for row in cursor.fetchall()]

    def count(self, item_id: str, segment_type: SegmentType) -> int:
        with self.db.session() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM media_segments WHERE item_id = ? AND type = ?",
                (item_id, segment_type.value),
            ).fetchone()[0]

    @staticmethod
    def _to_segment(row) -> MediaSegment:
        return MediaSegment(
            item_id=row["item_id"],
            segment_id=row["segment_id"],
            type=SegmentType(row["type"]),
            analyzer_type=AnalyzerType(row["analyzer_type"]),
            start=row["start_seconds"],
            end=row["end_seconds"],
            note=row["note"] or "",
            name=row["name"] or "",
            series_name=row["series_name"] or "",
        )


class MetadataRepository:
    """
    Analyzer bookkeeping. Rows with prevent_analyzing form the blacklist.
    """

    def __init__(self, db: Database):
        self.db = db

    def blacklist(self, items: Iterable[QueuedMedia], segment_type: SegmentType, note: str = "") -> int:
        count = 0
        with self.db.session() as conn:
            for item in items:
                conn.execute(
                    "DELETE FROM segment_metadata WHERE item_id = ? AND type = ?",
                    (item.item_id, segment_type.value),
                )
                conn.execute(
                    """
                    INSERT INTO segment_metadata
                    (item_id, segment_id, type, analyzer_type, analyzer_note, name, series_name, prevent_analyzing)
                    VALUES (?, NULL, ?, NULL, ?, ?, ?, 1)
                    """,
                    (item.item_id, segment_type.value, note, item.name, item.series_name),
                )
                count += 1
        return count

    def get_blacklisted_ids(self, item_ids: List[str], segment_type: SegmentType) -> Set[str]:
        if not item_ids:
            return set()
        placeholders = ",".join("?" for _ in item_ids)
        with self.db.session() as conn:
            cursor = conn.execute(
                f"""
                SELECT DISTINCT item_id FROM segment_metadata
                WHERE prevent_analyzing = 1 AND type = ? AND item_id IN ({placeholders})
                """,
                (segment_type.value, *item_ids),
            )
            return {row["item_id"] for row in cursor.fetchall()}

    def get_blacklist(self) -> List[SegmentMetadata]:
        with self.db.session() as conn:
            cursor = conn.execute(
                "SELECT * FROM segment_metadata WHERE prevent_analyzing = 1 ORDER BY series_name, name"
            )
            return [self._to_metadata(row) for row in cursor.fetchall()]

    def get_by_item(self, item_id: str) -> List[SegmentMetadata]:
        with self.db.session() as conn:
            cursor = conn.execute("SELECT * FROM segment_metadata WHERE item_id = ?", (item_id,))
            return [self._to_metadata(row) for row in cursor.fetchall()]

    def clear_blacklist(self) -> int:
        with self.db.session() as conn:
            cursor = conn.execute("DELETE FROM segment_metadata WHERE prevent_analyzing = 1")
            return cursor.rowcount

    @staticmethod
    def _to_metadata(row) -> SegmentMetadata:
        return SegmentMetadata(
            item_id=row["item_id"],
            segment_id=row["segment_id"],
            type=SegmentType(row["type"]),
            analyzer_type=_analyzer_type(row["analyzer_type"]),
            analyzer_note=row["analyzer_note"] or "",
            name=row["name"] or "",
            series_name=row["series_name"] or "",
            prevent_analyzing=bool(row["prevent_analyzing"]),
        )


class LogRepository:
    def __init__(self, db: Database):
        self.db = db

    def add(self, action_type: str, target: str, details: str = None):
        with self.db.session() as conn:
            conn.execute(
                "INSERT INTO operation_logs (action_type, target, details) VALUES (?, ?, ?)",
                (action_type, target, details)
            )

    def get_recent(self, limit: int = 100) -> List[Dict]:
        with self.db.session() as conn:
            cursor = conn.execute(
                "SELECT * FROM operation_logs ORDER BY timestamp DESC, id DESC LIMIT ?",
                (limit,)
            )
            return [dict(row) for row in cursor.fetchall()]
