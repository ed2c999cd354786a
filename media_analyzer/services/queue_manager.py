# Copyright (c) 2025 Trae AI. All rights reserved.

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple
from media_analyzer.core.models import LibraryItem, MediaKind, QueuedMedia, SegmentType
from .context import AnalysisContext

# Tracks shorter than this are fingerprinted whole.
MIN_PERCENT_ANALYSIS_SECONDS = 5 * 60


class QueueManager:
    """
    Builds the per-group work queue and filters groups before analysis.
    """

    def __init__(self, context: AnalysisContext, force_items: Optional[Iterable[str]] = None):
        self.context = context
        self.config = context.config
        self.force_items: Set[str] = set(force_items or [])
        self.logger = logging.getLogger(__name__)

    def build_queue(self, segment_type: SegmentType) -> Dict[str, List[QueuedMedia]]:
        """
        Groups eligible library items: one group per season, one per movie.
        """
        selected = self.config.selected_library_names()
        skipped_shows = self.config.skipped_show_seasons()
        skipped_movies = self.config.skipped_movie_names()

        queue: Dict[str, List[Tuple[int, QueuedMedia]]] = {}
        for item in self.context.library.list_items():
            if selected and item.library_name not in selected:
                continue
            if not item.path:
                self.logger.warning(f"Not queuing {item.name} ({item.item_id}): no path")
                continue

            if item.kind == MediaKind.EPISODE:
                if self._is_skipped_episode(item, skipped_shows):
                    continue
                key = item.season_id or f"{item.series_name}/{item.season_number}"
            else:
                if item.name in skipped_movies:
                    self.logger.debug(f"Skipping movie {item.name}: listed in skipped_movies")
                    continue
                key = item.item_id

            queue.setdefault(key, []).append((item.index_number or 0, self._to_queued(item)))

        # Stable sort keeps library order for equal or missing episode numbers
        return {key: [q for _, q in sorted(entries, key=lambda e: e[0])] for key, entries in queue.items()}

    def _is_skipped_episode(self, item: LibraryItem, skipped_shows: Dict[str, Set[int]]) -> bool:
        if item.season_number == 0 and not self.config.analyze_season_zero:
            return True
        series = item.series_name or ""
        if series in skipped_shows:
            seasons = skipped_shows[series]
            if not seasons or item.season_number in seasons:
                self.logger.debug(f"Skipping {series} season {item.season_number}: listed in skipped_tv_shows")
                return True
        return False

    def _to_queued(self, item: LibraryItem) -> QueuedMedia:
        duration = item.duration
        is_movie = item.kind == MediaKind.MOVIE

        # Limit analysis to the first X% of the track and at most Y minutes
        fingerprint_duration = duration
        if fingerprint_duration >= MIN_PERCENT_ANALYSIS_SECONDS:
            fingerprint_duration *= self.config.analysis_percent / 100
        fingerprint_duration = min(fingerprint_duration, 60 * self.config.analysis_length_limit)

        credits_start = max(0.0, duration - self.config.max_credits_duration(is_movie))

        return QueuedMedia(
            item_id=item.item_id,
            series_name=item.series_name or "",
            season_number=item.season_number,
            name=item.name,
            kind=item.kind,
            path=item.path,
            duration=duration,
            intro_fingerprint_end=fingerprint_duration,
            credits_fingerprint_start=credits_start,
            skip_prevent_analyzing=item.item_id in self.force_items,
        )

    def verify_group(self, group: Sequence[QueuedMedia], segment_type: SegmentType) -> List[QueuedMedia]:
        """
        Drops items deleted from the library since the queue was built.
        """
        verified = []
        for item in group:
            try:
                if self.context.library.item_exists(item.item_id):
                    verified.append(item)
                else:
                    self.logger.debug(f"Skipping {segment_type.value} analysis of {item.name}: no longer in library")
            except Exception as e:
                self.logger.warning(f"Skipping {segment_type.value} analysis of {item.name} ({item.item_id}): {e}")
        return verified

    def filter_by_blacklist(self, items: Sequence[QueuedMedia], segment_type: SegmentType) -> List[QueuedMedia]:
        if not self.config.enable_blacklist:
            return list(items)

        blacklisted = self.context.metadata_repo.get_blacklisted_ids([i.item_id for i in items], segment_type)
        return [i for i in items if i.item_id not in blacklisted or i.skip_prevent_analyzing]

    def filter_by_existing_segments(
        self, items: Sequence[QueuedMedia], segment_type: SegmentType
    ) -> Tuple[List[QueuedMedia], bool]:
        """
        Removes items that already have a segment. The flag is False when nothing is left to do.
        """
        analyzed = self.context.segment_repo.get_item_ids_with_segments([i.item_id for i in items], segment_type)
        remaining = [i for i in items if i.item_id not in analyzed]
        return remaining, len(remaining) > 0
