# Copyright (c) 2025 Trae AI. All rights reserved.

import logging
import re
import threading
from typing import Callable, Dict, List, Optional, Sequence

from .analyzer import AnalysisStatus, AnalyzerResult, is_cancelled
from .config import Config
from .models import AnalyzerType, Chapter, MediaSegment, QueuedMedia, SegmentType
from .timerange import TimeRange


class ChapterAnalyzer:
    """
    Finds intros and credits from chapter titles.
    """

    def __init__(self, config: Config, chapter_source: Callable[[QueuedMedia], List[Chapter]]):
        self.config = config
        self.chapter_source = chapter_source
        self.logger = logging.getLogger(__name__)

    def _pattern(self, segment_type: SegmentType) -> Optional[re.Pattern]:
        expression = (
            self.config.chapter_analyzer_intro_pattern
            if segment_type == SegmentType.INTRO
            else self.config.chapter_analyzer_end_credits_pattern
        )
        if not expression or not expression.strip():
            return None
        try:
            return re.compile(expression)
        except re.error as e:
            self.logger.warning(f"Invalid chapter pattern for {segment_type.value}: {expression!r} ({e})")
            return None

    def analyze(
        self,
        items: Sequence[QueuedMedia],
        segment_type: SegmentType,
        cancel_event: Optional[threading.Event] = None,
    ) -> AnalyzerResult:
        pattern = self._pattern(segment_type)
        if pattern is None:
            return AnalyzerResult(not_analyzed=list(items))

        segments: Dict[str, MediaSegment] = {}
        for item in items:
            if is_cancelled(cancel_event):
                return AnalyzerResult.from_segments(items, segments, AnalysisStatus.CANCELLED)

            chapter_range = self.find_matching_chapter(item, self.chapter_source(item), segment_type, pattern)
            if chapter_range is None:
                continue

            segments[item.item_id] = MediaSegment(
                item_id=item.item_id,
                type=segment_type,
                analyzer_type=AnalyzerType.CHAPTER,
                start=chapter_range.start,
                end=chapter_range.end,
                note=f"Matched chapter pattern {pattern.pattern}",
                name=item.name,
                series_name=item.series_name,
            )

        return AnalyzerResult.from_segments(items, segments)

    def find_matching_chapter(
        self,
        item: QueuedMedia,
        chapters: List[Chapter],
        segment_type: SegmentType,
        pattern: re.Pattern,
    ) -> Optional[TimeRange]:
        if not chapters:
            return None

        reversed_search = segment_type != SegmentType.INTRO
        if reversed_search:
            min_duration = self.config.minimum_credits_duration
            max_duration = self.config.max_credits_duration(item.is_movie)
        else:
            min_duration = self.config.minimum_intro_duration
            max_duration = self.config.maximum_intro_duration

        indexes = range(len(chapters) - 1, -1, -1) if reversed_search else range(len(chapters))
        for i in indexes:
            chapter = chapters[i]
            if not chapter.name or not chapter.name.strip():
                continue

            # The last chapter runs until the end of the file
            next_start = chapters[i + 1].start if i + 1 < len(chapters) else item.duration
            current = TimeRange(start=chapter.start, end=next_start)

            if current.duration < min_duration or current.duration > max_duration:
                self.logger.debug(
                    f"{item.name}: chapter '{chapter.name}' ({current.start:.1f}-{current.end:.1f}) has an invalid duration"
                )
                continue

            if not pattern.search(chapter.name):
                continue

            self.logger.debug(f"{item.name}: found {segment_type.value} chapter '{chapter.name}'")
            return current

        return None
