# Copyright (c) 2025 Trae AI. All rights reserved.

import logging
import threading
from typing import Dict, Optional, Sequence

from .analyzer import AnalysisStatus, AnalyzerResult, is_cancelled
from .config import Config
from .ffmpeg import FFmpegWrapper
from .models import AnalyzerType, MediaSegment, QueuedMedia, SegmentType
from .timerange import TimeRange

# Length of each probe and the bisection stop condition, in seconds.
PROBE_SECONDS = 2.0
MAXIMUM_ERROR = 0.5


class BlackFrameAnalyzer:
    """
    Finds where ending credits begin by looking for black frames near the end of a file.
    """

    def __init__(self, config: Config, ffmpeg: FFmpegWrapper):
        self.config = config
        self.ffmpeg = ffmpeg
        self.logger = logging.getLogger(__name__)

    def analyze(
        self,
        items: Sequence[QueuedMedia],
        segment_type: SegmentType,
        cancel_event: Optional[threading.Event] = None,
    ) -> AnalyzerResult:
        if segment_type != SegmentType.OUTRO:
            return AnalyzerResult(not_analyzed=list(items))

        segments: Dict[str, MediaSegment] = {}
        for item in items:
            if is_cancelled(cancel_event):
                return AnalyzerResult.from_segments(items, segments, AnalysisStatus.CANCELLED)

            credits = self.analyze_item(item)
            if credits is None:
                continue

            segments[item.item_id] = MediaSegment(
                item_id=item.item_id,
                type=segment_type,
                analyzer_type=AnalyzerType.BLACK_FRAME,
                start=credits.start,
                end=credits.end,
                note=f"Black frames >= {self.config.black_frame_minimum_percentage}%",
                name=item.name,
                series_name=item.series_name,
            )

        return AnalyzerResult.from_segments(items, segments)

    def analyze_item(self, item: QueuedMedia) -> Optional[TimeRange]:
        """
        Bisects the credits window for the earliest probe that contains black frames.

        Distances are measured backwards from the end of the file.
        """
        if item.duration <= 0:
            return None

        minimum = self.config.black_frame_minimum_percentage
        max_credits = self.config.max_credits_duration(item.is_movie)

        upper = min(max_credits, item.duration)
        lower = min(self.config.minimum_credits_duration, upper)
        first_frame_time = 0.0

        while upper - lower > MAXIMUM_ERROR:
            midpoint = (upper + lower) / 2
            scan_start = item.duration - midpoint
            probe = TimeRange(start=scan_start, end=min(scan_start + PROBE_SECONDS, item.duration))
            frames = self.ffmpeg.detect_black_frames(item, probe, minimum)

            if frames:
                # Black frames found, keep looking closer to the start of the window
                lower = midpoint
                first_frame_time = scan_start + frames[0].time
            else:
                upper = midpoint

        if first_frame_time <= 0:
            return None

        credits = TimeRange(start=first_frame_time, end=item.duration)
        if credits.duration < self.config.minimum_credits_duration or credits.duration > max_credits:
            self.logger.debug(f"{item.name}: black frame credits of {credits.duration:.1f}s rejected")
            return None
        return credits
