# Copyright (c) 2025 Trae AI. All rights reserved.

import logging
import threading
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .analyzer import AnalysisStatus, AnalyzerResult, is_cancelled
from .config import Config
from .ffmpeg import SAMPLES_TO_SECONDS, FFmpegWrapper, FingerprintError, create_inverted_index
from .models import AnalyzerType, MediaSegment, QueuedMedia, SegmentType
from .timerange import TimeRange, find_contiguous

# Intros starting this close to the beginning of an episode are snapped to 0.
INTRO_SNAP_SECONDS = 5.0
# Seconds before the intro end searched for silence.
SILENCE_WINDOW_SECONDS = 15.0


def count_differing_bits(lhs: np.ndarray, rhs: np.ndarray) -> np.ndarray:
    """
    Element-wise popcount(lhs ^ rhs) for two equally sized uint32 arrays.
    """
    diff = np.bitwise_xor(lhs.astype(np.uint32), rhs.astype(np.uint32))
    bits = np.unpackbits(np.ascontiguousarray(diff).view(np.uint8))
    return bits.reshape(-1, 32).sum(axis=1)


class ChromaprintAnalyzer:
    """
    Finds audio shared by the episodes of a season (theme songs, credits music).

    Every episode is fingerprinted, then episodes are compared pairwise. Candidate
    alignments come from an inverted index of fingerprint points and each alignment
    is scored point by point.
    """

    def __init__(self, config: Config, ffmpeg: FFmpegWrapper):
        self.config = config
        self.ffmpeg = ffmpeg
        self.logger = logging.getLogger(__name__)

    def duration_bounds(self, segment_type: SegmentType) -> Tuple[float, float]:
        if segment_type == SegmentType.INTRO:
            return self.config.minimum_intro_duration, self.config.maximum_intro_duration
        return self.config.minimum_credits_duration, self.config.maximum_episode_credits_duration

    def is_valid_duration(self, duration: float, segment_type: SegmentType) -> bool:
        minimum, maximum = self.duration_bounds(segment_type)
        return minimum <= duration <= maximum

    def analyze(
        self,
        items: Sequence[QueuedMedia],
        segment_type: SegmentType,
        cancel_event: Optional[threading.Event] = None,
    ) -> AnalyzerResult:
        episodes = [i for i in items if i.is_episode]
        if len(episodes) < 2:
            return AnalyzerResult(not_analyzed=list(items))

        # 1. Fingerprint every episode
        fingerprints: Dict[str, np.ndarray] = {}
        failures = 0
        for episode in episodes:
            if is_cancelled(cancel_event):
                return AnalyzerResult(not_analyzed=list(items), status=AnalysisStatus.CANCELLED)
            try:
                fingerprints[episode.item_id] = self.ffmpeg.fingerprint(episode, segment_type)
            except FingerprintError as e:
                self.logger.debug(f"Caught fingerprint error for {episode.name}: {e}")
                fingerprints[episode.item_id] = np.array([], dtype=np.uint32)
                failures += 1

        if failures == len(episodes):
            return AnalyzerResult(not_analyzed=list(items), status=AnalysisStatus.FINGERPRINT_FAILED)

        # 2. Pop the first episode and compare it with the rest until one matches
        found: Dict[str, TimeRange] = {}
        queue: List[QueuedMedia] = list(episodes)
        cancelled = False
        while queue:
            if is_cancelled(cancel_event):
                cancelled = True
                break

            current = queue.pop(0)
            for remaining in queue:
                match = self.compare_episodes(
                    fingerprints[current.item_id], fingerprints[remaining.item_id], segment_type
                )
                if match is None:
                    continue

                current_range, remaining_range = match
                self._keep_longest(found, current.item_id, current_range)
                self._keep_longest(found, remaining.item_id, remaining_range)
                break

        # 3. Convert fingerprint offsets into file times
        segments: Dict[str, MediaSegment] = {}
        for episode in episodes:
            found_range = found.get(episode.item_id)
            if found_range is None:
                continue

            if segment_type == SegmentType.INTRO:
                if not cancelled:
                    found_range = self.adjust_intro_end(episode, found_range)
            else:
                offset = self.ffmpeg.fingerprint_window(episode, segment_type).start
                found_range = TimeRange(start=found_range.start + offset, end=found_range.end + offset)

            segments[episode.item_id] = MediaSegment(
                item_id=episode.item_id,
                type=segment_type,
                analyzer_type=AnalyzerType.CHROMAPRINT,
                start=found_range.start,
                end=found_range.end,
                note="Matched audio fingerprint",
                name=episode.name,
                series_name=episode.series_name,
            )

        status = AnalysisStatus.CANCELLED if cancelled else AnalysisStatus.COMPLETED
        return AnalyzerResult.from_segments(items, segments, status)

    @staticmethod
    def _keep_longest(found: Dict[str, TimeRange], item_id: str, candidate: TimeRange):
        saved = found.get(item_id)
        if saved is None or candidate.duration > saved.duration:
            found[item_id] = candidate

    def compare_episodes(
        self, lhs: np.ndarray, rhs: np.ndarray, segment_type: SegmentType
    ) -> Optional[Tuple[TimeRange, TimeRange]]:
        if len(lhs) == 0 or len(rhs) == 0:
            return None

        lhs_ranges, rhs_ranges = self.search_inverted_index(lhs, rhs, segment_type)
        if not lhs_ranges:
            return None

        longest = max(range(len(lhs_ranges)), key=lambda i: lhs_ranges[i].duration)
        lhs_range = lhs_ranges[longest]
        rhs_range = rhs_ranges[longest]

        if segment_type == SegmentType.INTRO:
            if lhs_range.start < INTRO_SNAP_SECONDS:
                lhs_range.start = 0.0
            if rhs_range.start < INTRO_SNAP_SECONDS:
                rhs_range.start = 0.0

        return lhs_range, rhs_range

    def search_inverted_index(
        self, lhs: np.ndarray, rhs: np.ndarray, segment_type: SegmentType
    ) -> Tuple[List[TimeRange], List[TimeRange]]:
        """
        Collects the alignments (index shifts) at which points of both episodes coincide.
        """
        lhs_index = create_inverted_index(lhs)
        rhs_index = create_inverted_index(rhs)
        index_shift = self.config.inverted_index_shift

        shifts = set()
        for point, lhs_first in lhs_index.items():
            for i in range(-index_shift, index_shift + 1):
                rhs_first = rhs_index.get((point + i) & 0xFFFFFFFF)
                if rhs_first is not None:
                    shifts.add(rhs_first - lhs_first)

        lhs_ranges: List[TimeRange] = []
        rhs_ranges: List[TimeRange] = []
        for shift in sorted(shifts):
            match = self.find_contiguous_match(lhs, rhs, shift, segment_type)
            if match is None:
                continue
            lhs_ranges.append(match[0])
            rhs_ranges.append(match[1])

        return lhs_ranges, rhs_ranges

    def find_contiguous_match(
        self, lhs: np.ndarray, rhs: np.ndarray, shift: int, segment_type: SegmentType
    ) -> Optional[Tuple[TimeRange, TimeRange]]:
        """
        Aligns rhs against lhs by shift points and returns the longest similar run in both.
        """
        left_offset = -shift if shift < 0 else 0
        right_offset = shift if shift > 0 else 0
        upper_limit = min(len(lhs), len(rhs)) - abs(shift)
        if upper_limit <= 0:
            return None

        differences = count_differing_bits(
            lhs[left_offset:left_offset + upper_limit],
            rhs[right_offset:right_offset + upper_limit],
        )
        matched = np.nonzero(differences <= self.config.maximum_fingerprint_point_differences)[0]
        if len(matched) == 0:
            return None

        max_skip = self.config.maximum_time_skip
        lhs_range = find_contiguous(((matched + left_offset) * SAMPLES_TO_SECONDS).tolist(), max_skip)
        if lhs_range is None or not self.is_valid_duration(lhs_range.duration, segment_type):
            return None
        rhs_range = find_contiguous(((matched + right_offset) * SAMPLES_TO_SECONDS).tolist(), max_skip)
        if rhs_range is None:
            return None

        # Trim the end a little so as little content as possible is skipped
        if lhs_range.duration >= 90:
            lhs_range.end -= 2 * max_skip
            rhs_range.end -= 2 * max_skip
        elif lhs_range.duration >= 30:
            lhs_range.end -= max_skip
            rhs_range.end -= max_skip

        return lhs_range, rhs_range

    def adjust_intro_end(self, episode: QueuedMedia, intro: TimeRange) -> TimeRange:
        """
        Moves the intro end to the start of a silence near it.
        """
        intro_end = TimeRange(start=max(intro.start, intro.end - SILENCE_WINDOW_SECONDS), end=intro.end)
        silences = self.ffmpeg.detect_silence(episode, TimeRange(start=intro_end.start, end=intro_end.end + 2))

        for silence in silences:
            # Ignore silence that misses the intro end, is too short or begins before the intro
            if (
                not intro_end.intersects(silence)
                or silence.duration < self.config.silence_detection_minimum_duration
                or silence.start < intro.start
            ):
                continue
            return TimeRange(start=intro.start, end=silence.start)

        return intro
