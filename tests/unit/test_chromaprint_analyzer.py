# Copyright (c) 2025 Trae AI. All rights reserved.

import threading
import numpy as np
import pytest
from pathlib import Path
from unittest.mock import MagicMock

from media_analyzer.core.analyzer import AnalysisStatus
from media_analyzer.core.chromaprint_analyzer import ChromaprintAnalyzer, count_differing_bits
from media_analyzer.core.ffmpeg import SAMPLES_TO_SECONDS, FFmpegWrapper, FingerprintError
from media_analyzer.core.models import AnalyzerType, MediaKind, QueuedMedia, SegmentType
from media_analyzer.core.timerange import TimeRange


def random_points(rng, count):
    return rng.integers(0, 2 ** 32, size=count, dtype=np.uint64).astype(np.uint32)


def queued(item_id, kind=MediaKind.EPISODE):
    return QueuedMedia(
        item_id=item_id,
        series_name="Show",
        season_number=1,
        name=item_id,
        kind=kind,
        path=Path(f"/media/{item_id}.mkv"),
        duration=1500.0,
        intro_fingerprint_end=450.0,
        credits_fingerprint_start=1260.0,
    )


@pytest.fixture
def shared_pair():
    """Two 600 point fingerprints sharing 300 points: lhs[100:400] == rhs[50:350]."""
    rng = np.random.default_rng(1234)
    shared = random_points(rng, 300)
    lhs = random_points(rng, 600)
    rhs = random_points(rng, 600)
    lhs[100:400] = shared
    rhs[50:350] = shared
    return lhs, rhs, rng


@pytest.fixture
def analyzer(config):
    return ChromaprintAnalyzer(config, MagicMock(spec=FFmpegWrapper))


def test_count_differing_bits():
    lhs = np.array([0, 0xFFFFFFFF, 0b1011], dtype=np.uint32)
    rhs = np.array([0, 0, 0b0001], dtype=np.uint32)
    assert count_differing_bits(lhs, rhs).tolist() == [0, 32, 2]

def test_duration_bounds_are_inclusive(analyzer):
    assert analyzer.is_valid_duration(15, SegmentType.INTRO)
    assert analyzer.is_valid_duration(120, SegmentType.INTRO)
    assert not analyzer.is_valid_duration(14.9, SegmentType.INTRO)
    assert not analyzer.is_valid_duration(120.1, SegmentType.INTRO)
    assert analyzer.is_valid_duration(240, SegmentType.OUTRO)
    assert not analyzer.is_valid_duration(240.1, SegmentType.OUTRO)

def test_compare_episodes_finds_shared_audio(analyzer, shared_pair):
    lhs, rhs, _ = shared_pair
    lhs_range, rhs_range = analyzer.compare_episodes(lhs, rhs, SegmentType.INTRO)

    skip = analyzer.config.maximum_time_skip
    # 37 seconds of shared audio, so the end is trimmed by one time skip
    assert lhs_range.start == pytest.approx(100 * SAMPLES_TO_SECONDS, abs=4)
    assert lhs_range.end == pytest.approx(399 * SAMPLES_TO_SECONDS - skip, abs=4)
    assert rhs_range.start == pytest.approx(50 * SAMPLES_TO_SECONDS, abs=4)
    assert rhs_range.end == pytest.approx(349 * SAMPLES_TO_SECONDS - skip, abs=4)

def test_small_bit_errors_still_match(analyzer, shared_pair):
    lhs, rhs, _ = shared_pair
    # Flip 6 bits in every shared point of rhs
    rhs = rhs.copy()
    rhs[50:350] ^= np.uint32(0b111111)
    assert analyzer.find_contiguous_match(lhs, rhs, -50, SegmentType.INTRO) is not None

def test_too_many_bit_errors_do_not_match(analyzer, shared_pair):
    lhs, rhs, _ = shared_pair
    rhs = rhs.copy()
    rhs[50:350] ^= np.uint32(0b1111111)
    assert analyzer.find_contiguous_match(lhs, rhs, -50, SegmentType.INTRO) is None

def test_short_shared_audio_is_rejected(analyzer):
    rng = np.random.default_rng(99)
    shared = random_points(rng, 60)  # about 7 seconds
    lhs = random_points(rng, 600)
    rhs = random_points(rng, 600)
    lhs[100:160] = shared
    rhs[100:160] = shared
    assert analyzer.compare_episodes(lhs, rhs, SegmentType.INTRO) is None

def test_intro_near_start_snaps_to_zero(analyzer):
    rng = np.random.default_rng(7)
    shared = random_points(rng, 300)
    lhs = random_points(rng, 600)
    rhs = random_points(rng, 600)
    lhs[20:320] = shared  # starts at 2.5 seconds
    rhs[30:330] = shared
    lhs_range, rhs_range = analyzer.compare_episodes(lhs, rhs, SegmentType.INTRO)
    assert lhs_range.start == 0.0
    assert rhs_range.start == 0.0

def test_empty_fingerprint_never_matches(analyzer, shared_pair):
    lhs, _, _ = shared_pair
    assert analyzer.compare_episodes(lhs, np.array([], dtype=np.uint32), SegmentType.INTRO) is None

def test_analyze_needs_two_episodes(config):
    ffmpeg = MagicMock(spec=FFmpegWrapper)
    result = ChromaprintAnalyzer(config, ffmpeg).analyze([queued("a")], SegmentType.INTRO)
    assert [i.item_id for i in result.not_analyzed] == ["a"]
    ffmpeg.fingerprint.assert_not_called()

def test_analyze_matches_episodes_of_a_season(config, shared_pair):
    lhs, rhs, rng = shared_pair
    unrelated = random_points(rng, 600)
    fingerprints = {"a": lhs, "b": rhs, "c": unrelated}

    ffmpeg = MagicMock(spec=FFmpegWrapper)
    ffmpeg.fingerprint.side_effect = lambda item, segment_type: fingerprints[item.item_id]
    ffmpeg.detect_silence.return_value = []

    items = [queued("a"), queued("b"), queued("c")]
    result = ChromaprintAnalyzer(config, ffmpeg).analyze(items, SegmentType.INTRO)

    assert result.status == AnalysisStatus.COMPLETED
    assert [i.item_id for i in result.analyzed] == ["a", "b"]
    assert [i.item_id for i in result.not_analyzed] == ["c"]
    assert result.segments["a"].analyzer_type == AnalyzerType.CHROMAPRINT
    assert result.segments["a"].type == SegmentType.INTRO

def test_credits_are_offset_by_fingerprint_window(config, shared_pair):
    lhs, rhs, _ = shared_pair
    fingerprints = {"a": lhs, "b": rhs}

    ffmpeg = MagicMock(spec=FFmpegWrapper)
    ffmpeg.fingerprint.side_effect = lambda item, segment_type: fingerprints[item.item_id]
    ffmpeg.fingerprint_window.return_value = TimeRange(start=1260.0, end=1500.0)

    result = ChromaprintAnalyzer(config, ffmpeg).analyze([queued("a"), queued("b")], SegmentType.OUTRO)

    assert result.segments["a"].start == pytest.approx(1260.0 + 100 * SAMPLES_TO_SECONDS, abs=4)
    assert result.segments["b"].start == pytest.approx(1260.0 + 50 * SAMPLES_TO_SECONDS, abs=4)
    ffmpeg.detect_silence.assert_not_called()

def test_all_fingerprints_failing_is_reported(config):
    ffmpeg = MagicMock(spec=FFmpegWrapper)
    ffmpeg.fingerprint.side_effect = FingerprintError("boom")

    items = [queued("a"), queued("b")]
    result = ChromaprintAnalyzer(config, ffmpeg).analyze(items, SegmentType.INTRO)

    assert result.status == AnalysisStatus.FINGERPRINT_FAILED
    assert len(result.not_analyzed) == 2
    assert result.segments == {}

def test_one_failed_fingerprint_does_not_fail_the_season(config, shared_pair):
    lhs, rhs, _ = shared_pair

    def fingerprint(item, segment_type):
        if item.item_id == "broken":
            raise FingerprintError("corrupt file")
        return {"a": lhs, "b": rhs}[item.item_id]

    ffmpeg = MagicMock(spec=FFmpegWrapper)
    ffmpeg.fingerprint.side_effect = fingerprint
    ffmpeg.detect_silence.return_value = []

    items = [queued("broken"), queued("a"), queued("b")]
    result = ChromaprintAnalyzer(config, ffmpeg).analyze(items, SegmentType.INTRO)

    assert result.status == AnalysisStatus.COMPLETED
    assert {i.item_id for i in result.analyzed} == {"a", "b"}
    assert [i.item_id for i in result.not_analyzed] == ["broken"]

def test_cancelled_before_fingerprinting(config):
    ffmpeg = MagicMock(spec=FFmpegWrapper)
    cancel = threading.Event()
    cancel.set()

    result = ChromaprintAnalyzer(config, ffmpeg).analyze([queued("a"), queued("b")], SegmentType.INTRO, cancel)

    assert result.status == AnalysisStatus.CANCELLED
    ffmpeg.fingerprint.assert_not_called()

def test_intro_end_moves_to_silence(config):
    ffmpeg = MagicMock(spec=FFmpegWrapper)
    ffmpeg.detect_silence.return_value = [TimeRange(start=36.0, end=37.0)]
    analyzer = ChromaprintAnalyzer(config, ffmpeg)

    adjusted = analyzer.adjust_intro_end(queued("a"), TimeRange(start=0.0, end=40.0))

    assert (adjusted.start, adjusted.end) == (0.0, 36.0)
    window = ffmpeg.detect_silence.call_args[0][1]
    assert (window.start, window.end) == (25.0, 42.0)

def test_short_silence_is_ignored(config):
    ffmpeg = MagicMock(spec=FFmpegWrapper)
    ffmpeg.detect_silence.return_value = [TimeRange(start=36.0, end=36.1)]
    analyzer = ChromaprintAnalyzer(config, ffmpeg)

    adjusted = analyzer.adjust_intro_end(queued("a"), TimeRange(start=0.0, end=40.0))

    assert adjusted.end == 40.0
