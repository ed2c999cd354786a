# Copyright (c) 2025 Trae AI. All rights reserved.

import subprocess
import numpy as np
import pytest
from pathlib import Path
from unittest.mock import MagicMock, patch

from media_analyzer.core.ffmpeg import (
    FFmpegWrapper,
    FingerprintError,
    create_inverted_index,
    parse_blackframe_output,
    parse_chapters_json,
    parse_chromaprint_raw,
    parse_silence_output,
)
from media_analyzer.core.models import MediaKind, QueuedMedia, SegmentType


def queued(item_id="a", intro_end=300.0):
    return QueuedMedia(
        item_id=item_id,
        name=item_id,
        kind=MediaKind.EPISODE,
        path=Path(f"/media/{item_id}.mkv"),
        duration=1500.0,
        intro_fingerprint_end=intro_end,
        credits_fingerprint_start=1260.0,
    )


def test_parse_chromaprint_raw_reads_little_endian_points():
    data = np.array([1, 0xFFFFFFFF], dtype="<u4").tobytes() + b"\x01"
    assert parse_chromaprint_raw(data).tolist() == [1, 0xFFFFFFFF]

def test_inverted_index_keeps_last_position():
    assert create_inverted_index(np.array([5, 6, 5], dtype=np.uint32)) == {5: 2, 6: 1}

def test_parse_blackframe_output_filters_by_percentage():
    output = "\n".join([
        "[Parsed_blackframe_0 @ 0x55d] frame:10 pblack:92 pos:1024 t:0.417083 type:P last_keyframe:0",
        "[Parsed_blackframe_0 @ 0x55d] frame:11 pblack:60 pos:2048 t:0.458792 type:P last_keyframe:0",
        "frame=  48 fps=0.0 q=-0.0 Lsize=N/A time=00:00:02.00",
    ])
    frames = parse_blackframe_output(output, 85)
    assert len(frames) == 1
    assert frames[0].time == pytest.approx(0.417083)
    assert frames[0].percentage == 92

def test_parse_silence_output_applies_offset():
    output = "\n".join([
        "[silencedetect @ 0x7f] silence_start: 11.5",
        "[silencedetect @ 0x7f] silence_end: 12.25 | silence_duration: 0.75",
        "[silencedetect @ 0x7f] silence_start: 14",
    ])
    silences = parse_silence_output(output, offset=25.0)
    assert len(silences) == 1
    assert (silences[0].start, silences[0].end) == (36.5, 37.25)

def test_parse_chapters_json_sorts_and_reads_titles():
    output = """
    {"chapters": [
        {"id": 1, "start_time": "90.000000", "tags": {"title": "Part A"}},
        {"id": 0, "start_time": "0.000000", "tags": {"title": "Opening"}},
        {"id": 2, "start_time": "1400.5"}
    ]}
    """
    chapters = parse_chapters_json(output)
    assert [c.start for c in chapters] == [0.0, 90.0, 1400.5]
    assert [c.name for c in chapters] == ["Opening", "Part A", None]

def test_fingerprint_window():
    wrapper = FFmpegWrapper(MagicMock())
    intro = wrapper.fingerprint_window(queued(), SegmentType.INTRO)
    credits = wrapper.fingerprint_window(queued(), SegmentType.OUTRO)
    assert (intro.start, intro.end) == (0.0, 300.0)
    assert (credits.start, credits.end) == (1260.0, 1500.0)

def test_fingerprint_runs_ffmpeg_and_caches(config):
    config.cache_fingerprints = True
    wrapper = FFmpegWrapper(config)
    raw = np.array([7, 8, 9], dtype="<u4").tobytes()

    with patch("media_analyzer.core.ffmpeg.subprocess.run") as mock_run:
        mock_run.return_value = subprocess.CompletedProcess([], 0, stdout=raw, stderr=b"")
        first = wrapper.fingerprint(queued(), SegmentType.INTRO)
        second = wrapper.fingerprint(queued(), SegmentType.INTRO)

    assert first.tolist() == [7, 8, 9]
    assert second.tolist() == [7, 8, 9]
    assert mock_run.call_count == 1
    cmd = mock_run.call_args[0][0]
    assert cmd[0] == config.ffmpeg_path
    assert "chromaprint" in cmd
    assert (config.fingerprint_cache_dir / "a-intro.bin").exists()

def test_truncated_cache_is_discarded(config):
    config.cache_fingerprints = True
    cache_path = config.fingerprint_cache_dir / "a-intro.bin"
    cache_path.parent.mkdir(parents=True)
    cache_path.write_bytes(b"\x01\x02")
    wrapper = FFmpegWrapper(config)
    raw = np.array([5, 6], dtype="<u4").tobytes()

    with patch("media_analyzer.core.ffmpeg.subprocess.run") as mock_run:
        mock_run.return_value = subprocess.CompletedProcess([], 0, stdout=raw, stderr=b"")
        points = wrapper.fingerprint(queued(), SegmentType.INTRO)

    assert points.tolist() == [5, 6]
    assert mock_run.call_count == 1
    assert cache_path.read_bytes() == raw

def test_truncated_output_raises(config):
    config.cache_fingerprints = True
    wrapper = FFmpegWrapper(config)
    with patch("media_analyzer.core.ffmpeg.subprocess.run") as mock_run:
        mock_run.return_value = subprocess.CompletedProcess([], 0, stdout=b"\x01\x02\x03", stderr=b"")
        with pytest.raises(FingerprintError):
            wrapper.fingerprint(queued(), SegmentType.INTRO)
    assert not (config.fingerprint_cache_dir / "a-intro.bin").exists()

def test_fingerprint_failure_raises(config):
    wrapper = FFmpegWrapper(config)
    with patch("media_analyzer.core.ffmpeg.subprocess.run") as mock_run:
        mock_run.return_value = subprocess.CompletedProcess([], 1, stdout=b"", stderr=b"Invalid data")
        with pytest.raises(FingerprintError):
            wrapper.fingerprint(queued(), SegmentType.INTRO)

def test_fingerprint_timeout_raises(config):
    wrapper = FFmpegWrapper(config)
    with patch("media_analyzer.core.ffmpeg.subprocess.run", side_effect=subprocess.TimeoutExpired("ffmpeg", 600)):
        with pytest.raises(FingerprintError):
            wrapper.fingerprint(queued(), SegmentType.INTRO)

def test_empty_window_is_not_fingerprinted(config):
    wrapper = FFmpegWrapper(config)
    with patch("media_analyzer.core.ffmpeg.subprocess.run") as mock_run:
        with pytest.raises(FingerprintError):
            wrapper.fingerprint(queued(intro_end=0.0), SegmentType.INTRO)
    mock_run.assert_not_called()

def test_get_duration_handles_bad_output(config):
    wrapper = FFmpegWrapper(config)
    with patch("media_analyzer.core.ffmpeg.subprocess.run") as mock_run:
        mock_run.return_value = subprocess.CompletedProcess([], 0, stdout='{"format": {"duration": "1425.3"}}', stderr="")
        assert wrapper.get_duration(Path("/media/a.mkv")) == pytest.approx(1425.3)
        mock_run.return_value = subprocess.CompletedProcess([], 0, stdout="not json", stderr="")
        assert wrapper.get_duration(Path("/media/a.mkv")) == 0.0
