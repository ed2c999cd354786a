# Copyright (c) 2025 Trae AI. All rights reserved.

import json
import logging
import re
import subprocess
import threading
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np

from .config import Config
from .models import BlackFrame, Chapter, QueuedMedia, SegmentType
from .timerange import TimeRange

logger = logging.getLogger(__name__)

# Seconds of audio covered by one chromaprint point.
SAMPLES_TO_SECONDS = 0.1238

BLACKFRAME_PATTERN = re.compile(r"pblack:(\d+).*?\bt:(\d+(?:\.\d+)?)")
SILENCE_START_PATTERN = re.compile(r"silence_start:\s*(-?\d+(?:\.\d+)?)")
SILENCE_END_PATTERN = re.compile(r"silence_end:\s*(-?\d+(?:\.\d+)?)")


class FingerprintError(Exception):
    """Raised when ffmpeg cannot produce a chromaprint fingerprint for a file."""


def parse_chromaprint_raw(data: bytes) -> np.ndarray:
    """
    Raw chromaprint output is a stream of little-endian 32 bit points.
    """
    usable = len(data) - (len(data) % 4)
    return np.frombuffer(data[:usable], dtype="<u4").astype(np.uint32)


def parse_blackframe_output(output: str, minimum_percentage: int) -> List[BlackFrame]:
    frames = []
    for line in output.splitlines():
        if "blackframe" not in line:
            continue
        match = BLACKFRAME_PATTERN.search(line)
        if not match:
            continue
        percentage = int(match.group(1))
        if percentage < minimum_percentage:
            continue
        frames.append(BlackFrame(time=float(match.group(2)), percentage=percentage))
    return frames


def parse_silence_output(output: str, offset: float = 0.0) -> List[TimeRange]:
    silences = []
    current_start: Optional[float] = None
    for line in output.splitlines():
        start_match = SILENCE_START_PATTERN.search(line)
        if start_match:
            current_start = float(start_match.group(1))
            continue
        end_match = SILENCE_END_PATTERN.search(line)
        if end_match and current_start is not None:
            silences.append(TimeRange(start=offset + current_start, end=offset + float(end_match.group(1))))
            current_start = None
    return silences


def parse_chapters_json(output: str) -> List[Chapter]:
    data = json.loads(output or "{}")
    chapters = []
    for raw in data.get("chapters", []):
        try:
            start = float(raw["start_time"])
        except (KeyError, TypeError, ValueError):
            continue
        title = (raw.get("tags") or {}).get("title")
        chapters.append(Chapter(start=start, name=title))
    chapters.sort(key=lambda c: c.start)
    return chapters


def create_inverted_index(points: np.ndarray) -> Dict[int, int]:
    """
    Maps every fingerprint point to the last index it occurs at.
    """
    index: Dict[int, int] = {}
    for i, point in enumerate(points.tolist()):
        index[point] = i
    return index


class FFmpegWrapper:
    """
    Thin wrapper around the ffmpeg and ffprobe binaries.
    """

    def __init__(self, config: Config):
        self.config = config
        self._cache_lock = threading.Lock()

    def _run(self, cmd: List[str], text: bool = True) -> subprocess.CompletedProcess:
        logger.debug(f"Running: {' '.join(cmd)}")
        return subprocess.run(
            cmd,
            capture_output=True,
            text=text,
            timeout=self.config.ffmpeg_timeout,
        )

    def _cache_path(self, item: QueuedMedia, segment_type: SegmentType) -> Path:
        return Path(self.config.fingerprint_cache_dir) / f"{item.item_id}-{segment_type.value.lower()}.bin"

    def fingerprint_window(self, item: QueuedMedia, segment_type: SegmentType) -> TimeRange:
        if segment_type == SegmentType.INTRO:
            return TimeRange(start=0.0, end=item.intro_fingerprint_end)
        return TimeRange(start=item.credits_fingerprint_start, end=item.duration)

    def fingerprint(self, item: QueuedMedia, segment_type: SegmentType) -> np.ndarray:
        """
        Fingerprints the intro or credits window of an item.
        """
        if self.config.cache_fingerprints:
            cache_path = self._cache_path(item, segment_type)
            with self._cache_lock:
                if cache_path.exists():
                    points = parse_chromaprint_raw(cache_path.read_bytes())
                    if len(points) > 0:
                        return points
                    logger.warning(f"Discarding empty fingerprint cache {cache_path}")
                    cache_path.unlink()

        window = self.fingerprint_window(item, segment_type)
        if window.duration <= 0:
            raise FingerprintError(f"Empty fingerprint window for {item.path}")

        cmd = [
            self.config.ffmpeg_path,
            "-hide_banner", "-loglevel", "error", "-threads", "0",
            "-ss", f"{window.start:.3f}",
            "-i", str(item.path),
            "-t", f"{window.duration:.3f}",
            "-ac", "2",
            "-f", "chromaprint", "-fp_format", "raw",
            "-",
        ]
        try:
            result = self._run(cmd, text=False)
        except (subprocess.SubprocessError, OSError) as e:
            raise FingerprintError(f"ffmpeg failed for {item.path}: {e}") from e

        if result.returncode != 0 or not result.stdout:
            stderr = result.stderr.decode("utf-8", errors="replace") if result.stderr else ""
            raise FingerprintError(f"ffmpeg could not fingerprint {item.path}: {stderr.strip()}")

        points = parse_chromaprint_raw(result.stdout)
        if len(points) == 0:
            raise FingerprintError(f"ffmpeg returned a truncated fingerprint for {item.path}")

        if self.config.cache_fingerprints:
            cache_path = self._cache_path(item, segment_type)
            with self._cache_lock:
                cache_path.parent.mkdir(parents=True, exist_ok=True)
                cache_path.write_bytes(result.stdout)

        return points

    def detect_black_frames(self, item: QueuedMedia, window: TimeRange, minimum_percentage: int) -> List[BlackFrame]:
        """
        Returns frames inside window (times relative to window.start) with enough black pixels.
        """
        cmd = [
            self.config.ffmpeg_path,
            "-hide_banner",
            "-ss", f"{window.start:.3f}",
            "-i", str(item.path),
            "-t", f"{window.duration:.3f}",
            "-an", "-dn", "-sn",
            "-vf", "blackframe=amount=50",
            "-f", "null", "-",
        ]
        try:
            result = self._run(cmd)
        except (subprocess.SubprocessError, OSError) as e:
            logger.warning(f"Black frame detection failed for {item.name}: {e}")
            return []
        return parse_blackframe_output(result.stderr or "", minimum_percentage)

    def detect_silence(self, item: QueuedMedia, window: TimeRange) -> List[TimeRange]:
        """
        Returns silent ranges (absolute times) inside window.
        """
        cmd = [
            self.config.ffmpeg_path,
            "-hide_banner", "-nostats",
            "-ss", f"{window.start:.3f}",
            "-i", str(item.path),
            "-t", f"{window.duration:.3f}",
            "-vn", "-sn", "-dn",
            "-af", f"silencedetect=noise={self.config.silence_detection_maximum_noise}dB:duration=0.1",
            "-f", "null", "-",
        ]
        try:
            result = self._run(cmd)
        except (subprocess.SubprocessError, OSError) as e:
            logger.warning(f"Silence detection failed for {item.name}: {e}")
            return []
        return parse_silence_output(result.stderr or "", offset=window.start)

    def get_chapters(self, path: Path) -> List[Chapter]:
        cmd = [
            self.config.ffprobe_path,
            "-v", "error",
            "-print_format", "json",
            "-show_chapters",
            str(path),
        ]
        try:
            result = self._run(cmd)
            if result.returncode != 0:
                return []
            return parse_chapters_json(result.stdout)
        except (subprocess.SubprocessError, OSError, json.JSONDecodeError) as e:
            logger.warning(f"Unable to read chapters of {path}: {e}")
            return []

    def get_duration(self, path: Path) -> float:
        cmd = [
            self.config.ffprobe_path,
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "json",
            str(path),
        ]
        try:
            result = self._run(cmd)
            if result.returncode != 0:
                return 0.0
            data = json.loads(result.stdout)
            return max(0.0, float(data["format"]["duration"]))
        except (subprocess.SubprocessError, OSError, json.JSONDecodeError, KeyError, TypeError, ValueError):
            return 0.0
