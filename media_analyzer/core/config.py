# Copyright (c) 2025 Trae AI. All rights reserved.

import yaml
from pathlib import Path
from typing import List, Optional, Dict, Set
from pydantic import BaseModel


class Config(BaseModel):
    database_path: Path = Path("data/media_analyzer.db")

    # Library collaborator
    library_type: str = "filesystem"  # filesystem, jellyfin
    library_roots: Dict[str, Path] = {}
    jellyfin_url: Optional[str] = None
    jellyfin_api_key: Optional[str] = None
    video_extensions: List[str] = [".mkv", ".mp4", ".avi", ".ts", ".m4v", ".mov"]

    # ===== General settings =====
    run_after_library_scan: bool = True
    run_after_add_or_update_event: bool = True

    # ===== Analysis settings =====
    cache_fingerprints: bool = False
    fingerprint_cache_dir: Path = Path("data/fingerprints")
    reset_blacklist: bool = False
    enable_blacklist: bool = True
    max_parallelism: int = 2
    selected_libraries: str = ""
    skipped_tv_shows: str = ""
    skipped_movies: str = ""
    analyze_season_zero: bool = False

    # ===== Custom analysis settings =====
    analysis_percent: int = 30
    analysis_length_limit: int = 15  # minutes
    minimum_intro_duration: int = 15
    maximum_intro_duration: int = 120
    minimum_credits_duration: int = 15
    maximum_episode_credits_duration: int = 240
    maximum_movie_credits_duration: int = 900
    black_frame_minimum_percentage: int = 85
    chapter_analyzer_intro_pattern: str = r"(^|\s)(Intro|Introduction|OP|Opening)(\s|$)"
    chapter_analyzer_end_credits_pattern: str = r"(^|\s)(Credits?|Ending|End|Outro)(\s|$)"

    # ===== Internal algorithm settings =====
    maximum_fingerprint_point_differences: int = 6
    maximum_time_skip: float = 3.5
    inverted_index_shift: int = 2
    silence_detection_maximum_noise: int = -50
    silence_detection_minimum_duration: float = 0.33

    # Tools
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    ffmpeg_timeout: int = 600

    server_port: int = 5000
    server_host: str = "0.0.0.0"
    scan_interval_minutes: int = 60
    verbose: bool = False

    @classmethod
    def load(cls, path: str = "config.yaml") -> "Config":
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    def save(self, path: str = "config.yaml"):
        """
        Writes the settings back, e.g. after a one-shot flag like reset_blacklist was consumed.
        """
        data = self.model_dump(mode="json")
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, allow_unicode=True, sort_keys=False)

    def selected_library_names(self) -> Set[str]:
        return {name.strip() for name in self.selected_libraries.split(",") if name.strip()}

    def skipped_movie_names(self) -> Set[str]:
        return {name.strip() for name in self.skipped_movies.split(",") if name.strip()}

    def skipped_show_seasons(self) -> Dict[str, Set[int]]:
        """
        Parses "My Show;S01;S02, Another Show".
        An empty season set means the whole show is skipped.
        """
        skipped: Dict[str, Set[int]] = {}
        for entry in self.skipped_tv_shows.split(","):
            parts = [p.strip() for p in entry.split(";") if p.strip()]
            if not parts:
                continue
            seasons = set()
            for part in parts[1:]:
                digits = part.lstrip("sS")
                if digits.isdigit():
                    seasons.add(int(digits))
            if not seasons or skipped.get(parts[0]) == set():
                # A bare show name skips every season
                skipped[parts[0]] = set()
            else:
                skipped.setdefault(parts[0], set()).update(seasons)
        return skipped

    def max_credits_duration(self, is_movie: bool) -> int:
        return self.maximum_movie_credits_duration if is_movie else self.maximum_episode_credits_duration
