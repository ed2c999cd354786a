# Copyright (c) 2025 Trae AI. All rights reserved.

from pathlib import Path
from typing import NamedTuple
from media_analyzer.core.config import Config
from media_analyzer.core.ffmpeg import FFmpegWrapper
from media_analyzer.core.library import Library
from media_analyzer.infrastructure.db.database import Database
from media_analyzer.infrastructure.db.repository import LogRepository, MetadataRepository, SegmentRepository
from media_analyzer.infrastructure.library.filesystem import FileSystemLibrary
from media_analyzer.infrastructure.library.jellyfin import JellyfinLibrary


class AnalysisContext(NamedTuple):
    """
    Everything a run needs, built once and handed to each component.
    """

    config: Config
    library: Library
    segment_repo: SegmentRepository
    metadata_repo: MetadataRepository
    log_repo: LogRepository
    ffmpeg: FFmpegWrapper


def create_library(config: Config, ffmpeg: FFmpegWrapper) -> Library:
    if config.library_type == "jellyfin":
        if not config.jellyfin_url or not config.jellyfin_api_key:
            raise ValueError("jellyfin_url and jellyfin_api_key are required for the jellyfin library")
        return JellyfinLibrary(config.jellyfin_url, config.jellyfin_api_key)
    if config.library_type == "filesystem":
        return FileSystemLibrary(config, ffmpeg)
    raise ValueError(f"Unknown library_type: {config.library_type}")


def build_context(config: Config, db: Database = None) -> AnalysisContext:
    db = db or Database(Path(config.database_path))
    ffmpeg = FFmpegWrapper(config)
    return AnalysisContext(
        config=config,
        library=create_library(config, ffmpeg),
        segment_repo=SegmentRepository(db),
        metadata_repo=MetadataRepository(db),
        log_repo=LogRepository(db),
        ffmpeg=ffmpeg,
    )
