# Copyright (c) 2025 Trae AI. All rights reserved.

import pytest
from pathlib import Path
from typing import Dict, List
from unittest.mock import MagicMock
from media_analyzer.core.config import Config
from media_analyzer.core.ffmpeg import FFmpegWrapper
from media_analyzer.core.models import Chapter, LibraryItem, MediaKind
from media_analyzer.infrastructure.db.database import Database
from media_analyzer.infrastructure.db.repository import LogRepository, MetadataRepository, SegmentRepository
from media_analyzer.services.context import AnalysisContext


class FakeLibrary:
    """In-memory library used in place of the filesystem or Jellyfin backends."""

    def __init__(self, items: List[LibraryItem] = None):
        self.items = list(items or [])
        self.deleted = set()
        self.chapters: Dict[str, List[Chapter]] = {}

    def list_items(self):
        return list(self.items)

    def item_exists(self, item_id):
        return item_id not in self.deleted and any(i.item_id == item_id for i in self.items)

    def get_chapters(self, item):
        return self.chapters.get(item.item_id, [])


def make_episode(item_id, series="Show", season=1, index=1, duration=1500.0, library="TV"):
    return LibraryItem(
        item_id=item_id,
        name=f"{series} S{season:02d}E{index:02d}",
        path=Path(f"/media/{series}/Season {season}/{item_id}.mkv"),
        kind=MediaKind.EPISODE,
        series_name=series,
        season_number=season,
        season_id=f"{series}-{season}",
        index_number=index,
        library_name=library,
        duration=duration,
    )


def make_movie(item_id, name="Movie", duration=7200.0, library="Movies"):
    return LibraryItem(
        item_id=item_id,
        name=name,
        path=Path(f"/media/movies/{name}/{item_id}.mkv"),
        kind=MediaKind.MOVIE,
        library_name=library,
        duration=duration,
    )


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test.db"

@pytest.fixture
def database(db_path):
    return Database(db_path)

@pytest.fixture
def segment_repo(database):
    return SegmentRepository(database)

@pytest.fixture
def metadata_repo(database):
    return MetadataRepository(database)

@pytest.fixture
def log_repo(database):
    return LogRepository(database)

@pytest.fixture
def config(tmp_path):
    return Config(
        database_path=tmp_path / "test.db",
        fingerprint_cache_dir=tmp_path / "fingerprints",
        library_roots={"TV": tmp_path / "tv"},
    )

@pytest.fixture
def library():
    return FakeLibrary()

@pytest.fixture
def ffmpeg():
    return MagicMock(spec=FFmpegWrapper)

@pytest.fixture
def context(config, library, segment_repo, metadata_repo, log_repo, ffmpeg):
    return AnalysisContext(
        config=config,
        library=library,
        segment_repo=segment_repo,
        metadata_repo=metadata_repo,
        log_repo=log_repo,
        ffmpeg=ffmpeg,
    )

@pytest.fixture
def episode():
    return make_episode

@pytest.fixture
def movie():
    return make_movie
