# Copyright (c) 2025 Trae AI. All rights reserved.

import uuid
from enum import Enum
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class MediaKind(Enum):
    EPISODE = "Episode"
    MOVIE = "Movie"


class SegmentType(Enum):
    INTRO = "Intro"
    OUTRO = "Outro"  # Ending credits


def segment_types_from_name(name: str) -> List[SegmentType]:
    """
    "intro", "credits" (or "outro") or "all".
    """
    value = (name or "all").strip().lower()
    if value == "intro":
        return [SegmentType.INTRO]
    if value in ("credits", "outro"):
        return [SegmentType.OUTRO]
    if value == "all":
        return [SegmentType.INTRO, SegmentType.OUTRO]
    raise ValueError(f"Unknown segment type: {name}")


class AnalyzerType(Enum):
    CHAPTER = "Chapter"
    CHROMAPRINT = "Chromaprint"
    BLACK_FRAME = "BlackFrame"


class LibraryItem(BaseModel):
    """
    A video as the library collaborator reports it.
    """

    item_id: str
    name: str
    path: Optional[Path] = None
    kind: MediaKind
    series_name: Optional[str] = None
    season_number: Optional[int] = None
    season_id: Optional[str] = None
    index_number: Optional[int] = None
    library_name: str = ""
    duration: float = 0.0  # seconds


class QueuedMedia(BaseModel):
    """
    One analyzable item. Rebuilt on every run so deleted items are noticed.
    """

    model_config = ConfigDict(frozen=True)

    item_id: str
    series_name: str = ""
    season_number: Optional[int] = None
    name: str
    kind: MediaKind
    path: Path
    duration: float = 0.0
    intro_fingerprint_end: float = 0.0
    credits_fingerprint_start: float = 0.0
    skip_prevent_analyzing: bool = False

    @property
    def is_episode(self) -> bool:
        return self.kind == MediaKind.EPISODE

    @property
    def is_movie(self) -> bool:
        return self.kind == MediaKind.MOVIE


class MediaSegment(BaseModel):
    item_id: str
    segment_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: SegmentType
    analyzer_type: AnalyzerType
    start: float
    end: float
    note: str = ""
    name: str = ""
    series_name: str = ""

    @property
    def duration(self) -> float:
        return self.end - self.start


class SegmentMetadata(BaseModel):
    """
    Analyzer bookkeeping for an item. Rows with prevent_analyzing set form the blacklist.
    """

    item_id: str
    segment_id: Optional[str] = None
    type: SegmentType
    analyzer_type: Optional[AnalyzerType] = None
    analyzer_note: str = ""
    name: str = ""
    series_name: str = ""
    prevent_analyzing: bool = False


class Chapter(BaseModel):
    start: float  # seconds
    name: Optional[str] = None


class BlackFrame(BaseModel):
    time: float
    percentage: int
