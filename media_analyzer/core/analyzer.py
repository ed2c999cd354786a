# Copyright (c) 2025 Trae AI. All rights reserved.

import threading
from enum import Enum
from typing import Dict, List, Optional, Protocol, Sequence
from pydantic import BaseModel, Field

from .models import MediaSegment, QueuedMedia, SegmentType


class AnalysisStatus(Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FINGERPRINT_FAILED = "fingerprint_failed"


class AnalyzerResult(BaseModel):
    """
    Outcome of one analyzer over one group.
    not_analyzed keeps the input order so the next analyzer sees the same sequence.
    """

    not_analyzed: List[QueuedMedia]
    analyzed: List[QueuedMedia] = Field(default_factory=list)
    segments: Dict[str, MediaSegment] = Field(default_factory=dict)
    status: AnalysisStatus = AnalysisStatus.COMPLETED

    @classmethod
    def from_segments(
        cls,
        items: Sequence[QueuedMedia],
        segments: Dict[str, MediaSegment],
        status: AnalysisStatus = AnalysisStatus.COMPLETED,
    ) -> "AnalyzerResult":
        analyzed = [i for i in items if i.item_id in segments]
        not_analyzed = [i for i in items if i.item_id not in segments]
        return cls(not_analyzed=not_analyzed, analyzed=analyzed, segments=dict(segments), status=status)


class Analyzer(Protocol):
    def analyze(
        self,
        items: Sequence[QueuedMedia],
        segment_type: SegmentType,
        cancel_event: Optional[threading.Event] = None,
    ) -> AnalyzerResult:
        ...


def is_cancelled(cancel_event: Optional[threading.Event]) -> bool:
    return cancel_event is not None and cancel_event.is_set()
