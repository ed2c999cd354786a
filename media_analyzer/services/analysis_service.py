# Copyright (c) 2025 Trae AI. All rights reserved.

import logging
import queue
import threading
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence
from pydantic import BaseModel

from media_analyzer.core.analyzer import AnalysisStatus, Analyzer
from media_analyzer.core.black_frame_analyzer import BlackFrameAnalyzer
from media_analyzer.core.chapter_analyzer import ChapterAnalyzer
from media_analyzer.core.chromaprint_analyzer import ChromaprintAnalyzer
from media_analyzer.core.models import QueuedMedia, SegmentType
from .context import AnalysisContext
from .queue_manager import QueueManager

ProgressCallback = Callable[[float], None]


class RunState(Enum):
    IDLE = "idle"
    BUILDING_QUEUE = "building_queue"
    PROCESSING_GROUPS = "processing_groups"
    DONE = "done"
    CANCELLED = "cancelled"


class AnalysisRunResult(BaseModel):
    segment_type: SegmentType
    state: RunState
    total_queued: int = 0
    processed: int = 0
    progress: float = 0.0


class GroupOutcome(BaseModel):
    ran: bool = False  # False when the group was skipped before any analyzer ran
    analyzed: int = 0


class AnalysisOrchestrator:
    """
    Runs the analyzer chain over every queued group for one segment type.

    Groups are processed by max_parallelism worker threads. A worker finishes a whole
    group (analysis, writes, blacklist) before it takes the next one.
    """

    def __init__(
        self,
        context: AnalysisContext,
        segment_type: SegmentType,
        queue_manager: Optional[QueueManager] = None,
        analyzer_factory: Optional[Callable[[QueuedMedia, SegmentType], List[Analyzer]]] = None,
    ):
        self.context = context
        self.config = context.config
        self.segment_type = segment_type
        self.queue_manager = queue_manager or QueueManager(context)
        self.analyzer_factory = analyzer_factory or self.default_analyzers
        self.logger = logging.getLogger(__name__)

        self.state = RunState.IDLE
        self._lock = threading.Lock()
        self._total_queued = 0
        self._finished_items = 0
        self._processed = 0

    def default_analyzers(self, first: QueuedMedia, segment_type: SegmentType) -> List[Analyzer]:
        """
        Chapter analysis always runs first. Audio matching needs a season, black frames only find credits.
        """
        analyzers: List[Analyzer] = [ChapterAnalyzer(self.config, self.context.library.get_chapters)]
        if first.is_episode:
            analyzers.append(ChromaprintAnalyzer(self.config, self.context.ffmpeg))
        if segment_type == SegmentType.OUTRO:
            analyzers.append(BlackFrameAnalyzer(self.config, self.context.ffmpeg))
        return analyzers

    def run(
        self,
        progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> AnalysisRunResult:
        cancel_event = cancel_event or threading.Event()

        self.state = RunState.BUILDING_QUEUE
        groups = self.queue_manager.build_queue(self.segment_type)
        self._total_queued = sum(len(g) for g in groups.values())
        self._finished_items = 0
        self._processed = 0

        if self._total_queued == 0:
            self.state = RunState.DONE
            return self._result(100.0)

        self.state = RunState.PROCESSING_GROUPS
        work: "queue.Queue[Sequence[QueuedMedia]]" = queue.Queue()
        for group in groups.values():
            work.put(group)

        worker_count = max(1, min(self.config.max_parallelism, len(groups)))
        workers = [
            threading.Thread(
                target=self._worker,
                args=(work, progress, cancel_event),
                name=f"analysis-{self.segment_type.value.lower()}-{i}",
                daemon=True,
            )
            for i in range(worker_count)
        ]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        if cancel_event.is_set():
            self.state = RunState.CANCELLED
            return self._result(self._current_progress())

        self.state = RunState.DONE
        if progress:
            progress(100.0)
        return self._result(100.0)

    def _result(self, progress: float) -> AnalysisRunResult:
        return AnalysisRunResult(
            segment_type=self.segment_type,
            state=self.state,
            total_queued=self._total_queued,
            processed=self._processed,
            progress=progress,
        )

    def _current_progress(self) -> float:
        with self._lock:
            if self._total_queued == 0:
                return 100.0
            return self._finished_items * 100 / self._total_queued

    def _worker(self, work: "queue.Queue", progress: Optional[ProgressCallback], cancel_event: threading.Event):
        while True:
            try:
                group = work.get_nowait()
            except queue.Empty:
                return

            try:
                if cancel_event.is_set():
                    continue
                outcome = self.process_group(group, cancel_event)
            except Exception as e:
                first = group[0] if group else None
                self.logger.error(f"Failed to analyze {self._describe(first)}: {e}", exc_info=True)
                outcome = GroupOutcome(ran=True)
            finally:
                work.task_done()

            if not outcome.ran:
                continue

            # Reported under the lock so values reach the callback in order
            with self._lock:
                self._finished_items += len(group)
                self._processed += outcome.analyzed
                if progress:
                    progress(self._finished_items * 100 / self._total_queued)

    def _describe(self, item: Optional[QueuedMedia]) -> str:
        if item is None:
            return "empty group"
        if item.is_episode:
            return f"{item.series_name} season {item.season_number}"
        return f"movie {item.name}"

    def process_group(self, group: Sequence[QueuedMedia], cancel_event: threading.Event) -> GroupOutcome:
        """
        Verify, filter and analyze one season or movie.
        """
        if cancel_event.is_set():
            return GroupOutcome()

        verified = self.queue_manager.verify_group(group, self.segment_type)
        allowed = self.queue_manager.filter_by_blacklist(verified, self.segment_type)
        items, has_unanalyzed = self.queue_manager.filter_by_existing_segments(allowed, self.segment_type)

        if not items:
            return GroupOutcome()

        first = items[0]
        if not has_unanalyzed:
            self.logger.debug(
                f"All of {self._describe(first)} has already been analyzed for {self.segment_type.value}"
            )
            return GroupOutcome()

        if first.is_episode:
            # Specials are only analyzed on request
            if first.season_number == 0 and not self.config.analyze_season_zero:
                return GroupOutcome()
            self.logger.info(
                f"Analyzing {len(items)} files for {self.segment_type.value} from "
                f"{first.series_name} season {first.season_number}"
            )
        else:
            # Movies are only searched for credits
            if self.segment_type != SegmentType.OUTRO:
                return GroupOutcome()
            self.logger.info(f"Analyzing Movie ({self.segment_type.value}): {first.name}")

        if cancel_event.is_set():
            return GroupOutcome()

        return self.analyze_items(items, cancel_event)

    def analyze_items(self, items: Sequence[QueuedMedia], cancel_event: threading.Event) -> GroupOutcome:
        first = items[0]
        remaining: List[QueuedMedia] = list(items)
        analyzed_count = 0

        for analyzer in self.analyzer_factory(first, self.segment_type):
            if not remaining:
                break

            result = analyzer.analyze(remaining, self.segment_type, cancel_event)

            # Persist right away so a later analyzer failing cannot lose these
            if result.segments:
                self.context.segment_repo.save_segments(
                    result.segments[i.item_id] for i in result.analyzed if i.item_id in result.segments
                )
            analyzed_count += len(result.analyzed)
            remaining = list(result.not_analyzed)

            if result.status == AnalysisStatus.FINGERPRINT_FAILED:
                if first.is_episode:
                    self.logger.warning(
                        f"Unable to analyze {first.series_name} season {first.season_number}: unable to fingerprint"
                    )
                else:
                    self.logger.debug(f"Unable to analyze Movie {first.name}: unable to fingerprint")
                return GroupOutcome(ran=True, analyzed=0)

            if result.status == AnalysisStatus.CANCELLED:
                return GroupOutcome(ran=True, analyzed=analyzed_count)

        self._blacklist_leftovers(remaining)
        return GroupOutcome(ran=True, analyzed=analyzed_count)

    def _blacklist_leftovers(self, remaining: Iterable[QueuedMedia]):
        if not self.config.enable_blacklist:
            return
        blacklisted = [i for i in remaining if not i.skip_prevent_analyzing]
        if blacklisted:
            self.context.metadata_repo.blacklist(
                blacklisted, self.segment_type, note="No analyzer found a segment"
            )
            self.logger.debug(f"Blacklisted {len(blacklisted)} items for {self.segment_type.value}")


class AnalysisService:
    """
    Entry point used by the CLI, the scheduler and the watcher.
    """

    def __init__(self, context: AnalysisContext, config_path: Optional[str] = None):
        self.context = context
        self.config_path = config_path
        self.logger = logging.getLogger(__name__)

    def reset_blacklist_if_requested(self):
        config = self.context.config
        if not config.reset_blacklist:
            return
        removed = self.context.metadata_repo.clear_blacklist()
        self.logger.info(f"Blacklist reset: removed {removed} entries")
        self.context.log_repo.add("BLACKLIST", "RESET", f"Removed {removed} entries")
        config.reset_blacklist = False
        if self.config_path:
            config.save(self.config_path)

    def run(
        self,
        segment_types: Sequence[SegmentType] = (SegmentType.INTRO, SegmentType.OUTRO),
        progress: Optional[Callable[[float, str], None]] = None,
        cancel_event: Optional[threading.Event] = None,
        force_items: Optional[Iterable[str]] = None,
    ) -> Dict[SegmentType, AnalysisRunResult]:
        """
        Runs each segment type in turn. progress receives (percentage, message) over the whole run.
        """
        cancel_event = cancel_event or threading.Event()
        self.reset_blacklist_if_requested()
        force_items = list(force_items or [])

        results: Dict[SegmentType, AnalysisRunResult] = {}
        total = len(segment_types)
        for index, segment_type in enumerate(segment_types):
            if cancel_event.is_set():
                break

            self.context.log_repo.add("ANALYZE", segment_type.value, "Analysis started")

            def report(value: float, index=index, segment_type=segment_type):
                if progress:
                    progress((index * 100 + value) / total, f"Analyzing {segment_type.value}")

            orchestrator = AnalysisOrchestrator(
                self.context, segment_type, QueueManager(self.context, force_items=force_items)
            )
            result = orchestrator.run(report, cancel_event)
            results[segment_type] = result

            action = "CANCEL" if result.state == RunState.CANCELLED else "COMPLETE"
            msg = f"Processed {result.processed} of {result.total_queued} queued items"
            self.context.log_repo.add(action, segment_type.value, msg)
            self.logger.info(f"{segment_type.value} analysis {action.lower()}: {msg}")

        return results
