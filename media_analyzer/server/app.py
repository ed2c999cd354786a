# Copyright (c) 2025 Trae AI. All rights reserved.

import logging
import sys
import threading
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Set
from flask import Flask, jsonify, request
from flask_apscheduler import APScheduler

from ..core.config import Config
from ..core.models import SegmentType, segment_types_from_name
from ..infrastructure.db.database import Database
from ..infrastructure.library.filesystem import FileSystemLibrary
from ..services.analysis_service import AnalysisService
from ..services.context import build_context
from .task_manager import TaskManager
from .watcher import LibraryWatcher

ANALYSIS_TASK = "analysis"


class Server:
    def __init__(self, config_path: str = "config.yaml"):
        self.config = Config.load(config_path)
        logging.basicConfig(
            level=logging.DEBUG if self.config.verbose else logging.INFO,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            handlers=[logging.StreamHandler(sys.stdout)]
        )
        self.logger = logging.getLogger("media_analyzer.server.app")

        self.config_path = config_path
        self.app = Flask(__name__)
        self.scheduler = APScheduler()
        self.task_manager = TaskManager()

        # Infrastructure
        self.db = Database(Path(self.config.database_path))
        self.context = build_context(self.config, self.db)

        # Services
        self.analysis_service = AnalysisService(self.context, config_path)
        self.watcher: Optional[LibraryWatcher] = None

        # Changed files seen while a run was busy, analyzed by a follow-up run
        self._pending_lock = threading.RLock()
        self._pending_force_items: Set[str] = set()

        self._setup_routes()
        self._setup_scheduler()

    def start_analysis(self, segment_types: Sequence[SegmentType], force_items: Optional[Iterable[str]] = None) -> bool:
        """
        Runs an analysis in a background thread. Returns False if one is already running.
        """
        cancel_event = self.task_manager.start_task(ANALYSIS_TASK)
        if cancel_event is None:
            return False
        force_items = list(force_items or [])

        def run_analysis():
            try:
                results = self.analysis_service.run(
                    segment_types,
                    lambda p, m: self.task_manager.update_progress(ANALYSIS_TASK, p, m),
                    cancel_event,
                    force_items,
                )
                summary = {
                    t.value: {
                        "state": r.state.value,
                        "total_queued": r.total_queued,
                        "processed": r.processed,
                    }
                    for t, r in results.items()
                }
                message = "Analysis cancelled" if cancel_event.is_set() else "Analysis complete"
                self._finish_analysis(lambda: self.task_manager.complete_task(ANALYSIS_TASK, message, summary))
            except Exception as e:
                self.logger.error(f"Analysis failed: {e}", exc_info=True)
                self._finish_analysis(lambda: self.task_manager.fail_task(ANALYSIS_TASK, str(e)))

        thread = threading.Thread(target=run_analysis, name="analysis-task", daemon=True)
        thread.start()
        return True

    def _finish_analysis(self, finish: Callable[[], None]):
        """
        Marks the run finished, then starts a follow-up run for files changed in the meantime.
        """
        with self._pending_lock:
            finish()
            if not self._pending_force_items:
                return
            pending = sorted(self._pending_force_items)
            self._pending_force_items.clear()
            self.logger.info(f"Analyzing {len(pending)} files changed during the last run")
            if not self.start_analysis([SegmentType.INTRO, SegmentType.OUTRO], force_items=pending):
                self._pending_force_items.update(pending)

    def _setup_routes(self):
        @self.app.route("/api/analyze", methods=["POST"])
        def trigger_analysis():
            data = request.get_json(silent=True) or {}
            try:
                segment_types = segment_types_from_name(data.get("type", "all"))
            except ValueError as e:
                return jsonify({"error": str(e)}), 400

            self.logger.info(f"[User Action] Analysis requested: {[t.value for t in segment_types]}")
            if not self.start_analysis(segment_types):
                return jsonify({"error": "Analysis already in progress"}), 400
            return jsonify({"task_id": ANALYSIS_TASK})

        @self.app.route("/api/analyze/cancel", methods=["POST"])
        def cancel_analysis():
            if not self.task_manager.cancel_task(ANALYSIS_TASK):
                return jsonify({"error": "No analysis is running"}), 400
            self.logger.info("[User Action] Analysis cancellation requested")
            return jsonify({"status": "cancelling"})

        @self.app.route("/api/status")
        def get_status():
            return jsonify(self.task_manager.get_all_tasks())

        @self.app.route("/api/segments")
        def get_segments():
            type_filter = request.args.get("type")
            segment_type = None
            if type_filter:
                try:
                    segment_type = SegmentType(type_filter)
                except ValueError:
                    return jsonify({"error": f"Unknown segment type: {type_filter}"}), 400
            segments = self.context.segment_repo.get_all(segment_type)
            return jsonify([s.model_dump(mode="json") for s in segments])

        @self.app.route("/api/segments/<item_id>")
        def get_item_segments(item_id):
            segments = self.context.segment_repo.get_by_item(item_id)
            metadata = self.context.metadata_repo.get_by_item(item_id)
            return jsonify({
                "item_id": item_id,
                "segments": [s.model_dump(mode="json") for s in segments],
                "metadata": [m.model_dump(mode="json") for m in metadata],
            })

        @self.app.route("/api/blacklist")
        def get_blacklist():
            entries = self.context.metadata_repo.get_blacklist()
            return jsonify([e.model_dump(mode="json") for e in entries])

        @self.app.route("/api/blacklist/reset", methods=["POST"])
        def reset_blacklist():
            removed = self.context.metadata_repo.clear_blacklist()
            self.context.log_repo.add("BLACKLIST", "RESET", f"Removed {removed} entries")
            self.logger.warning(f"[User Action] Blacklist reset, removed {removed} entries")
            return jsonify({"status": "success", "removed": removed})

        @self.app.route("/api/config")
        def get_config():
            data = self.config.model_dump(mode="json")
            if data.get("jellyfin_api_key"):
                data["jellyfin_api_key"] = "********"
            return jsonify(data)

        @self.app.route("/api/logs")
        def get_logs():
            limit = request.args.get("limit", 100, type=int)
            return jsonify(self.context.log_repo.get_recent(limit))

    def _setup_scheduler(self):
        if self.config.run_after_library_scan:
            self.scheduler.add_job(
                id="scheduled_analysis",
                func=self._scheduled_analysis,
                trigger="interval",
                minutes=self.config.scan_interval_minutes,
            )
        self.scheduler.init_app(self.app)

    def _scheduled_analysis(self):
        self.logger.info("Scheduled analysis starting...")
        if not self.start_analysis([SegmentType.INTRO, SegmentType.OUTRO]):
            self.logger.info("Scheduled analysis skipped: another analysis is running")

    def on_library_changed(self, paths: List[Path]):
        """
        Watcher callback: analyzes added or updated files even if they were blacklisted.
        """
        item_ids = [FileSystemLibrary.item_id_for(p) for p in paths]
        self.logger.info(f"Detected {len(item_ids)} added or updated files")
        with self._pending_lock:
            if self.start_analysis([SegmentType.INTRO, SegmentType.OUTRO], force_items=item_ids):
                return
            self._pending_force_items.update(item_ids)
        self.logger.info("Analysis already running, changed files will be analyzed when it finishes")

    def _start_watcher(self):
        if self.config.library_type != "filesystem" or not self.config.run_after_add_or_update_event:
            return
        self.watcher = LibraryWatcher(
            self.config.library_roots.values(),
            self.on_library_changed,
            self.config.video_extensions,
        )
        self.watcher.start()

    def run(self):
        self.scheduler.start()
        self._start_watcher()
        try:
            self.app.run(host=self.config.server_host, port=self.config.server_port)
        finally:
            if self.watcher:
                self.watcher.stop()
