# Copyright (c) 2025 Trae AI. All rights reserved.

import threading
from typing import Dict, Any, Optional
import time


class TaskManager:
    """
    Tracks background analysis tasks, their progress and cancellation.
    """

    def __init__(self):
        self._tasks: Dict[str, Dict[str, Any]] = {}
        self._cancel_events: Dict[str, threading.Event] = {}
        self._lock = threading.Lock()

    def start_task(self, task_id: str) -> Optional[threading.Event]:
        """
        Registers a running task and returns its cancel event, or None if it is already running.
        """
        with self._lock:
            current = self._tasks.get(task_id)
            if current and current["status"] == "running":
                return None
            cancel_event = threading.Event()
            self._cancel_events[task_id] = cancel_event
            self._tasks[task_id] = {
                "status": "running",
                "progress": 0.0,
                "message": "Starting...",
                "start_time": time.time(),
                "result": None,
            }
            return cancel_event

    def update_progress(self, task_id: str, progress: float, message: Optional[str] = None):
        with self._lock:
            if task_id in self._tasks:
                self._tasks[task_id]["progress"] = round(progress, 2)
                if message:
                    self._tasks[task_id]["message"] = message

    def complete_task(self, task_id: str, message: str = "Completed", result: Any = None):
        with self._lock:
            if task_id in self._tasks:
                cancelled = self._cancel_events.get(task_id)
                self._tasks[task_id]["status"] = "cancelled" if cancelled and cancelled.is_set() else "completed"
                if self._tasks[task_id]["status"] == "completed":
                    self._tasks[task_id]["progress"] = 100.0
                self._tasks[task_id]["message"] = message
                self._tasks[task_id]["result"] = result

    def fail_task(self, task_id: str, message: str):
        with self._lock:
            if task_id in self._tasks:
                self._tasks[task_id]["status"] = "failed"
                self._tasks[task_id]["message"] = message

    def cancel_task(self, task_id: str) -> bool:
        with self._lock:
            task = self._tasks.get(task_id)
            event = self._cancel_events.get(task_id)
            if not task or task["status"] != "running" or event is None:
                return False
            event.set()
            task["message"] = "Cancelling..."
            return True

    def get_task_status(self, task_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            task = self._tasks.get(task_id)
            return dict(task) if task else None

    def get_all_tasks(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {task_id: dict(task) for task_id, task in self._tasks.items()}
