# Copyright (c) 2025 Trae AI. All rights reserved.

import logging
import threading
from pathlib import Path
from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler
from typing import Callable, Iterable, List, Set


class LibraryChangeHandler(FileSystemEventHandler):
    """
    Collects added or updated video files and reports them once things settle down.
    """

    def __init__(self, callback: Callable[[List[Path]], None], video_extensions: Iterable[str], debounce_seconds: int = 30):
        self.callback = callback
        self.video_extensions = {ext.lower() for ext in video_extensions}
        self.debounce_seconds = debounce_seconds
        self.timer = None
        self._lock = threading.Lock()
        self.changes: Set[Path] = set()

    def on_created(self, event):
        if not event.is_directory:
            self._trigger(event.src_path)

    def on_modified(self, event):
        if not event.is_directory:
            self._trigger(event.src_path)

    def on_moved(self, event):
        if not event.is_directory:
            self._trigger(event.dest_path)

    def _trigger(self, path_str: str):
        path = Path(path_str)
        if path.suffix.lower() not in self.video_extensions:
            return
        with self._lock:
            self.changes.add(path)
            if self.timer:
                self.timer.cancel()
            self.timer = threading.Timer(self.debounce_seconds, self._execute_callback)
            self.timer.daemon = True
            self.timer.start()

    def _execute_callback(self):
        with self._lock:
            changes_snapshot = sorted(self.changes)
            self.changes.clear()
            self.timer = None

        if changes_snapshot:
            self.callback(changes_snapshot)


class LibraryWatcher:
    """
    Watches the filesystem library roots and reports added or updated videos.
    """

    def __init__(self, roots: Iterable[Path], callback: Callable[[List[Path]], None],
                 video_extensions: Iterable[str], debounce_seconds: int = 30):
        self.roots = [Path(r) for r in roots]
        self.observer = Observer()
        self.handler = LibraryChangeHandler(callback, video_extensions, debounce_seconds)
        self.logger = logging.getLogger(__name__)

    def start(self):
        for root in self.roots:
            if not root.exists():
                self.logger.warning(f"Not watching missing library root {root}")
                continue
            self.logger.info(f"Watching {root} for added or updated media...")
            self.observer.schedule(self.handler, str(root), recursive=True)
        self.observer.start()

    def stop(self):
        self.observer.stop()
        self.observer.join()
