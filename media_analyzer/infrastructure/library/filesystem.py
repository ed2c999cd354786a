# Copyright (c) 2025 Trae AI. All rights reserved.

import logging
import os
import re
import threading
import uuid
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from pypinyin import lazy_pinyin

from media_analyzer.core.config import Config
from media_analyzer.core.ffmpeg import FFmpegWrapper
from media_analyzer.core.models import Chapter, LibraryItem, MediaKind, QueuedMedia


class FileSystemLibrary:
    """
    Treats directories on disk as libraries.

    Layout: <root>/<Series>/[Season N/]<file with SxxEyy> for episodes,
    anything without episode markers is a movie.
    """

    def __init__(self, config: Config, ffmpeg: FFmpegWrapper, ignored: List[str] = None):
        self.config = config
        self.ffmpeg = ffmpeg
        self.video_extensions = {ext.lower() for ext in config.video_extensions}
        self.ignored = set(ignored) if ignored else {"#recycle", "@eaDir", ".DS_Store"}
        self.logger = logging.getLogger(__name__)

        self._paths: Dict[str, Path] = {}
        self._durations: Dict[Tuple[str, float], float] = {}
        self._lock = threading.Lock()

        self.episode_pattern = re.compile(r"[Ss](\d+)[Ee](\d+)")
        self.episode_only_patterns = [
            re.compile(r"\bEP?(\d+)\b", re.IGNORECASE),  # E01, EP01
            re.compile(r"第\s*(\d+)\s*[集话期]"),  # 第01集
        ]
        self.season_patterns = [
            re.compile(r"^Season\s*(\d+)$", re.IGNORECASE),
            re.compile(r"^S(\d+)$", re.IGNORECASE),
            re.compile(r"^第\s*(\d+)\s*[季部]$"),
        ]

    @staticmethod
    def item_id_for(path: Path) -> str:
        return str(uuid.uuid5(uuid.NAMESPACE_URL, str(path)))

    def _pinyin_key(self, name: str) -> str:
        """
        Pinyin of the folder name, so "黑镜" and "Hei Jing" style folders group together.
        """
        clean_name = re.sub(r"[._-]", " ", name).strip()
        return re.sub(r"\s+", "", "".join(lazy_pinyin(clean_name))).lower()

    def _season_from_folder(self, folder: str) -> Optional[int]:
        for pattern in self.season_patterns:
            match = pattern.search(folder.strip())
            if match:
                return int(match.group(1))
        return None

    def parse_episode(self, relative: Path) -> Optional[Tuple[int, Optional[int]]]:
        """
        Returns (season, episode) when the relative path looks like an episode.
        """
        match = self.episode_pattern.search(relative.name)
        if match:
            return int(match.group(1)), int(match.group(2))

        folder_season = None
        for part in relative.parts[1:-1]:
            season = self._season_from_folder(part)
            if season is not None:
                folder_season = season

        for pattern in self.episode_only_patterns:
            match = pattern.search(relative.stem)
            if match:
                return (folder_season if folder_season is not None else 1), int(match.group(1))

        if folder_season is not None:
            return folder_season, None
        return None

    def _scan(self, root: Path) -> List[Path]:
        files = []
        if not root.exists():
            self.logger.warning(f"Library root not found: {root}")
            return files

        for current, dirs, names in os.walk(root):
            # Modify dirs in place to skip ignored directories
            dirs[:] = sorted(d for d in dirs if d not in self.ignored)
            for name in sorted(names):
                if name in self.ignored:
                    continue
                path = Path(current) / name
                if path.suffix.lower() in self.video_extensions:
                    files.append(path)
        return files

    def _duration(self, path: Path) -> float:
        try:
            mtime = path.stat().st_mtime
        except OSError:
            return 0.0
        key = (str(path), mtime)
        with self._lock:
            if key in self._durations:
                return self._durations[key]
        duration = self.ffmpeg.get_duration(path)
        with self._lock:
            self._durations[key] = duration
        return duration

    def list_items(self) -> List[LibraryItem]:
        items: List[LibraryItem] = []
        paths: Dict[str, Path] = {}
        series_names: Dict[str, str] = {}

        for library_name, root in self.config.library_roots.items():
            root = Path(root)
            for path in self._scan(root):
                relative = path.relative_to(root)
                item_id = self.item_id_for(path)
                episode_info = self.parse_episode(relative) if len(relative.parts) > 1 else None

                if episode_info is None:
                    # Movies: a file in its own folder is named after the folder
                    name = relative.parts[0] if len(relative.parts) > 1 else path.stem
                    item = LibraryItem(
                        item_id=item_id,
                        name=name,
                        path=path,
                        kind=MediaKind.MOVIE,
                        library_name=library_name,
                        duration=self._duration(path),
                    )
                else:
                    season, episode = episode_info
                    folder = relative.parts[0]
                    series = series_names.setdefault(self._pinyin_key(folder), folder)
                    item = LibraryItem(
                        item_id=item_id,
                        name=path.stem,
                        path=path,
                        kind=MediaKind.EPISODE,
                        series_name=series,
                        season_number=season,
                        season_id=f"{library_name}/{series}/{season}",
                        index_number=episode,
                        library_name=library_name,
                        duration=self._duration(path),
                    )

                paths[item_id] = path
                items.append(item)

        with self._lock:
            self._paths = paths
        return items

    def item_exists(self, item_id: str) -> bool:
        with self._lock:
            path = self._paths.get(item_id)
        return path is not None and path.is_file()

    def get_chapters(self, item: QueuedMedia) -> List[Chapter]:
        return self.ffmpeg.get_chapters(item.path)
