# Copyright (c) 2025 Trae AI. All rights reserved.

import logging
import time
from pathlib import Path
from typing import Dict, List, Optional

import requests

from media_analyzer.core.library import LibraryError
from media_analyzer.core.models import Chapter, LibraryItem, MediaKind, QueuedMedia

TICKS_PER_SECOND = 10_000_000


class JellyfinLibrary:
    """
    Reads library contents from a Jellyfin server over its HTTP API.
    """

    def __init__(self, base_url: str, api_key: str, max_retries: int = 3):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.max_retries = max_retries
        self.logger = logging.getLogger(__name__)

    def _get(self, path: str, params: Optional[Dict] = None) -> Optional[Dict]:
        """
        GET with retries. Returns None on 404, raises LibraryError once retries run out.
        """
        url = f"{self.base_url}{path}"
        headers = {"X-Emby-Token": self.api_key}
        retry_count = 0
        while True:
            try:
                response = requests.get(url, params=params, headers=headers, timeout=10)
                if response.status_code == 404:
                    return None
                if response.status_code == 429:
                    retry_after = response.headers.get("Retry-After")
                    wait = int(retry_after) if retry_after and retry_after.isdigit() else 1
                    time.sleep(wait)
                    continue
                response.raise_for_status()
                return response.json()
            except requests.exceptions.RequestException as e:
                retry_count += 1
                if retry_count > self.max_retries:
                    raise LibraryError(f"Request to {url} failed after {self.max_retries} retries: {e}") from e

                self.logger.warning(f"Request failed: {e}. Retrying ({retry_count}/{self.max_retries})...")
                # Exponential backoff: 2^1, 2^2, 2^3... max 2^5 (32s)
                time.sleep(2 ** min(retry_count, 5))

    def _to_item(self, raw: Dict, library_name: str) -> Optional[LibraryItem]:
        item_type = raw.get("Type")
        if item_type == "Episode":
            kind = MediaKind.EPISODE
        elif item_type == "Movie":
            kind = MediaKind.MOVIE
        else:
            return None

        path = raw.get("Path")
        return LibraryItem(
            item_id=raw["Id"],
            name=raw.get("Name") or "",
            path=Path(path) if path else None,
            kind=kind,
            series_name=raw.get("SeriesName"),
            season_number=raw.get("ParentIndexNumber"),
            season_id=raw.get("SeasonId"),
            index_number=raw.get("IndexNumber"),
            library_name=library_name,
            duration=(raw.get("RunTimeTicks") or 0) / TICKS_PER_SECOND,
        )

    def list_items(self) -> List[LibraryItem]:
        folders = self._get("/Library/VirtualFolders") or []
        items: List[LibraryItem] = []
        for folder in folders:
            library_name = folder.get("Name", "")
            data = self._get(
                "/Items",
                {
                    "ParentId": folder.get("ItemId"),
                    "IncludeItemTypes": "Episode,Movie",
                    "Recursive": "true",
                    "Fields": "Path",
                    "SortBy": "SeriesSortName,ParentIndexNumber,IndexNumber,SortName",
                },
            ) or {}
            for raw in data.get("Items", []):
                item = self._to_item(raw, library_name)
                if item:
                    items.append(item)
        return items

    def item_exists(self, item_id: str) -> bool:
        data = self._get(f"/Items/{item_id}")
        return bool(data and data.get("Path"))

    def get_chapters(self, item: QueuedMedia) -> List[Chapter]:
        try:
            data = self._get(f"/Items/{item.item_id}", {"Fields": "Chapters"})
        except LibraryError as e:
            self.logger.warning(f"Unable to load chapters of {item.name}: {e}")
            return []
        if not data:
            return []
        chapters = [
            Chapter(start=(c.get("StartPositionTicks") or 0) / TICKS_PER_SECOND, name=c.get("Name"))
            for c in data.get("Chapters") or []
        ]
        chapters.sort(key=lambda c: c.start)
        return chapters
