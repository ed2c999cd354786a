# Copyright (c) 2025 Trae AI. All rights reserved.

from typing import List, Protocol
from .models import Chapter, LibraryItem, QueuedMedia


class LibraryError(Exception):
    """Raised when the library backend cannot be queried."""


class Library(Protocol):
    """
    Read-only view of the host's media library.
    """

    def list_items(self) -> List[LibraryItem]:
        ...

    def item_exists(self, item_id: str) -> bool:
        ...

    def get_chapters(self, item: QueuedMedia) -> List[Chapter]:
        ...
