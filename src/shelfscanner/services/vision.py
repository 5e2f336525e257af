"""Shelf photo analysis contract.

The vision model itself lives outside this service. Whatever it returns is
normalized here, tolerating both the camelCase JSON the model is prompted
for and snake_case dictionaries.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from shelfscanner.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ShelfAnalysis:
    """Titles read off a shelf photo."""

    book_titles: list[str] = field(default_factory=list)
    is_bookshelf: bool = False

    @classmethod
    def from_raw(cls, raw: Any) -> "ShelfAnalysis":
        """Normalize a vision provider result.

        Accepts a ShelfAnalysis, a dict, or a JSON string. Anything that
        cannot be read yields an empty analysis. Titles are stripped, blank
        ones dropped and duplicates removed (first occurrence wins).
        """
        if isinstance(raw, cls):
            data: dict[str, Any] = {
                "book_titles": raw.book_titles,
                "is_bookshelf": raw.is_bookshelf,
            }
        elif isinstance(raw, str | bytes):
            try:
                data = json.loads(raw)
            except ValueError:
                logger.warning("vision_result_unparseable", preview=str(raw)[:100])
                return cls()
        else:
            data = raw

        if not isinstance(data, dict):
            logger.warning("vision_result_unexpected_type", type=type(data).__name__)
            return cls()

        titles = data.get("book_titles", data.get("bookTitles")) or []
        if not isinstance(titles, list):
            titles = []

        seen: set[str] = set()
        cleaned: list[str] = []
        for title in titles:
            if not isinstance(title, str):
                continue
            title = title.strip()
            if title and title.lower() not in seen:
                seen.add(title.lower())
                cleaned.append(title)

        is_bookshelf = data.get("is_bookshelf", data.get("isBookshelf", False))
        return cls(book_titles=cleaned, is_bookshelf=bool(is_bookshelf))


@runtime_checkable
class VisionProvider(Protocol):
    """Reads book titles from a shelf photo."""

    async def analyze_image(self, image: bytes) -> ShelfAnalysis | dict[str, Any]: ...
