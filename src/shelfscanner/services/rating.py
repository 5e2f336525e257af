"""Rating parsing and the deterministic fallback estimate.

LLM replies are free text, so parsing returns a tagged result instead of
raising. Callers treat every non-``OK`` status the same way: they fall back
to ``estimate_rating``, which always yields the same value for the same book.
"""

import re
from dataclasses import dataclass
from enum import Enum

MIN_RATING = 1.0
MAX_RATING = 5.0

ESTIMATE_FLOOR = 3.0
ESTIMATE_CEILING = 4.9
ESTIMATE_SPAN = 1.9

_NUMBER_RE = re.compile(r"(\d+(?:\.\d+)?)")
_INT32_MAX = 2**31 - 1


class RatingParseStatus(str, Enum):
    OK = "ok"
    PARSE_ERROR = "parse_error"
    OUT_OF_RANGE = "out_of_range"


@dataclass(frozen=True)
class RatingParseResult:
    """Outcome of reading a rating out of provider text.

    Attributes:
        status: Whether a usable rating was found
        value: One-decimal rating string when status is OK
        raw: The text that was parsed
    """

    status: RatingParseStatus
    value: str | None = None
    raw: str = ""

    @property
    def ok(self) -> bool:
        return self.status == RatingParseStatus.OK


def parse_rating(text: str | None) -> RatingParseResult:
    """Extract the first number from ``text`` and validate it as a rating.

    Example:
        >>> parse_rating("4.2/5").value
        '4.2'
        >>> parse_rating("7").status
        <RatingParseStatus.OUT_OF_RANGE: 'out_of_range'>
    """
    raw = (text or "").strip()
    match = _NUMBER_RE.search(raw)
    if match is None:
        return RatingParseResult(RatingParseStatus.PARSE_ERROR, raw=raw)

    value = float(match.group(1))
    if not MIN_RATING <= value <= MAX_RATING:
        return RatingParseResult(RatingParseStatus.OUT_OF_RANGE, raw=raw)

    return RatingParseResult(RatingParseStatus.OK, value=f"{value:.1f}", raw=raw)


def _string_hash(value: str) -> int:
    """31-multiplier string hash over UTF-16 code units, wrapped to int32."""
    h = 0
    for code in memoryview(value.encode("utf-16-le")).cast("H"):
        h = (h * 31 + code) & 0xFFFFFFFF
    if h >= 2**31:
        h -= 2**32
    return h


def estimate_rating(title: str, author: str) -> str:
    """Deterministic rating in [3.0, 4.9] derived from title and author.

    Used whenever no trusted rating can be obtained. The same book always
    gets the same estimate, across processes and restarts.
    """
    h = _string_hash(f"{title}{author}".lower())
    value = ESTIMATE_FLOOR + abs(h) / _INT32_MAX * ESTIMATE_SPAN
    value = min(max(value, ESTIMATE_FLOOR), ESTIMATE_CEILING)
    return f"{value:.1f}"
