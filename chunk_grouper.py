"""
Splits document text into Stage 2 scopes without cutting entries mid-way.
"""
import re

from loguru import logger

from metadata_extractor import find_day_headers, find_end_of_day_markers
from models import Chunk

DEFAULT_DAY_OVERLAP = 200
DEFAULT_MAX_CHARS = 30000
DEFAULT_LOOKBACK = 5000
DEFAULT_SCRIPT_OVERLAP = 500

# Scene headings with an optional leading scene number ("4 INT." / "12A EXT.")
SCENE_BREAK_PATTERN = re.compile(
    r'\n[ \t]*(?:\d+[A-Z]?[ \t]+)?(?:INT\.?/EXT\.?|EXT\.?/INT\.?|I/E\.?|INT\.?|EXT\.?)[ \t]',
    re.IGNORECASE
)


def _line_end(text: str, pos: int) -> int:
    end = text.find('\n', pos)
    return len(text) if end == -1 else end + 1


def _make_chunk(index: int, scope_id: int, text: str, start: int, end: int, overlap: int) -> Chunk:
    overlap_end = min(len(text), end + overlap)
    return Chunk(
        index=index,
        scope_id=scope_id,
        text=text[start:overlap_end],
        body_end=end - start,
        char_start=start,
        char_end=overlap_end
    )


def split_schedule_by_days(text: str, overlap: int = DEFAULT_DAY_OVERLAP) -> list[Chunk]:
    """
    Split schedule text into one chunk per shooting day.

    Algorithm:
    1. Each unique "End of Shooting Day N" line closes day N's block
    2. Without end markers, each "Day N" header line opens day N's block
    3. Without either, the whole text is day 1

    Args:
        text: Reconstructed schedule text
        overlap: Characters kept after each block's boundary

    Returns:
        List of Chunk objects in document order
    """
    chunks: list[Chunk] = []

    markers = find_end_of_day_markers(text)
    if markers:
        start = 0
        for day_number, match in markers:
            end = _line_end(text, match.start())
            chunks.append(_make_chunk(len(chunks), day_number, text, start, end, overlap))
            start = end
        logger.debug(f"Split schedule into {len(chunks)} day blocks at end-of-day markers")
        return chunks

    headers = find_day_headers(text)
    if headers:
        for i, (day_number, match) in enumerate(headers):
            start = match.start()
            end = headers[i + 1][1].start() if i + 1 < len(headers) else len(text)
            chunks.append(_make_chunk(len(chunks), day_number, text, start, end, overlap))
        logger.debug(f"Split schedule into {len(chunks)} day blocks at day headers")
        return chunks

    logger.debug("No day boundaries found, treating schedule as a single day")
    return [_make_chunk(0, 1, text, 0, len(text), 0)]


def split_script_into_chunks(
    text: str,
    max_chars: int = DEFAULT_MAX_CHARS,
    lookback: int = DEFAULT_LOOKBACK,
    overlap: int = DEFAULT_SCRIPT_OVERLAP
) -> list[Chunk]:
    """
    Split screenplay text into size-bounded chunks.

    Prefers to break just before the last scene heading within `lookback`
    characters of the limit; falls back to a hard cut at the limit.

    Args:
        text: Screenplay text
        max_chars: Maximum body size of one chunk
        lookback: How far back from the limit to look for a heading
        overlap: Characters kept after each chunk's break point

    Returns:
        List of Chunk objects in document order
    """
    chunks: list[Chunk] = []
    pos = 0

    while pos < len(text):
        if len(text) - pos <= max_chars:
            chunks.append(_make_chunk(len(chunks), len(chunks) + 1, text, pos, len(text), 0))
            break

        limit = pos + max_chars
        window_start = max(pos + 1, limit - lookback)
        break_point = limit

        last_heading = None
        for match in SCENE_BREAK_PATTERN.finditer(text, window_start, limit):
            last_heading = match
        if last_heading is not None:
            break_point = last_heading.start() + 1  # keep the newline with the previous chunk

        chunks.append(_make_chunk(len(chunks), len(chunks) + 1, text, pos, break_point, overlap))
        pos = break_point

    logger.debug(f"Split script into {len(chunks)} chunks")
    return chunks
