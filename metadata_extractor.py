"""
Stage 1: fast, pattern-based metadata extraction.

Runs synchronously on already extracted text and never touches the network.
Misses are represented as empty results so callers can hand the document to
Stage 2 instead of treating them as errors.
"""
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from loguru import logger

from models import CastMember

STAGE1_TARGET_SECONDS = 2.0
CAST_HEAD_CHARS = 8000
METADATA_HEAD_CHARS = 2000
MAX_KNOWN_CHARACTERS = 100

END_OF_DAY_PATTERN = re.compile(
    r'End\s+of\s+(?:Shooting\s+)?Day\s*#?\s*(\d{1,3})[^\n]*',
    re.IGNORECASE
)

# "Day 3", "Shooting Day 3:", "Shoot Day # 3 of 20" at the start of a line.
# The trailing guard keeps "Day<tab>1/8" (a day/night cell and a page count) out.
DAY_HEADER_PATTERN = re.compile(
    r'^[ \t]*(?:Shoot(?:ing)?[ \t]+)?Day[ \t]*#?[ \t]*(\d{1,3})[ \t]*(?=$|[:\-–,]|of\b|\t)',
    re.IGNORECASE | re.MULTILINE
)

CAST_NAME_DENYLIST = re.compile(
    r'^(INT|EXT|I/E|DAY|NIGHT|MORNING|EVENING|AFTERNOON|DAWN|DUSK|HOURS|PAGE|PGS|'
    r'SCENE|EST|TIME|CALL|UNIT|END|SHOOT|CAST|TOTAL)\b',
    re.IGNORECASE
)

CAST_SECTION_PATTERN = re.compile(
    r'\bCAST\b[:\s]*\n([\s\S]*?)(?=\n[ \t]*\n|\nDAY|\nSCENE|$)',
    re.IGNORECASE
)
CAST_SECTION_LINE = re.compile(r"(\d{1,2})[ \t]*[.\-]?[ \t]*([A-Z][A-Z'\- ]{2,25})")
NUMBERED_CAST_PATTERN = re.compile(
    r"\b(\d{1,2})[ \t]*[.\-][ \t]*([A-Z][A-Z'\- ]{1,25}?)(?=[ \t]+\d{1,2}[ \t]*[.\-]|[ \t]*$)",
    re.MULTILINE
)
TABULAR_CAST_PATTERN = re.compile(
    r"(?:^|\t)(\d{1,2})[ \t]+([A-Z][A-Z'\-]{1,25})(?=\s|$)",
    re.MULTILINE
)

PRODUCTION_NAME_PATTERN = re.compile(r"^[A-Z][A-Z \-']+(?=[ \t]*$)", re.MULTILINE)
SCRIPT_VERSION_PATTERN = re.compile(r"(?:Script|Draft)[: \t]*([A-Za-z]+[ \t]*\d*)", re.IGNORECASE)
SCHEDULE_VERSION_PATTERN = re.compile(r"(?:Schedule|Version)[: \t]*([A-Za-z0-9 \t\-/]+)", re.IGNORECASE)

DIALOGUE_CUE_PATTERN = re.compile(r"^[ \t]*([A-Z][A-Z .'\-]{1,30})[ \t]*(?:\([^)]*\))?[ \t]*$", re.MULTILINE)
CUE_EXCLUSIONS = {
    'INT', 'EXT', 'FADE', 'FADE IN', 'FADE OUT', 'CUT', 'CUT TO', 'DISSOLVE', 'CONTINUED',
    'THE END', 'TITLE', 'SUPER', 'INSERT', 'BACK TO', 'FLASHBACK', 'END FLASHBACK',
    'LATER', 'CONTINUOUS', 'SAME', 'MORNING', 'AFTERNOON', 'EVENING', 'NIGHT', 'DAY',
    'DAWN', 'DUSK', 'MOMENTS', 'MOMENTS LATER', 'THE NEXT', 'MORE', 'ANGLE ON',
    'CLOSE ON', 'WIDE ON', 'POV', 'INTERCUT', 'MONTAGE',
}


@dataclass(frozen=True)
class CastStrategy:
    """A named roster pattern family returning (number, name) candidates."""
    name: str
    find: Callable[[str], list[tuple[str, str]]]


@dataclass
class Stage1Result:
    cast_list: dict[int, CastMember] = field(default_factory=dict)
    total_days: int = 0
    production_name: Optional[str] = None
    script_version: Optional[str] = None
    schedule_version: Optional[str] = None
    elapsed: float = 0.0


def _find_cast_section(text: str) -> list[tuple[str, str]]:
    match = CAST_SECTION_PATTERN.search(text)
    if not match:
        return []
    return CAST_SECTION_LINE.findall(match.group(1))


def _find_numbered(text: str) -> list[tuple[str, str]]:
    return NUMBERED_CAST_PATTERN.findall(text)


def _find_tabular(text: str) -> list[tuple[str, str]]:
    return TABULAR_CAST_PATTERN.findall(text)


CAST_STRATEGIES = (
    CastStrategy("cast_section", _find_cast_section),
    CastStrategy("numbered_list", _find_numbered),
    CastStrategy("tabular", _find_tabular),
)


def _validate_cast_candidate(number_text: str, name_text: str) -> Optional[CastMember]:
    number = int(number_text)
    name = re.sub(r'\s+', ' ', name_text).strip()

    if number <= 0 or number > 99:
        return None
    if len(name) < 2 or len(name) > 30:
        return None
    if CAST_NAME_DENYLIST.match(name):
        return None
    return CastMember(number=number, name=name)


def extract_cast_list(text: str) -> dict[int, CastMember]:
    """
    Extract the cast roster from the head of a schedule.

    Every strategy runs; the first strategy to claim a cast number keeps it.

    Returns:
        Mapping of cast number to CastMember, ordered by number
    """
    head = text[:CAST_HEAD_CHARS]
    roster: dict[int, CastMember] = {}

    for strategy in CAST_STRATEGIES:
        found = 0
        for number_text, name_text in strategy.find(head):
            member = _validate_cast_candidate(number_text, name_text)
            if member and member.number not in roster:
                roster[member.number] = member
                found += 1
        if found:
            logger.debug(f"Cast strategy {strategy.name} added {found} members")

    return dict(sorted(roster.items()))


def find_end_of_day_markers(text: str) -> list[tuple[int, re.Match]]:
    """
    Find unique end-of-day markers in document order.

    Returns:
        (day_number, match) pairs, first occurrence of each day number only
    """
    seen = set()
    markers = []
    for match in END_OF_DAY_PATTERN.finditer(text):
        day_number = int(match.group(1))
        if day_number in seen:
            continue
        seen.add(day_number)
        markers.append((day_number, match))
    return markers


def find_day_headers(text: str) -> list[tuple[int, re.Match]]:
    """Find unique "Day N" header lines in document order."""
    seen = set()
    headers = []
    for match in DAY_HEADER_PATTERN.finditer(text):
        day_number = int(match.group(1))
        if day_number in seen:
            continue
        seen.add(day_number)
        headers.append((day_number, match))
    return headers


def count_shooting_days(text: str) -> int:
    """Count unique end-of-day markers, falling back to day headers."""
    markers = find_end_of_day_markers(text)
    if markers:
        return len(markers)
    return len(find_day_headers(text))


def extract_metadata(text: str) -> dict[str, Optional[str]]:
    """Production name and version strings from the first page."""
    first_page = text[:METADATA_HEAD_CHARS]

    production_name = None
    for match in PRODUCTION_NAME_PATTERN.finditer(first_page):
        candidate = match.group(0).strip()
        if len(candidate) >= 2 and not CAST_NAME_DENYLIST.match(candidate):
            production_name = candidate
            break

    script_match = SCRIPT_VERSION_PATTERN.search(first_page)
    schedule_match = SCHEDULE_VERSION_PATTERN.search(first_page)

    return {
        "production_name": production_name,
        "script_version": script_match.group(1).strip() if script_match else None,
        "schedule_version": schedule_match.group(1).strip() if schedule_match else None,
    }


def run_stage1(text: str) -> Stage1Result:
    """
    Fast schedule metadata pass.

    Args:
        text: Reconstructed schedule text

    Returns:
        Stage1Result; collections are empty when nothing matched
    """
    started = time.perf_counter()

    cast_list = extract_cast_list(text)
    total_days = count_shooting_days(text)
    metadata = extract_metadata(text)

    elapsed = time.perf_counter() - started
    if elapsed > STAGE1_TARGET_SECONDS:
        logger.warning(f"Stage 1 took {elapsed:.2f}s (target {STAGE1_TARGET_SECONDS}s)")
    logger.info(f"Stage 1: {len(cast_list)} cast members, {total_days} shooting days")

    return Stage1Result(
        cast_list=cast_list,
        total_days=total_days,
        elapsed=elapsed,
        **metadata
    )


def extract_character_names(text: str) -> list[str]:
    """
    Pre-extract dialogue cue names from a whole screenplay.

    Used as known-character context for chunked extraction so every chunk
    sees the same canonical names.
    """
    names: list[str] = []
    seen = set()

    for match in DIALOGUE_CUE_PATTERN.finditer(text):
        name = re.sub(r'\s+', ' ', match.group(1)).strip().rstrip('.')
        if len(name) < 2 or len(name) > 35:
            continue
        if name in CUE_EXCLUSIONS or name.startswith(('INT.', 'EXT.', 'INT ', 'EXT ')):
            continue
        if name not in seen:
            seen.add(name)
            names.append(name)
        if len(names) >= MAX_KNOWN_CHARACTERS:
            break

    return names
