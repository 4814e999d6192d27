"""
Deterministic scene entry parser for shooting schedule day blocks.

Schedules reach us as flattened table rows. Three renderings are recognised,
each by a named layout strategy tried in priority order at every line:

    stacked      "Scene  INT  FARMHOUSE  Est. Time"   header row
                 "7  1 6/8 pgs  Day  They meet  1:30  D5"   value row

    delimited    EXT FARMHOUSE - DRIVEWAY
                 Day
                 1/8
                 4A TAXI passes the road
                 pgs Scenes:

    single_line  "4A  EXT  FARMHOUSE  Day  1/8 pgs  TAXI passes  1, 2  0:30  D5"

Cast lists ("1, 2, 4, 7") look a lot like scene identifiers ("4A"). A scene
identifier is only accepted when it stands alone in its cell or line, or
directly precedes the page count, and never when it has the "N, N" shape.
"""
import re
from dataclasses import dataclass, field
from typing import Callable, Optional

from loguru import logger

from metadata_extractor import END_OF_DAY_PATTERN
from models import ScheduleDay, SceneEntry

SCENE_ID_PATTERN = re.compile(r'^\d{1,4}[A-Za-z]{0,2}(?:[ \t]+p\d{1,2})?$')
LEADING_SCENE_ID_PATTERN = re.compile(r'^(?!\d{1,3}[ \t]*,)(\d{1,4}[A-Za-z]{0,2})(?:[ \t]+(.*))?$')
CAST_LIST_PATTERN = re.compile(r'^\d{1,3}(?:[ \t]*,[ \t]*\d{1,3})+$')
SINGLE_CAST_PATTERN = re.compile(r'^\d{1,3}$')
CAST_LABEL_PATTERN = re.compile(r'^Cast[: \t]+(\d{1,3}(?:[ \t]*,[ \t]*\d{1,3})*)$', re.IGNORECASE)

INT_EXT_PATTERN = re.compile(
    r'^(INT\.?/EXT\.?|EXT\.?/INT\.?|I/E\.?|INT\.?|EXT\.?)(?:[ \t]+(.+))?$',
    re.IGNORECASE
)
INT_EXT_TOKEN = re.compile(r'(?<![A-Za-z])(INT|EXT|I/E)(?![A-Za-z])', re.IGNORECASE)

DAY_NIGHT_PATTERN = re.compile(
    r'^(Day|Night|Morning|Evening|Afternoon|Dawn|Dusk|D/N|N/D)$',
    re.IGNORECASE
)
STORY_DAY_PATTERN = re.compile(r'^[DN]\d{1,3}$')

PAGE_UNIT = r'(?:pgs?|pages?)\.?'
PAGES_PATTERN = re.compile(
    rf'^(?:(\d{{1,3}}[ \t]+\d/8|\d/8|\d{{1,3}})[ \t]*{PAGE_UNIT}|(\d{{1,3}}[ \t]+\d/8|\d/8))$',
    re.IGNORECASE
)
PAGE_UNIT_PATTERN = re.compile(rf'^{PAGE_UNIT}$', re.IGNORECASE)
EST_TIME_PATTERN = re.compile(r'^\d{0,2}:\d{2}$')
EST_TIME_LABEL = re.compile(r'Est\.?[ \t]*Time', re.IGNORECASE)
DELIMITER_PATTERN = re.compile(r'^pgs?[ \t]+Scenes?:?$', re.IGNORECASE)

HEADER_PATTERN = re.compile(r'^scenes?\b(?![ \t]*[#:.]?[ \t]*\d)', re.IGNORECASE)
HEADER_LABELS = re.compile(
    r'^(?:Pages?|Pgs|D/N|Day/Night|Cast|Description|Synopsis|Set|Location|Est\.?|Time|I/E|INT/EXT)$',
    re.IGNORECASE
)

PAGE_SEPARATOR_PATTERN = re.compile(r'^=== PAGE \d+ ===$')
CELL_SPLIT = re.compile(r'\t+|[ ]{2,}')

DELIMITED_LOOKAHEAD = 12

DATE_PATTERN = re.compile(r'\b([A-Z][a-z]+day)[,\s]+(\d{1,2})(?:st|nd|rd|th)?\s+([A-Za-z]+),?\s+(\d{4})')
SUNRISE_PATTERN = re.compile(r'\b(?:SR|Sunrise)[:\s]*(\d{1,2}):?(\d{2})', re.IGNORECASE)
SUNSET_PATTERN = re.compile(r'\b(?:SS|Sunset)[:\s]*(\d{1,2}):?(\d{2})', re.IGNORECASE)
TOTAL_PAGES_PATTERN = re.compile(r'(\d{1,3}[ \t]+\d/8|\d/8|\d{1,3})[ \t]*Pages?\b', re.IGNORECASE)
DAY_LOCATION_PATTERN = re.compile(r'^[ \t]*(?:Location|Unit[ \t]+Base)[ \t]*[:\-][ \t]*(.+?)[ \t]*$',
                                  re.IGNORECASE | re.MULTILINE)
NOTE_PATTERNS = (
    (re.compile(r'UNIT\s+MOVE', re.IGNORECASE), 'UNIT MOVE'),
    (re.compile(r'Drone\s+Day', re.IGNORECASE), 'Drone Day'),
    (re.compile(r'Load\s*In\b', re.IGNORECASE), 'Load In'),
    (re.compile(r'Load\s*Out\b', re.IGNORECASE), 'Load Out'),
    (re.compile(r'Lighting\s+Change', re.IGNORECASE), 'Lighting Change'),
)

MONTHS = {
    'january': 1, 'february': 2, 'march': 3, 'april': 4, 'may': 5, 'june': 6,
    'july': 7, 'august': 8, 'september': 9, 'october': 10, 'november': 11, 'december': 12,
    'jan': 1, 'feb': 2, 'mar': 3, 'apr': 4, 'jun': 6, 'jul': 7, 'aug': 8,
    'sep': 9, 'sept': 9, 'oct': 10, 'nov': 11, 'dec': 12,
}


@dataclass
class EntryFields:
    """Field values collected for one scene entry before it is numbered."""
    scene_number: Optional[str] = None
    int_ext: Optional[str] = None
    set_location: str = ""
    day_label: Optional[str] = None
    story_day: Optional[str] = None
    pages: Optional[str] = None
    description: Optional[str] = None
    estimated_time: Optional[str] = None
    cast_numbers: set[int] = field(default_factory=set)

    def to_entry(self, shoot_order: int) -> SceneEntry:
        return SceneEntry(
            scene_number=self.scene_number,
            int_ext=self.int_ext,
            day_night=self.story_day or self.day_label or "Day",
            set_location=self.set_location,
            shoot_order=shoot_order,
            cast_numbers=set(self.cast_numbers),
            pages=self.pages,
            description=self.description,
            estimated_time=self.estimated_time,
        )


@dataclass(frozen=True)
class LayoutMatch:
    fields: EntryFields
    consumed: int             # Number of lines the match covers


@dataclass(frozen=True)
class LayoutStrategy:
    name: str
    match: Callable[[list[str], int], Optional[LayoutMatch]]


def split_cells(line: str) -> list[str]:
    """Split a reconstructed row into column cells."""
    return [cell.strip() for cell in CELL_SPLIT.split(line) if cell.strip()]


def is_cast_list(text: str) -> bool:
    return bool(CAST_LIST_PATTERN.match(text.strip()))


def parse_cast_numbers(text: str) -> set[int]:
    return {int(n) for n in re.findall(r'\d{1,3}', text)}


def is_scene_identifier(text: str) -> bool:
    """True for a lone scene identifier such as "7", "4A" or "106A p1"."""
    candidate = text.strip()
    if not candidate or is_cast_list(candidate) or ',' in candidate:
        return False
    return bool(SCENE_ID_PATTERN.match(candidate))


def normalize_int_ext(token: str) -> str:
    return "EXT" if token.upper().startswith("EXT") else "INT"


def _is_location_like(cell: str) -> bool:
    return bool(re.search(r'[A-Z]', cell)) and not re.search(r'[a-z]', cell)


def _pages_value(cell: str) -> Optional[str]:
    match = PAGES_PATTERN.match(cell)
    if not match:
        return None
    return re.sub(r'[ \t]+', ' ', (match.group(1) or match.group(2)).strip())


def classify_cell(cell: str, fields: EntryFields, allow_single_cast: bool = True) -> None:
    """
    Assign one cell to the first field its shape matches.

    A bare integer counts as a single cast number only once the scene
    number is known, so it can never steal the scene identifier slot.
    """
    int_ext = INT_EXT_PATTERN.match(cell)
    if int_ext and fields.int_ext is None:
        fields.int_ext = normalize_int_ext(int_ext.group(1))
        if int_ext.group(2) and not fields.set_location:
            fields.set_location = int_ext.group(2).strip()
        return
    if STORY_DAY_PATTERN.match(cell):
        fields.story_day = fields.story_day or cell
        return
    if DAY_NIGHT_PATTERN.match(cell):
        fields.day_label = fields.day_label or cell.capitalize()
        return
    if PAGE_UNIT_PATTERN.match(cell) or EST_TIME_LABEL.fullmatch(cell):
        return
    pages = _pages_value(cell)
    if pages is not None:
        fields.pages = fields.pages or pages
        return
    if EST_TIME_PATTERN.match(cell):
        fields.estimated_time = fields.estimated_time or cell
        return
    if is_cast_list(cell):
        fields.cast_numbers |= parse_cast_numbers(cell)
        return
    cast_label = CAST_LABEL_PATTERN.match(cell)
    if cast_label:
        fields.cast_numbers |= parse_cast_numbers(cast_label.group(1))
        return
    if SINGLE_CAST_PATTERN.match(cell):
        if allow_single_cast and fields.scene_number is not None:
            fields.cast_numbers.add(int(cell))
        return
    if _is_location_like(cell) and not fields.set_location:
        fields.set_location = cell
        return
    if fields.description:
        fields.description = f"{fields.description} {cell}"
    else:
        fields.description = cell


def _match_stacked(lines: list[str], i: int) -> Optional[LayoutMatch]:
    header = lines[i]
    label = HEADER_PATTERN.match(header)
    if not label or not INT_EXT_TOKEN.search(header):
        return None

    fields = EntryFields()
    rest = EST_TIME_LABEL.sub('\t', header[label.end():])
    for cell in split_cells(rest):
        if HEADER_LABELS.match(cell):
            continue
        classify_cell(cell, fields, allow_single_cast=False)
    if fields.int_ext is None:
        # Token was glued to other text, e.g. "Scene INT/EXT."
        fields.int_ext = normalize_int_ext(INT_EXT_TOKEN.search(header).group(1))

    j = i + 1
    while j < len(lines) and is_cast_list(lines[j]):
        fields.cast_numbers |= parse_cast_numbers(lines[j])
        j += 1
    if j >= len(lines):
        return None

    value_row = lines[j]
    cells = split_cells(value_row)
    if not cells:
        return None
    if is_scene_identifier(cells[0]):
        fields.scene_number = cells[0]
        remaining = cells[1:]
    else:
        leading = LEADING_SCENE_ID_PATTERN.match(cells[0])
        if not leading:
            return None
        fields.scene_number = leading.group(1)
        remaining = ([leading.group(2)] if leading.group(2) else []) + cells[1:]

    for cell in remaining:
        classify_cell(cell, fields)

    j += 1
    while j < len(lines) and is_cast_list(lines[j]):
        fields.cast_numbers |= parse_cast_numbers(lines[j])
        j += 1

    return LayoutMatch(fields=fields, consumed=j - i)


def _match_delimited(lines: list[str], i: int) -> Optional[LayoutMatch]:
    opening = INT_EXT_PATTERN.match(lines[i])
    if not opening or not opening.group(2):
        return None

    delimiter = None
    for k in range(i + 1, min(len(lines), i + DELIMITED_LOOKAHEAD)):
        if DELIMITER_PATTERN.match(lines[k]):
            delimiter = k
            break
        if INT_EXT_PATTERN.match(lines[k]):
            return None
    if delimiter is None or delimiter - 1 <= i:
        return None

    fields = EntryFields(
        int_ext=normalize_int_ext(opening.group(1)),
        set_location=opening.group(2).strip()
    )

    scene_line = lines[delimiter - 1]
    if is_scene_identifier(scene_line):
        fields.scene_number = scene_line.strip()
    else:
        leading = LEADING_SCENE_ID_PATTERN.match(scene_line)
        if not leading or not leading.group(2) or is_cast_list(scene_line):
            return None
        fields.scene_number = leading.group(1)
        fields.description = leading.group(2).strip()

    for line in lines[i + 1:delimiter - 1]:
        for cell in split_cells(line):
            classify_cell(cell, fields)

    end = delimiter + 1
    if end < len(lines) and EST_TIME_PATTERN.match(lines[end]):
        fields.estimated_time = lines[end]
        end += 1
    if end < len(lines) and EST_TIME_LABEL.fullmatch(lines[end]):
        end += 1

    return LayoutMatch(fields=fields, consumed=end - i)


def _match_single_line(lines: list[str], i: int) -> Optional[LayoutMatch]:
    cells = split_cells(lines[i])
    if len(cells) < 2:
        return None

    scene_index = None
    if is_scene_identifier(cells[0]):
        scene_index = 0
    else:
        for index in range(len(cells) - 1):
            if is_scene_identifier(cells[index]) and (
                    PAGE_UNIT_PATTERN.match(cells[index + 1]) or _pages_value(cells[index + 1])):
                scene_index = index
                break
    if scene_index is None:
        return None

    fields = EntryFields(scene_number=cells[scene_index])
    for index, cell in enumerate(cells):
        if index != scene_index:
            classify_cell(cell, fields)

    if fields.int_ext is None:
        return None
    return LayoutMatch(fields=fields, consumed=1)


LAYOUT_STRATEGIES = (
    LayoutStrategy("stacked", _match_stacked),
    LayoutStrategy("delimited", _match_delimited),
    LayoutStrategy("single_line", _match_single_line),
)


def _day_lines(text: str) -> list[str]:
    """Non-empty lines up to (not including) the end-of-day marker."""
    lines = []
    for raw in text.split('\n'):
        line = raw.strip()
        if not line or PAGE_SEPARATOR_PATTERN.match(line):
            continue
        if END_OF_DAY_PATTERN.search(line):
            break
        lines.append(line)
    return lines


def parse_scene_entries(text: str) -> list[SceneEntry]:
    """
    Parse every scene entry in a block of schedule text.

    Returns:
        Entries in parse order, first occurrence of each scene number only,
        shoot_order numbered 1..n
    """
    lines = _day_lines(text)
    entries: list[SceneEntry] = []
    seen: set[str] = set()
    i = 0

    while i < len(lines):
        matched = None
        for strategy in LAYOUT_STRATEGIES:
            matched = strategy.match(lines, i)
            if matched:
                logger.trace(f"{strategy.name} matched scene {matched.fields.scene_number} at line {i}")
                break
        if not matched:
            i += 1
            continue

        scene_number = matched.fields.scene_number
        if scene_number not in seen:
            seen.add(scene_number)
            entries.append(matched.fields.to_entry(len(entries) + 1))
        i += matched.consumed

    return entries


def _iso_date(day: str, month: str, year: str) -> Optional[str]:
    month_number = MONTHS.get(month.lower())
    if not month_number:
        return None
    return f"{int(year):04d}-{month_number:02d}-{int(day):02d}"


def extract_day_metadata(text: str) -> dict:
    """
    Date, sun times, notes, total pages and location of one day block.

    Only text up to the end-of-day marker is considered. The marker line is
    searched first for the date and page total.
    """
    marker = END_OF_DAY_PATTERN.search(text)
    marker_line = ""
    if marker:
        marker_line = marker.group(0)
        text = text[:marker.end()]  # drop the trailing overlap

    date = day_of_week = None
    date_match = DATE_PATTERN.search(marker_line) or DATE_PATTERN.search(text)
    if date_match:
        day_of_week = date_match.group(1)
        date = _iso_date(date_match.group(2), date_match.group(3), date_match.group(4))

    sunrise = SUNRISE_PATTERN.search(text)
    sunset = SUNSET_PATTERN.search(text)
    total_pages = TOTAL_PAGES_PATTERN.search(marker_line) or TOTAL_PAGES_PATTERN.search(text)
    location = DAY_LOCATION_PATTERN.search(text)

    return {
        "date": date,
        "day_of_week": day_of_week,
        "sunrise": f"{int(sunrise.group(1)):02d}:{sunrise.group(2)}" if sunrise else None,
        "sunset": f"{int(sunset.group(1)):02d}:{sunset.group(2)}" if sunset else None,
        "notes": {note for pattern, note in NOTE_PATTERNS if pattern.search(text)},
        "total_pages": re.sub(r'[ \t]+', ' ', total_pages.group(1)) if total_pages else None,
        "location": location.group(1) if location else "",
    }


def parse_schedule_day(text: str, day_number: int) -> ScheduleDay:
    """
    Parse one shooting day block.

    Args:
        text: Day block text (scene parsing stops at its end-of-day marker)
        day_number: Shooting day number of the block

    Returns:
        ScheduleDay; scenes is empty when no layout matched
    """
    entries = parse_scene_entries(text)
    metadata = extract_day_metadata(text)
    logger.debug(f"Day {day_number}: deterministic parser found {len(entries)} scenes")
    return ScheduleDay(day_number=day_number, scenes=entries, **metadata)


def count_scene_hints(text: str) -> int:
    """Rough number of scene entries a block appears to contain."""
    lines = _day_lines(text)
    delimiters = sum(1 for line in lines if DELIMITER_PATTERN.match(line))
    if delimiters:
        return delimiters
    return sum(1 for line in lines if INT_EXT_TOKEN.search(line))
