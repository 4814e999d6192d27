"""
Deterministic scene and character parser for screenplay text.
"""
import bisect
import re
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from models import (
    CharacterRecord,
    Chunk,
    ExtractionContext,
    PageText,
    SceneLocation,
    SceneRecord,
    ScriptChunkResult,
)
from pdf_extractor import get_page_for_char_offset

# Scene heading pattern, optional leading scene number
SCENE_HEADING_PATTERN = re.compile(
    r'^[ \t]*(?:\d+[A-Z]?[ \t]*)?(?:INT\.?|EXT\.?|INT/EXT\.?|INT\.?/EXT\.?|EXT\.?/INT\.?|I/E\.?|I\.?/E\.?)[ \t]+.+',
    re.IGNORECASE | re.MULTILINE
)

LEADING_NUMBER = re.compile(r'^(\d+[A-Z]?)[ \t]+', re.IGNORECASE)
TRAILING_NUMBER = re.compile(r'[ \t]+(\d+[A-Z]?)[ \t]*$', re.IGNORECASE)
INT_EXT_PREFIX = re.compile(r'^(INT\.?/EXT\.?|EXT\.?/INT\.?|I\.?/E\.?|INT\.?|EXT\.?)[ \t]*', re.IGNORECASE)
TIME_OF_DAY_SUFFIX = re.compile(
    r'(?:[ \t]*[-–—.]+[ \t]*|[ \t]+)(DAY|NIGHT|MORNING|EVENING|AFTERNOON|DAWN|DUSK|SUNSET|SUNRISE|'
    r'CONTINUOUS|CONT|LATER|SAME|SAME TIME|MOMENTS LATER|SIMULTANEOUS|MAGIC HOUR|GOLDEN HOUR|'
    r'FLASHBACK|PRESENT|DREAM|FANTASY|NIGHTMARE|ESTABLISHING)'
    r"(?:[ \t]*[-–—]?[ \t]*(?:FLASHBACK|PRESENT|CONT(?:'D)?))?$",
    re.IGNORECASE
)

NON_CUE_PATTERNS = [re.compile(p, re.IGNORECASE) for p in (
    r'^(INT\.|EXT\.|INT/EXT|EXT/INT|I/E\.)',
    r'^(CUT TO|FADE|DISSOLVE|SMASH|MATCH|WIPE)',
    r'^(THE END|CONTINUED|MORE|\(MORE\))',
    r'^(TITLE:|SUPER:|CHYRON:|CARD:|INSERT:|INTERCUT)',
    r'^(FLASHBACK|END FLASHBACK|FLASH BACK|DREAM SEQUENCE)',
    r'^(BACK TO|RESUME|ANGLE ON|CLOSE ON|WIDE ON|POV)',
    r'^(LATER|CONTINUOUS|MOMENTS LATER|SAME TIME)',
    r'^(SUPERIMPOSE|SUBTITLE|CAPTION)',
)]
# All-caps action lines rather than speaker cues
ACTION_PATTERNS = [re.compile(p) for p in (
    r'^(A |AN |THE |HE |SHE |THEY |WE |IT |HIS |HER |THEIR )',
    r'^(IN THE |AT THE |ON THE |FROM THE |TO THE |INTO THE )',
    r' (ENTERS|EXITS|WALKS|RUNS|STANDS|SITS|LOOKS|TURNS|MOVES)$',
    r' (IS|ARE|WAS|WERE|HAS|HAVE|THE|A|AN) ',
    r'\.$',
    r'^\d+[A-Z]?\s+',
    r':$',
)]
PARENTHETICAL = re.compile(r'\s*\(.*?\)\s*')

MAX_CUE_LENGTH = 50
MAX_NAME_LENGTH = 35
MAX_NAME_WORDS = 4


@dataclass
class SceneHeading:
    scene_number: Optional[str]
    int_ext: str
    location: str
    time_of_day: str


def normalize_time_of_day(value: str) -> str:
    """Collapse heading time labels onto DAY/NIGHT/MORNING/EVENING/CONTINUOUS."""
    upper = (value or 'DAY').upper()
    if upper in ('NIGHT', 'NIGHTMARE'):
        return 'NIGHT'
    if upper in ('MORNING', 'DAWN', 'SUNRISE'):
        return 'MORNING'
    if upper in ('EVENING', 'DUSK', 'SUNSET', 'MAGIC HOUR', 'GOLDEN HOUR'):
        return 'EVENING'
    if upper in ('CONTINUOUS', 'CONT', 'LATER', 'SAME', 'SAME TIME', 'MOMENTS LATER', 'SIMULTANEOUS'):
        return 'CONTINUOUS'
    return 'DAY'


def parse_scene_heading(line: str) -> Optional[SceneHeading]:
    """
    Parse a scene heading line.

    Handles scene numbers on either side ("4 INT. HOTEL ROOM - DAY 4"),
    INT./EXT./I/E. variants and several location/time separators.

    Returns:
        SceneHeading, or None if the line is not a heading
    """
    working = re.sub(r'\s*\*+\s*$', '', line.strip())  # revision asterisks
    if len(working) < 5:
        return None

    scene_number = None
    leading = LEADING_NUMBER.match(working)
    if leading:
        scene_number = leading.group(1).upper()
        working = working[leading.end():].strip()

    int_ext_match = INT_EXT_PREFIX.match(working)
    if not int_ext_match:
        return None
    int_ext = 'EXT' if int_ext_match.group(1).upper().startswith('EXT') else 'INT'
    working = working[int_ext_match.end():].strip()

    trailing = TRAILING_NUMBER.search(working)
    if trailing:
        scene_number = scene_number or trailing.group(1).upper()
        working = working[:trailing.start()].strip()

    working = re.sub(r'^[.\-–—][ \t]*', '', working)

    time_of_day = 'DAY'
    location = working
    time_match = TIME_OF_DAY_SUFFIX.search(working)
    if time_match:
        time_of_day = time_match.group(1).upper()
        location = working[:time_match.start()]
    location = re.sub(r'[\s\-–—.,]+$', '', location).strip()

    if len(location) < 2:
        return None

    return SceneHeading(
        scene_number=scene_number,
        int_ext=int_ext,
        location=location,
        time_of_day=normalize_time_of_day(time_of_day)
    )


def is_character_cue(line: str) -> bool:
    """True for a short all-caps speaker line such as "JOHN (V.O.)"."""
    trimmed = line.strip()
    if not trimmed or trimmed != trimmed.upper() or len(trimmed) > MAX_CUE_LENGTH:
        return False
    if not re.search(r'[A-Z]', trimmed):
        return False
    if any(p.match(trimmed) for p in NON_CUE_PATTERNS):
        return False
    if any(p.search(trimmed) for p in ACTION_PATTERNS):
        return False

    name = PARENTHETICAL.sub(' ', trimmed).strip()
    if len(name.split()) > MAX_NAME_WORDS:
        return False
    return 2 <= len(name) <= MAX_NAME_LENGTH


def normalize_character_name(cue: str) -> str:
    """
    Canonical name for a dialogue cue.

    Strips extensions such as (V.O.), (O.S.) and (CONT'D), and keeps the
    first half of dual names ("DEAN/PUNK ROCKER" -> "DEAN").
    """
    normalized = PARENTHETICAL.sub(' ', cue.upper())
    normalized = re.sub(r"\s+CONT'?D$", '', normalized.strip())
    if '/' in normalized:
        first = normalized.split('/')[0].strip()
        if 2 <= len(first) <= 20:
            normalized = first
    return re.sub(r'\s+', ' ', normalized).strip()


def scene_sort_key(scene_number: str) -> tuple:
    """Natural order for scene identifiers: 2 < 4A < 4B < 10."""
    match = re.match(r'^(\d+)(.*)$', scene_number)
    if match:
        return (0, int(match.group(1)), match.group(2))
    return (1, 0, scene_number)


def find_scene_locations(
    full_text: str,
    pages: Optional[list[PageText]] = None
) -> list[SceneLocation]:
    """
    Find all scene headings and their page locations.

    Args:
        full_text: Complete extracted text
        pages: Page boundary information, if the text came from a PDF

    Returns:
        List of SceneLocation objects
    """
    scenes = []
    char_offset = 0

    for line_num, line in enumerate(full_text.split('\n')):
        stripped = line.strip()
        if stripped and SCENE_HEADING_PATTERN.match(stripped) and parse_scene_heading(stripped):
            scenes.append(SceneLocation(
                heading=stripped,
                line_number=line_num,
                char_offset=char_offset,
                page_number=get_page_for_char_offset(pages or [], char_offset)
            ))
        char_offset += len(line) + 1  # +1 for newline

    return scenes


def parse_script_chunk(chunk: Chunk, context: ExtractionContext) -> ScriptChunkResult:
    """
    Parse scenes and speaking characters from one screenplay chunk.

    Unnumbered headings take their ordinal among all headings of the
    document, looked up in the context, so chunks can be parsed in any order.

    Args:
        chunk: Screenplay chunk
        context: Session context with document heading offsets

    Returns:
        ScriptChunkResult with scenes in chunk order
    """
    scenes: list[SceneRecord] = []
    characters: dict[str, CharacterRecord] = {}
    current: Optional[SceneRecord] = None
    char_offset = chunk.char_start

    # The trailing overlap is parsed again by the next chunk
    for line in chunk.body.split('\n'):
        line_offset = char_offset
        char_offset += len(line) + 1
        trimmed = line.strip()
        if not trimmed:
            continue

        heading = parse_scene_heading(trimmed) if SCENE_HEADING_PATTERN.match(trimmed) else None
        if heading:
            scene_number = heading.scene_number
            if scene_number is None:
                scene_number = str(_heading_ordinal(context, line_offset))
            current = SceneRecord(
                scene_number=scene_number,
                slugline=trimmed,
                int_ext=heading.int_ext,
                location=heading.location,
                time_of_day=heading.time_of_day,
                page_number=_heading_page(context, line_offset)
            )
            scenes.append(current)
            continue

        if current is None or not is_character_cue(trimmed):
            continue

        name = normalize_character_name(trimmed)
        if len(name) < 2:
            continue
        current.characters_present.add(name)
        record = characters.setdefault(name, CharacterRecord(name=name, normalized_name=name))
        record.variants.add(trimmed)
        record.scenes_appeared.add(current.scene_number)
        record.dialogue_count += 1

    logger.debug(f"Chunk {chunk.scope_id}: {len(scenes)} scenes, {len(characters)} characters")
    return ScriptChunkResult(scenes=scenes, characters=list(characters.values()))


def _heading_ordinal(context: ExtractionContext, offset: int) -> int:
    offsets = context.heading_offsets
    if not offsets:
        return 1
    # Offsets are line starts, so a heading counts itself
    return bisect.bisect_right(offsets, offset) or 1


def _heading_page(context: ExtractionContext, offset: int) -> Optional[int]:
    index = bisect.bisect_left(context.heading_offsets, offset)
    if index < len(context.heading_pages) and context.heading_offsets[index] == offset:
        return context.heading_pages[index]
    return None
