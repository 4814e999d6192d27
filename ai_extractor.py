"""
Stage 2 AI-assisted extraction.

Sends one scope (a shooting day or a screenplay chunk) to the completion
service and normalizes the returned JSON into model objects. Heuristics run
first; the service is asked only when they look incomplete (see
should_use_ai).
"""
import bisect
import re
from typing import Literal, Optional

from loguru import logger

from completion_client import DEFAULT_MAX_RETRIES, CompletionService
from models import (
    CharacterRecord,
    Chunk,
    ExtractionContext,
    SceneEntry,
    SceneRecord,
    ScheduleDay,
    ScriptChunkResult,
)
from response_parser import AIResponseParseError, parse_ai_json
from schedule_parser import count_scene_hints, extract_day_metadata, is_cast_list, parse_cast_numbers
from script_parser import normalize_character_name, normalize_time_of_day

AIMode = Literal["auto", "always", "never"]

MAX_DAY_PROMPT_CHARS = 15000
MAX_SCRIPT_PROMPT_CHARS = 30000
MAX_KNOWN_CHARACTERS_IN_PROMPT = 50
ISO_DATE = re.compile(r'^\d{4}-\d{2}-\d{2}$')

SCHEDULE_SYSTEM_PROMPT = """You are a film production scheduling expert. You extract scene entries from shooting schedules.

Schedules show each scene either on one row or as a vertical block that ends with "pgs Scenes:".

CRITICAL DISTINCTIONS:
- SCENE NUMBERS stand alone: "7", "4A", "18B", "106A p1". They are never comma-separated.
- CAST NUMBERS are comma-separated lists: "1, 2, 4, 7". They are NEVER scene numbers.
- Story days look like "D5" or "N1"; use them for dayNight when present.

Return ONLY valid JSON, no markdown code blocks."""

SCHEDULE_DAY_PROMPT = """Extract ALL scenes from this shooting day.
{cast_reference}
SCHEDULE TEXT FOR DAY {day_number}:
---
{text}
---

Return JSON:
{{
  "date": "2024-05-21 or null",
  "dayOfWeek": "Tuesday or null",
  "location": "Main location name",
  "scenes": [
    {{
      "sceneNumber": "21",
      "pages": "2 3/8",
      "intExt": "INT",
      "dayNight": "D5",
      "setLocation": "MARGOT'S BEDROOM - PLUMHILL MANOR",
      "description": "Scene action description",
      "castNumbers": [1, 3],
      "estimatedTime": "3:00"
    }}
  ]
}}

Rules:
1. Extract EVERY scene of day {day_number}, in the order shown
2. Stop at the "End of Shooting Day" line; text after it belongs to the next day
3. Scene numbers exactly as shown: 4A, 4B, 6, 7, 18B, 106A p1
4. castNumbers: array of integers from the comma-separated cast list
5. Use the cast names above only to recognise cast numbers; do not invent numbers
Return ONLY the JSON object, no explanation, no markdown."""

SCRIPT_SYSTEM_PROMPT = "You are a screenplay analyst. Return only valid JSON objects."

SCRIPT_CHUNK_PROMPT = """Analyze this screenplay excerpt and list every scene and every speaking character.
{character_reference}
Scene headings typically look like:
- INT. LOCATION - TIME
- EXT. LOCATION - TIME
- INT/EXT. LOCATION - TIME

Return JSON:
{{
  "scenes": [
    {{
      "sceneNumber": "12",
      "heading": "INT. KITCHEN - NIGHT",
      "intExt": "INT",
      "location": "KITCHEN",
      "timeOfDay": "NIGHT",
      "characters": ["INGA", "JOHN"]
    }}
  ],
  "characters": [
    {{"name": "INGA", "variants": ["INGA (V.O.)"], "dialogueCount": 3}}
  ]
}}

If a heading has no scene number, number the scenes 1, 2, 3... in the order they appear in this excerpt.
Use the known character names above when a cue refers to the same person.

Text to analyze:
---
{text}
---"""


def build_cast_reference(roster: dict) -> str:
    """Known cast as "N. NAME" lines, or an empty string."""
    if not roster:
        return ""
    lines = [f"{number}. {member.name}" for number, member in sorted(roster.items())]
    return "\nKNOWN CAST (number. name):\n" + "\n".join(lines) + "\n"


def build_character_reference(names) -> str:
    if not names:
        return ""
    listed = ", ".join(list(names)[:MAX_KNOWN_CHARACTERS_IN_PROMPT])
    return f"\nKNOWN CHARACTERS: {listed}\n"


def should_use_ai(mode: AIMode, deterministic_count: int, chunk_text: str) -> bool:
    """
    Decide whether a scope is worth a completion call.

    `auto` asks the service when the heuristics found nothing, or fewer
    entries than the text appears to hold.
    """
    if mode == "always":
        return True
    if mode == "never":
        return False
    if deterministic_count == 0:
        return True
    return deterministic_count < count_scene_hints(chunk_text)


def _clean(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() in ("null", "none", "n/a"):
        return None
    return text


def _coerce_int_ext(value) -> str:
    return "EXT" if str(value or "").strip().upper().startswith("EXT") else "INT"


def _coerce_cast_numbers(value) -> set[int]:
    if isinstance(value, str):
        return parse_cast_numbers(value)
    if not isinstance(value, list):
        return set()
    numbers = set()
    for item in value:
        if isinstance(item, bool):
            continue
        if isinstance(item, int) and item > 0:
            numbers.add(item)
        elif isinstance(item, float) and item.is_integer() and item > 0:
            numbers.add(int(item))
        elif isinstance(item, str) and item.strip().isdecimal() and int(item) > 0:
            numbers.add(int(item))
    return numbers


def normalize_scene_entries(raw_scenes) -> list[SceneEntry]:
    """
    Turn the service's scene objects into SceneEntry objects.

    Entries without a usable scene number, or with a cast-list-shaped one,
    are dropped. Duplicates keep their first occurrence and shoot order
    follows the returned order.
    """
    entries: list[SceneEntry] = []
    seen: set[str] = set()

    for raw in raw_scenes if isinstance(raw_scenes, list) else []:
        if not isinstance(raw, dict):
            continue
        scene_number = _clean(raw.get("sceneNumber"))
        if not scene_number:
            continue
        if is_cast_list(scene_number) or ',' in scene_number:
            logger.debug(f"Rejected cast list returned as scene number: {scene_number!r}")
            continue
        if scene_number in seen:
            continue
        seen.add(scene_number)

        entries.append(SceneEntry(
            scene_number=scene_number,
            int_ext=_coerce_int_ext(raw.get("intExt")),
            day_night=_clean(raw.get("dayNight")) or "Day",
            set_location=_clean(raw.get("setLocation")) or "",
            shoot_order=len(entries) + 1,
            cast_numbers=_coerce_cast_numbers(raw.get("castNumbers")),
            pages=_clean(raw.get("pages")),
            description=_clean(raw.get("description")),
            estimated_time=_clean(raw.get("estimatedTime")),
        ))

    return entries


def extract_day_with_ai(
    chunk: Chunk,
    context: ExtractionContext,
    service: CompletionService,
    max_retries: int = DEFAULT_MAX_RETRIES
) -> ScheduleDay:
    """
    Extract one shooting day with the completion service.

    Args:
        chunk: Day block (scope_id is the day number)
        context: Session context carrying the known roster
        service: Completion service

    Returns:
        ScheduleDay built from the service's answer, with date, sun times,
        notes and page total taken from the text where the answer lacks them

    Raises:
        CompletionError: If the service call fails
        AIResponseParseError: If the answer holds no usable JSON object
    """
    day_number = chunk.scope_id
    prompt = SCHEDULE_DAY_PROMPT.format(
        cast_reference=build_cast_reference(context.roster),
        day_number=day_number,
        text=chunk.text[:MAX_DAY_PROMPT_CHARS]
    )

    logger.debug(f"Requesting AI extraction for day {day_number}")
    response = service.complete(prompt, system=SCHEDULE_SYSTEM_PROMPT, max_retries=max_retries)
    parsed = parse_ai_json(response, context=f"day {day_number} analysis", array_field="scenes")
    if not isinstance(parsed, dict):
        raise AIResponseParseError(f"Expected a JSON object for day {day_number}, got {type(parsed).__name__}")

    metadata = extract_day_metadata(chunk.body)
    date = _clean(parsed.get("date"))
    if date and not ISO_DATE.match(date):
        date = None

    scenes = normalize_scene_entries(parsed.get("scenes"))
    logger.debug(f"Day {day_number}: AI returned {len(scenes)} scenes")

    return ScheduleDay(
        day_number=day_number,
        location=_clean(parsed.get("location")) or metadata["location"],
        date=date or metadata["date"],
        day_of_week=_clean(parsed.get("dayOfWeek")) or metadata["day_of_week"],
        sunrise=metadata["sunrise"],
        sunset=metadata["sunset"],
        notes=metadata["notes"],
        scenes=scenes,
        total_pages=metadata["total_pages"],
    )


def _scene_number_offset(chunk: Chunk, context: ExtractionContext) -> int:
    """Number of document headings that start before this chunk."""
    return bisect.bisect_left(context.heading_offsets, chunk.char_start)


def _ordinal_page(scene_number: str, context: ExtractionContext) -> Optional[int]:
    """Page of an unnumbered script's scene, found by its document ordinal."""
    if context.numbered_headings or not scene_number.isdecimal():
        return None
    ordinal = int(scene_number)
    if 0 < ordinal <= len(context.heading_pages):
        return context.heading_pages[ordinal - 1]
    return None


def extract_script_chunk_with_ai(
    chunk: Chunk,
    context: ExtractionContext,
    service: CompletionService,
    max_retries: int = DEFAULT_MAX_RETRIES
) -> ScriptChunkResult:
    """
    Extract scenes and characters of one screenplay chunk.

    For scripts without printed scene numbers the service numbers scenes
    per excerpt; those are shifted by the number of earlier headings so they
    line up with the document ordinals used by the heuristic parser.

    Raises:
        CompletionError: If the service call fails
        AIResponseParseError: If the answer holds no usable JSON object
    """
    prompt = SCRIPT_CHUNK_PROMPT.format(
        character_reference=build_character_reference(context.known_characters),
        text=chunk.text[:MAX_SCRIPT_PROMPT_CHARS]
    )

    logger.debug(f"Requesting AI extraction for script chunk {chunk.scope_id}")
    response = service.complete(prompt, system=SCRIPT_SYSTEM_PROMPT, max_retries=max_retries)
    parsed = parse_ai_json(response, context=f"script chunk {chunk.scope_id}", array_field="scenes")
    if not isinstance(parsed, dict):
        raise AIResponseParseError(f"Expected a JSON object for chunk {chunk.scope_id}")

    offset = 0 if context.numbered_headings else _scene_number_offset(chunk, context)
    scenes: list[SceneRecord] = []
    seen: set[str] = set()

    for raw in parsed.get("scenes") or []:
        if not isinstance(raw, dict):
            continue
        scene_number = _clean(raw.get("sceneNumber"))
        if not scene_number:
            continue
        if offset and scene_number.isdecimal():
            scene_number = str(int(scene_number) + offset)
        if scene_number in seen:
            continue
        seen.add(scene_number)

        characters = raw.get("characters") if isinstance(raw.get("characters"), list) else []
        scenes.append(SceneRecord(
            scene_number=scene_number,
            slugline=_clean(raw.get("heading")) or "",
            int_ext=_coerce_int_ext(raw.get("intExt")),
            location=_clean(raw.get("location")) or "",
            time_of_day=normalize_time_of_day(_clean(raw.get("timeOfDay")) or "DAY"),
            characters_present={normalize_character_name(str(c)) for c in characters if _clean(c)},
            page_number=_ordinal_page(scene_number, context),
        ))

    records: dict[str, CharacterRecord] = {}
    for raw in parsed.get("characters") or []:
        if not isinstance(raw, dict) or not _clean(raw.get("name")):
            continue
        name = normalize_character_name(str(raw["name"]))
        record = records.setdefault(name, CharacterRecord(name=name, normalized_name=name))
        variants = raw.get("variants") if isinstance(raw.get("variants"), list) else []
        record.variants |= {str(v).strip() for v in variants if _clean(v)}
        count = raw.get("dialogueCount")
        if isinstance(count, int) and not isinstance(count, bool):
            record.dialogue_count += max(count, 0)

    # Scene membership comes from the scene list, not the service's summary
    for scene in scenes:
        for name in scene.characters_present:
            record = records.setdefault(name, CharacterRecord(name=name, normalized_name=name))
            record.scenes_appeared.add(scene.scene_number)

    logger.debug(f"Script chunk {chunk.scope_id}: AI returned {len(scenes)} scenes, {len(records)} characters")
    return ScriptChunkResult(scenes=scenes, characters=list(records.values()))
