"""
Data models for schedule and screenplay ingestion.
"""
from dataclasses import dataclass, field, asdict
from typing import Literal, Optional

IntExt = Literal["INT", "EXT"]
Status = Literal["idle", "processing", "complete", "error"]
ResultSource = Literal["deterministic", "ai"]


@dataclass
class Token:
    """A positioned run of glyphs from a PDF page."""
    text: str
    x: float
    y: float                  # Distance from top of page
    width: float = 0.0


@dataclass(frozen=True)
class Row:
    """Tokens sharing one quantized vertical band, ordered left to right."""
    band: float
    cells: tuple              # (x, text, width) triples


@dataclass
class PageText:
    """Text content from a single PDF page."""
    page_number: int          # 1-indexed
    text: str
    char_start: int           # Character offset in full text
    char_end: int


@dataclass
class CastMember:
    number: int
    name: str


@dataclass
class SceneEntry:
    """One scene row of a shooting day."""
    scene_number: str
    int_ext: IntExt
    day_night: str
    set_location: str
    shoot_order: int
    cast_numbers: set[int] = field(default_factory=set)
    pages: Optional[str] = None
    description: Optional[str] = None
    estimated_time: Optional[str] = None


@dataclass
class ScheduleDay:
    day_number: int
    location: str = ""
    date: Optional[str] = None            # ISO yyyy-mm-dd
    day_of_week: Optional[str] = None
    sunrise: Optional[str] = None
    sunset: Optional[str] = None
    notes: set[str] = field(default_factory=set)
    scenes: list[SceneEntry] = field(default_factory=list)
    total_pages: Optional[str] = None


@dataclass
class ScheduleModel:
    cast_list: dict[int, CastMember] = field(default_factory=dict)
    days: list[ScheduleDay] = field(default_factory=list)
    total_days: int = 0
    processing_status: Status = "idle"
    production_name: Optional[str] = None
    script_version: Optional[str] = None
    schedule_version: Optional[str] = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return _jsonable(asdict(self))


@dataclass
class SceneRecord:
    """A screenplay scene."""
    scene_number: str
    slugline: str
    int_ext: IntExt
    location: str
    time_of_day: str
    characters_present: set[str] = field(default_factory=set)
    page_number: Optional[int] = None      # Page where the heading sits


@dataclass
class CharacterRecord:
    name: str
    normalized_name: str
    scenes_appeared: set[str] = field(default_factory=set)
    variants: set[str] = field(default_factory=set)
    dialogue_count: int = 0


@dataclass
class ScriptChunkResult:
    scenes: list[SceneRecord] = field(default_factory=list)
    characters: list[CharacterRecord] = field(default_factory=list)


@dataclass
class ScriptModel:
    title: Optional[str] = None
    scenes: list[SceneRecord] = field(default_factory=list)
    characters: list[CharacterRecord] = field(default_factory=list)
    processing_status: Status = "idle"
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return _jsonable(asdict(self))


@dataclass
class SceneLocation:
    """Location of a scene heading in the document."""
    heading: str
    line_number: int          # Line in full text
    char_offset: int          # Character offset in full text
    page_number: int          # Page where scene starts


@dataclass
class Chunk:
    """One Stage 2 scope: a shooting day or a size-bounded screenplay slice."""
    index: int
    scope_id: int             # Day number (schedule) or 1-based chunk ordinal
    text: str                 # Body plus trailing overlap
    body_end: int             # Offset in text where the overlap begins
    char_start: int           # Offset of text in the full document
    char_end: int

    @property
    def body(self) -> str:
        return self.text[:self.body_end]


@dataclass
class ScopeResult:
    """Outcome of one extraction attempt for one scope."""
    scope_id: int
    source: ResultSource
    day: Optional[ScheduleDay] = None
    script: Optional[ScriptChunkResult] = None
    error: Optional[str] = None
    terminal: bool = False

    @property
    def entry_count(self) -> int:
        if self.day is not None:
            return len(self.day.scenes)
        if self.script is not None:
            return len(self.script.scenes)
        return 0


@dataclass(frozen=True)
class ExtractionContext:
    """Read-only context shared by every extraction call of one session."""
    session_id: str
    roster: dict = field(default_factory=dict)            # number -> CastMember
    known_characters: tuple = ()
    heading_offsets: tuple = ()                           # Sorted char offsets
    heading_pages: tuple = ()                             # Page of each heading
    numbered_headings: bool = True


@dataclass
class ProgressUpdate:
    session_id: str
    status: Status
    percent: int
    message: str
    error: Optional[str] = None


def _jsonable(value):
    """Convert sets and int-keyed dicts from asdict() output into JSON-safe values."""
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value
