"""Tests for the deterministic screenplay parser."""

import pytest

from models import Chunk, ExtractionContext, PageText
from script_parser import (
    find_scene_locations,
    is_character_cue,
    normalize_character_name,
    normalize_time_of_day,
    parse_scene_heading,
    parse_script_chunk,
    scene_sort_key,
)


def _whole_chunk(text):
    return Chunk(index=0, scope_id=1, text=text, body_end=len(text), char_start=0, char_end=len(text))


class TestSceneHeadings:
    """Test scene heading parsing."""

    def test_numbers_on_both_sides(self):
        heading = parse_scene_heading("12 INT. KITCHEN - NIGHT 12")

        assert heading.scene_number == "12"
        assert heading.int_ext == "INT"
        assert heading.location == "KITCHEN"
        assert heading.time_of_day == "NIGHT"

    def test_unnumbered_without_time(self):
        heading = parse_scene_heading("EXT. FARMHOUSE")

        assert heading.scene_number is None
        assert heading.int_ext == "EXT"
        assert heading.location == "FARMHOUSE"
        assert heading.time_of_day == "DAY"

    def test_multi_part_location(self):
        heading = parse_scene_heading("EXT. FARMHOUSE - DRIVEWAY - DUSK")

        assert heading.location == "FARMHOUSE - DRIVEWAY"
        assert heading.time_of_day == "EVENING"

    def test_revision_asterisk_and_lettered_number(self):
        heading = parse_scene_heading("4A INT. BARN - DAY *")

        assert heading.scene_number == "4A"
        assert heading.location == "BARN"

    @pytest.mark.parametrize("line", ["Hello there", "INT.", "CUT TO:"])
    def test_not_headings(self, line):
        assert parse_scene_heading(line) is None

    @pytest.mark.parametrize("value,expected", [
        ("dawn", "MORNING"),
        ("MOMENTS LATER", "CONTINUOUS"),
        ("SUNSET", "EVENING"),
        ("NIGHT", "NIGHT"),
        ("", "DAY"),
    ])
    def test_normalize_time_of_day(self, value, expected):
        assert normalize_time_of_day(value) == expected


class TestCharacterCues:
    """Test dialogue cue detection and name normalization."""

    @pytest.mark.parametrize("line", ["JOHN", "JOHN (V.O.)", "INGA (CONT'D)", "DR. SMITH"])
    def test_cues(self, line):
        assert is_character_cue(line)

    @pytest.mark.parametrize("line", [
        "CUT TO:",
        "FADE OUT",
        "INT. KITCHEN - DAY",
        "THE DOOR OPENS",
        "He walks in.",
        "JOHN RUNS",
    ])
    def test_not_cues(self, line):
        assert not is_character_cue(line)

    @pytest.mark.parametrize("cue,expected", [
        ("JOHN (V.O.)", "JOHN"),
        ("INGA (CONT'D)", "INGA"),
        ("DEAN/PUNK ROCKER", "DEAN"),
        ("MARGOT  (O.S.)", "MARGOT"),
    ])
    def test_normalize_character_name(self, cue, expected):
        assert normalize_character_name(cue) == expected


class TestSceneOrder:
    """Test natural scene ordering."""

    def test_scene_sort_key(self):
        assert sorted(["10", "4B", "2", "4A"], key=scene_sort_key) == ["2", "4A", "4B", "10"]


class TestFindSceneLocations:
    """Test heading offsets and page mapping."""

    def test_offsets_and_pages(self):
        text = "INT. KITCHEN - DAY\nJOHN\nHi.\nEXT. FARMHOUSE - NIGHT\n"
        second = text.index("EXT.")
        pages = [PageText(1, text[:second], 0, second), PageText(2, text[second:], second, len(text))]

        locations = find_scene_locations(text, pages)

        assert [loc.char_offset for loc in locations] == [0, second]
        assert [loc.page_number for loc in locations] == [1, 2]
        assert locations[1].line_number == 3

    def test_without_pages(self, script_text):
        locations = find_scene_locations(script_text)

        assert len(locations) == 2
        assert all(loc.page_number == 1 for loc in locations)


class TestParseScriptChunk:
    """Test scene and character extraction from one chunk."""

    def test_numbered_script(self, script_text):
        result = parse_script_chunk(_whole_chunk(script_text), ExtractionContext(session_id="test"))

        assert [s.scene_number for s in result.scenes] == ["1", "2"]
        assert result.scenes[0].location == "KITCHEN"
        assert result.scenes[0].characters_present == {"INGA", "JOHN"}
        characters = {c.normalized_name: c for c in result.characters}
        assert characters["INGA"].dialogue_count == 2
        assert characters["INGA"].scenes_appeared == {"1", "2"}
        assert characters["INGA"].variants == {"INGA", "INGA (CONT'D)"}
        assert characters["JOHN"].variants == {"JOHN (O.S.)", "JOHN"}

    def test_unnumbered_headings_use_document_ordinals(self):
        text = "INT. KITCHEN - NIGHT\n\nINGA\nHello.\n\nEXT. FARMHOUSE - DAY\n\nJOHN\nHi.\n"
        offsets = tuple(loc.char_offset for loc in find_scene_locations(text))
        context = ExtractionContext(session_id="test", heading_offsets=offsets, heading_pages=(1, 2),
                                    numbered_headings=False)

        # Second half only: its heading is the document's second scene
        start = text.index("EXT.")
        chunk = Chunk(index=1, scope_id=2, text=text[start:], body_end=len(text) - start,
                      char_start=start, char_end=len(text))
        result = parse_script_chunk(chunk, context)

        assert [s.scene_number for s in result.scenes] == ["2"]
        assert result.scenes[0].characters_present == {"JOHN"}
        assert result.scenes[0].page_number == 2

    def test_overlap_not_parsed(self):
        """Test cues in the trailing overlap are left to the next chunk."""
        text = "INT. KITCHEN - NIGHT\n\nINGA\nHello.\n\nJOHN\nHi.\n"
        body_end = text.index("JOHN")
        chunk = Chunk(index=0, scope_id=1, text=text, body_end=body_end, char_start=0, char_end=len(text))

        result = parse_script_chunk(chunk, ExtractionContext(session_id="test"))

        assert [c.name for c in result.characters] == ["INGA"]

    def test_cues_before_first_heading_ignored(self):
        result = parse_script_chunk(_whole_chunk("TITLE PAGE\n\nJOHN\nHi.\n"), ExtractionContext(session_id="t"))

        assert result.scenes == []
        assert result.characters == []
