"""Tests for the deterministic schedule parser."""

import pytest

from chunk_grouper import split_schedule_by_days
from schedule_parser import (
    count_scene_hints,
    extract_day_metadata,
    is_cast_list,
    is_scene_identifier,
    parse_scene_entries,
    parse_schedule_day,
    split_cells,
)


class TestDisambiguation:
    """Test cast lists versus scene identifiers."""

    @pytest.mark.parametrize("text", ["1, 2", "1, 2, 4, 7", "12,3", "1 , 5"])
    def test_cast_lists_are_never_scene_numbers(self, text):
        assert is_cast_list(text)
        assert not is_scene_identifier(text)

    @pytest.mark.parametrize("text", ["7", "4A", "18B", "106A p1"])
    def test_scene_identifiers(self, text):
        assert is_scene_identifier(text)
        assert not is_cast_list(text)

    def test_split_cells(self):
        """Test tabs and runs of spaces separate cells."""
        assert split_cells("4A\tEXT  FARM HOUSE\t\t1/8 pgs") == ["4A", "EXT", "FARM HOUSE", "1/8 pgs"]

    def test_cast_line_alone_is_not_an_entry(self):
        assert parse_scene_entries("1, 2, 4, 7\n") == []
        assert parse_scene_entries("1, 2\tEXT\tFARMHOUSE\n") == []


class TestSingleLineLayout:
    """Test one row per scene."""

    def test_fields(self):
        entries = parse_scene_entries(
            "4A\tEXT\tFARMHOUSE - DRIVEWAY\tDay\t1/8 pgs\tTAXI passes the road\t1, 2\t0:30\tD5\n"
        )

        assert len(entries) == 1
        entry = entries[0]
        assert entry.scene_number == "4A"
        assert entry.int_ext == "EXT"
        assert entry.set_location == "FARMHOUSE - DRIVEWAY"
        assert entry.pages == "1/8"
        assert entry.description == "TAXI passes the road"
        assert entry.cast_numbers == {1, 2}
        assert entry.estimated_time == "0:30"
        assert entry.day_night == "D5"
        assert entry.shoot_order == 1

    def test_generic_day_label_without_story_day(self):
        entries = parse_scene_entries("6\tINT\tKITCHEN\tNight\t2/8 pgs\n")

        assert entries[0].day_night == "Night"

    def test_scene_number_before_page_count(self):
        """Test a scene id not in the first cell is taken when it precedes the pages."""
        entries = parse_scene_entries("EXT\tFARMHOUSE\t12\t2/8 pgs\tDay\t1, 3\n")

        assert entries[0].scene_number == "12"
        assert entries[0].cast_numbers == {1, 3}

    def test_single_cast_number_after_scene(self):
        entries = parse_scene_entries("6\tINT\tKITCHEN\tNight\t2/8 pgs\tInga makes tea\t3\n")

        assert entries[0].scene_number == "6"
        assert entries[0].cast_numbers == {3}

    def test_duplicates_and_shoot_order(self):
        """Test repeats keep the first entry and order follows the page."""
        text = (
            "6\tINT\tKITCHEN\tNight\t2/8 pgs\n"
            "8\tEXT\tYARD\tDay\t1/8 pgs\n"
            "6\tINT\tKITCHEN\tNight\t2/8 pgs\n"
        )

        entries = parse_scene_entries(text)

        assert [(e.scene_number, e.shoot_order) for e in entries] == [("6", 1), ("8", 2)]


class TestStackedLayout:
    """Test header row plus value row."""

    def test_header_then_bare_scene_number(self):
        entries = parse_scene_entries("Scene\tINT\tKITCHEN\tEst. Time\n7\n")

        assert len(entries) == 1
        assert entries[0].scene_number == "7"
        assert entries[0].int_ext == "INT"
        assert entries[0].set_location == "KITCHEN"

    def test_cast_list_after_value_row(self):
        text = (
            "Scene\tINT\tFARMHOUSE\tEst. Time\n"
            "7\t1 6/8 pgs\tDay\tThey meet INGA & JOHN\t1:30\tD5\n"
            "1, 2, 4, 7\n"
        )

        entries = parse_scene_entries(text)

        assert len(entries) == 1
        entry = entries[0]
        assert entry.scene_number == "7"
        assert entry.pages == "1 6/8"
        assert entry.cast_numbers == {1, 2, 4, 7}
        assert entry.day_night == "D5"
        assert entry.estimated_time == "1:30"

    def test_scene_with_number_is_not_a_header(self):
        """Test "Scene 12 INT ..." is not read as a stacked header."""
        entries = parse_scene_entries("Scene 12\tINT\tKITCHEN\n7\n")

        assert entries == []


class TestDelimitedLayout:
    """Test vertical blocks ending in "pgs Scenes:"."""

    def test_scene_number_leading_synopsis(self):
        text = (
            "EXT FARMHOUSE - DRIVEWAY\n"
            "Day\n"
            "1/8\n"
            "4A TAXI passes the road to the Farmhouse\n"
            "pgs Scenes:\n"
            "0:30\n"
            "Est. Time\n"
        )

        entries = parse_scene_entries(text)

        assert len(entries) == 1
        entry = entries[0]
        assert entry.scene_number == "4A"
        assert entry.int_ext == "EXT"
        assert entry.set_location == "FARMHOUSE - DRIVEWAY"
        assert entry.description == "TAXI passes the road to the Farmhouse"
        assert entry.pages == "1/8"
        assert entry.estimated_time == "0:30"

    def test_standalone_scene_number_after_cast_list(self):
        """Test the cast list line above a bare scene number stays a cast list."""
        text = (
            "EXT FARMHOUSE\n"
            "Day\n"
            "1 6/8\n"
            "They meet INGA & JOHN\n"
            "1, 2, 4, 7\n"
            "7\n"
            "pgs Scenes:\n"
        )

        entries = parse_scene_entries(text)

        assert len(entries) == 1
        assert entries[0].scene_number == "7"
        assert entries[0].cast_numbers == {1, 2, 4, 7}
        assert entries[0].pages == "1 6/8"

    def test_count_scene_hints_uses_delimiters(self):
        text = "EXT A\n4A x\npgs Scenes:\nINT B\n5 y\npgs Scenes:\n"

        assert count_scene_hints(text) == 2


class TestScheduleDay:
    """Test whole day blocks."""

    def test_parsing_stops_at_end_of_day(self):
        text = (
            "4A\tEXT\tFARM\tDay\t1/8 pgs\n"
            "End of Shooting Day 1\n"
            "6\tINT\tKITCHEN\tNight\t2/8 pgs\n"
        )

        assert [e.scene_number for e in parse_scene_entries(text)] == ["4A"]

    def test_days_from_sample_schedule(self, schedule_text):
        chunks = split_schedule_by_days(schedule_text)

        day1 = parse_schedule_day(chunks[0].body, 1)
        day2 = parse_schedule_day(chunks[1].body, 2)

        assert [s.scene_number for s in day1.scenes] == ["4A", "6"]
        assert day1.date == "2024-05-21"
        assert day1.day_of_week == "Tuesday"
        assert day1.total_pages == "3/8"
        assert [s.scene_number for s in day2.scenes] == ["7"]
        assert day2.scenes[0].cast_numbers == {1, 2, 4, 7}
        assert day2.date == "2024-05-22"

    def test_day_metadata(self):
        text = (
            "Day 1\tSR 05:02\tSS 21:14\n"
            "Location: Plumhill Manor\n"
            "UNIT MOVE\n"
            "End of Shooting Day 1 -- Tuesday, 21 May 2024 -- 2 3/8 Pages\n"
            "Drone Day on Wednesday, 22 May 2024\n"
        )

        metadata = extract_day_metadata(text)

        assert metadata["date"] == "2024-05-21"
        assert metadata["sunrise"] == "05:02"
        assert metadata["sunset"] == "21:14"
        assert metadata["notes"] == {"UNIT MOVE"}
        assert metadata["total_pages"] == "2 3/8"
        assert metadata["location"] == "Plumhill Manor"

    def test_no_entries(self):
        """Test a block without recognisable rows gives an empty day."""
        day = parse_schedule_day("Nothing scheduled\n", 4)

        assert day.day_number == 4
        assert day.scenes == []
