"""Tests for grouping and searching tile records."""

import itertools
import locale
from datetime import datetime, timezone

import pytest

from tile_inventory.grouping import (
    configure_collation,
    filter_tiles,
    format_dimension,
    group_key,
    group_tiles,
)
from tile_inventory.i18n import suffix_labeler
from tile_inventory.models.tile import TileRecord

from conftest import make_doc


def record(doc_id, **kwargs) -> TileRecord:
    return TileRecord.model_validate(make_doc(doc_id, **kwargs))


class TestGroupKey:
    """Tests for group key formatting."""

    def test_integral_dimensions_drop_fraction(self):
        """12.0 renders as 12."""
        assert format_dimension(12.0) == "12"
        assert group_key("100", 12.0, 24.0) == "100_12x24"

    def test_fractional_dimensions_are_kept(self):
        assert format_dimension(12.5) == "12.5"


class TestGroupTiles:
    """Tests for group_tiles."""

    def test_variants_sorted_by_label(self):
        """Records sharing prefix and size form one group ordered by suffix."""
        records = [
            record("a", suffix="L", minutes=1),
            record("b", suffix="HL-1", minutes=2),
            record("c", prefix="200", minutes=3),
        ]

        groups = group_tiles(records)

        assert [g.group_key for g in groups] == ["200_12x12", "100_12x12"]
        assert [v.type_suffix for v in groups[1].variants] == ["HL-1", "L"]

    def test_grouping_ignores_input_order(self):
        """Every permutation of the input yields the same groups."""
        records = [
            record("a", suffix="L", minutes=1),
            record("b", suffix="HL-1", minutes=1),
            record("c", prefix="200", minutes=3),
            record("d", prefix="200", suffix="D", minutes=3),
        ]
        expected = group_tiles(records)

        for permutation in itertools.permutations(records):
            assert group_tiles(list(permutation)) == expected

    @pytest.mark.parametrize("prefix", [None, ""])
    def test_missing_prefix_groups_under_sentinel(self, prefix):
        """Records without a prefix land in the N/A group."""
        groups = group_tiles([record("a", prefix=prefix, suffix="D")])

        assert groups[0].group_key == "N/A_12x12"
        assert groups[0].model_number_prefix == "N/A"

    def test_group_created_at_is_earliest_variant(self):
        records = [
            record("a", minutes=10),
            record("b", suffix="L", minutes=5),
            record("c", suffix="D", minutes=None),
        ]

        groups = group_tiles(records)

        assert groups[0].group_created_at == datetime(2026, 1, 1, 0, 5, tzinfo=timezone.utc)

    def test_groups_without_timestamp_sort_last(self):
        records = [
            record("a", prefix="300", minutes=None),
            record("b", prefix="100", minutes=1),
            record("c", prefix="200", minutes=2),
        ]

        groups = group_tiles(records)

        assert [g.model_number_prefix for g in groups] == ["200", "100", "300"]
        assert groups[-1].group_created_at is None

    def test_base_suffix_uses_display_label(self):
        """The empty tag is shown with the localized base label."""
        groups = group_tiles([record("a", suffix="")], suffix_labeler("en"))

        variant = groups[0].variants[0]
        assert variant.type_suffix == ""
        assert variant.label == "Base"

    def test_dimensions_are_part_of_the_key(self):
        records = [record("a", width=12, height=12), record("b", width=12, height=24)]

        groups = group_tiles(records)

        assert sorted(g.group_key for g in groups) == ["100_12x12", "100_12x24"]

    def test_empty_input(self):
        assert group_tiles([]) == []


class TestFilterTiles:
    """Tests for filter_tiles."""

    @pytest.fixture
    def records(self):
        return [
            record("a", suffix="HL-1", width=12, height=12),
            record("b", suffix="L", width=12, height=24),
            record("c", suffix="", width=24, height=24),
        ]

    def test_type_term_is_case_insensitive_substring(self, records):
        matches = filter_tiles(records, type_term="hl")
        assert [r.id for r in matches] == ["a"]

    def test_type_term_matches_display_label(self, records):
        matches = filter_tiles(records, type_term="base", suffix_label=suffix_labeler("en"))
        assert [r.id for r in matches] == ["c"]

    def test_dimensions_match_exactly(self, records):
        matches = filter_tiles(records, width="12", height="24")
        assert [r.id for r in matches] == ["b"]

    @pytest.mark.parametrize("term", ["", "  ", "abc"])
    def test_blank_or_invalid_dimension_is_ignored(self, records, term):
        assert len(filter_tiles(records, width=term)) == 3


class TestConfigureCollation:
    """Tests for selecting the label collation locale."""

    @pytest.fixture(autouse=True)
    def restore_collation(self):
        previous = locale.setlocale(locale.LC_COLLATE)
        yield
        locale.setlocale(locale.LC_COLLATE, previous)

    def test_known_locale_is_applied(self):
        assert configure_collation("C") == "C"
        assert locale.setlocale(locale.LC_COLLATE) == "C"

    def test_unknown_locale_keeps_codepoint_order(self):
        assert configure_collation("no_SUCH.locale") is None
        groups = group_tiles([record("a", suffix="L"), record("b", suffix="D")])
        assert [v.label for v in groups[0].variants] == ["D", "L"]
