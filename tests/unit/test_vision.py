"""Tests for shelf analysis normalization."""

import pytest

from shelfscanner.services.vision import ShelfAnalysis


class TestShelfAnalysisFromRaw:
    """Tests for ShelfAnalysis.from_raw."""

    def test_camel_case_json(self) -> None:
        raw = '{"isBookshelf": true, "bookTitles": ["Dune", "Emma"]}'
        analysis = ShelfAnalysis.from_raw(raw)

        assert analysis.is_bookshelf is True
        assert analysis.book_titles == ["Dune", "Emma"]

    def test_snake_case_dict(self) -> None:
        analysis = ShelfAnalysis.from_raw(
            {"is_bookshelf": True, "book_titles": ["Middlemarch"]}
        )
        assert analysis.book_titles == ["Middlemarch"]

    def test_titles_cleaned_and_deduplicated(self) -> None:
        analysis = ShelfAnalysis.from_raw(
            {"bookTitles": ["  Dune ", "", "dune", 42, None, "Emma", "   "]}
        )

        assert analysis.book_titles == ["Dune", "Emma"]
        assert analysis.is_bookshelf is False

    def test_instance_passes_through(self) -> None:
        original = ShelfAnalysis(book_titles=["Dune", "Dune"], is_bookshelf=True)
        analysis = ShelfAnalysis.from_raw(original)

        assert analysis.book_titles == ["Dune"]
        assert analysis.is_bookshelf is True

    @pytest.mark.parametrize(
        "raw",
        [
            "not json at all",
            b"\xff\xfe",
            "[1, 2, 3]",
            None,
            42,
            {"bookTitles": "Dune"},
        ],
    )
    def test_unreadable_input_yields_empty(self, raw: object) -> None:
        analysis = ShelfAnalysis.from_raw(raw)

        assert analysis.book_titles == []
        assert analysis.is_bookshelf is False
