import json

import pytest

from playbridge.crosscutting.reporting import (
    MigrationMatchReport,
    UnresolvedTrack,
    compute_percentage,
    failure_report,
    summarize_by_isrc,
    summarize_by_resolution,
)
from playbridge.domain.entities import CanonicalTrack, MatchResult, MatchRule


def _track(position, title, isrc=None):
    return CanonicalTrack(position=position, title=title, artists=("Artist",), isrc=isrc)


class TestPercentages:
    """Tests for percentage rounding."""

    def test_empty_total(self):
        assert compute_percentage(0, 0) == 0.0

    def test_rounds_to_two_decimals(self):
        assert compute_percentage(1, 3) == 33.33
        assert compute_percentage(2, 3) == 66.67


class TestSummaries:
    """Tests for match report construction."""

    def test_summarize_by_isrc(self):
        tracks = [_track(1, "A", "US1"), _track(2, "B"), _track(3, "C", "  ")]

        report = summarize_by_isrc(tracks)

        assert report.matched_isrc_pct == 33.33
        assert report.matched_fuzzy_pct == 0.0
        assert [u.title for u in report.unresolved] == ["B", "C"]

    def test_summarize_empty(self):
        report = summarize_by_isrc([])
        assert report == MigrationMatchReport()

    def test_summarize_by_resolution(self):
        tracks = [_track(1, "A"), _track(2, "B"), _track(3, "C"), _track(4, "D")]
        results = [
            MatchResult("x", 1.0, MatchRule.MBID),
            MatchResult("y", 1.0, MatchRule.ISRC),
            MatchResult("z", 0.9, MatchRule.FUZZY),
            None,
        ]

        report = summarize_by_resolution(tracks, results)

        assert report.matched_isrc_pct == 50.0
        assert report.matched_fuzzy_pct == 25.0
        assert report.unresolved == (UnresolvedTrack(position=4, title="D", artists=("Artist",)),)

    def test_resolution_length_mismatch(self):
        with pytest.raises(ValueError):
            summarize_by_resolution([_track(1, "A")], [])


class TestReportSerialization:
    """Tests for report JSON shapes."""

    def test_json_shape(self):
        report = summarize_by_isrc([_track(1, "A", "US1"), _track(2, "B")])

        data = json.loads(report.dumps())

        assert data == {
            "matched_isrc_pct": 50.0,
            "matched_fuzzy_pct": 0.0,
            "unresolved": [{"position": 2, "title": "B", "artists": ["Artist"], "isrc": None}],
        }
        assert MigrationMatchReport.from_json(data) == report

    def test_failure_report(self):
        assert failure_report(ValueError("bad input")) == {"error": "bad input", "error_type": "ValueError"}
        assert failure_report(KeyError())["error"] == "KeyError"
