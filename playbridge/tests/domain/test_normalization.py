import pytest

from playbridge.domain.entities import UNKNOWN_ARTIST, CanonicalDocument, CanonicalTrack
from playbridge.domain.normalization import (
    build_track,
    extract_descriptors,
    normalize_artist,
    normalize_document,
    normalize_isrc,
    normalize_isrc_map,
    normalize_string,
    normalize_title,
    token_set,
)


class TestStringNormalization:
    """Tests for title/artist normalization."""

    def test_strips_diacritics_and_lowercases(self):
        assert normalize_string("Beyoncé") == "beyonce"
        assert normalize_string("MOTÖRHEAD") == "motorhead"

    def test_punctuation_becomes_whitespace(self):
        assert normalize_string("Hello, World!  (Live)") == "hello world live"

    def test_apostrophes_are_removed_not_split(self):
        assert normalize_string("Don't Stop") == "dont stop"
        assert normalize_string("Don’t Stop") == "dont stop"

    def test_ampersand_folds_to_and(self):
        assert normalize_string("Simon & Garfunkel") == "simon and garfunkel"

    def test_none_and_empty(self):
        assert normalize_string(None) == ""
        assert normalize_string("   ") == ""

    def test_title_folds_remastered(self):
        assert normalize_title("Song - Remastered 2011") == "song remaster 2011"

    @pytest.mark.parametrize("credit", [
        "Artist feat. Guest",
        "Artist ft. Guest",
        "Artist featuring Guest",
        "Artist Feat Guest",
    ])
    def test_artist_drops_featuring_tail(self, credit):
        assert normalize_artist(credit) == "artist"

    def test_token_set_is_order_insensitive(self):
        assert token_set("a b c") == token_set("c b a")
        assert token_set("") == frozenset()

    def test_extract_descriptors(self):
        assert extract_descriptors(normalize_title("Song (Live Acoustic)")) == frozenset({"live", "acoustic"})
        assert extract_descriptors("song") == frozenset()


class TestIsrcNormalization:
    """Tests for ISRC normalization."""

    def test_strips_non_alphanumerics_and_uppercases(self):
        assert normalize_isrc("us-abc-12 345") == "USABC12345"

    def test_missing_isrc(self):
        assert normalize_isrc(None) == ""
        assert normalize_isrc("") == ""

    def test_isrc_map_keys_are_normalized(self):
        mapping = normalize_isrc_map({"US-ABC-123": "mapped-id", "---": "ignored"})
        assert mapping == {"USABC123": "mapped-id"}

    def test_isrc_map_none(self):
        assert normalize_isrc_map(None) is None


class TestBuildTrack:
    """Tests for canonical track construction from provider data."""

    def test_applies_track_invariants(self):
        track = build_track(3, "  Song ", ["", " Artist "], isrc="us-1", duration_ms=-5)
        assert track.position == 3
        assert track.title == "Song"
        assert track.artists == ("Artist",)
        assert track.isrc == "US1"
        assert track.duration_ms == 0

    def test_missing_artists_use_placeholder(self):
        track = build_track(1, "Song", [])
        assert track.artists == (UNKNOWN_ARTIST,)

    def test_missing_title_uses_placeholder(self):
        assert build_track(1, None, ["A"]).title == "Untitled"

    def test_blank_isrc_becomes_none(self):
        assert build_track(1, "Song", ["A"], isrc="--").isrc is None


class TestNormalizeDocument:
    """Tests for document renaming and renumbering."""

    def _document(self):
        return CanonicalDocument(
            name="Source Name",
            tracks=(
                CanonicalTrack(position=2, title="A", artists=("X",)),
                CanonicalTrack(position=5, title="B", artists=("Y",)),
                CanonicalTrack(position=9, title="C", artists=("Z",)),
            ),
        )

    def test_positions_become_dense(self):
        normalized = normalize_document(self._document())
        assert [t.position for t in normalized.tracks] == [1, 2, 3]
        assert [t.title for t in normalized.tracks] == ["A", "B", "C"]

    def test_override_name_wins_when_not_blank(self):
        assert normalize_document(self._document(), "  New Name ").name == "New Name"

    @pytest.mark.parametrize("override", [None, "", "   "])
    def test_blank_override_keeps_source_name(self, override):
        assert normalize_document(self._document(), override).name == "Source Name"

    def test_original_document_is_untouched(self):
        document = self._document()
        normalize_document(document, "Other")
        assert document.name == "Source Name"
        assert document.tracks[0].position == 2

    def test_result_is_valid(self):
        normalize_document(self._document()).validate()
