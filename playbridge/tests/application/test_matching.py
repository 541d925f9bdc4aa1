import pytest

from playbridge.application.matching import (
    ThresholdConfig,
    TrackResolver,
    descriptor_bonus,
    dice_coefficient,
    duration_score,
    resolve,
    round_score,
)
from playbridge.domain.entities import Candidate, MatchResult, MatchRule, ProviderTrack


@pytest.fixture
def resolver():
    return TrackResolver(ThresholdConfig())


class TestScoringHelpers:
    """Tests for the resolver's scoring primitives."""

    def test_dice_coefficient(self):
        assert dice_coefficient(frozenset({"a", "b"}), frozenset({"a", "b", "c"})) == pytest.approx(0.8)
        assert dice_coefficient(frozenset(), frozenset({"a"})) == 0.0

    def test_duration_score(self):
        assert duration_score(0, 6000) == 1.0
        assert duration_score(3000, 6000) == pytest.approx(0.5)
        assert duration_score(6000, 6000) == 0.0
        assert duration_score(None, 6000) == 0.5

    def test_descriptor_bonus_is_capped(self):
        shared = frozenset({"live", "acoustic", "remix", "demo"})
        assert descriptor_bonus(frozenset({"live"}), frozenset({"live"})) == pytest.approx(0.03)
        assert descriptor_bonus(shared, shared) == pytest.approx(0.08)
        assert descriptor_bonus(frozenset({"live"}), frozenset({"remix"})) == 0.0

    def test_round_score_three_decimals(self):
        assert round_score(0.91666) == 0.917
        assert round_score(1.2) == 1.0


class TestThresholdConfig:
    """Tests for threshold configuration."""

    def test_defaults(self):
        config = ThresholdConfig()
        assert config.fuzzy_min == 0.68
        assert config.duration_tolerance_ms == 1500
        assert config.fuzzy_duration_penalty_ms == 6000
        assert (config.fuzzy_title_weight, config.fuzzy_artist_weight, config.fuzzy_duration_weight) == (0.6, 0.3, 0.1)

    def test_from_env_ignores_bad_values(self):
        config = ThresholdConfig.from_env({
            "PROVIDERS_MBID_FUZZY_MIN": "0.9",
            "PROVIDERS_MBID_FUZZY_TITLE_WEIGHT": "abc",
        })
        assert config.fuzzy_min == 0.9
        assert config.fuzzy_title_weight == 0.6

    def test_from_env_ignores_non_finite_values(self):
        config = ThresholdConfig.from_env({
            "PROVIDERS_MBID_FUZZY_MIN": "nan",
            "PROVIDERS_MBID_DURATION_TOLERANCE_MS": "inf",
            "PROVIDERS_MBID_FUZZY_ARTIST_WEIGHT": "-1e400",
        })
        assert config == ThresholdConfig()

    def test_merged_skips_none_and_unknown_keys(self):
        config = ThresholdConfig().merged({"fuzzy_min": 0.5, "duration_tolerance_ms": None, "bogus": 1})
        assert config.fuzzy_min == 0.5
        assert config.duration_tolerance_ms == 1500


class TestResolverRules:
    """Tests for rule priority and confidences."""

    def test_direct_catalog_id_wins_regardless_of_catalog(self, resolver):
        track = ProviderTrack(title="Song", artist="Artist", isrc="US1", catalog_id="mb-1")
        catalog = [Candidate(id="other", title="Song", primary_artist="Artist", isrc="US1")]

        result = resolver.resolve(track, catalog)

        assert result == MatchResult(id="mb-1", confidence=1.0, rule=MatchRule.MBID, candidates=())

    def test_isrc_map_with_normalized_key(self, resolver):
        track = ProviderTrack(title="Song", artist="Artist", isrc="US-ABC-123")

        result = resolver.resolve(track, [], isrc_map={"USABC123": "mapped-id"})

        assert result.rule is MatchRule.ISRC
        assert result.id == "mapped-id"
        assert result.confidence == 0.99

    def test_isrc_map_outranks_catalog_isrc(self, resolver):
        track = ProviderTrack(title="Song", artist="Artist", isrc="US1")
        catalog = [Candidate(id="cat-1", title="Other", primary_artist="Someone", isrc="us-1")]

        result = resolver.resolve(track, catalog, isrc_map={"US1": "mapped"})

        assert (result.id, result.confidence) == ("mapped", 0.99)

    def test_catalog_isrc_outranks_better_fuzzy_candidate(self, resolver):
        track = ProviderTrack(title="Song", artist="Artist", duration_ms=200_000, isrc="US1")
        catalog = [
            Candidate(id="exact", title="Song", primary_artist="Artist", duration_ms=200_000),
            Candidate(id="by-isrc", title="Completely Different", primary_artist="Nobody", isrc="US1"),
        ]

        result = resolver.resolve(track, catalog)

        assert result.rule is MatchRule.ISRC
        assert result.id == "by-isrc"
        assert result.confidence == 0.98

    def test_unknown_isrc_falls_through_to_exact(self, resolver):
        track = ProviderTrack(title="Song", artist="Artist", isrc="US9")
        catalog = [Candidate(id="c1", title="Song", primary_artist="Artist", isrc="US1")]

        result = resolver.resolve(track, catalog)

        assert result.rule is MatchRule.EXACT

    def test_exact_match_confidence_decays_by_rank(self, resolver):
        track = ProviderTrack(title="Song (Remastered)", artist="The Artist feat. Guest", duration_ms=180_000)
        catalog = [
            Candidate(id="b", title="Song - Remaster", primary_artist="The Artist", duration_ms=181_000),
            Candidate(id="a", title="song remaster", primary_artist="the artist", duration_ms=180_500),
        ]

        result = resolver.resolve(track, catalog)

        assert result.rule is MatchRule.EXACT
        assert result.id == "a"
        assert result.confidence == 0.94
        assert [(c.candidate.id, c.confidence) for c in result.candidates] == [("a", 0.94), ("b", 0.92)]

    def test_exact_match_with_unknown_duration(self, resolver):
        track = ProviderTrack(title="Song", artist="Artist")
        catalog = [Candidate(id="c1", title="Song", primary_artist="Artist", duration_ms=999_999)]

        assert resolver.resolve(track, catalog).rule is MatchRule.EXACT

    def test_duration_outside_tolerance_is_fuzzy(self, resolver):
        track = ProviderTrack(title="Song", artist="Artist", duration_ms=200_000)
        catalog = [Candidate(id="c1", title="Song", primary_artist="Artist", duration_ms=205_000)]

        result = resolver.resolve(track, catalog)

        assert result.rule is MatchRule.FUZZY
        assert result.confidence == 0.917

    def test_fuzzy_match(self, resolver):
        track = ProviderTrack(title="Song Title", artist="Artist", duration_ms=200_000)
        catalog = [
            Candidate(id="c1", title="Song Title (Live)", primary_artist="Artist", duration_ms=200_000),
            Candidate(id="c2", title="Unrelated", primary_artist="Nobody", duration_ms=100_000),
        ]

        result = resolver.resolve(track, catalog)

        assert result.rule is MatchRule.FUZZY
        assert result.id == "c1"
        assert result.confidence == 0.88
        assert result.candidates[0].details.title_score == 0.8

    def test_shared_descriptor_adds_bonus(self, resolver):
        track = ProviderTrack(title="Song Live", artist="Artist", duration_ms=200_000)
        catalog = [Candidate(id="c1", title="Song Live Version", primary_artist="Artist", duration_ms=200_000)]

        result = resolver.resolve(track, catalog)

        assert result.confidence == 0.91
        assert result.candidates[0].details.descriptor_bonus == 0.03

    def test_raising_fuzzy_min_returns_none(self, resolver):
        track = ProviderTrack(title="Song Title", artist="Artist", duration_ms=200_000)
        catalog = [Candidate(id="c1", title="Song Title (Live)", primary_artist="Artist", duration_ms=200_000)]

        assert resolver.resolve(track, catalog, thresholds={"fuzzy_min": 0.9}) is None

    def test_no_candidates(self, resolver):
        assert resolver.resolve(ProviderTrack(title="Song", artist="Artist"), []) is None

    def test_fuzzy_ties_break_on_catalog_id(self, resolver):
        track = ProviderTrack(title="Song Title", artist="Artist")
        catalog = [
            Candidate(id="z", title="Song Title Extra", primary_artist="Artist"),
            Candidate(id="a", title="Song Title Extra", primary_artist="Artist"),
        ]

        result = resolver.resolve(track, catalog)

        assert result.id == "a"
        assert [c.candidate.id for c in result.candidates] == ["a", "z"]


class TestResolverDeterminism:
    """Tests for stable resolver output."""

    def test_identical_inputs_give_identical_results(self, resolver):
        track = ProviderTrack(title="Song", artist="Artist", duration_ms=200_000)
        catalog = [
            Candidate(id="c2", title="Song", primary_artist="Artist", duration_ms=203_000),
            Candidate(id="c1", title="Song (Live)", primary_artist="Artist", duration_ms=200_000),
            Candidate(id="c3", title="Songs", primary_artist="Artists"),
        ]

        first = resolver.resolve(track, catalog)
        second = resolver.resolve(track, catalog)
        reordered = resolver.resolve(track, list(reversed(catalog)))

        assert first.to_json() == second.to_json() == reordered.to_json()

    def test_module_level_resolve_reads_env(self, monkeypatch):
        monkeypatch.setenv("PROVIDERS_MBID_FUZZY_MIN", "0.99")
        track = ProviderTrack(title="Song Title", artist="Artist", duration_ms=200_000)
        catalog = [Candidate(id="c1", title="Song Title (Live)", primary_artist="Artist", duration_ms=200_000)]

        assert resolve(track, catalog) is None

