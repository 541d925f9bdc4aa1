from __future__ import annotations

import math
import os
from dataclasses import dataclass, fields, replace
from typing import Dict, List, Mapping, Optional, Sequence

from playbridge.domain.entities import (
    Candidate,
    CandidateDetails,
    MatchResult,
    MatchRule,
    ProviderTrack,
    RankedCandidate,
)
from playbridge.domain.normalization import (
    extract_descriptors,
    normalize_artist,
    normalize_isrc,
    normalize_isrc_map,
    normalize_title,
    token_set,
)

DIRECT_CONFIDENCE = 1.0
ISRC_MAP_CONFIDENCE = 0.99
ISRC_CATALOG_CONFIDENCE = 0.98
EXACT_BASE_CONFIDENCE = 0.94
EXACT_DECAY = 0.02
EXACT_FLOOR = 0.7

DESCRIPTOR_BONUS_STEP = 0.03
DESCRIPTOR_BONUS_CAP = 0.08

_ENV_KEYS = {
    "fuzzy_min": "PROVIDERS_MBID_FUZZY_MIN",
    "duration_tolerance_ms": "PROVIDERS_MBID_DURATION_TOLERANCE_MS",
    "fuzzy_duration_penalty_ms": "PROVIDERS_MBID_FUZZY_DURATION_PENALTY_MS",
    "fuzzy_title_weight": "PROVIDERS_MBID_FUZZY_TITLE_WEIGHT",
    "fuzzy_artist_weight": "PROVIDERS_MBID_FUZZY_ARTIST_WEIGHT",
    "fuzzy_duration_weight": "PROVIDERS_MBID_FUZZY_DURATION_WEIGHT",
}


@dataclass(frozen=True)
class ThresholdConfig:
    """Tunable knobs of the resolver."""

    fuzzy_min: float = 0.68
    duration_tolerance_ms: float = 1500
    fuzzy_duration_penalty_ms: float = 6000
    fuzzy_title_weight: float = 0.6
    fuzzy_artist_weight: float = 0.3
    fuzzy_duration_weight: float = 0.1

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ThresholdConfig":
        """Build thresholds from PROVIDERS_MBID_* variables.

        Blank, non-numeric or non-finite values fall back to the defaults.
        """
        env = os.environ if env is None else env
        values = {}
        for attr, key in _ENV_KEYS.items():
            raw = env.get(key)
            if not raw:
                continue
            try:
                value = float(raw)
            except ValueError:
                continue
            if math.isfinite(value):
                values[attr] = value
        return cls(**values)

    def merged(self, overrides: Optional[Mapping[str, Optional[float]]]) -> "ThresholdConfig":
        """Return a copy with every non-None override applied."""
        if not overrides:
            return self
        known = {f.name for f in fields(self)}
        applied = {k: v for k, v in overrides.items() if k in known and v is not None}
        return replace(self, **applied)


@dataclass(frozen=True)
class _PreparedCandidate:
    candidate: Candidate
    normalized_title: str
    normalized_artist: str
    title_tokens: frozenset
    artist_tokens: frozenset
    descriptors: frozenset


@dataclass(frozen=True)
class _CandidateScore:
    prepared: _PreparedCandidate
    title_score: float
    artist_score: float
    duration_score: float
    duration_delta_ms: Optional[int]
    combined_score: float
    descriptor_bonus: float


def round_score(value: float) -> float:
    return round(min(max(value, 0.0), 1.0) * 1000) / 1000


def dice_coefficient(left: frozenset, right: frozenset) -> float:
    if not left or not right:
        return 0.0
    return 2 * len(left & right) / (len(left) + len(right))


def duration_delta(a: Optional[int], b: Optional[int]) -> Optional[int]:
    if a is None or b is None:
        return None
    return abs(int(a) - int(b))


def duration_score(delta: Optional[int], penalty_ms: float) -> float:
    """1.0 at zero delta, linear decay to 0 at the penalty, 0.5 when unknown."""
    if delta is None:
        return 0.5
    if delta <= 0:
        return 1.0
    if delta >= penalty_ms:
        return 0.0
    return 1 - delta / penalty_ms


def descriptor_bonus(left: frozenset, right: frozenset) -> float:
    overlap = len(left & right)
    if not overlap:
        return 0.0
    return min(overlap * DESCRIPTOR_BONUS_STEP, DESCRIPTOR_BONUS_CAP)


def _prepare(candidate: Candidate) -> _PreparedCandidate:
    title = normalize_title(candidate.title)
    artist = normalize_artist(candidate.primary_artist)
    return _PreparedCandidate(
        candidate=candidate,
        normalized_title=title,
        normalized_artist=artist,
        title_tokens=token_set(title),
        artist_tokens=token_set(artist),
        descriptors=extract_descriptors(title),
    )


def _sort_key(ranked: RankedCandidate):
    return (-ranked.confidence, ranked.candidate.id)


class TrackResolver:
    """Resolves a source track to a catalog identity.

    Rules are tried in order and the first that applies wins:
    1. Direct catalog id on the source track (confidence 1.0)
    2. ISRC, via the explicit map (0.99) or a catalog entry with the same ISRC (0.98)
    3. Exact normalized title + artist within the duration tolerance (0.94, decaying by rank)
    4. Fuzzy weighted Dice/duration score, subject to ``fuzzy_min``

    The resolver is pure: identical inputs always produce identical results.
    """

    def __init__(self, thresholds: Optional[ThresholdConfig] = None):
        self.thresholds = thresholds or ThresholdConfig.from_env()

    def resolve(self, provider_track: ProviderTrack, catalog: Sequence[Candidate],
                isrc_map: Optional[Mapping[str, str]] = None,
                thresholds: Optional[Mapping[str, Optional[float]]] = None) -> Optional[MatchResult]:
        """Resolve one source track against a candidate catalog.

        Args:
            provider_track: Source-side view of the track
            catalog: Candidate catalog entries
            isrc_map: Optional explicit ISRC -> catalog id mapping
            thresholds: Partial per-call overrides of the configured thresholds

        Returns:
            MatchResult, or None when no candidate is confident enough
        """
        config = self.thresholds.merged(thresholds)

        if provider_track.catalog_id:
            return MatchResult(
                id=provider_track.catalog_id,
                confidence=DIRECT_CONFIDENCE,
                rule=MatchRule.MBID,
                candidates=(),
            )

        prepared = sorted(
            (_prepare(c) for c in catalog),
            key=lambda p: (p.normalized_title, p.normalized_artist, p.candidate.id),
        )
        source_title = normalize_title(provider_track.title)
        source_artist = normalize_artist(provider_track.artist)
        source_title_tokens = token_set(source_title)
        source_artist_tokens = token_set(source_artist)
        source_descriptors = extract_descriptors(source_title)

        scores = [
            self._score(provider_track, entry, source_title_tokens, source_artist_tokens,
                        source_descriptors, config)
            for entry in prepared
        ]

        source_isrc = normalize_isrc(provider_track.isrc)
        if source_isrc:
            isrc_result = self._resolve_isrc(provider_track, source_isrc, prepared, scores,
                                             normalize_isrc_map(isrc_map))
            if isrc_result is not None:
                return isrc_result

        exact_ids = [
            entry.candidate.id
            for entry in prepared
            if entry.normalized_title == source_title
            and entry.normalized_artist == source_artist
            and self._within_tolerance(provider_track.duration_ms, entry.candidate.duration_ms,
                                       config.duration_tolerance_ms)
        ]
        if exact_ids:
            scoreboard = self._scoreboard(scores, exact_ids)
            winner = next((c for c in scoreboard if c.rule is MatchRule.EXACT), None)
            if winner is not None:
                return MatchResult(
                    id=winner.candidate.id,
                    confidence=winner.confidence,
                    rule=MatchRule.EXACT,
                    candidates=tuple(scoreboard),
                )

        fuzzy = sorted(
            (self._rank(s, MatchRule.FUZZY, s.combined_score) for s in scores if s.combined_score > 0),
            key=_sort_key,
        )
        if not fuzzy or fuzzy[0].confidence < config.fuzzy_min:
            return None
        best = fuzzy[0]
        return MatchResult(id=best.candidate.id, confidence=best.confidence,
                           rule=MatchRule.FUZZY, candidates=tuple(fuzzy))

    def _resolve_isrc(self, provider_track: ProviderTrack, source_isrc: str,
                      prepared: List[_PreparedCandidate], scores: List[_CandidateScore],
                      isrc_map: Optional[Dict[str, str]]) -> Optional[MatchResult]:
        catalog_hit = next(
            (entry for entry in prepared if normalize_isrc(entry.candidate.isrc) == source_isrc),
            None,
        )
        mapped_id = (isrc_map or {}).get(source_isrc)
        if mapped_id:
            candidate = next((e.candidate for e in prepared if e.candidate.id == mapped_id), None)
            if candidate is None and catalog_hit is not None:
                candidate = catalog_hit.candidate
            if candidate is None:
                candidate = Candidate(
                    id=mapped_id,
                    title=provider_track.title,
                    primary_artist=provider_track.artist,
                    duration_ms=provider_track.duration_ms,
                    isrc=provider_track.isrc,
                )
            ranked = RankedCandidate(
                candidate=candidate,
                confidence=ISRC_MAP_CONFIDENCE,
                rule=MatchRule.ISRC,
                details=CandidateDetails(title_score=1.0, artist_score=1.0, duration_score=1.0),
            )
            return MatchResult(id=mapped_id, confidence=ISRC_MAP_CONFIDENCE,
                               rule=MatchRule.ISRC, candidates=(ranked,))

        if catalog_hit is None:
            return None
        score = next(s for s in scores if s.prepared.candidate.id == catalog_hit.candidate.id)
        ranked = self._rank(score, MatchRule.ISRC, ISRC_CATALOG_CONFIDENCE)
        return MatchResult(id=catalog_hit.candidate.id, confidence=ISRC_CATALOG_CONFIDENCE,
                           rule=MatchRule.ISRC, candidates=(ranked,))

    def _score(self, provider_track: ProviderTrack, entry: _PreparedCandidate,
               title_tokens: frozenset, artist_tokens: frozenset, descriptors: frozenset,
               config: ThresholdConfig) -> _CandidateScore:
        delta = duration_delta(provider_track.duration_ms, entry.candidate.duration_ms)
        d_score = duration_score(delta, config.fuzzy_duration_penalty_ms)
        t_score = dice_coefficient(title_tokens, entry.title_tokens)
        a_score = dice_coefficient(artist_tokens, entry.artist_tokens)
        bonus = descriptor_bonus(descriptors, entry.descriptors)
        combined = min(1.0, self._weighted(t_score, a_score, d_score, config) + bonus)
        return _CandidateScore(
            prepared=entry,
            title_score=t_score,
            artist_score=a_score,
            duration_score=d_score,
            duration_delta_ms=delta,
            combined_score=combined,
            descriptor_bonus=bonus,
        )

    @staticmethod
    def _weighted(title: float, artist: float, duration: float, config: ThresholdConfig) -> float:
        weight_sum = config.fuzzy_title_weight + config.fuzzy_artist_weight + config.fuzzy_duration_weight
        if not weight_sum:
            return 0.0
        weighted = (
            title * config.fuzzy_title_weight
            + artist * config.fuzzy_artist_weight
            + duration * config.fuzzy_duration_weight
        )
        return weighted / weight_sum

    @staticmethod
    def _within_tolerance(a: Optional[int], b: Optional[int], tolerance_ms: float) -> bool:
        delta = duration_delta(a, b)
        if delta is None:
            return True
        return delta <= tolerance_ms

    def _scoreboard(self, scores: List[_CandidateScore], exact_ids: List[str]) -> List[RankedCandidate]:
        board = []
        for score in scores:
            candidate_id = score.prepared.candidate.id
            if candidate_id in exact_ids:
                rank = exact_ids.index(candidate_id)
                confidence = max(EXACT_FLOOR, EXACT_BASE_CONFIDENCE - rank * EXACT_DECAY)
                board.append(self._rank(score, MatchRule.EXACT, confidence))
            elif score.combined_score > 0:
                board.append(self._rank(score, MatchRule.FUZZY, score.combined_score))
        return sorted(board, key=_sort_key)

    @staticmethod
    def _rank(score: _CandidateScore, rule: MatchRule, confidence: float) -> RankedCandidate:
        return RankedCandidate(
            candidate=score.prepared.candidate,
            confidence=round_score(confidence),
            rule=rule,
            details=CandidateDetails(
                title_score=round_score(score.title_score),
                artist_score=round_score(score.artist_score),
                duration_score=round_score(score.duration_score),
                duration_delta_ms=score.duration_delta_ms,
                descriptor_bonus=round_score(score.descriptor_bonus),
            ),
        )


def resolve(provider_track: ProviderTrack, catalog: Sequence[Candidate],
            isrc_map: Optional[Mapping[str, str]] = None,
            thresholds: Optional[Mapping[str, Optional[float]]] = None) -> Optional[MatchResult]:
    """Resolve with thresholds read from the environment at call time."""
    return TrackResolver(ThresholdConfig.from_env()).resolve(
        provider_track, catalog, isrc_map=isrc_map, thresholds=thresholds
    )

