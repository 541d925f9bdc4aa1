import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from playbridge.domain.entities import CanonicalTrack, MatchResult, MatchRule

ISRC_RULES = (MatchRule.MBID, MatchRule.ISRC)


def compute_percentage(count: int, total: int) -> float:
    """Percentage rounded to two decimals; 0 for an empty total."""
    if total == 0:
        return 0.0
    return round(count / total * 100, 2)


@dataclass(frozen=True)
class UnresolvedTrack:
    """A track that could not be confidently placed in the destination catalog."""

    position: int
    title: str
    artists: Tuple[str, ...] = ()
    isrc: Optional[str] = None

    @classmethod
    def from_track(cls, track: CanonicalTrack) -> "UnresolvedTrack":
        return cls(position=track.position, title=track.title,
                   artists=tuple(track.artists), isrc=track.isrc)

    def to_json(self) -> Dict[str, Any]:
        return {
            "position": self.position,
            "title": self.title,
            "artists": list(self.artists),
            "isrc": self.isrc,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "UnresolvedTrack":
        return cls(
            position=int(data["position"]),
            title=data["title"],
            artists=tuple(data.get("artists") or ()),
            isrc=data.get("isrc"),
        )


@dataclass(frozen=True)
class MigrationMatchReport:
    """Match statistics stored on a succeeded job."""

    matched_isrc_pct: float = 0.0
    matched_fuzzy_pct: float = 0.0
    unresolved: Tuple[UnresolvedTrack, ...] = field(default_factory=tuple)

    def to_json(self) -> Dict[str, Any]:
        return {
            "matched_isrc_pct": self.matched_isrc_pct,
            "matched_fuzzy_pct": self.matched_fuzzy_pct,
            "unresolved": [u.to_json() for u in self.unresolved],
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "MigrationMatchReport":
        return cls(
            matched_isrc_pct=float(data.get("matched_isrc_pct", 0)),
            matched_fuzzy_pct=float(data.get("matched_fuzzy_pct", 0)),
            unresolved=tuple(UnresolvedTrack.from_json(u) for u in data.get("unresolved") or ()),
        )

    def dumps(self, indent: Optional[int] = None) -> str:
        return json.dumps(self.to_json(), ensure_ascii=False, indent=indent)


def has_isrc(track: CanonicalTrack) -> bool:
    return bool(track.isrc and track.isrc.strip())


def summarize_by_isrc(tracks: Sequence[CanonicalTrack]) -> MigrationMatchReport:
    """Count tracks carrying an ISRC; every other track is unresolved."""
    unresolved: List[UnresolvedTrack] = []
    isrc_matches = 0
    for track in tracks:
        if has_isrc(track):
            isrc_matches += 1
        else:
            unresolved.append(UnresolvedTrack.from_track(track))
    return MigrationMatchReport(
        matched_isrc_pct=compute_percentage(isrc_matches, len(tracks)),
        matched_fuzzy_pct=0.0,
        unresolved=tuple(unresolved),
    )


def summarize_by_resolution(tracks: Sequence[CanonicalTrack],
                            results: Sequence[Optional[MatchResult]]) -> MigrationMatchReport:
    """Build the report from resolver outcomes, one per track in the same order.

    Direct and ISRC matches count toward the ISRC percentage, exact and fuzzy
    ones toward the fuzzy percentage, and None results are unresolved.
    """
    if len(tracks) != len(results):
        raise ValueError("Number of tracks must match number of resolver results")
    isrc_count = 0
    fuzzy_count = 0
    unresolved: List[UnresolvedTrack] = []
    for track, result in zip(tracks, results):
        if result is None:
            unresolved.append(UnresolvedTrack.from_track(track))
        elif result.rule in ISRC_RULES:
            isrc_count += 1
        else:
            fuzzy_count += 1
    total = len(tracks)
    return MigrationMatchReport(
        matched_isrc_pct=compute_percentage(isrc_count, total),
        matched_fuzzy_pct=compute_percentage(fuzzy_count, total),
        unresolved=tuple(unresolved),
    )


def failure_report(error: BaseException) -> Dict[str, Any]:
    """Report stored on a failed job."""
    return {"error": str(error) or type(error).__name__, "error_type": type(error).__name__}
