from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from .errors import InvalidDocumentError

UNKNOWN_ARTIST = "Unknown Artist"

PROVIDER_NAMES: Tuple[str, ...] = ("spotify", "deezer", "tidal", "youtube")
SOURCE_SERVICES: Tuple[str, ...] = PROVIDER_NAMES + ("amazon",)


@dataclass(frozen=True)
class CanonicalTrack:
    """Provider-agnostic track inside a playlist interchange document."""

    position: int
    title: str
    artists: Tuple[str, ...] = ()
    album: Optional[str] = None
    duration_ms: Optional[int] = None
    explicit: Optional[bool] = None
    release_date: Optional[str] = None
    isrc: Optional[str] = None
    mb_recording_id: Optional[str] = None
    mb_release_id: Optional[str] = None
    provider_ids: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        # Accept lists from callers but keep the stored value immutable
        object.__setattr__(self, "artists", tuple(a for a in (self.artists or ()) if a))
        object.__setattr__(self, "provider_ids", dict(self.provider_ids or {}))

    @property
    def primary_artist(self) -> str:
        return self.artists[0] if self.artists else UNKNOWN_ARTIST

    def provider_id(self, provider: str) -> Optional[str]:
        value = self.provider_ids.get(provider)
        return value or None

    def to_json(self) -> Dict[str, Any]:
        return {
            "position": self.position,
            "title": self.title,
            "artists": list(self.artists),
            "album": self.album,
            "duration_ms": self.duration_ms,
            "explicit": self.explicit,
            "release_date": self.release_date,
            "isrc": self.isrc,
            "mb_recording_id": self.mb_recording_id,
            "mb_release_id": self.mb_release_id,
            "provider_ids": dict(self.provider_ids),
        }

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "CanonicalTrack":
        return cls(
            position=int(data["position"]),
            title=data["title"],
            artists=tuple(data.get("artists") or ()),
            album=data.get("album"),
            duration_ms=data.get("duration_ms"),
            explicit=data.get("explicit"),
            release_date=data.get("release_date"),
            isrc=data.get("isrc"),
            mb_recording_id=data.get("mb_recording_id"),
            mb_release_id=data.get("mb_release_id"),
            provider_ids=dict(data.get("provider_ids") or {}),
        )


@dataclass(frozen=True)
class CanonicalDocument:
    """Playlist interchange document shared by every reader and writer.

    Documents are never mutated in place; normalization builds a new one.
    """

    name: str
    tracks: Tuple[CanonicalTrack, ...] = ()
    description: Optional[str] = None
    source_service: Optional[str] = None
    source_playlist_id: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "tracks", tuple(self.tracks or ()))

    def validate(self) -> "CanonicalDocument":
        """Check document invariants and return self.

        Raises:
            InvalidDocumentError: on an empty title, missing artists or
                positions that are not unique and increasing.
        """
        previous = 0
        for track in self.tracks:
            if not track.title or not track.title.strip():
                raise InvalidDocumentError(f"Track at position {track.position} has no title")
            if not track.artists:
                raise InvalidDocumentError(f"Track at position {track.position} has no artists")
            if track.position < 1 or track.position <= previous:
                raise InvalidDocumentError(
                    f"Track positions must be unique and increasing (got {track.position} after {previous})"
                )
            if track.duration_ms is not None and track.duration_ms < 0:
                raise InvalidDocumentError(f"Track at position {track.position} has a negative duration")
            previous = track.position
        if self.source_service is not None and self.source_service not in SOURCE_SERVICES:
            raise InvalidDocumentError(f"Unknown source service: {self.source_service}")
        return self

    def to_json(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "source_service": self.source_service,
            "source_playlist_id": self.source_playlist_id,
            "tracks": [t.to_json() for t in self.tracks],
        }

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "CanonicalDocument":
        return cls(
            name=data["name"],
            description=data.get("description"),
            source_service=data.get("source_service"),
            source_playlist_id=data.get("source_playlist_id"),
            tracks=tuple(CanonicalTrack.from_json(t) for t in data.get("tracks") or ()),
        )


@dataclass(frozen=True)
class Candidate:
    """Catalog entry offered to the resolver."""

    id: str
    title: str
    primary_artist: str
    duration_ms: Optional[int] = None
    isrc: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "primaryArtist": self.primary_artist,
            "durationMs": self.duration_ms,
            "isrc": self.isrc,
        }

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "Candidate":
        return cls(
            id=str(data.get("id") or data.get("mbid")),
            title=data.get("title") or "",
            primary_artist=data.get("primaryArtist") or data.get("primary_artist") or "",
            duration_ms=data.get("durationMs", data.get("duration_ms")),
            isrc=data.get("isrc"),
        )


@dataclass(frozen=True)
class ProviderTrack:
    """Source-side view of a track handed to the resolver."""

    title: str
    artist: str
    duration_ms: Optional[int] = None
    isrc: Optional[str] = None
    catalog_id: Optional[str] = None

    @classmethod
    def from_canonical(cls, track: CanonicalTrack) -> "ProviderTrack":
        return cls(
            title=track.title,
            artist=track.primary_artist,
            duration_ms=track.duration_ms,
            isrc=track.isrc,
            catalog_id=track.mb_recording_id,
        )

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "ProviderTrack":
        return cls(
            title=data.get("title") or "",
            artist=data.get("artist") or "",
            duration_ms=data.get("durationMs", data.get("duration_ms")),
            isrc=data.get("isrc"),
            catalog_id=data.get("catalogId") or data.get("mbid"),
        )


class MatchRule(str, Enum):
    MBID = "mbid"
    ISRC = "isrc"
    EXACT = "exact"
    FUZZY = "fuzzy"


@dataclass(frozen=True)
class CandidateDetails:
    """Per-axis sub-scores for a ranked candidate."""

    title_score: float
    artist_score: float
    duration_score: float
    duration_delta_ms: Optional[int] = None
    descriptor_bonus: float = 0.0


@dataclass(frozen=True)
class RankedCandidate:
    candidate: Candidate
    confidence: float
    rule: MatchRule
    details: Optional[CandidateDetails] = None

    def to_json(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "candidate": self.candidate.to_json(),
            "confidence": self.confidence,
            "rule": self.rule.value,
        }
        if self.details is not None:
            data["details"] = {
                "titleScore": self.details.title_score,
                "artistScore": self.details.artist_score,
                "durationScore": self.details.duration_score,
                "durationDeltaMs": self.details.duration_delta_ms,
                "descriptorBonus": self.details.descriptor_bonus,
            }
        return data


@dataclass(frozen=True)
class MatchResult:
    """Resolved catalog identity for one source track."""

    id: str
    confidence: float
    rule: MatchRule
    candidates: Tuple[RankedCandidate, ...] = ()

    def to_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "confidence": self.confidence,
            "rule": self.rule.value,
            "candidates": [c.to_json() for c in self.candidates],
        }


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED)


@dataclass
class MigrationJob:
    """Job record owned by the enqueue collaborator; only the orchestrator transitions it."""

    id: str
    source_provider: str
    source_playlist_id: str
    dest_provider: str
    status: JobStatus = JobStatus.QUEUED
    dest_playlist_name: Optional[str] = None
    user_id: Optional[str] = None
    report: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class WriteReport:
    """Aggregate outcome of a batched write."""

    attempted: int
    added: int
    failed: int
    skipped: int = 0
    notes: Tuple[str, ...] = ()

    def to_json(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "attempted": self.attempted,
            "added": self.added,
            "failed": self.failed,
        }
        if self.skipped:
            data["skipped"] = self.skipped
        if self.notes:
            data["notes"] = list(self.notes)
        return data


@dataclass(frozen=True)
class WritePlaylistResult:
    dest_id: str
    report: WriteReport


@dataclass(frozen=True)
class ProviderAuth:
    token: str


@dataclass(frozen=True)
class BackoffOptions:
    """Retry policy for 429/5xx responses."""

    retries: int = 3
    base_delay_ms: int = 500
    max_delay_ms: int = 8000
    jitter_ms: int = 100


@dataclass(frozen=True)
class ReadOptions:
    page_size: Optional[int] = None
    backoff: Optional[BackoffOptions] = None


@dataclass(frozen=True)
class WriteOptions:
    batch_size: Optional[int] = None
    backoff: Optional[BackoffOptions] = None
