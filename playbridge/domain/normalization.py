from __future__ import annotations

import re
import unicodedata
from dataclasses import replace
from typing import Iterable, Mapping, Optional

from .entities import UNKNOWN_ARTIST, CanonicalDocument, CanonicalTrack


_FEAT_TAIL_PATTERN = re.compile(r"\b(feat|ft)\b\.?.*$|\bfeaturing\b.*$", re.IGNORECASE)
_APOSTROPHE_PATTERN = re.compile(r"['’]")
# Keep unicode word characters and spaces; punctuation becomes whitespace. Underscores handled separately.
_NON_WORD_SPACE_PATTERN = re.compile(r"[^\w\s]", re.UNICODE)
_MULTISPACE_PATTERN = re.compile(r"\s+")
_REMASTERED_PATTERN = re.compile(r"\bremastered\b")
_NON_ALNUM_PATTERN = re.compile(r"[^0-9A-Za-z]")

DESCRIPTOR_TOKENS = ("live", "acoustic", "remaster", "remix", "demo", "instrumental")


def _strip_diacritics(text: str) -> str:
    normalized = unicodedata.normalize("NFKD", text)
    return "".join(c for c in normalized if not unicodedata.combining(c))


def normalize_string(value: Optional[str]) -> str:
    value = value or ""
    value = _strip_diacritics(value)
    value = value.lower()
    value = value.replace("&", " and ")
    value = _APOSTROPHE_PATTERN.sub("", value)
    value = _NON_WORD_SPACE_PATTERN.sub(" ", value)
    value = value.replace("_", " ")
    value = _MULTISPACE_PATTERN.sub(" ", value).strip()
    return value


def normalize_title(value: Optional[str]) -> str:
    return _REMASTERED_PATTERN.sub("remaster", normalize_string(value))


def normalize_artist(value: Optional[str]) -> str:
    """Normalize an artist credit, dropping a trailing feat./ft./featuring clause."""
    return normalize_string(_FEAT_TAIL_PATTERN.sub("", value or ""))


def token_set(normalized: str) -> frozenset:
    return frozenset(tok for tok in normalized.split(" ") if tok)


def extract_descriptors(normalized_title: str) -> frozenset:
    tokens = token_set(normalized_title)
    return frozenset(d for d in DESCRIPTOR_TOKENS if d in tokens)


def normalize_isrc(value: Optional[str]) -> str:
    """Strip non-alphanumerics and uppercase. Returns "" for missing values."""
    if not value:
        return ""
    return _NON_ALNUM_PATTERN.sub("", value).upper()


def normalize_isrc_map(mapping: Optional[Mapping[str, str]]) -> Optional[dict]:
    if mapping is None:
        return None
    normalized = {}
    for key, value in mapping.items():
        norm_key = normalize_isrc(key)
        if not norm_key:
            continue
        normalized[norm_key] = value
    return normalized


def normalize_artists(artists: Iterable[str]) -> tuple:
    """Trim artist credits, dropping blanks; falls back to the unknown-artist placeholder."""
    cleaned = tuple(a.strip() for a in (artists or ()) if a and a.strip())
    return cleaned or (UNKNOWN_ARTIST,)


def build_track(position: int, title: Optional[str], artists: Iterable[str], **fields) -> CanonicalTrack:
    """Construct a canonical track from provider data, applying the track invariants."""
    isrc = normalize_isrc(fields.pop("isrc", None)) or None
    duration_ms = fields.pop("duration_ms", None)
    if duration_ms is not None:
        duration_ms = max(0, int(duration_ms))
    return CanonicalTrack(
        position=position,
        title=(title or "").strip() or "Untitled",
        artists=normalize_artists(artists),
        isrc=isrc,
        duration_ms=duration_ms,
        **fields,
    )


def normalize_document(document: CanonicalDocument, override_name: Optional[str] = None) -> CanonicalDocument:
    """Return a renamed, densely renumbered copy of the document.

    The destination name wins when it is non-blank after trimming. Positions
    become 1..N in the document's order regardless of gaps in the source.
    """
    trimmed = (override_name or "").strip()
    name = trimmed or document.name
    tracks = tuple(
        replace(track, position=index, artists=normalize_artists(track.artists))
        for index, track in enumerate(document.tracks, start=1)
    )
    return replace(document, name=name, tracks=tracks)
