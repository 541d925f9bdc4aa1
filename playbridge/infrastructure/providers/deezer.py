import logging
from typing import Any, Dict, List, Optional

from playbridge.domain.entities import BackoffOptions, Candidate, CanonicalDocument, CanonicalTrack
from playbridge.domain.normalization import build_track, normalize_isrc

from .base import RestProvider, encode_id

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.deezer.com"


def _seconds_to_ms(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(float(value) * 1000)
    except (TypeError, ValueError):
        return None


def map_track(track: Dict[str, Any], position: int) -> Optional[CanonicalTrack]:
    if not track:
        return None
    contributors = [c.get("name") for c in track.get("contributors") or [] if c and c.get("name")]
    main_artist = (track.get("artist") or {}).get("name")
    artists = contributors or ([main_artist] if main_artist else [])
    album = track.get("album") or {}
    track_id = track.get("id")
    return build_track(
        position,
        track.get("title") or track.get("title_short"),
        artists,
        album=album.get("title"),
        duration_ms=_seconds_to_ms(track.get("duration")),
        explicit=track.get("explicit_lyrics"),
        release_date=album.get("release_date"),
        isrc=track.get("isrc"),
        provider_ids={"deezer": str(track_id)} if track_id is not None else {},
    )


class DeezerProvider(RestProvider):
    """Deezer API provider. Durations arrive in seconds."""

    name = "deezer"
    default_page_size = 100
    max_page_size = 100

    async def _read(self, playlist_id: str, size: int, backoff: Optional[BackoffOptions]) -> CanonicalDocument:
        encoded = encode_id(playlist_id)
        metadata = await self.transport.request("GET", f"/playlist/{encoded}", backoff=backoff) or {}

        raw_tracks: List[Dict[str, Any]] = []
        index = 0
        while True:
            page = await self.transport.request(
                "GET", f"/playlist/{encoded}/tracks",
                query={"index": index, "limit": size},
                backoff=backoff,
            ) or {}
            data = page.get("data") or []
            raw_tracks.extend(data)
            index += len(data)
            if not data or not page.get("next"):
                break

        tracks = [t for t in (map_track(raw, i) for i, raw in enumerate(raw_tracks, start=1)) if t]
        return CanonicalDocument(
            name=metadata.get("title") or "",
            description=metadata.get("description"),
            source_service=self.name,
            source_playlist_id=str(metadata.get("id") or playlist_id),
            tracks=tuple(tracks),
        )

    async def _create_playlist(self, document: CanonicalDocument, backoff: Optional[BackoffOptions]) -> str:
        created = await self.transport.request(
            "POST", "/user/me/playlists",
            body={"title": document.name, "description": document.description},
            backoff=backoff,
        )
        return self._created_id(created, "id")

    async def _add_tracks(self, playlist_id: str, track_ids: List[str], backoff: Optional[BackoffOptions]) -> None:
        await self.transport.request(
            "POST", f"/playlist/{encode_id(playlist_id)}/tracks",
            body={"songs": list(track_ids)},
            backoff=backoff,
        )

    async def search_candidates(self, track: CanonicalTrack, limit: int = 5) -> List[Candidate]:
        """Look the track up by ISRC, then fall back to an advanced title/artist search."""
        isrc = normalize_isrc(track.isrc)
        if isrc:
            # Unknown ISRCs come back as 200 with an "error" object
            found = await self.transport.request("GET", f"/track/isrc:{isrc}")
            if found and found.get("id") and not found.get("error"):
                return [self._candidate(found)]
            logger.debug(f"Deezer has no track for ISRC {isrc}")

        query = f'track:"{track.title}" artist:"{track.primary_artist}"'
        data = await self.transport.request("GET", "/search/track", query={"q": query, "limit": limit}) or {}
        return [self._candidate(item) for item in data.get("data") or [] if item and item.get("id")]

    @staticmethod
    def _candidate(track: Dict[str, Any]) -> Candidate:
        return Candidate(
            id=str(track["id"]),
            title=track.get("title") or "",
            primary_artist=(track.get("artist") or {}).get("name") or "",
            duration_ms=_seconds_to_ms(track.get("duration")),
            isrc=track.get("isrc"),
        )
