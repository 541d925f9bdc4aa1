import logging
from typing import Any, Dict, List, Optional

from playbridge.domain.entities import BackoffOptions, CanonicalDocument, CanonicalTrack
from playbridge.domain.normalization import build_track

from .base import RestProvider, encode_id

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.tidal.com"


def map_track(entry: Dict[str, Any], position: int) -> Optional[CanonicalTrack]:
    # Pages contain either {"track": {...}} wrappers or bare track objects
    track = entry.get("track") if isinstance(entry, dict) and "track" in entry else entry
    if not track:
        return None
    artists = [a.get("name") for a in track.get("artists") or [] if a and a.get("name")]
    duration = track.get("duration")
    isrc = track.get("isrc") or (track.get("externalIds") or {}).get("isrc")
    track_id = track.get("id")
    return build_track(
        position,
        track.get("title"),
        artists,
        album=(track.get("album") or {}).get("title"),
        duration_ms=int(duration * 1000) if isinstance(duration, (int, float)) else None,
        explicit=track.get("explicit"),
        isrc=isrc,
        provider_ids={"tidal": str(track_id)} if track_id is not None else {},
    )


class TidalProvider(RestProvider):
    """TIDAL API provider."""

    name = "tidal"
    default_page_size = 100
    max_page_size = 100

    async def _read(self, playlist_id: str, size: int, backoff: Optional[BackoffOptions]) -> CanonicalDocument:
        encoded = encode_id(playlist_id)
        playlist = await self.transport.request("GET", f"/v1/playlists/{encoded}", backoff=backoff) or {}

        entries: List[Dict[str, Any]] = []
        offset = 0
        while True:
            page = await self.transport.request(
                "GET", f"/v1/playlists/{encoded}/tracks",
                query={"limit": size, "offset": offset},
                backoff=backoff,
            ) or {}
            items = page.get("items") or []
            entries.extend(items)
            offset += len(items)
            if len(items) < size:
                break

        tracks = [t for t in (map_track(e, i) for i, e in enumerate(entries, start=1)) if t]
        return CanonicalDocument(
            name=playlist.get("name") or playlist.get("title") or "",
            description=playlist.get("description"),
            source_service=self.name,
            source_playlist_id=playlist.get("uuid") or playlist_id,
            tracks=tuple(tracks),
        )

    async def _create_playlist(self, document: CanonicalDocument, backoff: Optional[BackoffOptions]) -> str:
        created = await self.transport.request(
            "POST", "/v1/playlists",
            body={"name": document.name, "description": document.description},
            backoff=backoff,
        )
        return self._created_id(created, "uuid", "id")

    async def _add_tracks(self, playlist_id: str, track_ids: List[str], backoff: Optional[BackoffOptions]) -> None:
        await self.transport.request(
            "POST", f"/v1/playlists/{encode_id(playlist_id)}/items",
            body={"items": [{"id": tid} for tid in track_ids]},
            backoff=backoff,
        )
