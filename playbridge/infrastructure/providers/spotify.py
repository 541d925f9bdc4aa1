import logging
from typing import Any, Dict, List, Optional

from playbridge.domain.entities import BackoffOptions, Candidate, CanonicalDocument, CanonicalTrack
from playbridge.domain.normalization import build_track, normalize_isrc

from .base import RestProvider, encode_id

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.spotify.com/v1"


def to_uri(track_id: str) -> str:
    return f"spotify:track:{track_id}"


def map_track(item: Dict[str, Any], position: int) -> Optional[CanonicalTrack]:
    """Map a playlist item to a canonical track; local and missing tracks yield None."""
    track = (item or {}).get("track")
    if not track or track.get("is_local"):
        return None
    artists = [a.get("name") for a in track.get("artists") or [] if a and a.get("name")]
    album = track.get("album") or {}
    provider_ids = {"spotify": track["id"]} if track.get("id") else {}
    return build_track(
        position,
        track.get("name"),
        artists,
        album=album.get("name"),
        duration_ms=track.get("duration_ms"),
        explicit=track.get("explicit"),
        release_date=album.get("release_date"),
        isrc=(track.get("external_ids") or {}).get("isrc"),
        provider_ids=provider_ids,
    )


def map_candidate(track: Dict[str, Any]) -> Optional[Candidate]:
    if not track or not track.get("id"):
        return None
    artists = [a.get("name") for a in track.get("artists") or [] if a and a.get("name")]
    return Candidate(
        id=track["id"],
        title=track.get("name") or "",
        primary_artist=artists[0] if artists else "",
        duration_ms=track.get("duration_ms"),
        isrc=(track.get("external_ids") or {}).get("isrc"),
    )


class SpotifyProvider(RestProvider):
    """Spotify Web API provider."""

    name = "spotify"
    default_page_size = 100
    max_page_size = 100

    async def _read(self, playlist_id: str, size: int, backoff: Optional[BackoffOptions]) -> CanonicalDocument:
        encoded = encode_id(playlist_id)
        playlist = await self.transport.request("GET", f"/playlists/{encoded}", backoff=backoff) or {}
        first_page = playlist.get("tracks") or {}
        items = list(first_page.get("items") or [])
        next_url = first_page.get("next")
        offset = (first_page.get("offset") or 0) + len(items)

        while next_url:
            page = await self.transport.request(
                "GET", f"/playlists/{encoded}/tracks",
                query={"offset": offset, "limit": size},
                backoff=backoff,
            ) or {}
            page_items = page.get("items") or []
            items.extend(page_items)
            next_url = page.get("next")
            offset += len(page_items)
            if not page_items:
                break

        tracks = [t for t in (map_track(item, index) for index, item in enumerate(items, start=1)) if t]
        return CanonicalDocument(
            name=playlist.get("name") or "",
            description=playlist.get("description"),
            source_service=self.name,
            source_playlist_id=playlist.get("id") or playlist_id,
            tracks=tuple(tracks),
        )

    async def _create_playlist(self, document: CanonicalDocument, backoff: Optional[BackoffOptions]) -> str:
        profile = await self.transport.request("GET", "/me", backoff=backoff) or {}
        created = await self.transport.request(
            "POST", f"/users/{encode_id(profile.get('id', ''))}/playlists",
            body={"name": document.name, "description": document.description},
            backoff=backoff,
        )
        return self._created_id(created, "id")

    async def _add_tracks(self, playlist_id: str, track_ids: List[str], backoff: Optional[BackoffOptions]) -> None:
        await self.transport.request(
            "POST", f"/playlists/{encode_id(playlist_id)}/tracks",
            body={"uris": [to_uri(tid) for tid in track_ids]},
            backoff=backoff,
        )

    async def search_candidates(self, track: CanonicalTrack, limit: int = 5) -> List[Candidate]:
        """Search the Spotify catalog, by ISRC first and by title/artist otherwise."""
        isrc = normalize_isrc(track.isrc)
        candidates: List[Candidate] = []
        if isrc:
            candidates = await self._search(f"isrc:{isrc}", limit)
        if not candidates:
            candidates = await self._search(f"track:{track.title} artist:{track.primary_artist}", limit)
        logger.debug(f"Spotify search for '{track.title}' returned {len(candidates)} candidates")
        return candidates

    async def _search(self, query: str, limit: int) -> List[Candidate]:
        data = await self.transport.request(
            "GET", "/search", query={"type": "track", "q": query, "limit": limit}
        ) or {}
        items = (data.get("tracks") or {}).get("items") or []
        return [c for c in (map_candidate(item) for item in items) if c]
