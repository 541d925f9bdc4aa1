import logging
import re
from typing import Any, Dict, List, Optional

from playbridge.domain.entities import BackoffOptions, CanonicalDocument, CanonicalTrack
from playbridge.domain.errors import TransportError
from playbridge.domain.normalization import build_track

from .base import RestProvider

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://www.googleapis.com/youtube/v3"

_ISO_DURATION = re.compile(
    r"^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$"
)
_TOPIC_SUFFIX = " - Topic"


def parse_iso_duration(value: Optional[str]) -> Optional[int]:
    """Parse an ISO-8601 duration such as ``PT3M33S`` into milliseconds."""
    if not value:
        return None
    match = _ISO_DURATION.match(value.strip())
    if not match:
        return None
    parts = match.groupdict()
    seconds = (
        int(parts["days"] or 0) * 86400
        + int(parts["hours"] or 0) * 3600
        + int(parts["minutes"] or 0) * 60
        + float(parts["seconds"] or 0)
    )
    return int(round(seconds * 1000))


def channel_artist(channel_title: Optional[str]) -> Optional[str]:
    if not channel_title:
        return None
    if channel_title.endswith(_TOPIC_SUFFIX):
        return channel_title[: -len(_TOPIC_SUFFIX)].strip() or None
    return channel_title.strip() or None


def map_video(video: Dict[str, Any], position: int) -> CanonicalTrack:
    snippet = video.get("snippet") or {}
    artist = channel_artist(snippet.get("channelTitle"))
    return build_track(
        position,
        snippet.get("title"),
        [artist] if artist else [],
        duration_ms=parse_iso_duration((video.get("contentDetails") or {}).get("duration")),
        provider_ids={"youtube": video["id"]},
    )


class YouTubeProvider(RestProvider):
    """YouTube Data API provider; playlist entries are videos."""

    name = "youtube"
    default_page_size = 50
    max_page_size = 50

    async def _read(self, playlist_id: str, size: int, backoff: Optional[BackoffOptions]) -> CanonicalDocument:
        response = await self.transport.request(
            "GET", "/playlists", query={"part": "snippet", "id": playlist_id}, backoff=backoff
        ) or {}
        items = response.get("items") or []
        if not items:
            raise TransportError(f"youtube playlist {playlist_id} not found", status=404, provider=self.name)
        snippet = items[0].get("snippet") or {}

        tracks: List[CanonicalTrack] = []
        position = 0
        page_token = None
        while True:
            page = await self.transport.request(
                "GET", "/playlistItems",
                query={
                    "part": "contentDetails",
                    "playlistId": playlist_id,
                    "maxResults": size,
                    "pageToken": page_token,
                },
                backoff=backoff,
            ) or {}
            video_ids = [
                (item.get("contentDetails") or {}).get("videoId")
                for item in page.get("items") or []
            ]
            videos = await self._hydrate([vid for vid in video_ids if vid], backoff)
            for video_id in video_ids:
                position += 1
                video = videos.get(video_id) if video_id else None
                if video is None:
                    logger.debug(f"Skipping unavailable YouTube video at position {position}")
                    continue
                tracks.append(map_video(video, position))
            page_token = page.get("nextPageToken")
            if not page_token:
                break

        return CanonicalDocument(
            name=snippet.get("title") or "",
            description=snippet.get("description"),
            source_service=self.name,
            source_playlist_id=playlist_id,
            tracks=tuple(tracks),
        )

    async def _hydrate(self, video_ids: List[str], backoff: Optional[BackoffOptions]) -> Dict[str, Dict[str, Any]]:
        if not video_ids:
            return {}
        data = await self.transport.request(
            "GET", "/videos",
            query={"part": "snippet,contentDetails", "id": ",".join(video_ids)},
            backoff=backoff,
        ) or {}
        return {video["id"]: video for video in data.get("items") or [] if video.get("id")}

    async def _create_playlist(self, document: CanonicalDocument, backoff: Optional[BackoffOptions]) -> str:
        created = await self.transport.request(
            "POST", "/playlists",
            query={"part": "snippet"},
            body={
                "snippet": {"title": document.name, "description": document.description},
                "status": {"privacyStatus": "private"},
            },
            backoff=backoff,
        )
        return self._created_id(created, "id")

    async def _add_tracks(self, playlist_id: str, track_ids: List[str], backoff: Optional[BackoffOptions]) -> None:
        # The API inserts one video per request
        for video_id in track_ids:
            await self.transport.request(
                "POST", "/playlistItems",
                query={"part": "snippet"},
                body={
                    "snippet": {
                        "playlistId": playlist_id,
                        "resourceId": {"kind": "youtube#video", "videoId": video_id},
                    }
                },
                backoff=backoff,
            )
