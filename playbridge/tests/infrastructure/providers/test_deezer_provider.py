import json

import httpx
import pytest

from playbridge.domain.entities import CanonicalDocument, CanonicalTrack, ReadOptions
from playbridge.infrastructure.providers.deezer import DEFAULT_BASE_URL, DeezerProvider, map_track


def _deezer_track(track_id, title, isrc=None):
    return {
        "id": track_id,
        "title": title,
        "duration": 215,
        "isrc": isrc,
        "explicit_lyrics": True,
        "artist": {"name": "Main"},
        "album": {"title": "LP"},
    }


class DeezerApi:
    """Minimal fake of the Deezer API."""

    def __init__(self, pages):
        self.pages = pages
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/playlist/908622995" and request.method == "GET":
            return httpx.Response(200, json={"id": 908622995, "title": "Chill", "description": "slow"})
        if path == "/playlist/908622995/tracks" and request.method == "GET":
            index = int(request.url.params["index"])
            return httpx.Response(200, json=self.pages[index])
        if path == "/user/me/playlists":
            return httpx.Response(200, json={"id": 555})
        if path == "/playlist/555/tracks":
            return httpx.Response(200, content=b"true")
        if path == "/track/isrc:USKNOWN1":
            return httpx.Response(200, json=_deezer_track(77, "Known", isrc="USKNOWN1"))
        if path.startswith("/track/isrc:"):
            return httpx.Response(200, json={"error": {"type": "DataException", "code": 800}})
        if path == "/search/track":
            return httpx.Response(200, json={"data": [_deezer_track(88, "Found")]})
        return httpx.Response(404)


class TestDeezerMapping:
    """Tests for Deezer payload mapping."""

    def test_map_track_converts_seconds(self):
        track = map_track(_deezer_track(1, "Song", isrc="GB-1"), 2)
        assert track.duration_ms == 215000
        assert track.artists == ("Main",)
        assert track.explicit is True
        assert track.isrc == "GB1"
        assert track.provider_ids == {"deezer": "1"}

    def test_contributors_take_precedence(self):
        raw = dict(_deezer_track(1, "Song"), contributors=[{"name": "A"}, {"name": "B"}])
        assert map_track(raw, 1).artists == ("A", "B")


class TestDeezerProvider:
    """Tests for the Deezer provider client."""

    @pytest.mark.asyncio
    async def test_read_playlist_paginates_by_index(self, make_transport):
        api = DeezerApi({
            0: {"data": [_deezer_track(1, "One"), _deezer_track(2, "Two")], "next": "more"},
            2: {"data": [_deezer_track(3, "Three")]},
        })
        provider = DeezerProvider(make_transport(api, provider="deezer", base_url=DEFAULT_BASE_URL))

        document = await provider.read_playlist("908622995", ReadOptions(page_size=2))

        assert document.name == "Chill"
        assert document.source_playlist_id == "908622995"
        assert [t.title for t in document.tracks] == ["One", "Two", "Three"]
        assert [r.url.params.get("index") for r in api.requests[1:]] == ["0", "2"]

    @pytest.mark.asyncio
    async def test_write_playlist_sends_songs(self, make_transport):
        api = DeezerApi({})
        provider = DeezerProvider(make_transport(api, provider="deezer", base_url=DEFAULT_BASE_URL))
        document = CanonicalDocument(name="Copy", description="d", tracks=(
            CanonicalTrack(position=1, title="A", artists=("X",), provider_ids={"deezer": "10"}),
            CanonicalTrack(position=2, title="B", artists=("X",), provider_ids={"deezer": "11"}),
        ))

        result = await provider.write_playlist(document)

        assert result.dest_id == "555"
        assert result.report.added == 2
        create = next(r for r in api.requests if r.url.path == "/user/me/playlists")
        assert json.loads(create.content) == {"title": "Copy", "description": "d"}
        add = next(r for r in api.requests if r.url.path == "/playlist/555/tracks")
        assert json.loads(add.content) == {"songs": ["10", "11"]}

    @pytest.mark.asyncio
    async def test_search_by_isrc(self, make_transport):
        provider = DeezerProvider(make_transport(DeezerApi({}), provider="deezer", base_url=DEFAULT_BASE_URL))
        track = CanonicalTrack(position=1, title="Known", artists=("Main",), isrc="US-KNOWN-1")

        candidates = await provider.search_candidates(track)

        assert [(c.id, c.isrc, c.duration_ms) for c in candidates] == [("77", "USKNOWN1", 215000)]

    @pytest.mark.asyncio
    async def test_unknown_isrc_falls_back_to_search(self, make_transport):
        api = DeezerApi({})
        provider = DeezerProvider(make_transport(api, provider="deezer", base_url=DEFAULT_BASE_URL))
        track = CanonicalTrack(position=1, title="Found", artists=("Main",), isrc="USNOPE")

        candidates = await provider.search_candidates(track, limit=4)

        assert [c.id for c in candidates] == ["88"]
        search = api.requests[-1]
        assert search.url.params["q"] == 'track:"Found" artist:"Main"'
        assert search.url.params["limit"] == "4"
