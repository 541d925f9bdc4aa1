import logging
from typing import Any, List, Optional
from urllib.parse import quote

from playbridge.application.batching import BatchWriter
from playbridge.crosscutting.metrics import MetricsCollector
from playbridge.domain.entities import (
    BackoffOptions,
    CanonicalDocument,
    CanonicalTrack,
    ReadOptions,
    WriteOptions,
    WritePlaylistResult,
)
from playbridge.domain.errors import InvalidProviderResponseError
from playbridge.infrastructure.http.transport import ProviderTransport

logger = logging.getLogger(__name__)


def encode_id(value: str) -> str:
    """Percent-encode an id for use as a single path segment."""
    return quote(str(value), safe="")


def page_size(requested: Optional[int], default: int, cap: int) -> int:
    if not requested or requested <= 0:
        return default
    return min(int(requested), cap)


class RestProvider:
    """Shared plumbing for providers that talk to a REST API through the transport.

    Subclasses implement reading plus the two write primitives
    (create the playlist, add one chunk of ids); the chunking itself is
    delegated to BatchWriter.
    """

    name = "provider"
    default_page_size = 100
    max_page_size = 100

    def __init__(self, transport: ProviderTransport, batch_size: Optional[int] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.transport = transport
        self.batch_size = batch_size
        self.metrics = metrics

    async def read_playlist(self, playlist_id: str, options: Optional[ReadOptions] = None) -> CanonicalDocument:
        options = options or ReadOptions()
        size = page_size(options.page_size, self.default_page_size, self.max_page_size)
        logger.info(f"Reading {self.name} playlist {playlist_id} (page size {size})")
        document = await self._read(playlist_id, size, options.backoff)
        logger.info(f"Read {len(document.tracks)} tracks from {self.name} playlist {playlist_id}")
        return document.validate()

    async def write_playlist(self, document: CanonicalDocument,
                             options: Optional[WriteOptions] = None) -> WritePlaylistResult:
        options = options or WriteOptions()
        backoff = options.backoff
        dest_id = await self._create_playlist(document, backoff)
        logger.info(f"Created {self.name} playlist {dest_id} ({document.name})")

        writer = BatchWriter(batch_size=options.batch_size or self.batch_size, metrics=self.metrics)

        async def submit(playlist_id: str, chunk: List[str]) -> None:
            await self._add_tracks(playlist_id, chunk, backoff)

        track_ids = [self.destination_id(track) for track in document.tracks]
        report = await writer.write(dest_id, track_ids, submit, provider=self.name)
        return WritePlaylistResult(dest_id=dest_id, report=report)

    def destination_id(self, track: CanonicalTrack) -> Optional[str]:
        return track.provider_id(self.name)

    def _created_id(self, created: Any, *keys: str) -> str:
        """Return the new playlist id from a create response, trying keys in order."""
        if isinstance(created, dict):
            for key in keys:
                if created.get(key) not in (None, ""):
                    return str(created[key])
        raise InvalidProviderResponseError(
            f"{self.name} created a playlist but returned no {' or '.join(keys)}", provider=self.name
        )

    async def aclose(self) -> None:
        await self.transport.aclose()

    async def _read(self, playlist_id: str, size: int, backoff: Optional[BackoffOptions]) -> CanonicalDocument:
        raise NotImplementedError

    async def _create_playlist(self, document: CanonicalDocument, backoff: Optional[BackoffOptions]) -> str:
        raise NotImplementedError

    async def _add_tracks(self, playlist_id: str, track_ids: List[str], backoff: Optional[BackoffOptions]) -> None:
        raise NotImplementedError
