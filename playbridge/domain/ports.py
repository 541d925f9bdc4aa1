from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

from .entities import (
    Candidate,
    CanonicalDocument,
    CanonicalTrack,
    MigrationJob,
    ProviderAuth,
    ReadOptions,
    WriteOptions,
    WritePlaylistResult,
)


class MusicProvider(Protocol):
    """Port defining the contract every streaming provider implements.

    Implementations map provider payloads into canonical documents and must
    route every HTTP call through the resilient transport.
    """

    name: str

    async def read_playlist(self, playlist_id: str, options: Optional[ReadOptions] = None) -> CanonicalDocument:
        """Read the playlist into a canonical document."""

    async def write_playlist(self, document: CanonicalDocument,
                             options: Optional[WriteOptions] = None) -> WritePlaylistResult:
        """Create a destination playlist and add the document's tracks to it."""


@runtime_checkable
class CatalogSearch(Protocol):
    """Optional provider capability: search the provider catalog for resolver candidates."""

    async def search_candidates(self, track: CanonicalTrack, limit: int = 5) -> List[Candidate]:
        """Return catalog candidates for the given track."""


class CredentialLookup(Protocol):
    async def get_provider_auth(self, user_id: Optional[str], provider: str) -> ProviderAuth:
        """Return the bearer token for the user; raise MissingProviderAuthError when absent."""


class JobRepository(Protocol):
    async def get(self, job_id: str) -> Optional[MigrationJob]:
        """Load a job record, or None when it does not exist."""

    async def update(self, job_id: str, **fields: Any) -> None:
        """Persist the given fields on the job record."""


class ProgressPublisher(Protocol):
    def publish(self, update: Dict[str, Any]) -> None:
        """Emit an intermediate progress update."""

    def complete(self, update: Dict[str, Any]) -> None:
        """Emit the terminal update for a job."""


class KeyValueStore(Protocol):
    """Keyed store with per-entry TTL; backends may be in-process or distributed."""

    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str, ttl_ms: int) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def clear(self) -> None:
        ...


# Called as factory(name, auth, user_id=..., metrics=...)
ProviderFactory = Callable[..., MusicProvider]
