import asyncio
import logging
import os
from dataclasses import replace
from typing import Any, Dict, Mapping, Optional

from playbridge.domain.entities import MigrationJob, ProviderAuth
from playbridge.domain.errors import JobNotFoundError, MissingProviderAuthError

logger = logging.getLogger(__name__)

_JOB_FIELDS = {
    "status",
    "report",
    "dest_playlist_name",
    "source_playlist_id",
    "source_provider",
    "dest_provider",
    "user_id",
}


class InMemoryJobRepository:
    """Job store kept in process memory, used by the CLI and tests."""

    def __init__(self):
        self._jobs: Dict[str, MigrationJob] = {}
        self._lock = asyncio.Lock()

    async def add(self, job: MigrationJob) -> MigrationJob:
        async with self._lock:
            self._jobs[str(job.id)] = job
        return job

    async def get(self, job_id: str) -> Optional[MigrationJob]:
        async with self._lock:
            job = self._jobs.get(str(job_id))
            # Callers get a copy so only update() changes the stored record
            return replace(job) if job is not None else None

    async def update(self, job_id: str, **fields: Any) -> None:
        unknown = set(fields) - _JOB_FIELDS
        if unknown:
            raise ValueError(f"Unknown job fields: {', '.join(sorted(unknown))}")
        async with self._lock:
            job = self._jobs.get(str(job_id))
            if job is None:
                raise JobNotFoundError(f"Migration job {job_id} not found")
            self._jobs[str(job_id)] = replace(job, **fields)
        logger.debug(f"Updated job {job_id}: {', '.join(sorted(fields))}")


class EnvCredentialLookup:
    """Reads provider bearer tokens from ``<PROVIDER>_ACCESS_TOKEN`` variables.

    The user id is ignored: one set of tokens serves the whole process.
    """

    def __init__(self, env: Optional[Mapping[str, str]] = None):
        self._env = env

    @staticmethod
    def variable_name(provider: str) -> str:
        return f"{provider.upper()}_ACCESS_TOKEN"

    async def get_provider_auth(self, user_id: Optional[str], provider: str) -> ProviderAuth:
        env = os.environ if self._env is None else self._env
        token = (env.get(self.variable_name(provider)) or "").strip()
        if not token:
            raise MissingProviderAuthError(user_id, provider)
        return ProviderAuth(token=token)
