import pytest

from playbridge.domain.entities import JobStatus, MigrationJob, ProviderAuth
from playbridge.domain.errors import JobNotFoundError, MissingProviderAuthError
from playbridge.infrastructure.jobs import EnvCredentialLookup, InMemoryJobRepository


def _job():
    return MigrationJob(id="job-1", source_provider="spotify", source_playlist_id="p1", dest_provider="tidal")


class TestInMemoryJobRepository:
    """Tests for the in-memory job store."""

    @pytest.mark.asyncio
    async def test_add_get_update(self):
        repo = InMemoryJobRepository()
        await repo.add(_job())

        await repo.update("job-1", status=JobStatus.SUCCEEDED, report={"matched_isrc_pct": 100})

        stored = await repo.get("job-1")
        assert stored.status == JobStatus.SUCCEEDED
        assert stored.report == {"matched_isrc_pct": 100}

    @pytest.mark.asyncio
    async def test_get_returns_copy(self):
        repo = InMemoryJobRepository()
        await repo.add(_job())

        job = await repo.get("job-1")
        job.status = JobStatus.FAILED

        assert (await repo.get("job-1")).status == JobStatus.QUEUED

    @pytest.mark.asyncio
    async def test_missing_job(self):
        repo = InMemoryJobRepository()
        assert await repo.get("nope") is None
        with pytest.raises(JobNotFoundError):
            await repo.update("nope", status=JobStatus.RUNNING)

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self):
        repo = InMemoryJobRepository()
        await repo.add(_job())
        with pytest.raises(ValueError, match="Unknown job fields"):
            await repo.update("job-1", colour="blue")


class TestEnvCredentialLookup:
    """Tests for environment-based credential lookup."""

    @pytest.mark.asyncio
    async def test_reads_access_token(self):
        lookup = EnvCredentialLookup({"DEEZER_ACCESS_TOKEN": " abc "})
        assert await lookup.get_provider_auth("u1", "deezer") == ProviderAuth(token="abc")

    @pytest.mark.asyncio
    async def test_missing_token(self):
        lookup = EnvCredentialLookup({"DEEZER_ACCESS_TOKEN": "  "})
        with pytest.raises(MissingProviderAuthError) as exc_info:
            await lookup.get_provider_auth("u1", "deezer")
        assert exc_info.value.user_id == "u1"
        assert exc_info.value.provider == "deezer"

    @pytest.mark.asyncio
    async def test_defaults_to_process_environment(self, monkeypatch):
        monkeypatch.setenv("TIDAL_ACCESS_TOKEN", "from-env")
        assert (await EnvCredentialLookup().get_provider_auth(None, "tidal")).token == "from-env"
