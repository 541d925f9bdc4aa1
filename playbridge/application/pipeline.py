import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

from playbridge.application.matching import DIRECT_CONFIDENCE, TrackResolver
from playbridge.application.progress import ProgressChannel
from playbridge.crosscutting.logging import (
    CorrelationContext,
    log_error,
    log_job_complete,
    log_job_start,
    log_with_fields,
)
from playbridge.crosscutting.metrics import MetricsCollector
from playbridge.crosscutting.reporting import (
    MigrationMatchReport,
    failure_report,
    summarize_by_isrc,
    summarize_by_resolution,
)
from playbridge.domain.entities import (
    PROVIDER_NAMES,
    CanonicalDocument,
    JobStatus,
    MatchResult,
    MatchRule,
    MigrationJob,
    ProviderTrack,
    ReadOptions,
    WriteOptions,
    WriteReport,
)
from playbridge.domain.errors import (
    InvalidJobPayloadError,
    JobNotFoundError,
    JobStateError,
    NothingToMigrateError,
)
from playbridge.domain.normalization import normalize_document
from playbridge.domain.ports import (
    CatalogSearch,
    CredentialLookup,
    JobRepository,
    MusicProvider,
    ProgressPublisher,
    ProviderFactory,
)

logger = logging.getLogger(__name__)

PERCENT_STARTED = 0
PERCENT_READ = 25
PERCENT_MATCHED = 50
PERCENT_WRITTEN = 90
PERCENT_DONE = 100


@dataclass(frozen=True)
class MigrationOutcome:
    """Result of a succeeded migration job."""

    job_id: str
    dest_id: str
    report: MigrationMatchReport
    write_report: WriteReport

    def to_json(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "dest_id": self.dest_id,
            "report": self.report.to_json(),
            "write_report": self.write_report.to_json(),
        }


class MigrationOrchestrator:
    """Runs one migration job: read the source, match, write the destination.

    The orchestrator owns the job's status transitions
    (queued -> running -> succeeded | failed) but never retries a job; retry
    decisions belong to whoever enqueued it.
    """

    def __init__(self, jobs: JobRepository, credentials: CredentialLookup,
                 provider_factory: ProviderFactory,
                 progress: Optional[ProgressPublisher] = None,
                 resolver: Optional[TrackResolver] = None,
                 resolve_against_destination: bool = False,
                 read_options: Optional[ReadOptions] = None,
                 write_options: Optional[WriteOptions] = None,
                 search_limit: int = 5,
                 supported_providers: Sequence[str] = PROVIDER_NAMES):
        """Initialize migration orchestrator.

        Args:
            jobs: Job record store
            credentials: Per-user provider token lookup
            provider_factory: Builds a provider client from (name, auth)
            progress: Optional progress channel
            resolver: Track resolver used when matching against the destination
            resolve_against_destination: Search the destination catalog and
                resolve every track instead of counting ISRCs
            read_options: Options passed to the source read
            write_options: Options passed to the destination write
            search_limit: Candidates requested per destination search
            supported_providers: Provider names accepted in job payloads
        """
        self.jobs = jobs
        self.credentials = credentials
        self.provider_factory = provider_factory
        self.progress = progress or ProgressChannel()
        self.resolver = resolver or TrackResolver()
        self.resolve_against_destination = resolve_against_destination
        self.read_options = read_options
        self.write_options = write_options
        self.search_limit = search_limit
        self.supported_providers = tuple(supported_providers)

    async def run(self, job_id: str) -> MigrationOutcome:
        """Run the job to completion.

        Raises:
            JobNotFoundError: If the job does not exist
            JobStateError: If the job already finished
            PlaybridgeError: Any failure after the job started; the job is
                marked failed before the error propagates
        """
        job = await self.jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Migration job {job_id} not found")
        if job.status.is_terminal:
            raise JobStateError(f"Migration job {job_id} is already {job.status.value}")

        metrics = MetricsCollector(str(job.id), job.source_provider, job.dest_provider)
        with CorrelationContext(job_id=str(job.id)):
            log_job_start(logger, str(job.id), job.source_provider, job.dest_provider,
                          source_playlist_id=job.source_playlist_id)
            metrics.start_job()
            try:
                outcome = await self._execute(job, metrics)
            except Exception as e:
                log_error(logger, "Migration job failed", e, job_id=str(job.id))
                await self._mark_failed(job, e)
                raise
            finally:
                metrics.end_job()
                log_with_fields(logger, "INFO", "Job metrics", metrics.to_dict())

            total_tracks = outcome.write_report.attempted + outcome.write_report.skipped
            log_job_complete(logger, str(job.id), total_tracks,
                             dest_id=outcome.dest_id,
                             matched_isrc_pct=outcome.report.matched_isrc_pct,
                             matched_fuzzy_pct=outcome.report.matched_fuzzy_pct,
                             write_report=outcome.write_report.to_json())
            return outcome

    def validate_payload(self, job: MigrationJob) -> None:
        for field_name in ("source_provider", "dest_provider"):
            provider = getattr(job, field_name)
            if provider not in self.supported_providers:
                raise InvalidJobPayloadError(f"Unsupported {field_name}: {provider!r}")
        if not (job.source_playlist_id or "").strip():
            raise InvalidJobPayloadError("source_playlist_id is required")

    async def _execute(self, job: MigrationJob, metrics: MetricsCollector) -> MigrationOutcome:
        self.validate_payload(job)

        if job.status != JobStatus.RUNNING:
            await self.jobs.update(job.id, status=JobStatus.RUNNING)
            job.status = JobStatus.RUNNING
        self._publish(job.id, PERCENT_STARTED, "Migration started")

        source_auth = await self.credentials.get_provider_auth(job.user_id, job.source_provider)
        dest_auth = await self.credentials.get_provider_auth(job.user_id, job.dest_provider)
        source = self.provider_factory(job.source_provider, source_auth, user_id=job.user_id, metrics=metrics)
        dest = self.provider_factory(job.dest_provider, dest_auth, user_id=job.user_id, metrics=metrics)

        try:
            with CorrelationContext(provider=job.source_provider, playlist_id=job.source_playlist_id, stage="read"):
                document = await source.read_playlist(job.source_playlist_id, self.read_options)
            self._publish(job.id, PERCENT_READ, f"Read {len(document.tracks)} tracks")

            document = normalize_document(document, job.dest_playlist_name)
            if not document.tracks:
                raise NothingToMigrateError(
                    f"Nothing to migrate: {job.source_provider} playlist {job.source_playlist_id} has no tracks"
                )

            with CorrelationContext(provider=job.dest_provider, stage="match"):
                document, report = await self._build_report(document, dest, job.dest_provider)
            self._publish(job.id, PERCENT_MATCHED, f"Matched {len(document.tracks)} tracks")

            with CorrelationContext(provider=job.dest_provider, stage="write"):
                result = await dest.write_playlist(document, self.write_options)
            logger.info(f"Wrote {job.dest_provider} playlist {result.dest_id}: {result.report.to_json()}")
            self._publish(job.id, PERCENT_WRITTEN, f"Wrote playlist {result.dest_id}")
        finally:
            await self._close(source, dest)

        await self.jobs.update(job.id, status=JobStatus.SUCCEEDED, report=report.to_json())
        job.status = JobStatus.SUCCEEDED
        self._complete(job.id, JobStatus.SUCCEEDED, PERCENT_DONE, "Migration succeeded")
        return MigrationOutcome(job_id=str(job.id), dest_id=result.dest_id,
                                report=report, write_report=result.report)

    async def _build_report(self, document: CanonicalDocument, dest: MusicProvider,
                            dest_provider: str) -> Tuple[CanonicalDocument, MigrationMatchReport]:
        if not self.resolve_against_destination:
            return document, summarize_by_isrc(document.tracks)
        if not isinstance(dest, CatalogSearch):
            logger.warning(f"{dest_provider} does not support catalog search; reporting ISRC coverage only")
            return document, summarize_by_isrc(document.tracks)

        tracks = []
        results: List[Optional[MatchResult]] = []
        for track in document.tracks:
            existing = track.provider_id(dest_provider)
            if existing:
                tracks.append(track)
                results.append(MatchResult(id=existing, confidence=DIRECT_CONFIDENCE, rule=MatchRule.MBID))
                continue

            candidates = await dest.search_candidates(track, limit=self.search_limit)
            # MusicBrainz ids are not destination catalog ids
            source_track = replace(ProviderTrack.from_canonical(track), catalog_id=None)
            result = self.resolver.resolve(source_track, candidates)
            results.append(result)
            if result is None:
                logger.debug(f"No {dest_provider} match for track {track.position} ({track.title})")
                tracks.append(track)
            else:
                provider_ids = dict(track.provider_ids)
                provider_ids[dest_provider] = result.id
                tracks.append(replace(track, provider_ids=provider_ids))

        report = summarize_by_resolution(document.tracks, results)
        return replace(document, tracks=tuple(tracks)), report

    async def _mark_failed(self, job: MigrationJob, error: BaseException) -> None:
        try:
            await self.jobs.update(job.id, status=JobStatus.FAILED, report=failure_report(error))
            job.status = JobStatus.FAILED
        except Exception as secondary:
            logger.error(f"Could not record failure for job {job.id}: {secondary}")
        self._complete(job.id, JobStatus.FAILED, None, str(error) or type(error).__name__)

    async def _close(self, *providers: MusicProvider) -> None:
        for provider in providers:
            aclose = getattr(provider, "aclose", None)
            if aclose is None:
                continue
            try:
                await aclose()
            except Exception as e:
                # Never mask the job outcome or skip closing the other provider
                logger.error(f"Failed to close {getattr(provider, 'name', 'provider')} client: {e}")

    def _publish(self, job_id: str, percent: Optional[float], message: str) -> None:
        self._emit(self.progress.publish, job_id, JobStatus.RUNNING, percent, message)

    def _complete(self, job_id: str, status: JobStatus, percent: Optional[float], message: str) -> None:
        self._emit(self.progress.complete, job_id, status, percent, message)

    @staticmethod
    def _emit(send, job_id: str, status: JobStatus, percent: Optional[float], message: str) -> None:
        try:
            send({"job_id": job_id, "status": status.value, "percent": percent, "message": message})
        except Exception as e:
            logger.warning(f"Failed to publish progress for job {job_id}: {e}")
