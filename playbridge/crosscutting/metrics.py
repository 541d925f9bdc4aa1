import json
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
import threading


def _elapsed_ms(start: Optional[datetime], end: Optional[datetime]) -> int:
    if start is None or end is None:
        return 0
    return int((end - start).total_seconds() * 1000)


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class BatchMetrics:
    """Metrics for a single chunk submission."""
    batch_index: int
    playlist_id: str
    track_count: int
    added_count: int = 0
    retry_count: int = 0
    rate_limit_wait_ms: int = 0
    duration_ms: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        if self.track_count == 0:
            return 0.0
        return self.added_count / self.track_count


@dataclass
class JobMetrics:
    """Aggregated metrics for one migration job."""
    job_id: str
    source_provider: str
    dest_provider: str
    total_tracks: int = 0
    total_batches: int = 0
    total_added: int = 0
    total_skipped: int = 0
    total_requests: int = 0
    total_retry_count: int = 0
    total_rate_limit_wait_ms: int = 0
    total_breaker_rejections: int = 0
    total_duration_ms: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    batches: List[BatchMetrics] = field(default_factory=list)

    @property
    def overall_success_rate(self) -> float:
        """Share of attempted tracks that were added."""
        attempted = self.total_tracks - self.total_skipped
        if attempted <= 0:
            return 0.0
        return self.total_added / attempted

    @property
    def average_batch_duration_ms(self) -> float:
        if self.total_batches == 0:
            return 0.0
        return sum(b.duration_ms for b in self.batches) / self.total_batches


class MetricsCollector:
    """Collects transport and batch metrics for a migration job.

    Safe to share between the transports of the source and destination providers.
    """

    def __init__(self, job_id: str, source_provider: str, dest_provider: str):
        self.job_id = job_id
        self.job_metrics = JobMetrics(
            job_id=job_id,
            source_provider=source_provider,
            dest_provider=dest_provider,
            start_time=datetime.now(),
        )
        self._lock = threading.Lock()
        self._current_batch: Optional[BatchMetrics] = None

    def start_job(self) -> None:
        with self._lock:
            self.job_metrics.start_time = datetime.now()

    def end_job(self) -> None:
        with self._lock:
            self.job_metrics.end_time = datetime.now()
            self.job_metrics.total_duration_ms = _elapsed_ms(self.job_metrics.start_time, self.job_metrics.end_time)

    def record_tracks(self, total: int, skipped: int = 0) -> None:
        """Record how many tracks the writer received and how many it skipped."""
        with self._lock:
            self.job_metrics.total_tracks += total
            self.job_metrics.total_skipped += skipped

    def start_batch(self, batch_index: int, playlist_id: str, track_count: int) -> None:
        with self._lock:
            self._current_batch = BatchMetrics(
                batch_index=batch_index,
                playlist_id=playlist_id,
                track_count=track_count,
                start_time=datetime.now(),
            )

    def end_batch(self) -> None:
        with self._lock:
            if self._current_batch:
                batch = self._current_batch
                batch.end_time = datetime.now()
                batch.duration_ms = _elapsed_ms(batch.start_time, batch.end_time)
                self.job_metrics.batches.append(batch)
                self.job_metrics.total_batches += 1
                self.job_metrics.total_added += batch.added_count
                self._current_batch = None

    @contextmanager
    def batch_context(self, batch_index: int, playlist_id: str, track_count: int):
        """Context manager wrapping one chunk submission."""
        self.start_batch(batch_index, playlist_id, track_count)
        try:
            yield self
        finally:
            self.end_batch()

    def record_batch_added(self, count: int) -> None:
        with self._lock:
            if self._current_batch:
                self._current_batch.added_count += count

    def record_request(self) -> None:
        with self._lock:
            self.job_metrics.total_requests += 1

    def record_retry(self) -> None:
        with self._lock:
            self.job_metrics.total_retry_count += 1
            if self._current_batch:
                self._current_batch.retry_count += 1

    def record_rate_limit_wait(self, wait_ms: int) -> None:
        with self._lock:
            self.job_metrics.total_rate_limit_wait_ms += wait_ms
            if self._current_batch:
                self._current_batch.rate_limit_wait_ms += wait_ms

    def record_breaker_rejection(self) -> None:
        with self._lock:
            self.job_metrics.total_breaker_rejections += 1

    def get_job_metrics(self) -> JobMetrics:
        with self._lock:
            return self.job_metrics

    def to_dict(self) -> Dict[str, Any]:
        """Convert metrics to a JSON-friendly dictionary."""
        with self._lock:
            job_dict = asdict(self.job_metrics)
        for entry in [job_dict, *job_dict["batches"]]:
            for key in ("start_time", "end_time"):
                entry[key] = _isoformat(entry[key])
        return job_dict

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)
