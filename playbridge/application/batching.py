import logging
from typing import Awaitable, Callable, List, Optional, Sequence

from playbridge.crosscutting.metrics import MetricsCollector
from playbridge.domain.entities import WriteReport

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100

SubmitChunk = Callable[[str, List[str]], Awaitable[None]]


class BatchWriter:
    """Submits destination track ids to a playlist in ordered chunks."""

    def __init__(self, batch_size: Optional[int] = None, metrics: Optional[MetricsCollector] = None):
        """Initialize batch writer.

        Args:
            batch_size: Maximum number of track ids per submission (default 100)
            metrics: Optional per-job metrics collector
        """
        batch_size = DEFAULT_BATCH_SIZE if batch_size is None else int(batch_size)
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self.batch_size = batch_size
        self.metrics = metrics

    def split_into_batches(self, track_ids: Sequence[str]) -> List[List[str]]:
        """Split track ids into chunks of at most batch_size, preserving order."""
        ids = list(track_ids)
        return [ids[i:i + self.batch_size] for i in range(0, len(ids), self.batch_size)]

    async def write(self, playlist_id: str, track_ids: Sequence[Optional[str]],
                    submit: SubmitChunk, provider: str = "provider") -> WriteReport:
        """Submit every usable id, one chunk at a time.

        Ids that are None or blank are skipped and never submitted. Chunks are
        awaited strictly in order; the first failed submission propagates and
        the remaining chunks are not sent.

        Args:
            playlist_id: Destination playlist id
            track_ids: Destination-native ids in playlist order
            submit: Coroutine adding one chunk to the playlist
            provider: Provider name used in notes and logs

        Returns:
            WriteReport with attempted/added/failed/skipped counts
        """
        usable = [tid for tid in track_ids if tid and str(tid).strip()]
        skipped = len(track_ids) - len(usable)
        notes = []
        if skipped:
            notes.append(f"{skipped} track(s) missing {provider}_track_id")
            logger.warning(f"Skipping {skipped} track(s) without a {provider} id for playlist {playlist_id}")
        if self.metrics:
            self.metrics.record_tracks(len(track_ids), skipped)

        batches = self.split_into_batches(usable)
        added = 0
        for batch_index, chunk in enumerate(batches):
            logger.info(f"Submitting batch {batch_index + 1}/{len(batches)} "
                        f"({len(chunk)} tracks) to {provider} playlist {playlist_id}")
            if self.metrics:
                with self.metrics.batch_context(batch_index, playlist_id, len(chunk)):
                    await submit(playlist_id, chunk)
                    self.metrics.record_batch_added(len(chunk))
            else:
                await submit(playlist_id, chunk)
            added += len(chunk)

        attempted = len(usable)
        report = WriteReport(
            attempted=attempted,
            added=added,
            failed=attempted - added,
            skipped=skipped,
            notes=tuple(notes),
        )
        logger.info(f"Write to {provider} playlist {playlist_id} completed: "
                    f"attempted={report.attempted}, added={report.added}, skipped={report.skipped}")
        return report
