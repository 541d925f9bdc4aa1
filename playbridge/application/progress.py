import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressEvent:
    """Event delivered to job progress subscribers."""

    type: str  # "progress" or "complete"
    update: Dict[str, Any]


Listener = Callable[[ProgressEvent], None]


def clamp_percent(value: Any) -> Optional[float]:
    """Clamp a percentage into [0, 100]; non-numeric values become None."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value != value:  # NaN
        return None
    return max(0, min(100, value))


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def normalize_update(update: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "job_id": update.get("job_id"),
        "status": update.get("status"),
        "percent": clamp_percent(update.get("percent")),
        "message": update.get("message"),
        "updated_at": update.get("updated_at") or _utc_now(),
    }


class ProgressChannel:
    """Publish/subscribe channel for job progress, keyed by job id.

    One instance is handed to the orchestrator and to whoever wants to
    observe jobs; nothing about it is process-global.
    """

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, job_id: Any, listener: Listener) -> Callable[[], None]:
        """Register a listener for one job.

        Returns:
            Callable that removes the listener again
        """
        key = str(job_id)
        with self._lock:
            self._listeners[key].append(listener)

        def unsubscribe() -> None:
            with self._lock:
                listeners = self._listeners.get(key)
                if listeners and listener in listeners:
                    listeners.remove(listener)
                if not listeners:
                    self._listeners.pop(key, None)

        return unsubscribe

    def publish(self, update: Mapping[str, Any]) -> None:
        self._emit("progress", update)

    def complete(self, update: Mapping[str, Any]) -> None:
        self._emit("complete", update)

    def reset(self) -> None:
        with self._lock:
            self._listeners.clear()

    def listener_count(self, job_id: Any) -> int:
        with self._lock:
            return len(self._listeners.get(str(job_id), ()))

    def _emit(self, event_type: str, update: Mapping[str, Any]) -> None:
        event = ProgressEvent(type=event_type, update=normalize_update(update))
        with self._lock:
            listeners = list(self._listeners.get(str(event.update["job_id"]), ()))
        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Progress listener failed for job {event.update['job_id']}: {e}")
