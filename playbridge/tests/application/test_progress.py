from unittest.mock import Mock

import pytest

from playbridge.application.progress import ProgressChannel, clamp_percent, normalize_update


class TestClampPercent:
    """Tests for percent normalization."""

    @pytest.mark.parametrize("value, expected", [
        (50, 50),
        (-5, 0),
        (150, 100),
        (12.5, 12.5),
        (None, None),
        ("50", None),
        (float("nan"), None),
        (True, None),
    ])
    def test_clamp(self, value, expected):
        assert clamp_percent(value) == expected

    def test_normalize_defaults(self):
        update = normalize_update({"job_id": "j1", "status": "running"})
        assert update["percent"] is None
        assert update["message"] is None
        assert update["updated_at"].endswith("Z")

    def test_normalize_keeps_timestamp(self):
        update = normalize_update({"job_id": "j1", "status": "running", "updated_at": "2024-01-01T00:00:00Z"})
        assert update["updated_at"] == "2024-01-01T00:00:00Z"


class TestProgressChannel:
    """Tests for the job progress channel."""

    def setup_method(self):
        self.channel = ProgressChannel()

    def test_publish_reaches_job_subscribers_only(self):
        listener = Mock()
        other = Mock()
        self.channel.subscribe("j1", listener)
        self.channel.subscribe("j2", other)

        self.channel.publish({"job_id": "j1", "status": "running", "percent": 120})

        event = listener.call_args[0][0]
        assert event.type == "progress"
        assert event.update["percent"] == 100
        other.assert_not_called()

    def test_complete_event_type(self):
        listener = Mock()
        self.channel.subscribe(7, listener)

        self.channel.complete({"job_id": 7, "status": "succeeded", "percent": 100})

        assert listener.call_args[0][0].type == "complete"

    def test_unsubscribe(self):
        listener = Mock()
        unsubscribe = self.channel.subscribe("j1", listener)

        unsubscribe()
        self.channel.publish({"job_id": "j1", "status": "running"})

        listener.assert_not_called()
        assert self.channel.listener_count("j1") == 0

    def test_failing_listener_does_not_block_others(self):
        broken = Mock(side_effect=RuntimeError("listener down"))
        healthy = Mock()
        self.channel.subscribe("j1", broken)
        self.channel.subscribe("j1", healthy)

        self.channel.publish({"job_id": "j1", "status": "running"})

        healthy.assert_called_once()

    def test_reset_removes_all_listeners(self):
        listener = Mock()
        self.channel.subscribe("j1", listener)

        self.channel.reset()
        self.channel.publish({"job_id": "j1", "status": "running"})

        listener.assert_not_called()
