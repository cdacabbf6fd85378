"""Tests for notification fan-out."""

import json
import sqlite3
from unittest.mock import Mock

import httpx
import pytest

from discpipe.jobs.models import Job
from discpipe.notify.dispatcher import NotificationDispatcher
from discpipe.storage.database import JobDatabase


def recording_client(requests, failing=()):
    """Client that records requests and fails for hosts in ``failing``."""

    def handler(request):
        requests.append(request)
        if request.url.host in failing:
            return httpx.Response(500)
        return httpx.Response(200, json={})

    return httpx.Client(transport=httpx.MockTransport(handler))


@pytest.fixture
def all_channels(config):
    config.ntfy_topic = "https://ntfy.example/discs"
    config.pb_key = "pb"
    config.ifttt_key = "if"
    config.ifttt_event = "disc_done"
    config.po_user_key = "user"
    config.po_app_key = "app"
    config.json_url = "https://hooks.example/discpipe"
    return config.snapshot()


class TestChannels:
    def test_none_configured(self, job_config):
        dispatcher = NotificationDispatcher(job_config, client=Mock())
        assert dispatcher.channels() == []
        assert dispatcher.notify(None, "title", "body") == []

    def test_channel_order(self, all_channels):
        dispatcher = NotificationDispatcher(all_channels, client=Mock())
        assert [name for name, _ in dispatcher.channels()] == [
            "ntfy",
            "pushbullet",
            "ifttt",
            "pushover",
            "json",
        ]

    def test_incomplete_pairs_are_skipped(self, config):
        config.ifttt_key = "if"
        config.po_app_key = "app"
        assert NotificationDispatcher(config.snapshot(), client=Mock()).channels() == []


class TestDelivery:
    def test_every_channel_receives_message(self, all_channels):
        requests = []
        with recording_client(requests) as client:
            delivered = NotificationDispatcher(all_channels, client=client).notify(
                Job("/dev/sr0", job_id=1),
                "discpipe: Heat completed successfully",
                "Disc: Heat",
            )

        assert delivered == ["ntfy", "pushbullet", "ifttt", "pushover", "json"]
        by_host = {r.url.host: r for r in requests}
        assert by_host["ntfy.example"].headers["Title"] == "discpipe: Heat completed successfully"
        assert by_host["ntfy.example"].content == b"Disc: Heat"
        assert by_host["api.pushbullet.com"].headers["Access-Token"] == "pb"
        assert "/trigger/disc_done/with/key/if" in by_host["maker.ifttt.com"].url.path
        assert json.loads(by_host["hooks.example"].content) == {
            "title": "discpipe: Heat completed successfully",
            "body": "Disc: Heat",
        }

    def test_failing_channel_does_not_stop_others(self, all_channels):
        requests = []
        with recording_client(requests, failing={"api.pushbullet.com"}) as client:
            delivered = NotificationDispatcher(all_channels, client=client).notify(None, "t", "b")

        assert "pushbullet" not in delivered
        assert delivered == ["ntfy", "ifttt", "pushover", "json"]

    def test_network_error_is_contained(self, config):
        config.json_url = "https://hooks.example/discpipe"

        def handler(request):
            raise httpx.ConnectError("refused")

        with httpx.Client(transport=httpx.MockTransport(handler)) as client:
            assert NotificationDispatcher(config.snapshot(), client=client).notify(None, "t", "b") == []

    def test_title_with_non_latin1_characters(self, config):
        config.ntfy_topic = "https://ntfy.example/discs"
        requests = []
        with recording_client(requests) as client:
            NotificationDispatcher(config.snapshot(), client=client).notify(None, "discpipe: Amélie ✅", "b")
        assert requests[0].headers["Title"].strip() == "discpipe: Amélie"


class TestPersistence:
    def test_notification_is_stored(self, job_config, tmp_path):
        db = JobDatabase(tmp_path / "n.db")
        NotificationDispatcher(job_config, db, client=Mock()).notify(None, "title", "body")
        stored = db.get_notifications()
        assert [(n.title, n.message) for n in stored] == [("title", "body")]

    def test_storage_failure_is_contained(self, job_config):
        db = Mock()
        db.add_notification.side_effect = sqlite3.OperationalError("database is locked")
        assert NotificationDispatcher(job_config, db, client=Mock()).notify(None, "t", "b") == []

    def test_close_only_owned_client(self, job_config):
        client = Mock()
        NotificationDispatcher(job_config, client=client).close()
        client.close.assert_not_called()
