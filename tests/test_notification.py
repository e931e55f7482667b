"""Tests for Slack and Telegram notifications."""

import pytest
import requests

from hubpanel.config import Settings
from hubpanel.utils.notification import NotificationManager


class FakeResponse:
    def __init__(self, status_code=200, text="ok"):
        self.status_code = status_code
        self.text = text


@pytest.fixture
def posts(monkeypatch):
    """Capture requests.post calls; responses are popped from the list."""
    calls = []
    responses = []

    def fake_post(url, **kwargs):
        calls.append((url, kwargs))
        return responses.pop(0) if responses else FakeResponse()

    monkeypatch.setattr(requests, "post", fake_post)
    return calls, responses


def entry(operation="DROP_DATABASE", details='Database "old" dropped', sql=None):
    return {
        'user_email': "ann@example.com",
        'database_name': "shop",
        'operation': operation,
        'details': details,
        'sql_query': sql,
    }


class TestShouldNotify:
    """Test which operations are notified."""

    def test_nothing_without_channels(self):
        manager = NotificationManager(notify_operations=["DROP_DATABASE"])
        assert manager.configured_channels == []
        assert not manager.should_notify("DROP_DATABASE")

    def test_listed_operations_and_failures(self):
        manager = NotificationManager(slack_webhook="https://hooks.example/x",
                                      notify_operations=["drop_database"])
        assert manager.should_notify("DROP_DATABASE")
        assert not manager.should_notify("QUERY", "Query executed")
        assert manager.should_notify("QUERY", "Query failed: syntax error")

    def test_from_settings(self):
        settings = Settings(telegram_token="t", telegram_chat_id="42")
        manager = NotificationManager.from_settings(settings)
        assert manager.configured_channels == ['telegram']
        assert "IMPORT" in manager.notify_operations


class TestDelivery:
    """Test delivery over HTTP."""

    def test_slack(self, posts):
        calls, _ = posts
        manager = NotificationManager(slack_webhook="https://hooks.example/x",
                                      notify_operations=["DROP_DATABASE"])

        assert manager.notify_activity(entry()) is True

        url, kwargs = calls[0]
        assert url == "https://hooks.example/x"
        assert "**Operation:** DROP_DATABASE" in kwargs['json']['text']
        assert kwargs['json']['text'].startswith("⚠️")

    def test_failure_details_are_sent_as_errors(self, posts):
        calls, _ = posts
        manager = NotificationManager(slack_webhook="https://hooks.example/x")

        manager.notify_activity(entry("QUERY", "Query failed: permission denied"))

        assert calls[0][1]['json']['text'].startswith("❌")

    def test_telegram_retries_without_markdown(self, posts):
        calls, responses = posts
        responses.extend([FakeResponse(400, "can't parse entities"), FakeResponse(200)])
        manager = NotificationManager(telegram_token="t", telegram_chat_id="42")

        assert manager.send_notification("a_b", channel='telegram') is True

        assert len(calls) == 2
        assert calls[0][0] == "https://api.telegram.org/bott/sendMessage"
        assert calls[0][1]['data']['parse_mode'] == "MarkdownV2"
        assert "a\\_b" in calls[0][1]['data']['text']
        assert "parse_mode" not in calls[1][1]['data']
        assert calls[1][1]['data']['text'].endswith("a_b")

    def test_network_errors_are_not_raised(self, monkeypatch):
        def broken(url, **kwargs):
            raise requests.ConnectionError("unreachable")

        monkeypatch.setattr(requests, "post", broken)
        manager = NotificationManager(slack_webhook="https://hooks.example/x")

        assert manager.send_notification("hello", channel='slack') is False

    def test_unlisted_operation_is_skipped(self, posts):
        calls, _ = posts
        manager = NotificationManager(slack_webhook="https://hooks.example/x")

        assert manager.notify_activity(entry("QUERY", "Query executed")) is False
        assert calls == []

    def test_sql_is_included_in_a_code_block(self):
        manager = NotificationManager()
        message = manager.create_activity_notification(entry(sql="DROP DATABASE old"))
        assert message.endswith("```sql\nDROP DATABASE old\n```")
