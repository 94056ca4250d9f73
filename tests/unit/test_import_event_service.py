"""
Unit tests for import events and their Telegram delivery.

Run: pytest tests/unit/test_import_event_service.py -v
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from config.settings import Settings
from exceptions import TelegramError
from integrations.telegram import format_import_message, send_message
from services.import_event_service import (
    IMPORT_COMPLETED,
    IMPORT_FAILED,
    ImportEvent,
    ImportEventService,
)


@pytest.fixture
def completed_event() -> ImportEvent:
    return ImportEvent(
        name=IMPORT_COMPLETED,
        session_id="s-1",
        owner_id="user-1",
        scope_id="biz-1",
        entity_type="modifier_group",
        row_count=3,
        created=2,
        updated=1,
    )


@pytest.fixture
def failed_event() -> ImportEvent:
    return ImportEvent(
        name=IMPORT_FAILED,
        session_id="s-2",
        owner_id="user-1",
        scope_id="biz-1",
        entity_type="item",
        row_count=3,
        error="Row 3: Database upsert failed: timeout",
        error_code="COMMIT_FAILED",
        row_index=3,
    )


@pytest.fixture
def telegram_settings() -> Settings:
    return Settings(
        import_notify_telegram=True,
        telegram_bot_token="123:abc",
        telegram_chat_id="42",
    )


class TestEmit:
    """Tests for ImportEventService.emit()."""

    def test_listeners_receive_event(self, event_service, completed_event):
        """Should call every subscribed listener."""
        first, second = [], []
        event_service.subscribe(first.append)
        event_service.subscribe(second.append)

        event_service.emit(completed_event)

        assert first == [completed_event]
        assert second == [completed_event]

    def test_unsubscribe(self, event_service, completed_event):
        """Should stop delivering to removed listeners."""
        received = []
        event_service.subscribe(received.append)
        event_service.unsubscribe(received.append)

        event_service.emit(completed_event)

        assert received == []

    def test_failing_listener_isolated(self, event_service, completed_event):
        """Should keep delivering when one listener raises."""
        received = []

        def broken(event):
            raise RuntimeError("cache down")

        event_service.subscribe(broken)
        event_service.subscribe(received.append)

        event_service.emit(completed_event)

        assert received == [completed_event]

    def test_telegram_disabled_by_default(self, event_service, completed_event):
        """Should not contact Telegram unless enabled."""
        with patch("services.import_event_service.send_import_event") as send:
            event_service.emit(completed_event)

        send.assert_not_called()

    def test_telegram_when_enabled(self, telegram_settings, completed_event):
        """Should send the event to Telegram when enabled and configured."""
        service = ImportEventService(settings=telegram_settings)

        with patch("services.import_event_service.send_import_event") as send:
            service.emit(completed_event)

        send.assert_called_once_with(completed_event)

    def test_telegram_failure_swallowed(self, telegram_settings, completed_event):
        """Should log a Telegram failure without raising."""
        service = ImportEventService(settings=telegram_settings)

        with patch(
            "services.import_event_service.send_import_event",
            side_effect=TelegramError("down"),
        ):
            service.emit(completed_event)


class TestFormatMessage:
    """Tests for format_import_message()."""

    def test_completed(self, completed_event):
        """Should summarize created and updated counts."""
        message = format_import_message(completed_event)

        assert "Catalog import completed" in message
        assert "Type: modifier group" in message
        assert "Created: 2" in message
        assert "Updated: 1" in message
        assert "`s-1`" in message

    def test_failed(self, failed_event):
        """Should include the failing row and the error."""
        message = format_import_message(failed_event)

        assert "Catalog import failed" in message
        assert "Row: 3" in message
        assert "timeout" in message

    def test_failed_error_escaped(self, failed_event):
        """Should escape Markdown characters in the error text."""
        failed_event.error = "Row 3: unknown column is_spicy"

        message = format_import_message(failed_event)

        assert "is\\_spicy" in message


class TestSendMessage:
    """Tests for send_message()."""

    def test_not_configured(self, test_settings):
        """Should skip sending without a token."""
        with patch("integrations.telegram.get_settings", return_value=test_settings):
            with patch("integrations.telegram.requests.post") as post:
                assert send_message("hello") is False

        post.assert_not_called()

    def test_sends(self, telegram_settings):
        """Should post to the bot API."""
        response = MagicMock()
        response.json.return_value = {"ok": True, "result": {"message_id": 7}}

        with patch("integrations.telegram.get_settings", return_value=telegram_settings):
            with patch("integrations.telegram.requests.post", return_value=response) as post:
                assert send_message("hello") is True

        url = post.call_args.args[0]
        assert url == "https://api.telegram.org/bot123:abc/sendMessage"
        assert post.call_args.kwargs["json"]["chat_id"] == "42"

    def test_api_error(self, telegram_settings):
        """Should raise TelegramError when the API says not ok."""
        response = MagicMock()
        response.json.return_value = {"ok": False, "description": "chat not found"}

        with patch("integrations.telegram.get_settings", return_value=telegram_settings):
            with patch("integrations.telegram.requests.post", return_value=response):
                with pytest.raises(TelegramError):
                    send_message("hello")

    def test_request_error(self, telegram_settings):
        """Should raise TelegramError on network failures."""
        with patch("integrations.telegram.get_settings", return_value=telegram_settings):
            with patch(
                "integrations.telegram.requests.post",
                side_effect=requests.exceptions.ConnectionError("refused"),
            ):
                with pytest.raises(TelegramError):
                    send_message("hello")
