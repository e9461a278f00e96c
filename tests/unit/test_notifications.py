"""Tests for notifiers and WhatsApp links."""
from datetime import datetime
from unittest.mock import Mock
from urllib.parse import unquote

import pytest
import requests

from booking_engine.notifications import (
    LoggingNotifier,
    ReminderNotice,
    WebhookNotifier,
    build_reminder_link,
    build_share_link,
    build_whatsapp_link,
    create_http_session,
    reminder_message,
)


@pytest.fixture
def notice():
    return ReminderNotice(
        appointment_id="a1",
        client_name="Ana",
        phone="(34) 99112-2682",
        appointment_datetime=datetime(2024, 6, 10, 9, 0),
        slot_label="10/06/2024 09:00 - 09:30",
    )


class TestLinks:

    def test_whatsapp_link_strips_non_digits(self):
        link = build_whatsapp_link("+55 (34) 99112-2682", "Oi")

        assert link == "https://wa.me/5534991122682?text=Oi"

    def test_message_is_url_encoded(self):
        link = build_whatsapp_link("5534991122682", "Olá! 10:00")

        assert " " not in link
        assert unquote(link.split("text=", 1)[1]) == "Olá! 10:00"

    def test_phone_without_digits_rejected(self):
        with pytest.raises(ValueError):
            build_whatsapp_link("n/a", "Oi")

    def test_share_link_carries_booking_url(self):
        link = build_share_link("5534991122682", "https://example.com/agendar")

        assert link.startswith("https://wa.me/5534991122682?text=")
        assert "https://example.com/agendar" in unquote(link)

    def test_reminder_link(self, notice):
        link = build_reminder_link(notice)

        assert link.startswith("https://wa.me/34991122682?text=")
        assert "09:00" in unquote(link)

    def test_reminder_message(self, notice):
        assert reminder_message(notice) == (
            "Olá Ana! Lembrete do seu horário hoje às 09:00 (10/06/2024 09:00 - 09:30)."
        )


class TestLoggingNotifier:

    def test_notify_does_not_raise(self, notice):
        LoggingNotifier().notify(notice)


class TestWebhookNotifier:
    """POST delivery with tenacity retry on connection problems."""

    def test_posts_notice_as_json(self, notice):
        session = Mock()
        session.post.return_value.raise_for_status.return_value = None
        notifier = WebhookNotifier("https://hooks.example.com/remind", session=session)

        notifier.notify(notice)

        args, kwargs = session.post.call_args
        assert args == ("https://hooks.example.com/remind",)
        assert kwargs["json"]["appointment_id"] == "a1"
        assert kwargs["json"]["appointment_datetime"] == "2024-06-10T09:00:00"
        assert kwargs["json"]["message"] == reminder_message(notice)
        assert kwargs["timeout"] == 15

    def test_retries_connection_error(self, notice, monkeypatch):
        monkeypatch.setattr("time.sleep", lambda seconds: None)
        session = Mock()
        ok = Mock()
        ok.raise_for_status.return_value = None
        session.post.side_effect = [requests.exceptions.ConnectionError("refused"), ok]
        notifier = WebhookNotifier("https://hooks.example.com/remind", session=session)

        notifier.notify(notice)

        assert session.post.call_count == 2

    def test_gives_up_after_max_attempts(self, notice, monkeypatch):
        monkeypatch.setattr("time.sleep", lambda seconds: None)
        session = Mock()
        session.post.side_effect = requests.exceptions.ConnectTimeout("slow")
        notifier = WebhookNotifier("https://hooks.example.com/remind", session=session, max_attempts=3)

        with pytest.raises(requests.exceptions.ConnectTimeout):
            notifier.notify(notice)

        assert session.post.call_count == 3

    def test_read_timeout_not_retried(self, notice):
        session = Mock()
        session.post.side_effect = requests.exceptions.ReadTimeout("no response")
        notifier = WebhookNotifier("https://hooks.example.com/remind", session=session)

        with pytest.raises(requests.exceptions.ReadTimeout):
            notifier.notify(notice)

        assert session.post.call_count == 1

    def test_http_error_not_retried(self, notice):
        session = Mock()
        session.post.return_value.raise_for_status.side_effect = requests.exceptions.HTTPError("400")
        notifier = WebhookNotifier("https://hooks.example.com/remind", session=session)

        with pytest.raises(requests.exceptions.HTTPError):
            notifier.notify(notice)

        assert session.post.call_count == 1


class TestHttpSession:

    def test_session_retries_connect_errors_only(self):
        session = create_http_session(max_retries=2)

        retry = session.get_adapter("https://hooks.example.com").max_retries

        assert retry.total == 2
        assert retry.connect == 2
        assert retry.read == 0
        assert retry.status == 0
        assert not retry.status_forcelist
        assert not retry.is_retry("POST", 503)
