"""Notification collaborators.

The engine only decides that a reminder is due and hands a ReminderNotice to
a notifier. Delivery is the notifier's job:

- LoggingNotifier: writes the notice to the structured log (default)
- WebhookNotifier: POSTs the notice as JSON, with retry and connection pooling
- RecordingNotifier: keeps notices in memory (tests)

WhatsApp click-to-chat links are built here as well (wa.me).
"""
import logging
import re
from datetime import datetime
from typing import List, Optional, Protocol
from urllib.parse import quote

import requests
from pydantic import BaseModel, Field
from requests.adapters import HTTPAdapter
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from urllib3.util.retry import Retry

from booking_engine.logging_config import get_logger

logger = get_logger(__name__)
retry_logger = logging.getLogger(__name__)

WHATSAPP_BASE_URL = "https://wa.me"


class ReminderNotice(BaseModel):
    """Payload handed to the notification collaborator."""
    appointment_id: str = Field(..., description="Appointment the reminder is for")
    client_name: str
    phone: str
    appointment_datetime: datetime
    slot_label: str


class Notifier(Protocol):
    def notify(self, notice: ReminderNotice) -> None:
        ...


class LoggingNotifier:
    """Logs reminders instead of delivering them."""

    def notify(self, notice: ReminderNotice) -> None:
        logger.info(
            "reminder_due",
            appointment_id=notice.appointment_id,
            client_name=notice.client_name,
            phone=notice.phone,
            appointment_datetime=notice.appointment_datetime.isoformat(),
            slot_label=notice.slot_label
        )


class RecordingNotifier:
    """Collects notices in a list. Optionally fails to exercise error paths."""

    def __init__(self, fail_with: Optional[Exception] = None):
        self.notices: List[ReminderNotice] = []
        self.fail_with = fail_with

    def notify(self, notice: ReminderNotice) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.notices.append(notice)


def create_http_session(
    max_retries: int = 3,
    backoff_factor: float = 1.0,
) -> requests.Session:
    """
    Create HTTP session with connection retry and connection pooling.

    Only failures to connect are retried: the POST never reached the server.
    Read timeouts and 5xx responses are not, since the notice may already have
    been delivered.

    Args:
        max_retries: Maximum number of connect attempts after the first (default: 3)
        backoff_factor: Backoff multiplier, retry delays 1s, 2s, 4s

    Returns:
        Configured requests.Session
    """
    session = requests.Session()

    retry_strategy = Retry(
        total=max_retries,
        connect=max_retries,
        read=0,
        status=0,
        backoff_factor=backoff_factor,
    )

    adapter = HTTPAdapter(
        max_retries=retry_strategy,
        pool_connections=10,
        pool_maxsize=10,
    )
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class WebhookNotifier:
    """
    POSTs each reminder to a webhook (SMS/WhatsApp gateway, automation tool).

    Only attempts that never reached the gateway are retried: urllib3 retries
    failed connects inside one call, tenacity repeats the call with exponential
    backoff. Read timeouts and HTTP errors propagate.
    """

    def __init__(
        self,
        url: str,
        timeout: int = 15,
        session: Optional[requests.Session] = None,
        max_attempts: int = 4
    ):
        self.url = url
        self.timeout = timeout
        self.session = session or create_http_session()
        self.max_attempts = max_attempts

    def notify(self, notice: ReminderNotice) -> None:
        payload = notice.model_dump(mode="json")
        payload["message"] = reminder_message(notice)

        @retry(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=8),
            # ConnectTimeout is a ConnectionError; a ReadTimeout may follow a delivered POST
            retry=retry_if_exception_type(requests.exceptions.ConnectionError),
            before_sleep=before_sleep_log(retry_logger, logging.WARNING),
            reraise=True
        )
        def post_with_retry():
            response = self.session.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            return response

        post_with_retry()
        logger.info("reminder_delivered", appointment_id=notice.appointment_id, url=self.url)


def reminder_message(notice: ReminderNotice) -> str:
    """Text of the reminder sent to the client."""
    return (
        f"Olá {notice.client_name}! Lembrete do seu horário hoje às "
        f"{notice.appointment_datetime.strftime('%H:%M')} ({notice.slot_label})."
    )


def _digits(phone: str) -> str:
    return re.sub(r"\D", "", phone)


def build_whatsapp_link(phone: str, message: str) -> str:
    """wa.me click-to-chat link for a phone number and prefilled text."""
    digits = _digits(phone)
    if not digits:
        raise ValueError(f"Phone '{phone}' has no digits")
    return f"{WHATSAPP_BASE_URL}/{digits}?text={quote(message)}"


def build_share_link(business_phone: str, booking_url: str) -> str:
    """Link the business shares so clients can open the booking page."""
    message = f"Olá! Agende seu horário aqui: {booking_url}"
    return build_whatsapp_link(business_phone, message)


def build_reminder_link(notice: ReminderNotice) -> str:
    """Link staff can open to send the reminder by hand."""
    return build_whatsapp_link(notice.phone, reminder_message(notice))
