"""Outbound owner notifications (SMS via Twilio, email via SendGrid)."""
from typing import Any, Dict, Optional
import logging
import os
import threading

import httpx

from . import models as dbm
from .inventory.errors import ChannelDispatchFailure
from .integrations.sms_twilio import twilio_send_sms
from .integrations.email_sendgrid import sendgrid_send_email

logger = logging.getLogger(__name__)


class SenderIdentity:
    """The SMS "from" number used when a business has none of its own.

    Passed to the alert engine explicitly; ``refresh`` swaps the number when
    provisioning assigns a new one.
    """

    def __init__(self, default_number: Optional[str] = None):
        self._lock = threading.Lock()
        self._number = default_number if default_number is not None else (os.getenv("TWILIO_FROM_NUMBER") or None)

    def from_number(self, business: dbm.Business) -> Optional[str]:
        if business.sms_from_number:
            return business.sms_from_number
        with self._lock:
            return self._number

    def refresh(self, number: Optional[str]) -> None:
        with self._lock:
            self._number = number or None


class NotificationDispatcher:
    """Transport boundary. Implementations raise ChannelDispatchFailure on any failure."""

    def send_sms(self, to_number: str, body: str, from_number: str) -> Dict[str, Any]:
        raise NotImplementedError

    def send_email(self, to: str, subject: str, body: str) -> Dict[str, Any]:
        raise NotImplementedError


class ProviderDispatcher(NotificationDispatcher):
    def send_sms(self, to_number: str, body: str, from_number: str) -> Dict[str, Any]:
        try:
            return twilio_send_sms(to_number, body, from_number=from_number)
        except (RuntimeError, httpx.HTTPError) as exc:
            raise ChannelDispatchFailure("sms", str(exc)) from exc

    def send_email(self, to: str, subject: str, body: str) -> Dict[str, Any]:
        try:
            return sendgrid_send_email(to, subject, body)
        except (RuntimeError, httpx.HTTPError) as exc:
            raise ChannelDispatchFailure("email", str(exc)) from exc
