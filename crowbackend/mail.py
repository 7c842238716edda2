"""
Transactional email: Mailtrap send API over plain HTTP, plus an in-memory
double for tests and local runs.
"""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

import requests

from crowbackend.errors import UpstreamError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30  # seconds


class Mailer(Protocol):
    def send(
        self,
        to_email: str,
        subject: str,
        text: str,
        html_body: Optional[str] = None,
        category: Optional[str] = None,
    ) -> None:
        ...


@dataclass
class SentMessage:
    to_email: str
    subject: str
    text: str
    html_body: Optional[str] = None
    category: Optional[str] = None


@dataclass
class InMemoryMailer:
    """Test double that records outgoing mail instead of sending it."""

    sent: list[SentMessage] = field(default_factory=list)
    fail: bool = False

    def send(
        self,
        to_email: str,
        subject: str,
        text: str,
        html_body: Optional[str] = None,
        category: Optional[str] = None,
    ) -> None:
        if self.fail:
            raise UpstreamError("Error sending email")
        self.sent.append(
            SentMessage(
                to_email=to_email,
                subject=subject,
                text=text,
                html_body=html_body,
                category=category,
            )
        )


@dataclass
class MailtrapMailer:
    """
    Sends mail through the Mailtrap send API with a bearer token.
    """

    api_token: str
    sender_email: str
    sender_name: str = "Crowmail"
    api_url: str = "https://send.api.mailtrap.io/api/send"

    def send(
        self,
        to_email: str,
        subject: str,
        text: str,
        html_body: Optional[str] = None,
        category: Optional[str] = None,
    ) -> None:
        payload = {
            "from": {"email": self.sender_email, "name": self.sender_name},
            "to": [{"email": to_email}],
            "subject": subject,
            "text": text,
        }
        if html_body:
            payload["html"] = html_body
        if category:
            payload["category"] = category

        try:
            response = requests.post(
                self.api_url,
                json=payload,
                headers={
                    "Authorization": f"Bearer {self.api_token}",
                    "Content-Type": "application/json",
                },
                timeout=REQUEST_TIMEOUT,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.error("Mailtrap send to %s failed: %s", to_email, exc)
            raise UpstreamError("Error sending email") from exc


def verification_link(base_url: str, key: str) -> str:
    return f"{base_url.rstrip('/')}/crowmail/verify?key={key}"


def build_verification_message(link: str, sub_type: str) -> tuple[str, str, str]:
    """Return ``(subject, text, html)`` for the double opt-in mail."""
    subject = "Confirm your Crowmail subscription"
    text = (
        f"Someone (hopefully you) asked to receive {sub_type} crow mail.\n\n"
        f"Confirm your subscription within 24 hours:\n{link}\n\n"
        "If this wasn't you, ignore this email and nothing will happen."
    )
    safe_link = html.escape(link, quote=True)
    body = (
        f"<p>Someone (hopefully you) asked to receive "
        f"{html.escape(sub_type)} crow mail.</p>"
        f'<p><a href="{safe_link}">Confirm your subscription</a> '
        "within 24 hours.</p>"
        "<p>If this wasn't you, ignore this email and nothing will happen.</p>"
    )
    return subject, text, body


def build_welcome_message(user_id: str, sub_type: str) -> tuple[str, str, str]:
    subject = "Welcome to Crowmail"
    text = (
        f"You're subscribed to {sub_type} crow mail.\n\n"
        f"To unsubscribe later, use this id: {user_id}"
    )
    body = (
        f"<p>You're subscribed to {html.escape(sub_type)} crow mail.</p>"
        f"<p>To unsubscribe later, use this id: <code>{user_id}</code></p>"
    )
    return subject, text, body
