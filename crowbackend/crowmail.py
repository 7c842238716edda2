"""
Crowmail double opt-in.

An address moves NONE -> PENDING (subscribe, key emailed) -> CONFIRMED
(verify). A pending key expires after ``verification_ttl_seconds`` and can be
promoted at most once. Unsubscribe removes the confirmed record.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Callable, Optional

from crowbackend.config import Settings
from crowbackend.db import DbClient, PendingVerification, SubscriptionRecord
from crowbackend.errors import (
    ConflictError,
    InvalidTokenError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from crowbackend.mail import (
    Mailer,
    build_verification_message,
    build_welcome_message,
    verification_link,
)
from crowbackend.tokens import TokenStore

logger = logging.getLogger(__name__)


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


class CrowmailService:
    def __init__(
        self,
        subscriptions: DbClient,
        tokens: TokenStore,
        mailer: Mailer,
        settings: Settings,
        clock: Callable[[], float] = time.time,
    ):
        self.subscriptions = subscriptions
        self.tokens = tokens
        self.mailer = mailer
        self.settings = settings
        self.clock = clock

    def subscribe(self, email: Optional[str], sub_type: Optional[str]) -> PendingVerification:
        """
        Issue a verification key for ``email`` and mail the confirmation link.

        Raises:
            ValidationError: missing email/type or an address without ``@``.
            ConflictError: the address is already subscribed or already has a
                live pending key.
            UpstreamError: the store or the mail provider failed. A key whose
                mail could not be sent is deleted again.
        """
        email = normalize_email(email)
        sub_type = (sub_type or "").strip()
        if not email or not sub_type:
            raise ValidationError("Missing email or type")
        if "@" not in email:
            raise ValidationError("Invalid email address")

        if self.subscriptions.get_subscription_by_email(email):
            raise ConflictError("Email already subscribed")

        now = self.clock()
        pending = PendingVerification(
            key=str(uuid.uuid4()),
            email=email,
            type=sub_type,
            expires_at=now + self.settings.verification_ttl_seconds,
            created_at=now,
        )
        try:
            self.tokens.create_pending(pending)
        except ConflictError as exc:
            raise ConflictError(
                "Email already registered, check your inbox for the verification link"
            ) from exc

        link = verification_link(self.settings.public_base_url, pending.key)
        subject, text, html_body = build_verification_message(link, sub_type)
        try:
            self.mailer.send(
                email, subject, text, html_body=html_body, category="verification"
            )
        except UpstreamError:
            self.tokens.delete_pending(pending.key)
            raise
        logger.info("Verification key issued for %s (%s)", email, sub_type)
        return pending

    def verify(self, key: Optional[str]) -> SubscriptionRecord:
        key = (key or "").strip()
        if not key:
            raise InvalidTokenError("Missing verification key")
        subscription = self.tokens.promote_pending(key, self.clock())
        if subscription is None:
            raise InvalidTokenError("Invalid or expired verification key")
        logger.info("Subscription confirmed for %s", subscription.email)

        subject, text, html_body = build_welcome_message(
            subscription.user_id, subscription.type
        )
        try:
            self.mailer.send(
                subscription.email,
                subject,
                text,
                html_body=html_body,
                category="welcome",
            )
        except UpstreamError:
            logger.warning(
                "Welcome mail to %s failed; subscription stays confirmed",
                subscription.email,
            )
        return subscription

    def unsubscribe(self, user_id: Optional[str]) -> None:
        user_id = (user_id or "").strip()
        if not user_id:
            raise ValidationError("Missing user_id")
        if not self.subscriptions.delete_subscription(user_id):
            raise NotFoundError("Subscription not found")
        logger.info("Subscription %s removed", user_id)

    def purge_expired(self) -> int:
        purged = self.tokens.purge_expired(self.clock())
        if purged:
            logger.info("Purged %d expired verification keys", purged)
        return purged
