"""
Stores for pending email verification keys.

Both database clients implement ``TokenStore`` on the ``verification_keys``
table. ``RedisTokenStore`` keeps pending keys in Redis with a TTL instead and
writes confirmed subscriptions through a database client.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import redis
from redis import exceptions as redis_exceptions

from crowbackend.db import DbClient, PendingVerification, SubscriptionRecord
from crowbackend.errors import ConflictError, UpstreamError

logger = logging.getLogger(__name__)


class TokenStore(Protocol):
    """Persistence for verification keys awaiting confirmation."""

    def create_pending(self, pending: PendingVerification) -> None:
        ...

    def promote_pending(self, key: str, now: float) -> Optional[SubscriptionRecord]:
        ...

    def delete_pending(self, key: str) -> None:
        ...

    def purge_expired(self, now: float) -> int:
        ...


@dataclass
class RedisTokenStore:
    """Redis-backed pending keys.

    ``<prefix>:key:<key>`` holds the pending record and
    ``<prefix>:email:<email>`` marks the address as pending; both expire with
    the key, so stale entries disappear on their own.
    """

    url: str
    subscriptions: DbClient
    key_prefix: str = "crowmail"
    client: Any = field(default=None)

    def __post_init__(self):
        if self.client is None:
            self.client = redis.Redis.from_url(self.url, decode_responses=True)

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}:key:{key}"

    def _email_key(self, email: str) -> str:
        return f"{self.key_prefix}:email:{email}"

    @staticmethod
    def _encode(pending: PendingVerification) -> str:
        return json.dumps(
            {
                "key": pending.key,
                "email": pending.email,
                "type": pending.type,
                "expires_at": pending.expires_at,
                "created_at": pending.created_at,
            }
        )

    @staticmethod
    def _decode(raw: str | bytes) -> PendingVerification:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return PendingVerification(**json.loads(raw))

    def _store(self, pending: PendingVerification, ttl: int) -> bool:
        claimed = self.client.set(
            self._email_key(pending.email), pending.key, nx=True, ex=ttl
        )
        if not claimed:
            return False
        try:
            self.client.set(self._key(pending.key), self._encode(pending), ex=ttl)
        except redis_exceptions.RedisError:
            # Release the address so a later subscribe can claim it again.
            self.client.delete(self._email_key(pending.email))
            raise
        return True

    def create_pending(self, pending: PendingVerification) -> None:
        ttl = max(1, math.ceil(pending.expires_at - pending.created_at))
        try:
            stored = self._store(pending, ttl)
        except redis_exceptions.RedisError as exc:
            logger.error("Redis write failed: %s", exc, exc_info=True)
            raise UpstreamError("Verification store error") from exc
        if not stored:
            raise ConflictError("Verification already pending for this email")

    def promote_pending(self, key: str, now: float) -> Optional[SubscriptionRecord]:
        try:
            # GETDEL makes the consume step single-use across workers.
            raw = self.client.getdel(self._key(key))
            if raw is None:
                return None
            pending = self._decode(raw)
            self.client.delete(self._email_key(pending.email))
        except redis_exceptions.RedisError as exc:
            logger.error("Redis consume failed: %s", exc, exc_info=True)
            raise UpstreamError("Verification store error") from exc
        if pending.is_expired(now):
            return None

        try:
            return self._subscribe(pending)
        except UpstreamError:
            # Put the key back so the emailed link keeps working.
            remaining = math.ceil(pending.expires_at - now)
            if remaining > 0:
                try:
                    self._store(pending, remaining)
                except redis_exceptions.RedisError:
                    logger.error(
                        "Could not restore verification key for %s",
                        pending.email,
                        exc_info=True,
                    )
            raise

    def _subscribe(self, pending: PendingVerification) -> SubscriptionRecord:
        existing = self.subscriptions.get_subscription_by_email(pending.email)
        if existing:
            return existing
        try:
            return self.subscriptions.create_subscription(pending.email, pending.type)
        except ConflictError:
            # Lost a race with another confirmation for the same address.
            return self.subscriptions.get_subscription_by_email(pending.email)

    def delete_pending(self, key: str) -> None:
        try:
            raw = self.client.getdel(self._key(key))
            if raw is not None:
                self.client.delete(self._email_key(self._decode(raw).email))
        except redis_exceptions.RedisError as exc:
            logger.error("Redis delete failed: %s", exc, exc_info=True)
            raise UpstreamError("Verification store error") from exc

    def purge_expired(self, now: float) -> int:
        # Redis drops expired keys itself.
        return 0
