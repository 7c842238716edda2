"""
Database abstraction for Postgres and an in-memory test implementation.
"""

from __future__ import annotations

import logging
import random
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Dict, Iterator, Optional, Protocol

from sqlalchemy import (
    Column,
    Float,
    ForeignKey,
    Integer,
    String,
    create_engine,
    delete,
    func,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from crowbackend.errors import ConflictError, CrowError, UpstreamError

logger = logging.getLogger(__name__)


class DbClient(Protocol):
    """Interface for database access."""

    def create_crow(
        self,
        img_url: str,
        credit_name: Optional[str] = None,
        credit_link: Optional[str] = None,
    ) -> "CrowRecord":
        ...

    def get_crow(self, crow_id: str) -> Optional["CrowRecord"]:
        ...

    def random_crow(self) -> Optional["CrowRecord"]:
        ...

    def list_crows(self, limit: Optional[int] = None) -> list["CrowRecord"]:
        ...

    def count_crows(self) -> int:
        ...

    def apply_rating(self, crow_id: str, score: float) -> Optional["CrowRecord"]:
        ...

    def create_name(self, crow_id: str, name: str) -> "NameRecord":
        ...

    def vote_name(
        self, crow_id: str, name_id: str, *, upvote: bool
    ) -> Optional["NameRecord"]:
        ...

    def list_names(self, crow_id: str) -> list["NameRecord"]:
        ...

    def create_pending(self, pending: "PendingVerification") -> None:
        ...

    def promote_pending(
        self, key: str, now: float
    ) -> Optional["SubscriptionRecord"]:
        ...

    def delete_pending(self, key: str) -> None:
        ...

    def purge_expired(self, now: float) -> int:
        ...

    def get_subscription_by_email(
        self, email: str
    ) -> Optional["SubscriptionRecord"]:
        ...

    def create_subscription(
        self, email: str, sub_type: str
    ) -> "SubscriptionRecord":
        ...

    def delete_subscription(self, user_id: str) -> bool:
        ...


@dataclass
class CrowRecord:
    crow_id: str
    img_url: str
    avg_rating: float = 0.0
    rating_count: int = 0
    credit_name: Optional[str] = None
    credit_link: Optional[str] = None
    name: Optional[str] = None
    created_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return {
            "crow_id": self.crow_id,
            "img_url": self.img_url,
            "avg_rating": self.avg_rating,
            "rating_count": self.rating_count,
            "credit_name": self.credit_name,
            "credit_link": self.credit_link,
            "name": self.name,
        }


@dataclass
class NameRecord:
    name_id: str
    crow_id: str
    name: str
    upvotes: int = 0
    downvotes: int = 0
    created_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return {
            "name_id": self.name_id,
            "name": self.name,
            "upvotes": self.upvotes,
            "downvotes": self.downvotes,
        }


@dataclass
class PendingVerification:
    """A verification key waiting to be promoted to a subscription."""

    key: str
    email: str
    type: str
    expires_at: float
    created_at: float = field(default_factory=lambda: time.time())

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass
class SubscriptionRecord:
    user_id: str
    email: str
    type: str
    created_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "email": self.email,
            "type": self.type,
            "created_at": self.created_at,
        }


def new_name_id() -> str:
    """Time-derived name key; the random suffix keeps same-millisecond ids apart."""
    return f"name_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


class InMemoryDbClient:
    """Simple in-memory database for development and tests.

    Every operation runs under one lock, so each call is a single
    indivisible state transition. Records handed out are copies.
    """

    def __init__(self):
        self.crows: Dict[str, CrowRecord] = {}
        self.names: Dict[str, NameRecord] = {}
        self.pending: Dict[str, PendingVerification] = {}
        self.subscriptions: Dict[str, SubscriptionRecord] = {}
        self._crow_seq = 0
        self._lock = threading.RLock()

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.crows.clear()
            self.names.clear()
            self.pending.clear()
            self.subscriptions.clear()
            self._crow_seq = 0

    def create_crow(
        self,
        img_url: str,
        credit_name: Optional[str] = None,
        credit_link: Optional[str] = None,
    ) -> CrowRecord:
        with self._lock:
            self._crow_seq += 1
            record = CrowRecord(
                crow_id=f"crow_{self._crow_seq}",
                img_url=img_url,
                credit_name=credit_name,
                credit_link=credit_link,
            )
            self.crows[record.crow_id] = record
            return replace(record)

    def get_crow(self, crow_id: str) -> Optional[CrowRecord]:
        with self._lock:
            crow = self.crows.get(crow_id)
            return replace(crow) if crow else None

    def random_crow(self) -> Optional[CrowRecord]:
        with self._lock:
            if not self.crows:
                return None
            return replace(random.choice(list(self.crows.values())))

    def list_crows(self, limit: Optional[int] = None) -> list[CrowRecord]:
        with self._lock:
            # sorted() is stable, so equal keys keep creation order.
            ordered = sorted(
                self.crows.values(),
                key=lambda c: (-c.avg_rating, -c.rating_count),
            )
            if limit is not None:
                ordered = ordered[:limit]
            return [replace(c) for c in ordered]

    def count_crows(self) -> int:
        with self._lock:
            return len(self.crows)

    def apply_rating(self, crow_id: str, score: float) -> Optional[CrowRecord]:
        with self._lock:
            crow = self.crows.get(crow_id)
            if not crow:
                return None
            new_count = crow.rating_count + 1
            crow.avg_rating = (
                crow.avg_rating * crow.rating_count + score
            ) / new_count
            crow.rating_count = new_count
            return replace(crow)

    def create_name(self, crow_id: str, name: str) -> NameRecord:
        with self._lock:
            record = NameRecord(name_id=new_name_id(), crow_id=crow_id, name=name)
            self.names[record.name_id] = record
            return replace(record)

    def vote_name(
        self, crow_id: str, name_id: str, *, upvote: bool
    ) -> Optional[NameRecord]:
        with self._lock:
            record = self.names.get(name_id)
            if not record or record.crow_id != crow_id:
                return None
            if upvote:
                record.upvotes += 1
            else:
                record.downvotes += 1
            return replace(record)

    def list_names(self, crow_id: str) -> list[NameRecord]:
        with self._lock:
            names = [n for n in self.names.values() if n.crow_id == crow_id]
            names.sort(key=lambda n: -n.upvotes)
            return [replace(n) for n in names]

    def create_pending(self, pending: PendingVerification) -> None:
        with self._lock:
            for key, existing in list(self.pending.items()):
                if existing.email != pending.email:
                    continue
                if not existing.is_expired(pending.created_at):
                    raise ConflictError("Verification already pending for this email")
                del self.pending[key]
            self.pending[pending.key] = replace(pending)

    def promote_pending(self, key: str, now: float) -> Optional[SubscriptionRecord]:
        with self._lock:
            pending = self.pending.get(key)
            if not pending or pending.is_expired(now):
                return None
            del self.pending[key]
            existing = self._find_subscription(pending.email)
            if existing:
                return replace(existing)
            record = SubscriptionRecord(
                user_id=uuid.uuid4().hex,
                email=pending.email,
                type=pending.type,
                created_at=now,
            )
            self.subscriptions[record.user_id] = record
            return replace(record)

    def delete_pending(self, key: str) -> None:
        with self._lock:
            self.pending.pop(key, None)

    def purge_expired(self, now: float) -> int:
        with self._lock:
            expired = [k for k, p in self.pending.items() if p.is_expired(now)]
            for key in expired:
                del self.pending[key]
            return len(expired)

    def _find_subscription(self, email: str) -> Optional[SubscriptionRecord]:
        for record in self.subscriptions.values():
            if record.email == email:
                return record
        return None

    def get_subscription_by_email(self, email: str) -> Optional[SubscriptionRecord]:
        with self._lock:
            record = self._find_subscription(email)
            return replace(record) if record else None

    def create_subscription(self, email: str, sub_type: str) -> SubscriptionRecord:
        with self._lock:
            if self._find_subscription(email):
                raise ConflictError("Email already subscribed")
            record = SubscriptionRecord(
                user_id=uuid.uuid4().hex, email=email, type=sub_type
            )
            self.subscriptions[record.user_id] = record
            return replace(record)

    def delete_subscription(self, user_id: str) -> bool:
        with self._lock:
            return self.subscriptions.pop(user_id, None) is not None


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).

    Read-modify-write sequences (ratings, votes, key promotion) are single
    UPDATE statements or run under a row lock inside one transaction.
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with self.Session() as session:
                yield session
        except CrowError:
            raise
        except SQLAlchemyError as exc:
            logger.error("Database operation failed: %s", exc, exc_info=True)
            raise UpstreamError("Database error") from exc

    @staticmethod
    def _to_crow_record(row: "CrowRow") -> CrowRecord:
        return CrowRecord(
            crow_id=row.crow_id,
            img_url=row.img_url,
            avg_rating=row.avg_rating,
            rating_count=row.rating_count,
            credit_name=row.credit_name,
            credit_link=row.credit_link,
            name=row.name,
            created_at=row.created_at,
        )

    @staticmethod
    def _to_name_record(row: "NameRow") -> NameRecord:
        return NameRecord(
            name_id=row.name_id,
            crow_id=row.crow_id,
            name=row.name,
            upvotes=row.upvotes,
            downvotes=row.downvotes,
            created_at=row.created_at,
        )

    @staticmethod
    def _to_subscription_record(row: "SubscriptionRow") -> SubscriptionRecord:
        return SubscriptionRecord(
            user_id=row.user_id,
            email=row.email,
            type=row.type,
            created_at=row.created_at,
        )

    def create_crow(
        self,
        img_url: str,
        credit_name: Optional[str] = None,
        credit_link: Optional[str] = None,
    ) -> CrowRecord:
        with self._session() as session:
            row = CrowRow(
                img_url=img_url,
                avg_rating=0.0,
                rating_count=0,
                credit_name=credit_name,
                credit_link=credit_link,
                created_at=time.time(),
            )
            session.add(row)
            # The public key comes from the store-assigned ordinal.
            session.flush()
            row.crow_id = f"crow_{row.id}"
            session.commit()
            return self._to_crow_record(row)

    def get_crow(self, crow_id: str) -> Optional[CrowRecord]:
        with self._session() as session:
            row = session.execute(
                select(CrowRow).where(CrowRow.crow_id == crow_id)
            ).scalar_one_or_none()
            return self._to_crow_record(row) if row else None

    def random_crow(self) -> Optional[CrowRecord]:
        with self._session() as session:
            row = session.execute(
                select(CrowRow)
                .where(CrowRow.crow_id.is_not(None))
                .order_by(func.random())
                .limit(1)
            ).scalar_one_or_none()
            return self._to_crow_record(row) if row else None

    def list_crows(self, limit: Optional[int] = None) -> list[CrowRecord]:
        with self._session() as session:
            stmt = (
                select(CrowRow)
                .where(CrowRow.crow_id.is_not(None))
                .order_by(
                    CrowRow.avg_rating.desc(),
                    CrowRow.rating_count.desc(),
                    CrowRow.id.asc(),
                )
            )
            if limit is not None:
                stmt = stmt.limit(limit)
            return [self._to_crow_record(row) for row in session.scalars(stmt)]

    def count_crows(self) -> int:
        with self._session() as session:
            return session.scalar(
                select(func.count()).select_from(CrowRow)
            ) or 0

    def apply_rating(self, crow_id: str, score: float) -> Optional[CrowRecord]:
        with self._session() as session:
            result = session.execute(
                update(CrowRow)
                .where(CrowRow.crow_id == crow_id)
                .values(
                    avg_rating=(
                        CrowRow.avg_rating * CrowRow.rating_count + float(score)
                    )
                    / (CrowRow.rating_count + 1),
                    rating_count=CrowRow.rating_count + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if not result.rowcount:
                session.rollback()
                return None
            row = session.execute(
                select(CrowRow).where(CrowRow.crow_id == crow_id)
            ).scalar_one()
            session.commit()
            return self._to_crow_record(row)

    def create_name(self, crow_id: str, name: str) -> NameRecord:
        with self._session() as session:
            row = NameRow(
                name_id=new_name_id(),
                crow_id=crow_id,
                name=name,
                upvotes=0,
                downvotes=0,
                created_at=time.time(),
            )
            session.add(row)
            session.commit()
            return self._to_name_record(row)

    def vote_name(
        self, crow_id: str, name_id: str, *, upvote: bool
    ) -> Optional[NameRecord]:
        column = NameRow.upvotes if upvote else NameRow.downvotes
        with self._session() as session:
            result = session.execute(
                update(NameRow)
                .where(NameRow.crow_id == crow_id, NameRow.name_id == name_id)
                .values({column: column + 1})
                .execution_options(synchronize_session=False)
            )
            if not result.rowcount:
                session.rollback()
                return None
            row = session.get(NameRow, name_id)
            session.commit()
            return self._to_name_record(row)

    def list_names(self, crow_id: str) -> list[NameRecord]:
        with self._session() as session:
            rows = session.scalars(
                select(NameRow)
                .where(NameRow.crow_id == crow_id)
                .order_by(NameRow.upvotes.desc(), NameRow.created_at.asc())
            )
            return [self._to_name_record(row) for row in rows]

    def create_pending(self, pending: PendingVerification) -> None:
        with self._session() as session:
            # An expired key no longer blocks a new subscribe attempt.
            session.execute(
                delete(VerificationKeyRow).where(
                    VerificationKeyRow.email == pending.email,
                    VerificationKeyRow.expires_at <= pending.created_at,
                )
            )
            session.add(
                VerificationKeyRow(
                    key=pending.key,
                    email=pending.email,
                    type=pending.type,
                    expires_at=pending.expires_at,
                    created_at=pending.created_at,
                )
            )
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError(
                    "Verification already pending for this email"
                ) from exc

    def promote_pending(self, key: str, now: float) -> Optional[SubscriptionRecord]:
        with self._session() as session:
            row = session.execute(
                select(VerificationKeyRow)
                .where(VerificationKeyRow.key == key)
                .with_for_update()
            ).scalar_one_or_none()
            if not row or row.expires_at <= now:
                return None
            email, sub_type = row.email, row.type
            session.delete(row)
            subscription = session.execute(
                select(SubscriptionRow).where(SubscriptionRow.email == email)
            ).scalar_one_or_none()
            if subscription is None:
                subscription = SubscriptionRow(
                    user_id=uuid.uuid4().hex,
                    email=email,
                    type=sub_type,
                    created_at=now,
                )
                session.add(subscription)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("Email already subscribed") from exc
            return self._to_subscription_record(subscription)

    def delete_pending(self, key: str) -> None:
        with self._session() as session:
            session.execute(
                delete(VerificationKeyRow).where(VerificationKeyRow.key == key)
            )
            session.commit()

    def purge_expired(self, now: float) -> int:
        with self._session() as session:
            result = session.execute(
                delete(VerificationKeyRow).where(
                    VerificationKeyRow.expires_at <= now
                )
            )
            session.commit()
            return result.rowcount or 0

    def get_subscription_by_email(self, email: str) -> Optional[SubscriptionRecord]:
        with self._session() as session:
            row = session.execute(
                select(SubscriptionRow).where(SubscriptionRow.email == email)
            ).scalar_one_or_none()
            return self._to_subscription_record(row) if row else None

    def create_subscription(self, email: str, sub_type: str) -> SubscriptionRecord:
        with self._session() as session:
            row = SubscriptionRow(
                user_id=uuid.uuid4().hex,
                email=email,
                type=sub_type,
                created_at=time.time(),
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("Email already subscribed") from exc
            return self._to_subscription_record(row)

    def delete_subscription(self, user_id: str) -> bool:
        with self._session() as session:
            result = session.execute(
                delete(SubscriptionRow).where(SubscriptionRow.user_id == user_id)
            )
            session.commit()
            return bool(result.rowcount)


Base = declarative_base()


class CrowRow(Base):
    __tablename__ = "crows"

    id = Column(Integer, primary_key=True, autoincrement=True)
    crow_id = Column(String, unique=True, nullable=True)
    img_url = Column(String, nullable=False)
    avg_rating = Column(Float, nullable=False, default=0.0)
    rating_count = Column(Integer, nullable=False, default=0)
    credit_name = Column(String, nullable=True)
    credit_link = Column(String, nullable=True)
    name = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)


class NameRow(Base):
    __tablename__ = "names"

    name_id = Column(String, primary_key=True)
    crow_id = Column(String, ForeignKey("crows.crow_id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    upvotes = Column(Integer, nullable=False, default=0)
    downvotes = Column(Integer, nullable=False, default=0)
    created_at = Column(Float, nullable=False)


class VerificationKeyRow(Base):
    __tablename__ = "verification_keys"

    key = Column(String, primary_key=True)
    # One pending key per address.
    email = Column(String, nullable=False, unique=True)
    type = Column(String, nullable=False)
    expires_at = Column(Float, nullable=False, index=True)
    created_at = Column(Float, nullable=False)


class SubscriptionRow(Base):
    __tablename__ = "subscriptions"

    user_id = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True)
    type = Column(String, nullable=False)
    created_at = Column(Float, nullable=False)
