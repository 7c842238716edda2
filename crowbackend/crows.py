"""
Crow ratings, leaderboard and name proposals.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Optional

from crowbackend.config import Settings
from crowbackend.db import CrowRecord, DbClient, NameRecord
from crowbackend.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_CREDIT_NAME = "Unknown"
DEFAULT_CREDIT_LINK = "#"
DEFAULT_CROW_NAME = "Unnamed Crow"

VOTE_DIRECTIONS = {
    "upvote": True,
    "up": True,
    "downvote": False,
    "down": False,
}


def _require(value: Optional[str], message: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(message)
    return str(value).strip()


class CrowService:
    """Rating aggregator over a ``DbClient``.

    Average and count only ever move together, through one atomic store
    update per rating.
    """

    def __init__(self, db: DbClient, settings: Settings):
        self.db = db
        self.settings = settings

    def create_crow(
        self,
        img_url: Optional[str],
        credit_name: Optional[str] = None,
        credit_link: Optional[str] = None,
    ) -> CrowRecord:
        img_url = _require(img_url, "Missing img_url")
        crow = self.db.create_crow(
            img_url,
            credit_name=credit_name or DEFAULT_CREDIT_NAME,
            credit_link=credit_link or DEFAULT_CREDIT_LINK,
        )
        logger.info("Created %s for %s", crow.crow_id, img_url)
        return crow

    def get_crow(self, crow_id: Optional[str]) -> CrowRecord:
        crow_id = _require(crow_id, "Missing crow_id")
        crow = self.db.get_crow(crow_id)
        if not crow:
            raise NotFoundError("Crow not found")
        return crow

    def random_crow(self) -> CrowRecord:
        crow = self.db.random_crow()
        if not crow:
            raise NotFoundError("No data found")
        return crow

    def _parse_score(self, score: Any) -> float:
        if score is None or isinstance(score, bool):
            raise ValidationError("Missing crow_id or rating")
        try:
            value = float(score)
        except (TypeError, ValueError) as exc:
            raise ValidationError("Rating must be a number") from exc
        if not math.isfinite(value):
            raise ValidationError("Rating must be a number")
        low, high = self.settings.rating_min, self.settings.rating_max
        if not low <= value <= high:
            raise ValidationError(f"Rating must be between {low:g} and {high:g}")
        return value

    def submit_rating(self, crow_id: Optional[str], score: Any) -> CrowRecord:
        crow_id = _require(crow_id, "Missing crow_id or rating")
        value = self._parse_score(score)
        crow = self.db.apply_rating(crow_id, value)
        if not crow:
            raise NotFoundError("Crow not found")
        logger.info(
            "Rated %s with %s (avg=%.3f, count=%d)",
            crow_id,
            value,
            crow.avg_rating,
            crow.rating_count,
        )
        return crow

    def list_all(self) -> list[CrowRecord]:
        crows = self.db.list_crows()
        if not crows:
            raise NotFoundError("No data found")
        return crows

    def list_top_fraction(self, fraction: Optional[float] = None) -> list[CrowRecord]:
        """Best ``ceil(fraction * total)`` crows, at least one when any exist."""
        if fraction is None:
            fraction = self.settings.leaderboard_fraction
        if not 0 < fraction <= 1:
            raise ValidationError("fraction must be in (0, 1]")
        total = self.db.count_crows()
        if total == 0:
            return []
        limit = max(1, math.ceil(total * fraction))
        return self.db.list_crows(limit=limit)

    def add_name_proposal(self, crow_id: Optional[str], text: Optional[str]) -> NameRecord:
        crow_id = _require(crow_id, "Missing crow_id or name")
        text = _require(text, "Missing crow_id or name")
        if not self.db.get_crow(crow_id):
            raise NotFoundError("Crow not found")
        record = self.db.create_name(crow_id, text)
        logger.info("Name %s proposed for %s", record.name_id, crow_id)
        return record

    def vote_name(
        self,
        crow_id: Optional[str],
        name_id: Optional[str],
        direction: Optional[str],
    ) -> NameRecord:
        message = "Missing crow_id, name_id, or vote_type"
        crow_id = _require(crow_id, message)
        name_id = _require(name_id, message)
        direction = _require(direction, message).lower()
        if direction not in VOTE_DIRECTIONS:
            raise ValidationError("vote_type must be 'upvote' or 'downvote'")
        record = self.db.vote_name(
            crow_id, name_id, upvote=VOTE_DIRECTIONS[direction]
        )
        if not record:
            raise NotFoundError("Name not found for this crow")
        return record

    def list_names(self, crow_id: Optional[str]) -> list[NameRecord]:
        crow_id = _require(crow_id, "Missing crow_id")
        return self.db.list_names(crow_id)
