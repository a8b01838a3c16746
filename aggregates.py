"""
Per-user running totals.

Every change to an activity record is turned into an ActivityEvent and fed to
AggregateMaintainer.handle(), which is the single place totals are mutated.
Totals are clamped at zero on each delta rather than re-summed, so after a
clamp they can sit above the true sum of the remaining records.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple

from feed import ChangeFeed
from schemas import ActivityRecord, LeaderboardEntry, Profile, collection_of, utcnow

logger = logging.getLogger(__name__)

PROFILES = collection_of(Profile)
LEADERBOARD = collection_of(LeaderboardEntry)
ACTIVITIES = collection_of(ActivityRecord)

ZERO = Decimal("0")


class ActivityChange(Enum):
    INSERTED = "insert"
    UPDATED = "update"
    DELETED = "delete"


@dataclass(frozen=True)
class ActivityEvent:
    change: ActivityChange
    user_id: str
    old: Optional[ActivityRecord] = None
    new: Optional[ActivityRecord] = None

    @classmethod
    def inserted(cls, record: ActivityRecord) -> "ActivityEvent":
        return cls(ActivityChange.INSERTED, record.user_id, new=record)

    @classmethod
    def updated(cls, old: ActivityRecord, new: ActivityRecord) -> "ActivityEvent":
        return cls(ActivityChange.UPDATED, new.user_id, old=old, new=new)

    @classmethod
    def deleted(cls, record: ActivityRecord) -> "ActivityEvent":
        return cls(ActivityChange.DELETED, record.user_id, old=record)

    def delta(self) -> Tuple[Decimal, int]:
        if self.change is ActivityChange.INSERTED:
            return self.new.carbon_amount, self.new.green_points_earned
        if self.change is ActivityChange.UPDATED:
            return (self.new.carbon_amount - self.old.carbon_amount,
                    self.new.green_points_earned - self.old.green_points_earned)
        return -self.old.carbon_amount, -self.old.green_points_earned


class AggregateMaintainer:
    def __init__(self, store, feed: Optional[ChangeFeed] = None):
        self.store = store
        self.feed = feed

    def handle(self, event: ActivityEvent) -> Profile:
        carbon_delta, points_delta = event.delta()
        logger.debug("%s event for %s: carbon %s, points %s",
                     event.change.value, event.user_id, carbon_delta, points_delta)
        return self.apply_delta(event.user_id, carbon_delta, points_delta)

    def apply_delta(self, user_id: str, carbon_delta, points_delta: int) -> Profile:
        """Adjust a user's totals by a signed delta, flooring each at zero.

        A user without a profile starts from a zero baseline. The leaderboard
        row is rewritten in the same transaction and published after commit.
        """
        with self.store.transaction():
            profile = self._load(user_id) or Profile(user_id=user_id)
            profile.total_carbon_footprint = max(ZERO, profile.total_carbon_footprint + Decimal(carbon_delta))
            profile.total_green_points = max(0, profile.total_green_points + int(points_delta))
            profile.updated_at = utcnow()
            self._save(profile)
            self.refresh_leaderboard(profile)
        return profile

    def ensure_profile(self, user_id: str, display_name: Optional[str] = None) -> Profile:
        """Return the user's profile, creating it from any existing history."""
        with self.store.transaction():
            profile = self._load(user_id)
            if profile is not None:
                return profile
            carbon, points = self._history_totals(user_id)
            profile = Profile(
                user_id=user_id,
                display_name=display_name or "User",
                total_carbon_footprint=max(ZERO, carbon),
                total_green_points=max(0, points),
            )
            logger.info("Created profile for %s (backfilled carbon=%s, points=%s)", user_id, carbon, points)
            self._save(profile)
            self.refresh_leaderboard(profile)
        return profile

    def recompute(self, user_id: str) -> Profile:
        """Re-derive totals from the full history, discarding clamp drift.

        Only runs when asked for; the delta path never calls it.
        """
        with self.store.transaction():
            profile = self._load(user_id) or Profile(user_id=user_id)
            carbon, points = self._history_totals(user_id)
            profile.total_carbon_footprint = max(ZERO, carbon)
            profile.total_green_points = max(0, points)
            profile.updated_at = utcnow()
            self._save(profile)
            self.refresh_leaderboard(profile)
        return profile

    def refresh_leaderboard(self, profile: Profile) -> LeaderboardEntry:
        entry = LeaderboardEntry(
            user_id=profile.user_id,
            display_name=profile.display_name,
            total_footprint=profile.total_carbon_footprint,
            total_points=profile.total_green_points,
        )
        self.store.replace(LEADERBOARD, {"user_id": profile.user_id}, entry.model_dump(), upsert=True)
        if self.feed is not None:
            self.store.on_commit(lambda: self.feed.publish(entry))
        return entry

    def _load(self, user_id: str) -> Optional[Profile]:
        doc = self.store.find_one(PROFILES, {"user_id": user_id})
        return Profile(**doc) if doc else None

    def _save(self, profile: Profile) -> None:
        self.store.replace(PROFILES, {"user_id": profile.user_id}, profile.model_dump(), upsert=True)

    def _history_totals(self, user_id: str) -> Tuple[Decimal, int]:
        carbon, points = ZERO, 0
        for doc in self.store.find(ACTIVITIES, {"user_id": user_id}):
            carbon += doc["carbon_amount"]
            points += doc.get("green_points_earned") or 0
        return carbon, points
