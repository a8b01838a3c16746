from typing import List, Optional

from aggregates import LEADERBOARD, PROFILES
from schemas import LeaderboardEntry
from store import check_limit


def get_leaderboard(store, limit: Optional[int] = 10) -> List[LeaderboardEntry]:
    """Opted-in users ranked by ascending lifetime footprint.

    Ties fall back to user id so the order is stable between calls. Ranks are
    positional over the filtered result and are not persisted.
    """
    check_limit(limit)
    visible = {
        p["user_id"] for p in store.find(PROFILES, {"show_on_leaderboard": True})
    }
    entries = [
        LeaderboardEntry(**d) for d in store.find(LEADERBOARD)
        if d["user_id"] in visible
    ]
    entries.sort(key=lambda e: (e.total_footprint, e.user_id))
    if limit is not None:
        entries = entries[:limit]
    for position, entry in enumerate(entries, start=1):
        entry.rank = position
    return entries
