from typing import Optional

from aggregates import PROFILES, AggregateMaintainer
from errors import ValidationError
from schemas import Profile, utcnow

LEVELS = [
    (1000, "Eco Master"),
    (500, "Green Champion"),
    (100, "Eco Warrior"),
]


def environmental_level(points: int) -> str:
    for threshold, name in LEVELS:
        if points >= threshold:
            return name
    return "Green Starter"


def get_profile(maintainer: AggregateMaintainer, user_id: str) -> Profile:
    return maintainer.ensure_profile(user_id)


def update_profile(maintainer: AggregateMaintainer, user_id: str, display_name: Optional[str],
                   show_on_leaderboard: Optional[bool] = None) -> Profile:
    if display_name is None or not display_name.strip():
        raise ValidationError("Display name cannot be empty")
    store = maintainer.store
    with store.transaction():
        profile = maintainer.ensure_profile(user_id)
        profile.display_name = display_name.strip()
        if show_on_leaderboard is not None:
            profile.show_on_leaderboard = show_on_leaderboard
        profile.updated_at = utcnow()
        store.replace(PROFILES, {"user_id": user_id}, profile.model_dump())
        maintainer.refresh_leaderboard(profile)
    return profile
