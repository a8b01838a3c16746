from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from errors import NotFoundError, ValidationError
from schemas import Goal, collection_of

GOALS = collection_of(Goal)


def goal_progress(goal: Goal) -> float:
    # reduction and other goal types share the same formula
    if not goal.target_amount:
        return 0.0
    return min(float(goal.current_amount / goal.target_amount * 100), 100.0)


def days_remaining(goal: Goal, today: date) -> int:
    return (goal.target_date - today).days


def goal_status(progress: float, remaining: int) -> str:
    if progress >= 100:
        return "Completed"
    if remaining < 0:
        return "Expired"
    return "Active"


def create_goal(store, user_id: str, title: Optional[str], target_amount, target_date: Optional[date],
                goal_type: str = "reduction") -> Goal:
    if not title or not title.strip() or target_amount in (None, "") or target_date is None:
        raise ValidationError("Please fill in all fields")
    try:
        target = Decimal(str(target_amount))
    except InvalidOperation:
        raise ValidationError(f"Target amount {target_amount!r} is not a number")
    goal = Goal(user_id=user_id, title=title.strip(), target_amount=target,
                target_date=target_date, goal_type=goal_type or "reduction")
    store.insert(GOALS, goal.model_dump())
    return goal


def list_goals(store, user_id: str, today: Optional[date] = None) -> List[Dict[str, Any]]:
    today = today or datetime.now(timezone.utc).date()
    out = []
    for doc in store.find(GOALS, {"user_id": user_id}, sort=[("created_at", -1)]):
        goal = Goal(**doc)
        progress = goal_progress(goal)
        remaining = days_remaining(goal, today)
        out.append({
            **goal.model_dump(mode="json"),
            "progress": progress,
            "days_remaining": remaining,
            "status": goal_status(progress, remaining),
        })
    return out


def delete_goal(store, user_id: str, goal_id: str) -> None:
    if not store.delete(GOALS, {"id": goal_id, "user_id": user_id}):
        raise NotFoundError(f"Goal {goal_id} not found")
