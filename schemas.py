"""
Database Schemas for the Green Points carbon tracker

Each Pydantic model corresponds to a collection in the store.
Class name lowercased is used as the collection name.
"""
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, Field, PlainSerializer

# Decimals stay exact in the store and go out as plain JSON numbers.
Amount = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ActivityCategory(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str = Field(..., description="Display name, e.g. 'Transportation - Car'")
    description: Optional[str] = None
    emission_factor: Amount = Field(..., description="kg CO2e per unit, negative for carbon-negative actions")
    unit: str = Field(..., description="Label of the quantity axis (miles, kwh, kg...)")
    awards_points: bool = Field(False, description="Whether logging this category earns green points")


class ActivityRecord(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    category_id: str
    activity_description: str
    quantity: Amount
    carbon_amount: Amount = Field(..., description="quantity * emission_factor at creation time")
    green_points_earned: int = Field(0, ge=0)
    logged_at: datetime = Field(default_factory=utcnow)


class Profile(BaseModel):
    user_id: str
    display_name: str = "User"
    total_carbon_footprint: Amount = Field(Decimal("0"), ge=0)
    total_green_points: int = Field(0, ge=0)
    show_on_leaderboard: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class LeaderboardEntry(BaseModel):
    user_id: str
    display_name: str = "Anonymous"
    total_footprint: Amount = Decimal("0")
    total_points: int = 0
    rank: Optional[int] = None
    updated_at: datetime = Field(default_factory=utcnow)


class Goal(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    title: str
    target_amount: Amount
    current_amount: Amount = Decimal("0")
    target_date: date
    goal_type: str = "reduction"
    created_at: datetime = Field(default_factory=utcnow)


class Certificate(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    token_id: str
    carbon_amount: Amount
    verification_hash: str
    blockchain_status: str = "pending"
    metadata: Dict[str, Any] = Field(default_factory=dict)
    issue_date: datetime = Field(default_factory=utcnow)


class Reward(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    token_amount: int
    reward_type: str
    transaction_hash: Optional[str] = None
    earned_date: datetime = Field(default_factory=utcnow)


def collection_of(model: type) -> str:
    return model.__name__.lower()


COLLECTIONS: List[str] = [
    collection_of(m)
    for m in (ActivityCategory, ActivityRecord, Profile, LeaderboardEntry, Goal, Certificate, Reward)
]

"""
Note: GET /schema lists the collections derived from these models.
"""
