"""
Logging, editing and removing activities.

Each mutation and the aggregate update it causes share one store
transaction, so a record never exists without its effect on the totals.
"""
import csv
import io
import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from aggregates import ACTIVITIES, ActivityEvent, AggregateMaintainer
from errors import NotFoundError, ValidationError
from schemas import ActivityCategory, ActivityRecord, collection_of

logger = logging.getLogger(__name__)

CATEGORIES = collection_of(ActivityCategory)

POINTS_PER_KG = Decimal("10")

DEFAULT_CATEGORIES: List[Dict[str, Any]] = [
    {"name": "Transportation - Car", "description": "Driving a gasoline car",
     "emission_factor": Decimal("0.411"), "unit": "miles"},
    {"name": "Transportation - Flight", "description": "Domestic flight",
     "emission_factor": Decimal("0.255"), "unit": "miles"},
    {"name": "Energy - Electricity", "description": "Home electricity usage",
     "emission_factor": Decimal("0.92"), "unit": "kwh"},
    {"name": "Energy - Natural Gas", "description": "Home heating with natural gas",
     "emission_factor": Decimal("5.3"), "unit": "therms"},
    {"name": "Food - Meat", "description": "Red meat consumption",
     "emission_factor": Decimal("27.0"), "unit": "kg"},
    {"name": "Food - Dairy", "description": "Dairy products consumption",
     "emission_factor": Decimal("3.2"), "unit": "kg"},
    {"name": "Waste - Recycling", "description": "Recycling waste (negative emissions)",
     "emission_factor": Decimal("-0.85"), "unit": "kg", "awards_points": True},
]

CSV_FIELDS = ["logged_at", "category", "description", "quantity", "unit", "carbon_amount", "green_points_earned"]


def seed_categories(store) -> int:
    if store.find(CATEGORIES, limit=1):
        return 0
    for c in DEFAULT_CATEGORIES:
        store.insert(CATEGORIES, ActivityCategory(**c).model_dump())
    logger.info("Seeded %d activity categories", len(DEFAULT_CATEGORIES))
    return len(DEFAULT_CATEGORIES)


def list_categories(store) -> List[ActivityCategory]:
    return [ActivityCategory(**d) for d in store.find(CATEGORIES, sort=[("name", 1)])]


def get_category(store, category_id: str) -> ActivityCategory:
    doc = store.find_one(CATEGORIES, {"id": category_id})
    if not doc:
        raise NotFoundError(f"Activity category {category_id} not found")
    return ActivityCategory(**doc)


def reward_points(category: ActivityCategory, carbon_amount: Decimal) -> int:
    if not category.awards_points:
        return 0
    return int(abs(carbon_amount * POINTS_PER_KG).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _quantity(value) -> Decimal:
    if value is None or value == "":
        raise ValidationError("Quantity is required")
    try:
        quantity = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"Quantity {value!r} is not a number")
    if not quantity.is_finite():
        raise ValidationError(f"Quantity {value!r} is not a number")
    return quantity


class ActivityRecorder:
    def __init__(self, store, maintainer: AggregateMaintainer):
        self.store = store
        self.maintainer = maintainer

    def log_activity(self, user_id: str, category_id: Optional[str], quantity, description: Optional[str],
                     logged_at: Optional[datetime] = None) -> ActivityRecord:
        if not category_id:
            raise ValidationError("Category is required")
        if not description or not description.strip():
            raise ValidationError("Description is required")
        quantity = _quantity(quantity)
        category = get_category(self.store, category_id)

        carbon_amount = quantity * category.emission_factor
        fields = dict(
            user_id=user_id,
            category_id=category.id,
            activity_description=description.strip(),
            quantity=quantity,
            carbon_amount=carbon_amount,
            green_points_earned=reward_points(category, carbon_amount),
        )
        if logged_at is not None:
            # naive timestamps are taken as UTC
            fields["logged_at"] = logged_at if logged_at.tzinfo else logged_at.replace(tzinfo=timezone.utc)
        record = ActivityRecord(**fields)

        with self.store.transaction():
            # the profile must exist before the insert so the backfill cannot count it twice
            self.maintainer.ensure_profile(user_id)
            self.store.insert(ACTIVITIES, record.model_dump())
            self.maintainer.handle(ActivityEvent.inserted(record))
        logger.info("User %s logged %s (%s kg CO2e, %d points)",
                    user_id, category.name, carbon_amount, record.green_points_earned)
        return record

    def get_activity(self, user_id: str, activity_id: str) -> ActivityRecord:
        doc = self.store.find_one(ACTIVITIES, {"id": activity_id, "user_id": user_id})
        if not doc:
            raise NotFoundError(f"Activity {activity_id} not found")
        return ActivityRecord(**doc)

    def update_activity(self, user_id: str, activity_id: str, quantity=None,
                        description: Optional[str] = None, category_id: Optional[str] = None) -> ActivityRecord:
        with self.store.transaction():
            old = self.get_activity(user_id, activity_id)
            category = get_category(self.store, category_id or old.category_id)
            new_quantity = old.quantity if quantity is None else _quantity(quantity)
            if description is not None and not description.strip():
                raise ValidationError("Description is required")

            carbon_amount = new_quantity * category.emission_factor
            new = old.model_copy(update={
                "category_id": category.id,
                "activity_description": description.strip() if description is not None else old.activity_description,
                "quantity": new_quantity,
                "carbon_amount": carbon_amount,
                "green_points_earned": reward_points(category, carbon_amount),
            })
            self.store.replace(ACTIVITIES, {"id": old.id}, new.model_dump())
            self.maintainer.handle(ActivityEvent.updated(old, new))
        return new

    def delete_activity(self, user_id: str, activity_id: str) -> ActivityRecord:
        with self.store.transaction():
            record = self.get_activity(user_id, activity_id)
            self.store.delete(ACTIVITIES, {"id": record.id})
            self.maintainer.handle(ActivityEvent.deleted(record))
        logger.info("User %s deleted activity %s", user_id, activity_id)
        return record

    def list_activities(self, user_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Newest first, each record joined with its category name and unit."""
        categories = {c.id: c for c in list_categories(self.store)}
        out = []
        for doc in self.store.find(ACTIVITIES, {"user_id": user_id}, sort=[("logged_at", -1)], limit=limit):
            record = ActivityRecord(**doc)
            category = categories.get(record.category_id)
            out.append({
                **record.model_dump(mode="json"),
                "category": {"name": category.name, "unit": category.unit} if category else None,
            })
        return out

    def export_csv(self, user_id: str) -> str:
        buf = io.StringIO()
        writer = csv.DictWriter(buf, fieldnames=CSV_FIELDS)
        writer.writeheader()
        for row in self.list_activities(user_id):
            category = row["category"] or {"name": "Unknown", "unit": ""}
            writer.writerow({
                "logged_at": row["logged_at"],
                "category": category["name"],
                "description": row["activity_description"],
                "quantity": row["quantity"],
                "unit": category["unit"],
                "carbon_amount": row["carbon_amount"],
                "green_points_earned": row["green_points_earned"],
            })
        return buf.getvalue()
