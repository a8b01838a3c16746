import csv
import io
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from activities import ACTIVITIES, reward_points, seed_categories
from errors import NotFoundError, ValidationError


def test_seed_categories_only_once(store, categories):
    assert seed_categories(store) == 0
    assert len(categories) == 7
    assert [c.name for c in categories.values() if c.awards_points] == ["Waste - Recycling"]


def test_reward_rule_is_table_driven(categories):
    recycling = categories["Waste - Recycling"]
    car = categories["Transportation - Car"]
    assert reward_points(recycling, Decimal("-4.25")) == 43
    assert reward_points(recycling, Decimal("-1.02")) == 10
    assert reward_points(car, Decimal("40")) == 0
    renamed = recycling.model_copy(update={"name": "Composting"})
    assert reward_points(renamed, Decimal("-4.25")) == 43


@pytest.mark.parametrize("category_id, quantity, description, error", [
    (None, 5, "trip", ValidationError),
    ("known", None, "trip", ValidationError),
    ("known", "", "trip", ValidationError),
    ("known", "abc", "trip", ValidationError),
    ("known", 5, "   ", ValidationError),
    ("missing", 5, "trip", NotFoundError),
])
def test_log_activity_rejects_bad_input(recorder, store, categories, category_id, quantity, description, error):
    if category_id == "known":
        category_id = categories["Transportation - Car"].id
    with pytest.raises(error):
        recorder.log_activity("alice", category_id, quantity, description)
    assert store.find(ACTIVITIES) == []


def test_failed_aggregate_update_leaves_no_record(recorder, maintainer, store, categories, published):
    def explode(event):
        raise RuntimeError("aggregate update failed")

    maintainer.handle = explode
    with pytest.raises(RuntimeError):
        recorder.log_activity("alice", categories["Food - Meat"].id, 1, "burger")
    assert store.find(ACTIVITIES) == []
    assert store.find("profile") == []
    assert published == []


def test_log_activity_stores_computed_fields(recorder, store, categories):
    when = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    rec = recorder.log_activity("alice", categories["Energy - Electricity"].id, "150", " Used 150 kWh ", when)
    stored = store.find_one(ACTIVITIES, {"id": rec.id})
    assert stored["carbon_amount"] == Decimal("138.00")
    assert stored["green_points_earned"] == 0
    assert stored["activity_description"] == "Used 150 kWh"
    assert stored["logged_at"] == when


def test_update_recomputes_with_new_category(recorder, maintainer, categories):
    rec = recorder.log_activity("alice", categories["Transportation - Car"].id, 10, "commute")
    updated = recorder.update_activity("alice", rec.id, category_id=categories["Waste - Recycling"].id)
    assert updated.carbon_amount == Decimal("-8.5")
    assert updated.green_points_earned == 85
    profile = maintainer.ensure_profile("alice")
    assert profile.total_carbon_footprint == 0
    assert profile.total_green_points == 85


def test_other_users_records_are_not_found(recorder, maintainer, categories):
    rec = recorder.log_activity("alice", categories["Transportation - Car"].id, 10, "commute")
    with pytest.raises(NotFoundError):
        recorder.update_activity("mallory", rec.id, quantity=1)
    with pytest.raises(NotFoundError):
        recorder.delete_activity("mallory", rec.id)
    assert maintainer.ensure_profile("alice").total_carbon_footprint == Decimal("4.11")


def test_list_activities_newest_first_with_category(recorder, categories):
    car = categories["Transportation - Car"].id
    for day in (1, 3, 2):
        recorder.log_activity("alice", car, day, f"day {day}", datetime(2026, 1, day, tzinfo=timezone.utc))
    recorder.log_activity("bob", car, 1, "not mine")

    rows = recorder.list_activities("alice", limit=2)
    assert [r["activity_description"] for r in rows] == ["day 3", "day 2"]
    assert rows[0]["category"] == {"name": "Transportation - Car", "unit": "miles"}


def test_export_csv(recorder, categories):
    recorder.log_activity("alice", categories["Waste - Recycling"].id, 5, "paper",
                          datetime(2026, 2, 10, tzinfo=timezone.utc))
    rows = list(csv.DictReader(io.StringIO(recorder.export_csv("alice"))))
    assert len(rows) == 1
    assert rows[0]["category"] == "Waste - Recycling"
    assert rows[0]["unit"] == "kg"
    assert float(rows[0]["carbon_amount"]) == pytest.approx(-4.25)
    assert rows[0]["green_points_earned"] == "43"
