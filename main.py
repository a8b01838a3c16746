import asyncio
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, Query, Response, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

import config
import database
from activities import ActivityRecorder, get_category, list_categories, seed_categories
from aggregates import AggregateMaintainer
from certificates import MINT_REWARD_TOKENS, list_certificates, list_rewards, mint_certificate, total_tokens
from errors import EstimatorUnavailable, TrackerError
from estimator import EmissionEstimator, equivalent_quantity
from feed import ChangeFeed
from goals import create_goal, delete_goal, list_goals
from leaderboard import get_leaderboard
from profiles import environmental_level, get_profile, update_profile
from reports import build_report
from schemas import COLLECTIONS, ActivityCategory, ActivityRecord, LeaderboardEntry

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

app = FastAPI(title="Green Points API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

leaderboard_feed = ChangeFeed()
_estimator: Optional[EmissionEstimator] = None


# -----------------------------
# Dependencies
# -----------------------------

def get_store():
    return database.get_store()


def current_user(x_user_id: str = Header(..., description="Stable id of the signed-in user")) -> str:
    return x_user_id


def get_maintainer(store=Depends(get_store)) -> AggregateMaintainer:
    return AggregateMaintainer(store, leaderboard_feed)


def get_recorder(store=Depends(get_store), maintainer: AggregateMaintainer = Depends(get_maintainer)):
    return ActivityRecorder(store, maintainer)


def get_estimator() -> EmissionEstimator:
    global _estimator
    if _estimator is None:
        _estimator = EmissionEstimator()
    return _estimator


@app.exception_handler(TrackerError)
async def tracker_error_handler(request, exc: TrackerError):
    body = {"detail": exc.message}
    if isinstance(exc, EstimatorUnavailable):
        body["reason"] = exc.reason
        if exc.upstream_status is not None:
            body["upstream_status"] = exc.upstream_status
    return JSONResponse(status_code=exc.status_code, content=body)


# -----------------------------
# Schemas for requests
# -----------------------------

class ActivityCreate(BaseModel):
    category_id: Optional[str] = None
    quantity: Optional[Decimal] = None
    activity_description: Optional[str] = None
    logged_at: Optional[datetime] = None


class ActivityUpdate(BaseModel):
    category_id: Optional[str] = None
    quantity: Optional[Decimal] = None
    activity_description: Optional[str] = None


class ProfileUpdate(BaseModel):
    display_name: Optional[str] = None
    show_on_leaderboard: Optional[bool] = None


class GoalCreate(BaseModel):
    title: Optional[str] = None
    target_amount: Optional[Decimal] = None
    target_date: Optional[date] = None
    goal_type: str = "reduction"


class EstimateRequest(BaseModel):
    description: str
    category_id: Optional[str] = None


@app.on_event("startup")
def seed_data():
    seed_categories(database.get_store())


# -----------------------------
# Routes
# -----------------------------

@app.get("/")
def root():
    return {"message": "Green Points API running"}


@app.get("/schema")
def get_schema_info():
    return {"collections": COLLECTIONS}


@app.get("/test")
def test_database(store=Depends(get_store)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if config.DATABASE_URL else "❌ Not Set",
        "database_name": "✅ Set" if config.DATABASE_NAME else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
        else:
            response["database"] = "⚠️ In-memory store"
        response["collections"] = store.collection_names()
    except Exception as e:
        response["database"] = f"⚠️ {str(e)[:60]}"
    return response


# Categories & activities
@app.get("/api/categories", response_model=List[ActivityCategory])
def categories(store=Depends(get_store)):
    return list_categories(store)


@app.get("/api/activities")
def activities(limit: Optional[int] = Query(None, ge=1), user_id: str = Depends(current_user),
               recorder: ActivityRecorder = Depends(get_recorder)):
    return recorder.list_activities(user_id, limit)


@app.get("/api/activities/export")
def export_activities(user_id: str = Depends(current_user), recorder: ActivityRecorder = Depends(get_recorder)):
    return Response(
        content=recorder.export_csv(user_id),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="activities.csv"'},
    )


@app.post("/api/activities", response_model=ActivityRecord, status_code=201)
def log_activity(payload: ActivityCreate, user_id: str = Depends(current_user),
                 recorder: ActivityRecorder = Depends(get_recorder)):
    return recorder.log_activity(user_id, payload.category_id, payload.quantity,
                                 payload.activity_description, payload.logged_at)


@app.patch("/api/activities/{activity_id}", response_model=ActivityRecord)
def edit_activity(activity_id: str, payload: ActivityUpdate, user_id: str = Depends(current_user),
                  recorder: ActivityRecorder = Depends(get_recorder)):
    return recorder.update_activity(user_id, activity_id, quantity=payload.quantity,
                                    description=payload.activity_description, category_id=payload.category_id)


@app.delete("/api/activities/{activity_id}", status_code=204)
def remove_activity(activity_id: str, user_id: str = Depends(current_user),
                    recorder: ActivityRecorder = Depends(get_recorder)):
    recorder.delete_activity(user_id, activity_id)
    return Response(status_code=204)


# Profile
def profile_response(profile):
    return {**profile.model_dump(mode="json"), "level": environmental_level(profile.total_green_points)}


@app.get("/api/profile")
def read_profile(user_id: str = Depends(current_user), maintainer: AggregateMaintainer = Depends(get_maintainer)):
    return profile_response(get_profile(maintainer, user_id))


@app.put("/api/profile")
def write_profile(payload: ProfileUpdate, user_id: str = Depends(current_user),
                  maintainer: AggregateMaintainer = Depends(get_maintainer)):
    return profile_response(update_profile(maintainer, user_id, payload.display_name, payload.show_on_leaderboard))


@app.post("/api/profile/recompute")
def recompute_profile(user_id: str = Depends(current_user),
                      maintainer: AggregateMaintainer = Depends(get_maintainer)):
    return profile_response(maintainer.recompute(user_id))


# Leaderboard & reports
@app.get("/api/leaderboard", response_model=List[LeaderboardEntry])
def leaderboard(limit: int = Query(10, ge=1), store=Depends(get_store)):
    return get_leaderboard(store, limit)


@app.get("/api/reports")
def report(user_id: str = Depends(current_user), store=Depends(get_store)):
    return build_report(store, user_id)


# Goals
@app.get("/api/goals")
def goals(user_id: str = Depends(current_user), store=Depends(get_store)):
    return list_goals(store, user_id)


@app.post("/api/goals", status_code=201)
def add_goal(payload: GoalCreate, user_id: str = Depends(current_user), store=Depends(get_store)):
    goal = create_goal(store, user_id, payload.title, payload.target_amount, payload.target_date, payload.goal_type)
    return goal.model_dump(mode="json")


@app.delete("/api/goals/{goal_id}", status_code=204)
def remove_goal(goal_id: str, user_id: str = Depends(current_user), store=Depends(get_store)):
    delete_goal(store, user_id, goal_id)
    return Response(status_code=204)


# Certificates
@app.get("/api/certificates")
def certificates(user_id: str = Depends(current_user), store=Depends(get_store)):
    return {
        "certificates": [c.model_dump(mode="json") for c in list_certificates(store, user_id)],
        "rewards": [r.model_dump(mode="json") for r in list_rewards(store, user_id)],
        "total_tokens": total_tokens(store, user_id),
    }


@app.post("/api/certificates", status_code=201)
def mint(user_id: str = Depends(current_user), maintainer: AggregateMaintainer = Depends(get_maintainer)):
    certificate = mint_certificate(maintainer, user_id)
    return {"certificate": certificate.model_dump(mode="json"), "tokens_awarded": MINT_REWARD_TOKENS}


# Estimator
@app.post("/api/estimate")
def estimate(payload: EstimateRequest, store=Depends(get_store), estimator: EmissionEstimator = Depends(get_estimator)):
    carbon_amount = estimator.estimate(payload.description)
    out = {"carbon_amount": float(carbon_amount)}
    if payload.category_id:
        category = get_category(store, payload.category_id)
        out["category_id"] = category.id
        out["quantity"] = float(equivalent_quantity(carbon_amount, category.emission_factor))
    return out


# Realtime
@app.websocket("/ws/leaderboard")
async def leaderboard_updates(websocket: WebSocket):
    queue: asyncio.Queue = asyncio.Queue()
    loop = asyncio.get_running_loop()

    def push(entry: LeaderboardEntry) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, entry.model_dump(mode="json"))

    # subscribe before accepting so nothing committed after the handshake is missed
    unsubscribe = leaderboard_feed.subscribe(push)
    try:
        await websocket.accept()
        while True:
            receiver = asyncio.ensure_future(websocket.receive())
            getter = asyncio.ensure_future(queue.get())
            done, pending = await asyncio.wait({receiver, getter}, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
            if receiver in done and receiver.result()["type"] == "websocket.disconnect":
                break
            if getter in done:
                await websocket.send_json(getter.result())
    finally:
        unsubscribe()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
