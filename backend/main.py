from fastapi import FastAPI, UploadFile, Form, Depends, Request, File
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.orm import Session
from pathlib import Path
from uuid import uuid4
import logging
import os

from starlette.middleware.sessions import SessionMiddleware

from database import engine, get_db
import models, crud, ledger, reports, classifier
import recycle_rush
from auth import SECRET_KEY, hash_password, verify_password, login_session, logout_session, current_user, optional_user
from errors import (
    EcoReportError, AuthenticationError, FlowStateError, GameError, IllegalStatusTransition, InvalidImage,
    PermissionDenied, PersistenceFailure,
)
from flows import SESSION_KEY, load_flow, save_flow, record_verification
from schemas import (
    LoginRequest, ProfileUpdate, StatusUpdate, CatalogRewardCreate, SortRequest,
    UserOut, ReportOut, TransactionOut, NotificationOut, CollectedWasteOut, RewardOut,
    LeaderboardEntry, Profile,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent.parent
STATIC_DIR = Path(os.getenv("STATIC_DIR", BASE_DIR / "static"))
UPLOAD_DIR = STATIC_DIR / "uploads"
ADMIN_EMAILS = {e.strip().lower() for e in os.getenv("ADMIN_EMAILS", "").split(",") if e.strip()}

UPLOAD_DIR.mkdir(parents=True, exist_ok=True)

models.Base.metadata.create_all(bind=engine)

app = FastAPI(title="EcoReport")
app.add_middleware(SessionMiddleware, secret_key=SECRET_KEY)
app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")


@app.exception_handler(EcoReportError)
async def eco_error_handler(request: Request, exc: EcoReportError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": "error", "code": exc.code, "message": exc.message},
    )


# Even 404s come back as JSON, not HTML
@app.exception_handler(404)
async def custom_404_handler(request: Request, __):
    return JSONResponse(
        status_code=404,
        content={"status": "error", "code": "NOT_FOUND", "message": "Not Found", "path": request.url.path},
    )


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    if request.url.path.startswith("/api"):
        response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"
    return response


# ── Upload Helpers ──

def _read_image(image: UploadFile) -> bytes:
    if not image.filename:
        raise InvalidImage("No image uploaded")
    if not (image.content_type or "").startswith("image/"):
        raise InvalidImage(f"Unsupported content type '{image.content_type}'")
    data = image.file.read()
    if not data:
        raise InvalidImage("Uploaded image is empty")
    return data


def _store_image(image: UploadFile, data: bytes) -> str:
    suffix = Path(image.filename).suffix.lower() or ".jpg"
    name = f"{uuid4().hex}{suffix}"
    (UPLOAD_DIR / name).write_bytes(data)
    return f"/static/uploads/{name}"


# ══════════════════════════════════════
#   AUTH ROUTES
# ══════════════════════════════════════

@app.post("/api/login")
def login(request: Request, body: LoginRequest, db: Session = Depends(get_db)):
    email = body.email.strip().lower()
    user = crud.get_user_by_email(db, email)
    created = False

    if user:
        if not verify_password(body.password, user.password_hash):
            raise AuthenticationError("Incorrect password")
    else:
        name = (body.name or "").strip() or email.split("@")[0]
        user, created = crud.get_or_create_user(db, email, name, hash_password(body.password))

    login_session(request, user)
    return {"user": UserOut.model_validate(user), "created": created}


@app.post("/api/logout")
def logout(request: Request):
    logout_session(request)
    return {"message": "Logged out"}


@app.get("/api/me", response_model=Profile)
def profile(user: models.User = Depends(current_user), db: Session = Depends(get_db)):
    return Profile(
        user=UserOut.model_validate(user),
        balance=ledger.get_balance(db, user.id),
        transactions=[TransactionOut.model_validate(t) for t in ledger.recent_transactions(db, user.id)],
        unread_notifications=len(crud.get_unread_notifications(db, user.id)),
    )


@app.patch("/api/me", response_model=UserOut)
def update_profile(body: ProfileUpdate, user: models.User = Depends(current_user), db: Session = Depends(get_db)):
    return crud.update_user_name(db, user.id, body.name.strip())


# ══════════════════════════════════════
#   NOTIFICATIONS
# ══════════════════════════════════════

@app.get("/api/notifications", response_model=list[NotificationOut])
def unread_notifications(user: models.User = Depends(current_user), db: Session = Depends(get_db)):
    return crud.get_unread_notifications(db, user.id)


@app.post("/api/notifications/{notification_id}/read", response_model=NotificationOut)
def read_notification(notification_id: int, user: models.User = Depends(current_user), db: Session = Depends(get_db)):
    return crud.mark_notification_as_read(db, notification_id, user.id)


# ══════════════════════════════════════
#   CLASSIFICATION
# ══════════════════════════════════════

@app.get("/api/scan")
def scan_state(request: Request, user: models.User = Depends(current_user)):
    return load_flow(request.session).to_dict()


@app.post("/api/scan")
def scan(
    request: Request,
    image: UploadFile = File(...),
    purpose: str = Form("report"),
    user: models.User = Depends(current_user),
    db: Session = Depends(get_db),
):
    """Verify a photo before a report or a collection is submitted."""
    if purpose not in ("report", "collect"):
        raise InvalidImage(f"Unknown scan purpose '{purpose}'")
    data = _read_image(image)

    flow = load_flow(request.session)
    flow.start_verification(_store_image(image, data), purpose)
    try:
        result = classifier.classify(data, image.content_type)
    except EcoReportError as e:
        flow.fail(e.message)
        save_flow(request.session, flow)
        raise

    verification = record_verification(db, user.id, purpose, flow.image_url, result.model_dump())
    flow.succeed(verification.result, verification.id)
    save_flow(request.session, flow)
    return flow.to_dict()


@app.post("/api/scan/reset")
def reset_scan(request: Request, user: models.User = Depends(current_user)):
    request.session.pop(SESSION_KEY, None)
    return load_flow(request.session).to_dict()


@app.post("/api/bin-helper")
def bin_helper(image: UploadFile = File(...), user: models.User = Depends(current_user)):
    data = _read_image(image)
    return classifier.classify(data, image.content_type)


@app.post("/api/contamination")
def contamination(
    image: UploadFile = File(...),
    target_bin: str = Form(...),
    user: models.User = Depends(current_user),
):
    data = _read_image(image)
    return classifier.classify_contamination(data, image.content_type, target_bin)


# ══════════════════════════════════════
#   REPORTS
# ══════════════════════════════════════

def _begin_submit(flow, purpose: str) -> dict:
    # Only scans recorded server-side can back a submission
    if flow.state == "success" and flow.verification_id is None:
        raise FlowStateError("Verify the waste before submitting")
    return flow.begin_submit(purpose)


@app.post("/api/reports", response_model=ReportOut, status_code=201)
def submit_report(
    request: Request,
    location: str = Form(...),
    waste_type: str = Form(None),
    amount: str = Form(None),
    user: models.User = Depends(current_user),
    db: Session = Depends(get_db),
):
    flow = load_flow(request.session)
    result = _begin_submit(flow, "report")
    try:
        report = reports.submit_report(
            db, user.id, location.strip(),
            (waste_type or "").strip() or result["waste_type"],
            (amount or "").strip() or result["quantity"],
            image_url=flow.image_url,
            verification_result=result,
            verification_id=flow.verification_id,
        )
    except Exception:
        flow.abort_submit()
        save_flow(request.session, flow)
        raise

    flow.finish_submit()
    save_flow(request.session, flow)
    return report


@app.get("/api/reports", response_model=list[ReportOut])
def recent_reports(limit: int = 10, db: Session = Depends(get_db)):
    return crud.get_recent_reports(db, min(limit, 100))


@app.get("/api/tasks", response_model=list[ReportOut])
def collection_tasks(limit: int = 20, db: Session = Depends(get_db)):
    return crud.get_waste_collection_tasks(db, min(limit, 100))


@app.post("/api/reports/{report_id}/claim", response_model=ReportOut)
def claim_report(report_id: int, user: models.User = Depends(current_user), db: Session = Depends(get_db)):
    return reports.update_status(db, report_id, reports.COLLECTED, user.id)


@app.patch("/api/reports/{report_id}/status", response_model=ReportOut)
def change_status(report_id: int, body: StatusUpdate, user: models.User = Depends(current_user), db: Session = Depends(get_db)):
    if body.status == reports.VERIFIED:
        raise IllegalStatusTransition(f"Verify report {report_id} through /api/reports/{report_id}/verify")
    return reports.update_status(db, report_id, body.status, user.id)


@app.post("/api/reports/{report_id}/verify")
def verify_collection(request: Request, report_id: int, user: models.User = Depends(current_user), db: Session = Depends(get_db)):
    """Collector confirms pickup using the photo verified by /api/scan."""
    flow = load_flow(request.session)
    result = _begin_submit(flow, "collect")
    try:
        report, collected = reports.complete_collection(
            db, report_id, user.id, result, verification_id=flow.verification_id,
        )
    except Exception:
        flow.abort_submit()
        save_flow(request.session, flow)
        raise

    flow.finish_submit()
    save_flow(request.session, flow)
    return {
        "report": ReportOut.model_validate(report),
        "collected_waste": CollectedWasteOut.model_validate(collected),
    }


# ══════════════════════════════════════
#   REWARDS
# ══════════════════════════════════════

@app.get("/api/rewards", response_model=list[RewardOut])
def rewards(user: models.User = Depends(current_user), db: Session = Depends(get_db)):
    return ledger.available_rewards(db, user.id)


@app.post("/api/rewards", response_model=RewardOut, status_code=201)
def add_catalog_reward(body: CatalogRewardCreate, user: models.User = Depends(current_user), db: Session = Depends(get_db)):
    if user.email.lower() not in ADMIN_EMAILS:
        raise PermissionDenied("Only organization admins can add rewards")
    reward = ledger.create_catalog_reward(db, body.name, body.cost, body.description, body.collection_info)
    return RewardOut(
        id=reward.id, name=reward.name, cost=reward.points,
        description=reward.description, collection_info=reward.collection_info,
    )


@app.post("/api/rewards/{reward_id}/redeem")
def redeem(reward_id: int, user: models.User = Depends(current_user), db: Session = Depends(get_db)):
    transaction = ledger.redeem_specific(db, user.id, reward_id)
    return {
        "transaction": TransactionOut.model_validate(transaction),
        "balance": ledger.get_balance(db, user.id),
    }


@app.get("/api/transactions", response_model=list[TransactionOut])
def transactions(limit: int = 8, user: models.User = Depends(current_user), db: Session = Depends(get_db)):
    return ledger.recent_transactions(db, user.id, min(limit, 100))


@app.get("/api/leaderboard", response_model=list[LeaderboardEntry])
def leaderboard(limit: int = 10, db: Session = Depends(get_db)):
    return ledger.leaderboard(db, min(limit, 100))


@app.get("/api/impact")
def impact(db: Session = Depends(get_db)):
    return crud.impact_stats(db)


# ══════════════════════════════════════
#   RECYCLE RUSH
# ══════════════════════════════════════

GAME_KEY = "recycle_rush"


def _game_view(request: Request, game: recycle_rush.RecycleRush, **extra) -> dict:
    view = game.to_dict()
    for internal in ("next_id", "started_at", "extra_seconds"):
        view.pop(internal)
    view["high_score"] = recycle_rush.get_high_score(request.session)
    view.update(extra)
    return view


def _finish_game(request: Request, db: Session, game_id, game: recycle_rush.RecycleRush, user) -> dict:
    """High score and token payout for the request that ended the game."""
    new_high = recycle_rush.record_high_score(request.session, game.score)
    tokens = 0
    if user is not None:
        try:
            tokens = recycle_rush.pay_out(db, game_id, user.id, game.score)
        except PersistenceFailure as e:
            logger.error("[Recycle Rush] Could not award tokens to user %s: %s", user.id, e)
    return {"new_high_score": new_high, "tokens_earned": tokens}


def _user_id(user):
    return user.id if user is not None else None


@app.get("/api/recycle-rush")
def game_state(request: Request, user=Depends(optional_user), db: Session = Depends(get_db)):
    game_id = request.session.get(GAME_KEY)
    if game_id is None:
        return _game_view(request, recycle_rush.RecycleRush())
    return _game_view(request, recycle_rush.load_game(db, game_id, _user_id(user)))


@app.post("/api/recycle-rush/start")
def start_game(request: Request, user=Depends(optional_user), db: Session = Depends(get_db)):
    record, game = recycle_rush.new_game(db, _user_id(user))
    request.session[GAME_KEY] = record.id
    return _game_view(request, game)


def _play(request: Request, db: Session, user, item_id=None, bin=None) -> dict:
    game_id = request.session.get(GAME_KEY)
    if game_id is None:
        raise GameError("No game found; start a new one")
    game, outcome, ended = recycle_rush.play(db, game_id, _user_id(user), item_id, bin)
    extra = {}
    if outcome is not None:
        extra["result"] = outcome.__dict__
    if ended:
        extra["game_over"] = _finish_game(request, db, game_id, game, user)
    return _game_view(request, game, **extra)


@app.post("/api/recycle-rush/sort")
def sort_item(request: Request, body: SortRequest, user=Depends(optional_user), db: Session = Depends(get_db)):
    return _play(request, db, user, body.item_id, body.bin)


@app.post("/api/recycle-rush/tick")
def tick(request: Request, user=Depends(optional_user), db: Session = Depends(get_db)):
    """Sync with the server clock; ends the game once time is up."""
    return _play(request, db, user)
