"""Points ledger.

The transaction log is the source of truth for a user's balance. The
per-user Reward row keeps a cached copy in `points`, refreshed from the log
while the row is locked, so concurrent earns and redemptions for the same
user serialize on that lock.
"""

import logging
from datetime import datetime

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import models
from crud import get_user
from database import atomic
from errors import InsufficientPoints, RewardNotFound

logger = logging.getLogger(__name__)

EARNED_REPORT = "earned_report"
EARNED_COLLECT = "earned_collect"
REDEEMED = "redeemed"
EARN_TYPES = (EARNED_REPORT, EARNED_COLLECT)

REDEEM_ALL_ID = 0


def get_balance(db: Session, user_id: int) -> int:
    signed = case(
        (models.Transaction.type.like("earned%"), models.Transaction.amount),
        else_=-models.Transaction.amount,
    )
    total = (
        db.query(func.coalesce(func.sum(signed), 0))
        .filter(models.Transaction.user_id == user_id)
        .scalar()
    )
    return max(int(total), 0)


def recent_transactions(db: Session, user_id: int, limit: int = 8):
    return (
        db.query(models.Transaction)
        .filter(models.Transaction.user_id == user_id)
        .order_by(models.Transaction.date.desc(), models.Transaction.id.desc())
        .limit(limit)
        .all()
    )


# ── Reward rows ──

def _new_user_reward(user_id: int) -> models.Reward:
    return models.Reward(
        user_id=user_id,
        name="Basic Reward",
        collection_info="Ask your organization about this reward",
        points=0,
        is_available=True,
    )


def _ensure_reward(db: Session, user_id: int) -> None:
    if db.query(models.Reward.id).filter(models.Reward.user_id == user_id).first():
        return

    get_user(db, user_id)
    try:
        with db.begin_nested():
            db.add(_new_user_reward(user_id))
    except IntegrityError:
        # Another request created the row first
        logger.debug("[Ledger] Reward row for user %s already exists", user_id)


def get_or_create_reward(db: Session, user_id: int) -> models.Reward:
    with atomic(db):
        _ensure_reward(db, user_id)
    return db.query(models.Reward).filter(models.Reward.user_id == user_id).one()


def _lock_reward(db: Session, user_id: int) -> models.Reward:
    """Lock the user's reward row for the rest of the current transaction."""
    _ensure_reward(db, user_id)
    return (
        db.query(models.Reward)
        .filter(models.Reward.user_id == user_id)
        .with_for_update()
        .populate_existing()
        .one()
    )


def _append(db: Session, reward: models.Reward, type: str, amount: int, description: str) -> models.Transaction:
    transaction = models.Transaction(
        user_id=reward.user_id, type=type, amount=amount, description=description
    )
    db.add(transaction)
    db.flush()
    reward.points = get_balance(db, reward.user_id)
    reward.updated_at = datetime.utcnow()
    return transaction


def apply_earn(db: Session, user_id: int, amount: int, reason: str, kind: str = EARNED_REPORT) -> models.Transaction:
    """Stage an earn in the caller's transaction (no commit)."""
    if kind not in EARN_TYPES:
        raise ValueError(f"Unknown earn type: {kind}")
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        raise ValueError("Earned amount must be a positive integer")

    reward = _lock_reward(db, user_id)
    return _append(db, reward, kind, amount, reason)


def earn(db: Session, user_id: int, amount: int, reason: str, kind: str = EARNED_REPORT) -> models.Transaction:
    with atomic(db):
        transaction = apply_earn(db, user_id, amount, reason, kind)
    logger.info("[Ledger] User %s earned %s (%s)", user_id, amount, kind)
    return transaction


def redeem_all(db: Session, user_id: int) -> models.Transaction:
    with atomic(db):
        reward = _lock_reward(db, user_id)
        balance = get_balance(db, user_id)
        if balance <= 0:
            raise InsufficientPoints(balance, 1)
        transaction = _append(db, reward, REDEEMED, balance, f"Redeemed all points: {balance}")
    logger.info("[Ledger] User %s redeemed all %s points", user_id, balance)
    return transaction


def redeem_specific(db: Session, user_id: int, reward_id: int) -> models.Transaction:
    if reward_id == REDEEM_ALL_ID:
        return redeem_all(db, user_id)

    with atomic(db):
        item = (
            db.query(models.Reward)
            .filter(models.Reward.id == reward_id, models.Reward.user_id.is_(None))
            .first()
        )
        if item is None or not item.is_available:
            raise RewardNotFound(f"Reward {reward_id} not available")

        reward = _lock_reward(db, user_id)
        balance = get_balance(db, user_id)
        if balance < item.points:
            raise InsufficientPoints(balance, item.points)
        transaction = _append(db, reward, REDEEMED, item.points, f"Redeemed: {item.name}")
    logger.info("[Ledger] User %s redeemed reward %s for %s", user_id, reward_id, transaction.amount)
    return transaction


# ── Catalog ──

def create_catalog_reward(db: Session, name: str, cost: int, description: str = None,
                          collection_info: str = "Ask your organization about this reward") -> models.Reward:
    reward = models.Reward(
        user_id=None,
        name=name,
        points=cost,
        description=description,
        collection_info=collection_info,
        is_available=True,
    )
    with atomic(db):
        db.add(reward)
    db.refresh(reward)
    return reward


def available_rewards(db: Session, user_id: int) -> list:
    """The user's own points (id 0, redeems everything) followed by the catalog."""
    catalog = (
        db.query(models.Reward)
        .filter(models.Reward.user_id.is_(None), models.Reward.is_available.is_(True))
        .order_by(models.Reward.points)
        .all()
    )
    rewards = [{
        "id": REDEEM_ALL_ID,
        "name": "Your Points",
        "cost": get_balance(db, user_id),
        "description": "Redeem all of your earned points at once.",
        "collection_info": "Points earned from reporting and collecting waste",
    }]
    rewards.extend(
        {
            "id": r.id,
            "name": r.name,
            "cost": r.points,
            "description": r.description,
            "collection_info": r.collection_info,
        }
        for r in catalog
    )
    return rewards


def leaderboard(db: Session, limit: int = 10) -> list:
    rows = (
        db.query(models.Reward.user_id, models.User.name, models.Reward.points)
        .outerjoin(models.User, models.Reward.user_id == models.User.id)
        .filter(models.Reward.user_id.isnot(None))
        .order_by(models.Reward.points.desc())
        .limit(limit)
        .all()
    )
    return [{"user_id": u, "user_name": n, "points": p} for u, n, p in rows]
