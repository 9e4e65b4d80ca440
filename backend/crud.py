import re
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

import models
from database import atomic
from errors import UserNotFound, NotificationNotFound

logger = logging.getLogger(__name__)

CO2_OFFSET_PER_KG = 0.5

_NUMBER = re.compile(r"(\d+(\.\d+)?)")


# ── Users ──

def get_user(db: Session, user_id: int) -> models.User:
    user = db.get(models.User, user_id)
    if user is None:
        raise UserNotFound(f"User {user_id} not found")
    return user


def get_user_by_email(db: Session, email: str):
    return db.query(models.User).filter(models.User.email == email).first()


def get_or_create_user(db: Session, email: str, name: str, password_hash: str):
    """Return (user, created) for an email, creating the account on first login."""
    user = get_user_by_email(db, email)
    if user:
        return user, False

    user = models.User(email=email, name=name, password_hash=password_hash)
    with atomic(db):
        db.add(user)
    db.refresh(user)
    logger.info("[Users] Created user %s", user.id)
    return user, True


def update_user_name(db: Session, user_id: int, name: str) -> models.User:
    user = get_user(db, user_id)
    with atomic(db):
        user.name = name
    return user


# ── Notifications ──

def add_notification(db: Session, user_id: int, message: str, type: str) -> models.Notification:
    """Stage a notification in the caller's transaction."""
    notification = models.Notification(user_id=user_id, message=message, type=type)
    db.add(notification)
    return notification


def create_notification(db: Session, user_id: int, message: str, type: str) -> models.Notification:
    with atomic(db):
        notification = add_notification(db, user_id, message, type)
    db.refresh(notification)
    return notification


def get_unread_notifications(db: Session, user_id: int):
    return (
        db.query(models.Notification)
        .filter(models.Notification.user_id == user_id, models.Notification.is_read.is_(False))
        .order_by(models.Notification.created_at.desc())
        .all()
    )


def mark_notification_as_read(db: Session, notification_id: int, user_id: int) -> models.Notification:
    notification = (
        db.query(models.Notification)
        .filter(models.Notification.id == notification_id, models.Notification.user_id == user_id)
        .first()
    )
    if notification is None:
        raise NotificationNotFound(f"Notification {notification_id} not found")
    with atomic(db):
        notification.is_read = True
    return notification


# ── Reports ──

def get_recent_reports(db: Session, limit: int = 10):
    return db.query(models.Report).order_by(models.Report.created_at.desc()).limit(limit).all()


def get_waste_collection_tasks(db: Session, limit: int = 20):
    return db.query(models.Report).order_by(models.Report.id).limit(limit).all()


def parse_amount(amount: str) -> float:
    """Leading number of a free-text amount such as '2.5 kg'; 0 if none."""
    match = _NUMBER.search(amount or "")
    return float(match.group(0)) if match else 0.0


def impact_stats(db: Session) -> dict:
    reports_submitted = len(get_recent_reports(db, 100))
    tasks = get_waste_collection_tasks(db, 100)
    waste_collected = sum(parse_amount(t.amount) for t in tasks)
    tokens_earned = (
        db.query(func.coalesce(func.sum(models.Reward.points), 0))
        .filter(models.Reward.user_id.isnot(None))
        .scalar()
    )

    return {
        "waste_collected": round(waste_collected, 1),
        "reports_submitted": reports_submitted,
        "tokens_earned": int(tokens_earned),
        "co2_offset": round(waste_collected * CO2_OFFSET_PER_KG, 1),
    }
