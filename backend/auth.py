import os
import bcrypt
from fastapi import Depends, Request
from sqlalchemy.orm import Session

import models
from crud import get_user
from database import get_db
from errors import AuthenticationError, UserNotFound

SECRET_KEY = os.getenv("SECRET_KEY", "eco-report-secret-key-change-in-prod")

# Password hashing (direct bcrypt, avoids passlib + bcrypt 5.x incompatibility)
def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')

def verify_password(plain: str, hashed: str) -> bool:
    return bcrypt.checkpw(plain.encode('utf-8'), hashed.encode('utf-8'))


# ── Session identity ──

def login_session(request: Request, user: models.User):
    request.session["user_id"] = user.id
    request.session["user_name"] = user.name

def logout_session(request: Request):
    request.session.clear()

def current_user(request: Request, db: Session = Depends(get_db)) -> models.User:
    """Dependency: the logged-in user, or 401."""
    user_id = request.session.get("user_id")
    if not user_id:
        raise AuthenticationError("Please log in first")
    try:
        return get_user(db, user_id)
    except UserNotFound:
        request.session.clear()
        raise AuthenticationError("Session user no longer exists")

def optional_user(request: Request, db: Session = Depends(get_db)):
    """Dependency: the logged-in user, or None."""
    try:
        return current_user(request, db)
    except AuthenticationError:
        return None
