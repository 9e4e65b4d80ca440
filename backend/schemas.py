"""
Pydantic models for classification results and API payloads.
"""

from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field


BINS = ("recyclables", "landfill", "organics")


# ── Classification results ──

class Classification(BaseModel):
    waste_type: str
    quantity: str
    confidence: float = Field(..., ge=0, le=1)
    bin: str


class ContaminationResult(BaseModel):
    target_bin: str
    contamination_percentage: float = Field(..., ge=0, le=1)
    contamination_summary: str
    confidence: Optional[float] = None
    waste_type: Optional[str] = None
    quantity: Optional[str] = None


# ── Rows ──

class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: str
    created_at: datetime


class ReportOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    location: str
    waste_type: str
    amount: str
    image_url: Optional[str] = None
    verification_result: Optional[dict] = None
    status: str
    collector_id: Optional[int] = None
    created_at: datetime


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    amount: int
    description: str
    date: datetime


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    message: str
    type: str
    is_read: bool
    created_at: datetime


class CollectedWasteOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    report_id: int
    collector_id: int
    collection_date: datetime
    status: str


class RewardOut(BaseModel):
    id: int
    name: str
    cost: int
    description: Optional[str] = None
    collection_info: Optional[str] = None


class LeaderboardEntry(BaseModel):
    user_id: int
    user_name: Optional[str] = None
    points: int


# ── Requests ──

class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)
    name: Optional[str] = None


class ProfileUpdate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)


class StatusUpdate(BaseModel):
    status: str


class CatalogRewardCreate(BaseModel):
    name: str = Field(..., min_length=1)
    cost: int = Field(..., gt=0)
    description: Optional[str] = None
    collection_info: str = "Ask your organization about this reward"


class SortRequest(BaseModel):
    item_id: int
    bin: str


class Profile(BaseModel):
    user: UserOut
    balance: int
    transactions: List[TransactionOut]
    unread_notifications: int
