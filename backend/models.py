from sqlalchemy import Column, Integer, String, Text, TIMESTAMP, Boolean, JSON, ForeignKey
from database import Base
from datetime import datetime

class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False)
    name = Column(String(255), nullable=False)
    password_hash = Column(Text, nullable=False)
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)

class Report(Base):
    __tablename__ = "reports"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    location = Column(Text, nullable=False)
    waste_type = Column(String(255), nullable=False)
    amount = Column(String(255), nullable=False)
    image_url = Column(Text, nullable=True)
    verification_result = Column(JSON, nullable=True)
    status = Column(String(255), nullable=False, default="pending")
    collector_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)

class Reward(Base):
    # Rows with a user_id hold that user's points; rows without one are catalog rewards
    __tablename__ = "rewards"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=True)
    points = Column(Integer, nullable=False, default=0)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    collection_info = Column(Text, nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)
    updated_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)

class Transaction(Base):
    __tablename__ = "transactions"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String(20), nullable=False)  # earned_report, earned_collect, redeemed
    amount = Column(Integer, nullable=False)
    description = Column(Text, nullable=False)
    date = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)

class Notification(Base):
    __tablename__ = "notifications"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    message = Column(Text, nullable=False)
    type = Column(String(50), nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)

class CollectedWaste(Base):
    __tablename__ = "collected_wastes"
    id = Column(Integer, primary_key=True)
    report_id = Column(Integer, ForeignKey("reports.id"), nullable=False)
    collector_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    collection_date = Column(TIMESTAMP, nullable=False)
    status = Column(String(20), nullable=False, default="collected")
    verification_result = Column(JSON, nullable=True)

class ScanVerification(Base):
    # One classification from /api/scan; consumed by the report or collection it verifies
    __tablename__ = "scan_verifications"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    purpose = Column(String(20), nullable=False)  # report, collect
    image_url = Column(Text, nullable=True)
    result = Column(JSON, nullable=False)
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)
    consumed_at = Column(TIMESTAMP, nullable=True)

class GameRecord(Base):
    __tablename__ = "recycle_rush_games"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    state = Column(JSON, nullable=False)
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)
    paid_at = Column(TIMESTAMP, nullable=True)
