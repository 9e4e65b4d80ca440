"""Report lifecycle: pending -> collected -> verified."""

import os
import logging
from datetime import datetime

from sqlalchemy.orm import Session

import models
import ledger
from crud import add_notification, get_user
from database import atomic
from flows import consume_verification
from errors import IllegalStatusTransition, ReportNotFound, PersistenceFailure, UserNotFound

logger = logging.getLogger(__name__)

PENDING = "pending"
COLLECTED = "collected"
VERIFIED = "verified"

ALLOWED_TRANSITIONS = {
    PENDING: {COLLECTED},
    COLLECTED: {VERIFIED},
    VERIFIED: set(),
}

REPORT_POINTS = 10
COLLECT_POINTS = int(os.getenv("COLLECT_POINTS", "20"))


def get_report(db: Session, report_id: int) -> models.Report:
    report = db.get(models.Report, report_id)
    if report is None:
        raise ReportNotFound(f"Report {report_id} not found")
    return report


def _lock_report(db: Session, report_id: int) -> models.Report:
    report = (
        db.query(models.Report)
        .filter(models.Report.id == report_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if report is None:
        raise ReportNotFound(f"Report {report_id} not found")
    return report


def _award(db: Session, user_id: int, points: int, kind: str, reason: str, message: str):
    """Points plus notification as one unit. Failure is logged, never raised."""
    try:
        with atomic(db):
            ledger.apply_earn(db, user_id, points, reason, kind)
            add_notification(db, user_id, message, "Reward Earned!")
    except (PersistenceFailure, UserNotFound) as e:
        logger.error("[Reports] Could not award %s points to user %s: %s", points, user_id, e)
        return False
    return True


def submit_report(db: Session, user_id: int, location: str, waste_type: str, amount: str,
                  image_url: str = None, verification_result: dict = None,
                  verification_id: int = None) -> models.Report:
    """Insert a pending report and pay the reporter.

    With a verification_id the scan it names is consumed in the same
    transaction as the insert, so one scan backs at most one report.
    """
    get_user(db, user_id)
    report = models.Report(
        user_id=user_id,
        location=location,
        waste_type=waste_type,
        amount=amount,
        image_url=image_url,
        verification_result=verification_result,
        status=PENDING,
    )
    with atomic(db):
        if verification_id is not None:
            consume_verification(db, verification_id, user_id, "report")
        db.add(report)
    db.refresh(report)
    logger.info("[Reports] Report %s submitted by user %s", report.id, user_id)

    _award(
        db, user_id, REPORT_POINTS, ledger.EARNED_REPORT,
        "Points earned for reporting waste",
        f"You've earned {REPORT_POINTS} points for reporting waste!",
    )
    return report


def _apply_status(db: Session, report: models.Report, new_status: str, collector_id: int = None):
    if new_status not in ALLOWED_TRANSITIONS:
        raise IllegalStatusTransition(f"Unknown status '{new_status}'")
    if new_status not in ALLOWED_TRANSITIONS[report.status]:
        raise IllegalStatusTransition(f"Cannot move report {report.id} from {report.status} to {new_status}")

    if collector_id is not None:
        if report.collector_id is not None and report.collector_id != collector_id:
            raise IllegalStatusTransition(f"Report {report.id} is already claimed by another collector")
        get_user(db, collector_id)
    if new_status == COLLECTED and collector_id is None and report.collector_id is None:
        raise IllegalStatusTransition("A collector is required to collect a report")

    report.status = new_status
    if collector_id is not None:
        report.collector_id = collector_id


def update_status(db: Session, report_id: int, new_status: str, collector_id: int = None) -> models.Report:
    # Checks run against the locked row so two collectors cannot both claim it
    with atomic(db):
        report = _lock_report(db, report_id)
        _apply_status(db, report, new_status, collector_id)
    logger.info("[Reports] Report %s is now %s", report_id, new_status)
    return report


def _stage_collection(db: Session, report_id: int, collector_id: int, verification_result: dict = None) -> models.CollectedWaste:
    collected = models.CollectedWaste(
        report_id=report_id,
        collector_id=collector_id,
        collection_date=datetime.utcnow(),
        status=VERIFIED,
        verification_result=verification_result,
    )
    db.add(collected)
    return collected


def collect_waste(db: Session, report_id: int, collector_id: int, verification_result: dict = None) -> models.CollectedWaste:
    """Record a pickup. The report status is left to update_status."""
    get_report(db, report_id)
    get_user(db, collector_id)
    with atomic(db):
        collected = _stage_collection(db, report_id, collector_id, verification_result)
    db.refresh(collected)
    return collected


def complete_collection(db: Session, report_id: int, collector_id: int, verification_result: dict = None,
                        verification_id: int = None):
    """Collector confirms a claimed pickup: record it, verify the report, pay the collector.

    The pickup row and the status change commit together under the report's
    row lock; a second call finds the report already verified.
    """
    with atomic(db):
        report = _lock_report(db, report_id)
        if report.status != COLLECTED:
            raise IllegalStatusTransition(f"Report {report_id} must be collected before it can be verified")
        if report.collector_id != collector_id:
            raise IllegalStatusTransition(f"Report {report_id} is claimed by another collector")
        if verification_id is not None:
            consume_verification(db, verification_id, collector_id, "collect")
        collected = _stage_collection(db, report_id, collector_id, verification_result)
        _apply_status(db, report, VERIFIED, collector_id)
    db.refresh(collected)
    logger.info("[Reports] Report %s verified by collector %s", report_id, collector_id)

    _award(
        db, collector_id, COLLECT_POINTS, ledger.EARNED_COLLECT,
        "Points earned for collecting waste",
        f"You've earned {COLLECT_POINTS} points for collecting waste!",
    )
    return report, collected
