"""Upload -> verify -> submit flow for the report and collection pages.

The flow state lives in the user's session; each successful scan is also
stored as a ScanVerification row. Submitting consumes that row, so a
replayed session cookie cannot spend the same classification twice.
"""

from datetime import datetime

from sqlalchemy.orm import Session

import models
from database import atomic
from errors import FlowStateError

IDLE = "idle"
VERIFYING = "verifying"
SUCCESS = "success"
FAILURE = "failure"
SUBMITTING = "submitting"
SUBMITTED = "submitted"

TRANSITIONS = {
    IDLE: {VERIFYING},
    VERIFYING: {VERIFYING, SUCCESS, FAILURE},
    SUCCESS: {VERIFYING, SUBMITTING},
    FAILURE: {VERIFYING},
    SUBMITTING: {SUBMITTED, SUCCESS, VERIFYING},
    SUBMITTED: {VERIFYING},
}

SESSION_KEY = "scan_flow"


class ScanFlow:
    def __init__(self, state=IDLE, result=None, image_url=None, error=None, purpose=None, verification_id=None):
        self.state = state
        self.result = result
        self.image_url = image_url
        self.error = error
        self.purpose = purpose
        self.verification_id = verification_id

    def _move(self, target):
        if target not in TRANSITIONS[self.state]:
            raise FlowStateError(f"Cannot go from {self.state} to {target}")
        self.state = target

    def start_verification(self, image_url, purpose="report"):
        self._move(VERIFYING)
        self.image_url = image_url
        self.purpose = purpose
        self.result = None
        self.error = None
        self.verification_id = None

    def succeed(self, result: dict, verification_id: int = None):
        self._move(SUCCESS)
        self.result = result
        self.verification_id = verification_id

    def fail(self, error: str):
        self._move(FAILURE)
        self.error = error

    def begin_submit(self, purpose="report") -> dict:
        """Enter submitting and hand back the verified classification."""
        if self.state != SUCCESS:
            raise FlowStateError("Verify the waste before submitting")
        if self.purpose != purpose:
            raise FlowStateError(f"The last scan was for a {self.purpose}, not a {purpose}")
        self._move(SUBMITTING)
        return self.result

    def finish_submit(self):
        self._move(SUBMITTED)

    def abort_submit(self):
        """Submission failed; the verified result stays usable."""
        self._move(SUCCESS)

    def to_dict(self) -> dict:
        return {
            "state": self.state,
            "result": self.result,
            "image_url": self.image_url,
            "error": self.error,
            "purpose": self.purpose,
            "verification_id": self.verification_id,
        }

    @classmethod
    def from_dict(cls, data):
        if not data:
            return cls()
        return cls(**data)


def load_flow(session) -> ScanFlow:
    return ScanFlow.from_dict(session.get(SESSION_KEY))


def save_flow(session, flow: ScanFlow):
    session[SESSION_KEY] = flow.to_dict()


# ── Stored verifications ──

def record_verification(db: Session, user_id: int, purpose: str, image_url: str, result: dict) -> models.ScanVerification:
    verification = models.ScanVerification(user_id=user_id, purpose=purpose, image_url=image_url, result=result)
    with atomic(db):
        db.add(verification)
    db.refresh(verification)
    return verification


def consume_verification(db: Session, verification_id: int, user_id: int, purpose: str):
    """Mark a scan as used. Staged only; the caller's transaction commits it.

    The conditional UPDATE matches at most once, so of two submits racing on
    the same scan only one gets past this point.
    """
    used = (
        db.query(models.ScanVerification)
        .filter(
            models.ScanVerification.id == verification_id,
            models.ScanVerification.user_id == user_id,
            models.ScanVerification.purpose == purpose,
            models.ScanVerification.consumed_at.is_(None),
        )
        .update({models.ScanVerification.consumed_at: datetime.utcnow()}, synchronize_session=False)
    )
    if used != 1:
        raise FlowStateError("This scan has already been used; verify the waste again")
