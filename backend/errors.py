"""Error taxonomy shared by the ledger, the report lifecycle and the API.

Every error carries the HTTP status and machine-readable code the API
answers with, so route handlers can let them propagate.
"""


class EcoReportError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


# ── Classification ──

class ClassificationParseError(EcoReportError):
    """Model reply is not usable JSON or is missing required fields."""
    status_code = 422
    code = "CLASSIFICATION_PARSE_ERROR"


class ClassificationServiceError(EcoReportError):
    """Network, quota, auth or timeout failure calling the model."""
    status_code = 502
    code = "CLASSIFICATION_SERVICE_ERROR"


class InvalidBin(EcoReportError):
    status_code = 400
    code = "INVALID_BIN"


# ── Ledger ──

class InsufficientPoints(EcoReportError):
    status_code = 400
    code = "INSUFFICIENT_POINTS"

    def __init__(self, balance: int, cost: int):
        super().__init__(f"Insufficient points: balance {balance}, cost {cost}")
        self.balance = balance
        self.cost = cost


class PersistenceFailure(EcoReportError):
    status_code = 500
    code = "PERSISTENCE_FAILURE"


# ── Lookups ──

class UserNotFound(EcoReportError):
    status_code = 404
    code = "USER_NOT_FOUND"


class ReportNotFound(EcoReportError):
    status_code = 404
    code = "REPORT_NOT_FOUND"


class RewardNotFound(EcoReportError):
    status_code = 404
    code = "REWARD_NOT_FOUND"


class NotificationNotFound(EcoReportError):
    status_code = 404
    code = "NOTIFICATION_NOT_FOUND"


# ── State machines ──

class IllegalStatusTransition(EcoReportError):
    status_code = 409
    code = "ILLEGAL_STATUS_TRANSITION"


class FlowStateError(EcoReportError):
    status_code = 409
    code = "FLOW_STATE_ERROR"


class GameError(EcoReportError):
    status_code = 409
    code = "GAME_ERROR"


# ── Auth ──

class AuthenticationError(EcoReportError):
    status_code = 401
    code = "NOT_AUTHENTICATED"


class PermissionDenied(EcoReportError):
    status_code = 403
    code = "PERMISSION_DENIED"


# ── Uploads ──

class InvalidImage(EcoReportError):
    status_code = 400
    code = "INVALID_IMAGE"
