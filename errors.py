"""
Error types raised by the tracker core.

The API layer in main.py maps each of them to an HTTP status.
"""
from typing import Optional


class TrackerError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(TrackerError):
    status_code = 404


class ValidationError(TrackerError):
    status_code = 422


class ConflictError(TrackerError):
    status_code = 409


class EstimatorUnavailable(TrackerError):
    """The external emission estimator could not produce a number."""

    STATUS_BY_REASON = {
        "rate_limited": 429,
        "payment_required": 402,
    }

    def __init__(self, message: str, reason: str = "bad_response", upstream_status: Optional[int] = None):
        super().__init__(message)
        self.reason = reason
        self.upstream_status = upstream_status
        self.status_code = self.STATUS_BY_REASON.get(reason, 502)
