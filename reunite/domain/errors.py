"""Error taxonomy for the matching and claim engine.

Every structural failure carries a machine readable ``code`` and a human
``reason``; the HTTP layer maps ``status_code`` straight onto HTTPException.
Scoring-signal failures (ExternalServiceDegraded and subclasses) are absorbed
by the scorers and never reach a caller.
"""
from __future__ import annotations


class ReuniteError(Exception):
    code = "error"
    status_code = 500

    def __init__(self, reason: str = "", code: str | None = None):
        super().__init__(reason or self.code)
        self.reason = reason or self.code
        if code:
            self.code = code


class ValidationError(ReuniteError):
    """Malformed input. Caller's fault, never retried."""
    code = "validation_error"
    status_code = 400


class DuplicateSubmission(ReuniteError):
    code = "duplicate_submission"
    status_code = 409


class Unauthorized(ReuniteError):
    """Actor is not a party to the Report/Match."""
    code = "unauthorized"
    status_code = 403


class NotFound(ReuniteError):
    code = "not_found"
    status_code = 404


class ConcurrencyConflict(ReuniteError):
    code = "concurrency_conflict"
    status_code = 409


class ExternalServiceDegraded(ReuniteError):
    code = "external_service_degraded"
    status_code = 503


class EmbeddingUnavailable(ExternalServiceDegraded):
    code = "embedding_unavailable"


class DimensionMismatch(ValueError):
    def __init__(self, len_a: int, len_b: int):
        super().__init__(f"vector dimension mismatch: {len_a} != {len_b}")
        self.len_a = len_a
        self.len_b = len_b
