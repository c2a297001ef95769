"""
errors.py — AppError base class, error/warning code registries and the
collected computation issues produced by the balance engine.

Two kinds of failure exist in this service:

  - AppError is RAISED. It is reserved for the request boundary (unknown
    group, caller not a member, missing identity, malformed query) and is
    turned into the JSON error envelope by the global handler.
  - ComputationIssue is COLLECTED. The engine never raises mid-computation;
    a bad expense or a failed rate lookup becomes an issue attached to the
    otherwise complete result, so one bad record never hides a whole group.

Error codes are a versioned contract. They do not change once published.
Messages are human-readable prose and may be improved at any time.
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"AppError(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


class RateProviderError(Exception):
    """An exchange-rate provider could not produce a rate (transport, HTTP or payload)."""


# ── Error Code Registry ────────────────────────────────────────────────────
#
# IMPORTANT: these are the string values sent in the API response.
# Do not rename them without a major version bump.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    INVALID_CURRENCY           = "INVALID_CURRENCY"
    INVALID_CONVERSION_MODE    = "INVALID_CONVERSION_MODE"
    INVALID_AMOUNT_PRECISION   = "INVALID_AMOUNT_PRECISION"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    GROUP_NOT_FOUND            = "GROUP_NOT_FOUND"

    # ── Invalid records (collected, never raised) ─────────────────────────
    # The offending expense is excluded from aggregation; the rest of the
    # group is still computed.
    PAYER_NOT_MEMBER           = "PAYER_NOT_MEMBER"
    SPLIT_USER_NOT_MEMBER      = "SPLIT_USER_NOT_MEMBER"
    INVALID_EXPENSE_AMOUNT     = "INVALID_EXPENSE_AMOUNT"

    # ── Identity Errors ────────────────────────────────────────────────────
    # 401 = we do not know who you are (the upstream auth layer sent nothing)
    # 403 = we know who you are, but you are not a member of the group
    IDENTITY_MISSING           = "IDENTITY_MISSING"       # 401
    IDENTITY_INVALID           = "IDENTITY_INVALID"       # 401
    FORBIDDEN                  = "FORBIDDEN"              # 403

    # ── System Errors (500) ────────────────────────────────────────────────
    INTERNAL_ERROR             = "INTERNAL_ERROR"


# ── Warning Code Registry ──────────────────────────────────────────────────
#
# Warnings are returned alongside a 2xx response in the `warnings` array.
# They do not block the request.
# ──────────────────────────────────────────────────────────────────────────

class WarningCode:

    # DataInconsistency: an expense's splits do not add up to its amount.
    # Reported, never rescaled.
    SPLIT_SUM_MISMATCH     = "SPLIT_SUM_MISMATCH"

    # DataInconsistency: the group's net balances do not sum to zero.
    BALANCE_SUM_NONZERO    = "BALANCE_SUM_NONZERO"

    # ConversionUnavailable: no rate; the original amount was used as-is.
    CONVERSION_UNAVAILABLE = "CONVERSION_UNAVAILABLE"


class Severity:
    WARNING = "warning"
    ERROR   = "error"


class ComputationIssue:
    """
    One problem found while computing a balance summary.

    Issues are accumulated in a list and returned with the best-effort result.
    `expense_id` / `user_id` point at the record that caused it, when known.
    """

    __slots__ = ("code", "message", "severity", "expense_id", "user_id")

    def __init__(
            self,
            code: str,
            message: str,
            severity: str = Severity.WARNING,
            expense_id=None,
            user_id=None,
    ) -> None:
        self.code       = code
        self.message    = message
        self.severity   = severity
        self.expense_id = expense_id
        self.user_id    = user_id

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR

    def to_dict(self) -> dict:
        payload = {
            "code":     self.code,
            "message":  self.message,
            "severity": self.severity,
        }
        if self.expense_id is not None:
            payload["expense_id"] = self.expense_id
        if self.user_id is not None:
            payload["user_id"] = self.user_id
        return payload

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ComputationIssue):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return (
            f"ComputationIssue(code={self.code!r}, "
            f"severity={self.severity!r}, "
            f"expense_id={self.expense_id!r})"
        )
