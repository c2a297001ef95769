"""
middleware/identity.py — Caller identity decorator.

Authentication happens upstream (gateway / session layer). That layer
forwards the authenticated user's id in the X-User-Id header; this
decorator only reads it and attaches it to flask.g.

Strict responsibility boundary:
  - Middleware = "who is calling" (401). It never checks group membership.
  - Services = "may they see this group" (403), receiving user_id as a
    plain int with no knowledge of headers.

Error codes:
  IDENTITY_MISSING (401) — no X-User-Id header
  IDENTITY_INVALID (401) — header is not a positive integer
"""

from __future__ import annotations

import functools
from typing import Callable

from flask import g, request

from fairshare.app.errors import AppError, ErrorCode

IDENTITY_HEADER = "X-User-Id"


def require_identity(f: Callable) -> Callable:
    """
    Route decorator that requires a caller identity.

    Usage:
        @bp.route("/<int:group_id>/balances")
        @require_identity
        def get_balances(group_id):
            caller = g.user_id  # always an int when this runs
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        _identify_request()
        return f(*args, **kwargs)

    return decorated


def _identify_request() -> None:
    """Parses the identity header and sets flask.g.user_id, or raises AppError."""
    raw = request.headers.get(IDENTITY_HEADER, "").strip()

    if not raw:
        raise AppError(
            ErrorCode.IDENTITY_MISSING,
            f"Caller identity required. The {IDENTITY_HEADER} header is missing.",
            401,
        )

    try:
        user_id = int(raw)
    except ValueError:
        user_id = 0

    if user_id <= 0:
        raise AppError(
            ErrorCode.IDENTITY_INVALID,
            f"The {IDENTITY_HEADER} header must be a positive integer user id.",
            401,
        )

    g.user_id = user_id
