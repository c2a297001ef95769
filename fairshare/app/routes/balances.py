"""
routes/balances.py — Balance route handlers.

Layer rules:
  - Parse query params, call ONE service, return envelope.
  - No business logic. No DB queries.

Endpoints (url_prefix=/api/v1/groups):
  GET /groups/:id/balances                 → 200  summary + simplified debts
  GET /groups/:id/balances/:other_user_id  → 200  pairwise simplified balance
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from fairshare.app.extensions import db
from fairshare.app.middleware.identity import require_identity
from fairshare.app.schemas.balance_schema import BalanceQuerySchema
from fairshare.app.services import summary_service

balances_bp = Blueprint("balances", __name__)

_query_schema = BalanceQuerySchema()


def _summary_args() -> dict:
    params = _query_schema.load(request.args)
    return dict(
        rate_provider=current_app.extensions["rate_provider"],
        config=current_app.config,
        display_currency=params.get("display_currency"),
        conversion_mode=params.get("conversion_mode"),
        self_first=params["self_first"],
        include_personal=params["include_personal"],
    )


@balances_bp.route("/<int:group_id>/balances", methods=["GET"])
@require_identity
def get_balances(group_id: int):
    """
    GET /groups/:id/balances

    Optional query params:
      ?display_currency=USD        defaults to the caller's stored preference
      ?conversion_mode=off|simple|smart
      ?self_first=true             caller's balance listed first
      ?include_personal=true       caller's personal spending in spending_split

    Computation issues never fail the request: warnings travel in the
    envelope, invalid records in data.errors.
    """
    result = summary_service.get_balance_response(
        group_id, g.user_id, db.session, **_summary_args()
    )
    warnings = result.pop("warnings")
    return jsonify({"data": result, "warnings": warnings}), 200


@balances_bp.route("/<int:group_id>/balances/<int:other_user_id>", methods=["GET"])
@require_identity
def get_balance_with_user(group_id: int, other_user_id: int):
    """
    GET /groups/:id/balances/:other_user_id

    Positive amount: the caller is owed by the other user. Negative: the
    caller owes them.
    """
    summary = summary_service.build_summary(
        group_id, g.user_id, db.session, **_summary_args()
    )
    amount = summary_service.get_balance_between_users(summary, g.user_id, other_user_id)
    return jsonify({
        "data": {
            "group_id": group_id,
            "user_id": g.user_id,
            "other_user_id": other_user_id,
            "amount": str(amount),
            "currency": summary.display_currency,
        },
        "warnings": [i.to_dict() for i in summary.warnings],
    }), 200
