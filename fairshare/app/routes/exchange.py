"""
routes/exchange.py — Single-amount conversion.

Endpoints (url_prefix=/api/v1/exchange):
  GET /exchange/convert?amount=&from=&to=&date=&mode=  → 200 ConvertedAmount

An unavailable rate is not an error: `converted` is null and a
CONVERSION_UNAVAILABLE warning is returned.
"""

from __future__ import annotations

from datetime import date

from flask import Blueprint, current_app, jsonify, request

from fairshare.app.errors import ComputationIssue, WarningCode
from fairshare.app.middleware.identity import require_identity
from fairshare.app.schemas.balance_schema import ConvertQuerySchema
from fairshare.app.services.currency_service import CurrencyResolver

exchange_bp = Blueprint("exchange", __name__)

_convert_schema = ConvertQuerySchema()


@exchange_bp.route("/convert", methods=["GET"])
@require_identity
def convert():
    params = _convert_schema.load(request.args)
    resolver = CurrencyResolver(current_app.extensions["rate_provider"])

    result = resolver.resolve(
        params["amount"],
        params["from_currency"],
        params["to_currency"],
        params["date"] or date.today(),
        params["mode"],
    )

    warnings = []
    if result.is_unavailable:
        warnings.append(ComputationIssue(
            WarningCode.CONVERSION_UNAVAILABLE,
            f"No {params['from_currency']}->{params['to_currency']} rate available.",
        ).to_dict())

    return jsonify({"data": result.to_dict(), "warnings": warnings}), 200
