"""
schemas/balance_schema.py — Marshmallow schemas for balance and conversion
query strings.

Validation responsibility:
  - This file: field types, ISO 4217 shape, conversion mode values,
    monetary precision.
  - services/summary_service.py: group existence (404), membership (403),
    falling back to stored preferences / config defaults.

IMPORTANT: Inherits from marshmallow.Schema directly. Unit tests run these
schemas without a Flask app.
"""

from __future__ import annotations

import re
from decimal import Decimal

from marshmallow import (
    EXCLUDE,
    Schema,
    ValidationError,
    fields,
    post_load,
    validate,
)

from fairshare.app.errors import ErrorCode
from fairshare.app.services.types import ConversionMode

_CURRENCY_RE = re.compile(r"^[A-Za-z]{3}$")


def _validate_currency_code(value: str) -> None:
    """Three ASCII letters. Whether the rate provider knows it is its own business."""
    if not _CURRENCY_RE.match(value):
        raise ValidationError(ErrorCode.INVALID_CURRENCY)


def _validate_monetary_amount(value: Decimal) -> None:
    """
    Strictly positive, at most 2 decimal places.

    Input with more precision is REJECTED (INVALID_AMOUNT_PRECISION), never
    rounded.
    """
    if value <= Decimal("0"):
        raise ValidationError("Amount must be greater than zero.")
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


_conversion_mode_field = dict(
    validate=validate.OneOf(
        [m.value for m in ConversionMode],
        error=ErrorCode.INVALID_CONVERSION_MODE,
    ),
)


class BalanceQuerySchema(Schema):
    """
    GET /groups/:id/balances

    All fields optional:
      display_currency : ISO 4217 code; upper-cased on load
      conversion_mode  : off | simple | smart
      self_first       : put the caller's balance first
      include_personal : add the caller's personal expenses to the spending split
    """

    class Meta:
        unknown = EXCLUDE

    display_currency = fields.Str(validate=_validate_currency_code)
    conversion_mode = fields.Str(**_conversion_mode_field)
    self_first = fields.Bool(load_default=False)
    include_personal = fields.Bool(load_default=False)

    @post_load
    def normalise(self, data: dict, **kwargs) -> dict:
        if "display_currency" in data:
            data["display_currency"] = data["display_currency"].upper()
        return data


class ConvertQuerySchema(Schema):
    """
    GET /exchange/convert

      amount : required, positive Decimal, max 2 dp
      from   : required ISO 4217 code
      to     : required ISO 4217 code
      date   : ISO-8601 date; required for smart mode, defaults to today
      mode   : simple (default) | smart | off
    """

    class Meta:
        unknown = EXCLUDE

    amount = fields.Decimal(required=True, validate=_validate_monetary_amount)
    from_currency = fields.Str(
        required=True,
        data_key="from",
        validate=_validate_currency_code,
    )
    to_currency = fields.Str(
        required=True,
        data_key="to",
        validate=_validate_currency_code,
    )
    date = fields.Date(load_default=None)
    mode = fields.Str(load_default=ConversionMode.SIMPLE.value, **_conversion_mode_field)

    @post_load
    def normalise(self, data: dict, **kwargs) -> dict:
        data["from_currency"] = data["from_currency"].upper()
        data["to_currency"] = data["to_currency"].upper()
        data["mode"] = ConversionMode(data["mode"])
        return data
