"""
tests/unit/test_balance_schema.py — Unit tests for the query-string schemas.

What this file proves:
  - Valid query strings load into normalised values (upper-cased currency
    codes, ConversionMode members, Decimal amounts)
  - Invalid values raise ValidationError carrying the registered ErrorCode
  - Unknown query parameters are ignored

No database, no Flask application context.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from marshmallow import ValidationError

from fairshare.app.errors import ErrorCode
from fairshare.app.schemas.balance_schema import BalanceQuerySchema, ConvertQuerySchema
from fairshare.app.services.types import ConversionMode


# ═══════════════════════════════════════════════════════════════════════════
# BalanceQuerySchema
# ═══════════════════════════════════════════════════════════════════════════

class TestBalanceQuerySchema:

    def _load(self, data: dict):
        return BalanceQuerySchema().load(data)

    def test_empty_query_uses_defaults(self):
        assert self._load({}) == {"self_first": False, "include_personal": False}

    def test_currency_is_upper_cased(self):
        assert self._load({"display_currency": "eur"})["display_currency"] == "EUR"

    def test_flags_parse_as_booleans(self):
        result = self._load({"self_first": "true", "include_personal": "1"})
        assert result["self_first"] is True
        assert result["include_personal"] is True

    def test_valid_conversion_modes(self):
        for mode in ("off", "simple", "smart"):
            assert self._load({"conversion_mode": mode})["conversion_mode"] == mode

    def test_invalid_currency_code(self):
        with pytest.raises(ValidationError) as exc_info:
            self._load({"display_currency": "EURO"})
        assert exc_info.value.messages == {"display_currency": [ErrorCode.INVALID_CURRENCY]}

    def test_invalid_conversion_mode(self):
        with pytest.raises(ValidationError) as exc_info:
            self._load({"conversion_mode": "fast"})
        assert exc_info.value.messages == {
            "conversion_mode": [ErrorCode.INVALID_CONVERSION_MODE],
        }

    def test_unknown_params_ignored(self):
        assert "category" not in self._load({"category": "food"})


# ═══════════════════════════════════════════════════════════════════════════
# ConvertQuerySchema
# ═══════════════════════════════════════════════════════════════════════════

class TestConvertQuerySchema:

    def _load(self, data: dict):
        return ConvertQuerySchema().load(data)

    def test_valid_minimal_query(self):
        result = self._load({"amount": "10.50", "from": "eur", "to": "usd"})

        assert result == {
            "amount": Decimal("10.50"),
            "from_currency": "EUR",
            "to_currency": "USD",
            "date": None,
            "mode": ConversionMode.SIMPLE,
        }

    def test_date_and_mode(self):
        result = self._load({
            "amount": "1",
            "from": "GBP",
            "to": "ILS",
            "date": "2024-03-02",
            "mode": "smart",
        })

        assert result["date"] == date(2024, 3, 2)
        assert result["mode"] is ConversionMode.SMART

    def test_amount_precision_rejected_not_rounded(self):
        with pytest.raises(ValidationError) as exc_info:
            self._load({"amount": "10.555", "from": "EUR", "to": "USD"})
        assert exc_info.value.messages == {"amount": [ErrorCode.INVALID_AMOUNT_PRECISION]}

    def test_non_positive_amount_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            self._load({"amount": "0", "from": "EUR", "to": "USD"})
        assert "amount" in exc_info.value.messages

    def test_missing_currency(self):
        with pytest.raises(ValidationError) as exc_info:
            self._load({"amount": "5.00", "to": "USD"})
        assert "from" in exc_info.value.messages

    def test_invalid_target_currency(self):
        with pytest.raises(ValidationError) as exc_info:
            self._load({"amount": "5.00", "from": "EUR", "to": "12$"})
        assert exc_info.value.messages == {"to": [ErrorCode.INVALID_CURRENCY]}
