"""Tests for query parameter parsing and pagination helpers."""

from datetime import date
from decimal import Decimal

import pytest
from fastapi import HTTPException

from api.helpers import page_count
from utils.query_params import parse_csv_list, parse_date_param, parse_decimal_param


class TestParseCsvList:
    def test_splits_and_trims(self):
        assert parse_csv_list(" Plaid Checking , Plaid Saving ") == [
            "Plaid Checking",
            "Plaid Saving",
        ]

    @pytest.mark.parametrize("value", [None, "", " , ,"])
    def test_empty_is_none(self, value):
        assert parse_csv_list(value) is None


class TestParseDateParam:
    def test_valid(self):
        assert parse_date_param("2024-02-29", "startDate") == date(2024, 2, 29)

    def test_missing(self):
        assert parse_date_param(None, "startDate") is None
        assert parse_date_param("", "startDate") is None

    def test_invalid_is_400(self):
        with pytest.raises(HTTPException) as exc_info:
            parse_date_param("2024-02-30", "endDate")
        assert exc_info.value.status_code == 400
        assert exc_info.value.detail == "Invalid endDate: 2024-02-30"


class TestParseDecimalParam:
    def test_valid(self):
        assert parse_decimal_param("12.50", "minAmount") == Decimal("12.50")

    def test_missing(self):
        assert parse_decimal_param(None, "minAmount") is None

    @pytest.mark.parametrize("value", ["abc", "NaN", "Infinity"])
    def test_invalid_is_400(self, value):
        with pytest.raises(HTTPException) as exc_info:
            parse_decimal_param(value, "maxAmount")
        assert exc_info.value.status_code == 400


@pytest.mark.parametrize("total,limit,expected", [(0, 50, 0), (50, 50, 1), (51, 50, 2), (3, 0, 0)])
def test_page_count(total, limit, expected):
    assert page_count(total, limit) == expected
