"""Tests for request validation: tile ids, report ids, dates, cache params."""

import uuid
from datetime import date, datetime

import pytest

from tile_dashboard.errors import ValidationError
from tile_dashboard.validation import (
    normalize_params,
    parse_date,
    parse_date_range,
    validate_report_id,
    validate_tile_id,
)

TODAY = date(2026, 3, 31)


class TestTileId:
    @pytest.mark.parametrize("value", ["a", "sales-kpis", "rev_by_region2", " padded "])
    def test_valid(self, value):
        assert validate_tile_id(value) == value.strip()

    @pytest.mark.parametrize("value", ["", "1abc", "Sales", "a b", "a/../b", "x" * 65, "<script>"])
    def test_invalid(self, value):
        with pytest.raises(ValidationError) as exc:
            validate_tile_id(value)
        assert exc.value.field == "tile_id"

    def test_non_string(self):
        with pytest.raises(ValidationError):
            validate_tile_id(42)


class TestReportId:
    def test_canonical_form(self):
        u = uuid.uuid4()
        assert validate_report_id(str(u).upper()) == str(u)
        assert validate_report_id("{" + str(u) + "}") == str(u)
        assert validate_report_id(u) == str(u)

    def test_rejects_other_versions(self):
        with pytest.raises(ValidationError, match="version-4"):
            validate_report_id(str(uuid.uuid1()))

    @pytest.mark.parametrize("value", ["not-a-uuid", "", "1234", None])
    def test_rejects_garbage(self, value):
        with pytest.raises(ValidationError) as exc:
            validate_report_id(value)
        assert exc.value.field == "report_id"


class TestDates:
    def test_parse_variants(self):
        assert parse_date("2026-02-01") == date(2026, 2, 1)
        assert parse_date("2026-02-01T00:00:00") == date(2026, 2, 1)
        assert parse_date(datetime(2026, 2, 1, 13, 5)) == date(2026, 2, 1)
        assert parse_date(date(2026, 2, 1)) == date(2026, 2, 1)

    @pytest.mark.parametrize("value", ["02/01/2026", "2026-13-01", "yesterday", 20260201])
    def test_parse_rejects(self, value):
        with pytest.raises(ValidationError):
            parse_date(value, "start")

    def test_range_defaults(self):
        assert parse_date_range(today=TODAY, default_days=7) == (date(2026, 3, 24), TODAY)
        assert parse_date_range(None, "2026-03-10", default_days=5) == (date(2026, 3, 5), date(2026, 3, 10))

    def test_single_day_range(self):
        assert parse_date_range("2026-03-01", "2026-03-01") == (date(2026, 3, 1), date(2026, 3, 1))

    def test_start_after_end(self):
        with pytest.raises(ValidationError) as exc:
            parse_date_range("2026-03-10", "2026-03-01")
        assert exc.value.field == "start"

    def test_max_span(self):
        parse_date_range("2026-01-01", "2026-01-31", max_days=30)
        with pytest.raises(ValidationError) as exc:
            parse_date_range("2026-01-01", "2026-02-01", max_days=30)
        assert exc.value.field == "end"


class TestNormalizeParams:
    def test_order_independent(self):
        assert normalize_params({"b": 1, "a": 2}) == normalize_params({"a": 2, "b": 1})

    def test_dates_and_lists_frozen(self):
        out = normalize_params({"start": date(2026, 1, 1), "ids": [1, 2]})
        assert out == (("ids", (1, 2)), ("start", "2026-01-01"))
        hash(out)

    def test_empty(self):
        assert normalize_params(None) == ()
        assert normalize_params({}) == ()

    def test_mapping_rejected(self):
        with pytest.raises(ValidationError):
            normalize_params({"filter": {"region": "north"}})
