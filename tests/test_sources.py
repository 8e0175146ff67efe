"""Tests for CSV and SQLite dataset sources."""

from datetime import date

import pandas as pd
import pytest

from tile_dashboard.errors import ConfigError, ValidationError
from tile_dashboard.pool import sqlite_pool
from tile_dashboard.sources import (
    CsvDirectorySource,
    SqliteSource,
    build_source,
    filter_date_range,
    load_csv_safe,
)

START = date(2026, 3, 1)
END = date(2026, 3, 10)


class TestLoadCsvSafe:
    def test_missing_file_gives_expected_columns(self, tmp_path):
        df = load_csv_safe(tmp_path / "nope.csv", ["a", "b"], {"a": "str", "b": "float"})
        assert list(df.columns) == ["a", "b"]
        assert df.empty

    def test_adds_and_reorders_columns(self, tmp_path):
        path = tmp_path / "x.csv"
        path.write_text("b,extra\n1.5,z\nbad,y\n", encoding="utf-8")
        df = load_csv_safe(path, ["a", "b"], {"a": "int", "b": "float"})
        assert list(df.columns) == ["a", "b"]
        assert df["b"].iloc[0] == 1.5
        assert pd.isna(df["b"].iloc[1])
        assert str(df["a"].dtype) == "Int64"

    def test_empty_file_is_soft_failure(self, tmp_path):
        path = tmp_path / "empty.csv"
        path.write_text("", encoding="utf-8")
        df = load_csv_safe(path, ["a"])
        assert list(df.columns) == ["a"] and df.empty


class TestFilterDateRange:
    def test_inclusive_and_drops_unparsable(self):
        df = pd.DataFrame({"date": ["2026-02-28", "2026-03-01", "2026-03-10", "2026-03-11", "junk"],
                           "v": [1, 2, 3, 4, 5]})
        out = filter_date_range(df, "date", START, END)
        assert out["v"].tolist() == [2, 3]

    def test_no_column_is_noop(self):
        df = pd.DataFrame({"v": [1]})
        assert filter_date_range(df, "date", START, END) is df
        assert filter_date_range(df, None, START, END) is df


class TestCsvDirectorySource:
    def test_load_filters_range(self, csv_config):
        src = build_source(csv_config)
        assert isinstance(src, CsvDirectorySource)
        assert src.datasets() == ["costs", "notes", "sales", "traffic"]
        df = src.load("traffic", START, END)
        assert len(df) == 10
        assert list(df.columns) == ["date", "visits", "signups"]
        assert df["date"].min() == "2026-03-01" and df["date"].max() == "2026-03-10"

    def test_undated_dataset_ignores_range(self, csv_config):
        df = build_source(csv_config).load("costs", START, END)
        assert len(df) == 4

    def test_unknown_dataset(self, csv_config):
        with pytest.raises(ValidationError) as exc:
            build_source(csv_config).load("nope")
        assert exc.value.field == "dataset"

    def test_missing_file_is_empty(self, tmp_path):
        src = CsvDirectorySource(tmp_path, {"x": {"columns": {"a": "str"}}})
        df = src.load("x")
        assert df.empty and list(df.columns) == ["a"]

    def test_bad_column_type_rejected(self, tmp_path):
        with pytest.raises(ConfigError):
            CsvDirectorySource(tmp_path, {"x": {"columns": {"a": "decimal"}}})


class TestSqliteSource:
    def test_matches_generated_frames(self, sqlite_config, demo_frames):
        src = build_source(sqlite_config)
        assert isinstance(src, SqliteSource)
        df = src.load("sales", START, END)
        expected = demo_frames["sales"]
        expected = expected[(expected["date"] >= "2026-03-01") & (expected["date"] <= "2026-03-10")]
        assert len(df) == len(expected)
        assert df["revenue"].sum() == pytest.approx(expected["revenue"].sum())
        src.pool.close()

    def test_quoted_identifiers(self, tmp_path):
        pool = sqlite_pool(str(tmp_path / "q.sqlite"))
        with pool.connection() as conn:
            conn.exec_driver_sql('CREATE TABLE "odd name" ("day" TEXT, "v" INTEGER)')
            conn.exec_driver_sql("""INSERT INTO "odd name" VALUES ('2026-03-05T10:00:00', 1), ('2026-03-20', 2)""")
        src = SqliteSource(pool, {"odd": {"table": "odd name", "date_column": "day"}})
        df = src.load("odd", START, END)
        assert df["v"].tolist() == [1]
        pool.close()
