"""
Shared fixtures: a small config written to a temp dir, with demo data as CSV
and SQLite next to it.
"""

import logging
from datetime import date

import pytest
import yaml

from tile_dashboard.demo import generate_demo_frames, write_csv, write_sqlite

DEMO_END = date(2026, 3, 31)
SALES_REPORT = "0b6f3c1e-8a52-4d2b-9a57-1f0e6c3d2a41"
MISC_REPORT = "5d8e2f90-3c4b-4a1e-b7d6-92a1c0e4f8b3"


def base_config(source="csv"):
    return {
        "meta": {
            "title": "Test Dashboard",
            "source": source,
            "data_dir": "data",
            "db_path": "data/test.sqlite",
            "log_level": "DEBUG",
        },
        "cache": {"maxsize": 64, "ttl_s": 0},
        "dates": {"default_days": 30, "max_days": 120},
        "datasets": {
            "sales": {
                "file": "sales.csv",
                "table": "sales",
                "date_column": "date",
                "columns": {"date": "date", "region": "str", "product": "str",
                            "units": "int", "revenue": "float"},
            },
            "traffic": {
                "file": "traffic.csv",
                "table": "traffic",
                "date_column": "date",
                "columns": {"date": "date", "visits": "int", "signups": "int"},
            },
            "costs": {"file": "costs.csv", "table": "costs",
                      "columns": {"component": "str", "amount": "float"}},
            "notes": {"file": "notes.csv", "table": "notes", "date_column": "date",
                      "columns": {"date": "date", "author": "str", "note": "str"}},
        },
        "tiles": [
            {"id": "sales-kpis", "title": "Sales totals", "kind": "kpi", "dataset": "sales",
             "y": ["units", "revenue"], "agg": "sum"},
            {"id": "revenue-by-region", "title": "Revenue by region", "kind": "hbar",
             "dataset": "sales", "x": "region", "y": "revenue", "agg": "sum"},
            {"id": "revenue-mix", "title": "Revenue mix", "kind": "pie", "dataset": "sales",
             "names": "product", "values": "revenue", "agg": "sum"},
            {"id": "daily-traffic", "title": "Daily traffic", "kind": "line", "dataset": "traffic",
             "x": "date", "y": ["visits", "signups"]},
            {"id": "cost-breakdown", "title": "Costs", "kind": "waterfall", "dataset": "costs",
             "names": "component", "values": "amount"},
            {"id": "team-notes", "title": "Notes", "kind": "markdown", "dataset": "notes",
             "x": "date", "y": "note", "description": "Weekly notes <script>alert(1)</script>"},
        ],
        "reports": [
            {"id": SALES_REPORT, "title": "Sales", "tiles": ["sales-kpis", "revenue-by-region", "revenue-mix"]},
            {"id": MISC_REPORT, "title": "Misc", "tiles": ["daily-traffic", "cost-breakdown", "team-notes"]},
        ],
    }


def write_config(tmp_path, cfg, name="dashboard.yaml"):
    path = tmp_path / name
    path.write_text(yaml.safe_dump(cfg, sort_keys=False), encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for var in ("TD_DATA_DIR", "TD_DB_PATH", "TD_CACHE_TTL_S", "TD_LOG_LEVEL", "PORT"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture(autouse=True)
def _detach_log_handlers():
    # CLI tests attach a stdout handler bound to the capture stream of that test
    yield
    logger = logging.getLogger("tile_dashboard")
    for h in list(logger.handlers):
        logger.removeHandler(h)


@pytest.fixture(scope="session")
def demo_frames():
    return generate_demo_frames(days=60, seed=7, end=DEMO_END)


@pytest.fixture
def csv_config_path(tmp_path, demo_frames):
    write_csv(demo_frames, tmp_path / "data")
    return write_config(tmp_path, base_config("csv"))


@pytest.fixture
def sqlite_config_path(tmp_path, demo_frames):
    write_sqlite(demo_frames, tmp_path / "data" / "test.sqlite")
    return write_config(tmp_path, base_config("sqlite"))


@pytest.fixture
def csv_config(csv_config_path):
    from tile_dashboard.config import load_config
    return load_config(csv_config_path)


@pytest.fixture
def sqlite_config(sqlite_config_path):
    from tile_dashboard.config import load_config
    return load_config(sqlite_config_path)
