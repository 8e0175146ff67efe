# tile_dashboard/sources.py
from __future__ import annotations
import os
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd
from sqlalchemy import text

from tile_dashboard.errors import ConfigError, ValidationError
from tile_dashboard.log import get_logger
from tile_dashboard.pool import ConnectionPool, sqlite_pool

log = get_logger(__name__)

DTYPES = ("str", "float", "int", "date")


def _empty_series(dtype: Optional[str]) -> pd.Series:
    if dtype == "float":
        return pd.Series(dtype="float64")
    if dtype == "int":
        return pd.Series(dtype="Int64")
    return pd.Series(dtype="object")


def coerce_frame(
    df: pd.DataFrame,
    expected_cols: Optional[List[str]] = None,
    expected_dtypes: Optional[Dict[str, str]] = None,
) -> pd.DataFrame:
    """Add missing expected columns, reorder to expected order, coerce numerics."""
    if expected_cols:
        for col in expected_cols:
            if col not in df.columns:
                df[col] = _empty_series((expected_dtypes or {}).get(col))
        df = df[expected_cols]
    if expected_dtypes:
        df = df.copy()
        for c, dt in expected_dtypes.items():
            if c not in df.columns:
                continue
            if dt == "float":
                df[c] = pd.to_numeric(df[c], errors="coerce")
            elif dt == "int":
                df[c] = pd.to_numeric(df[c], errors="coerce").round().astype("Int64")
    return df


def load_csv_safe(
    path: str | Path,
    expected_cols: Optional[List[str]] = None,
    expected_dtypes: Optional[Dict[str, str]] = None,
) -> pd.DataFrame:
    """
    Robust CSV reader:
    - If file missing or unreadable -> empty DF with expected columns.
    - Adds any missing expected columns with correct dtypes.
    - Reorders columns to expected order if provided.
    """
    try:
        if not os.path.exists(path):
            df = pd.DataFrame(columns=expected_cols or [])
        else:
            df = pd.read_csv(path)
    except (OSError, ValueError) as e:
        # pandas parser errors are ValueError subclasses
        log.warning("failed reading %s: %s", path, e)
        df = pd.DataFrame(columns=expected_cols or [])
    return coerce_frame(df, expected_cols, expected_dtypes)


def filter_date_range(df: pd.DataFrame, column: Optional[str],
                      start: Optional[date], end: Optional[date]) -> pd.DataFrame:
    """Keep rows whose `column` date lies in [start, end]; unparsable dates are dropped."""
    if not column or column not in df.columns or (start is None and end is None):
        return df
    d = pd.to_datetime(df[column], errors="coerce").dt.normalize()
    mask = d.notna()
    if start is not None:
        mask &= d >= pd.Timestamp(start)
    if end is not None:
        mask &= d <= pd.Timestamp(end)
    return df.loc[mask].reset_index(drop=True)


def _parse_dataset(name: str, raw: Dict[str, Any], key: str) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        raise ConfigError(f"dataset {name!r} must be a mapping")
    columns = raw.get("columns") or {}
    bad = {c: t for c, t in columns.items() if t not in DTYPES}
    if bad:
        raise ConfigError(f"dataset {name!r} has unknown column types: {bad}")
    return {
        key: raw.get(key) or (f"{name}.csv" if key == "file" else name),
        "date_column": raw.get("date_column"),
        "columns": dict(columns),
    }


class _BaseSource:
    kind = "base"
    location_key = ""

    def __init__(self, datasets: Dict[str, Dict[str, Any]]):
        self._datasets = {n: _parse_dataset(n, d, self.location_key) for n, d in (datasets or {}).items()}

    def datasets(self) -> List[str]:
        return sorted(self._datasets)

    def _spec(self, name: str) -> Dict[str, Any]:
        try:
            return self._datasets[name]
        except KeyError:
            raise ValidationError(f"unknown dataset {name!r}", field="dataset") from None

    def _finish(self, name: str, spec: Dict[str, Any], df: pd.DataFrame,
                start: Optional[date], end: Optional[date]) -> pd.DataFrame:
        cols = list(spec["columns"]) or None
        df = coerce_frame(df, cols, spec["columns"] or None)
        df = filter_date_range(df, spec["date_column"], start, end)
        log.info("loaded %s (%d rows) from %s", name, len(df), self.kind)
        return df


class CsvDirectorySource(_BaseSource):
    kind = "csv"
    location_key = "file"

    def __init__(self, data_dir: str | Path, datasets: Dict[str, Dict[str, Any]]):
        super().__init__(datasets)
        self.data_dir = Path(data_dir)

    def load(self, name: str, start: Optional[date] = None, end: Optional[date] = None) -> pd.DataFrame:
        spec = self._spec(name)
        df = load_csv_safe(self.data_dir / spec["file"])
        return self._finish(name, spec, df, start, end)


class SqliteSource(_BaseSource):
    kind = "sqlite"
    location_key = "table"

    def __init__(self, pool: ConnectionPool, datasets: Dict[str, Dict[str, Any]]):
        super().__init__(datasets)
        self.pool = pool

    def load(self, name: str, start: Optional[date] = None, end: Optional[date] = None) -> pd.DataFrame:
        spec = self._spec(name)
        quote = self.pool.engine.dialect.identifier_preparer.quote_identifier
        sql = f"SELECT * FROM {quote(spec['table'])}"
        params: Dict[str, str] = {}
        dcol = spec["date_column"]
        if dcol:
            clauses = []
            if start is not None:
                clauses.append(f"{quote(dcol)} >= :start")
                params["start"] = start.isoformat()
            if end is not None:
                # dates are stored as ISO text; a time suffix sorts after the bare date
                clauses.append(f"substr({quote(dcol)}, 1, 10) <= :end")
                params["end"] = end.isoformat()
            if clauses:
                sql += " WHERE " + " AND ".join(clauses)
        with self.pool.connection() as conn:
            df = pd.read_sql(text(sql), conn, params=params)
        return self._finish(name, spec, df, start, end)


def build_source(cfg: Dict[str, Any], pool: Optional[ConnectionPool] = None):
    meta = cfg["meta"]
    if meta.get("source", "csv") == "sqlite":
        if pool is None:
            pool = sqlite_pool(meta["db_path"], **cfg["pool"])
        return SqliteSource(pool, cfg["datasets"])
    return CsvDirectorySource(meta["data_dir"], cfg["datasets"])
