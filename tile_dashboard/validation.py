# tile_dashboard/validation.py
"""
Single-request input checks: tile ids, report ids, date ranges and the
parameter normalization used to build cache keys.
"""
from __future__ import annotations
import re
import uuid
from datetime import date, datetime, timedelta
from typing import Any, Mapping, Optional, Tuple

from tile_dashboard.errors import ValidationError

TILE_ID_RE = re.compile(r"^[a-z][a-z0-9_-]{0,63}$")


def validate_tile_id(value: Any) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"tile id must be a string, got {type(value).__name__}", field="tile_id")
    tid = value.strip()
    if not TILE_ID_RE.match(tid):
        raise ValidationError(f"invalid tile id {value!r}", field="tile_id")
    return tid


def validate_report_id(value: Any) -> str:
    """Accept any UUID spelling, require version 4, return the canonical form."""
    if isinstance(value, uuid.UUID):
        u = value
    elif isinstance(value, str):
        try:
            u = uuid.UUID(value.strip())
        except ValueError:
            raise ValidationError(f"invalid report id {value!r}", field="report_id") from None
    else:
        raise ValidationError("report id must be a string", field="report_id")
    if u.version != 4:
        raise ValidationError(f"report id must be a version-4 UUID, got version {u.version}", field="report_id")
    return str(u)


def parse_date(value: Any, field: str = "date") -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        # DatePickerRange may send "YYYY-MM-DDT00:00:00"
        for sep in ("T", " "):
            if sep in text:
                text = text.split(sep, 1)[0]
        try:
            return date.fromisoformat(text)
        except ValueError:
            pass
    raise ValidationError(f"invalid {field} date {value!r} (expected YYYY-MM-DD)", field=field)


def parse_date_range(
    start: Any = None,
    end: Any = None,
    *,
    default_days: int = 30,
    max_days: int = 366,
    today: Optional[date] = None,
) -> Tuple[date, date]:
    end_d = parse_date(end, "end") if end not in (None, "") else (today or date.today())
    start_d = parse_date(start, "start") if start not in (None, "") else end_d - timedelta(days=default_days)
    if start_d > end_d:
        raise ValidationError(f"start {start_d} is after end {end_d}", field="start")
    if max_days and (end_d - start_d).days > max_days:
        raise ValidationError(f"date range exceeds {max_days} days", field="end")
    return start_d, end_d


def _freeze(key: str, value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(key, v) for v in value)
    if isinstance(value, Mapping):
        raise ValidationError(f"parameter {key!r} must not be a mapping", field=key)
    return value


def normalize_params(params: Optional[Mapping[str, Any]]) -> tuple:
    if not params:
        return ()
    return tuple(sorted((str(k), _freeze(str(k), v)) for k, v in params.items()))
