# tile_dashboard/errors.py
from __future__ import annotations
from typing import Any, Dict, Optional


class DashboardError(Exception):
    """Base error; `status` is the HTTP code the Flask routes answer with."""
    status = 500


class ConfigError(DashboardError, ValueError):
    status = 500


class ValidationError(DashboardError, ValueError):
    status = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class UnknownTileError(DashboardError, LookupError):
    status = 404


class UnknownReportError(DashboardError, LookupError):
    status = 404


class UnknownRouteError(DashboardError, LookupError):
    status = 500


class PoolTimeoutError(DashboardError, TimeoutError):
    status = 503


class TileRenderError(DashboardError):
    status = 500

    def __init__(self, tile_id: str, message: str):
        super().__init__(f"tile '{tile_id}': {message}")
        self.tile_id = tile_id


def to_payload(exc: BaseException) -> Dict[str, Any]:
    # LookupError subclasses wrap str() in quotes; use args[0] instead
    message = exc.args[0] if exc.args else str(exc)
    payload: Dict[str, Any] = {"error": type(exc).__name__, "message": str(message)}
    field = getattr(exc, "field", None)
    if field:
        payload["field"] = field
    return payload
