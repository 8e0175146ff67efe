# tile_dashboard/dispatch.py
from __future__ import annotations
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from tile_dashboard.cache import TileCache, make_key
from tile_dashboard.errors import (
    DashboardError,
    TileRenderError,
    UnknownRouteError,
    UnknownTileError,
    to_payload,
)
from tile_dashboard.log import get_logger
from tile_dashboard.sanitize import Sanitizer
from tile_dashboard.tiles import BUILDERS, ReportSpec, TileSpec, empty_msg
from tile_dashboard.validation import parse_date_range, validate_tile_id

log = get_logger(__name__)

Handler = Callable[[TileSpec, Any, Sanitizer], Any]


@dataclass
class TileResult:
    tile_id: str
    kind: str
    title: str
    body: Any
    cached: bool = False
    elapsed_ms: float = 0.0
    error: Optional[Dict[str, Any]] = field(default=None)


class CallbackDispatcher:
    """
    Routes a tile request to the handler registered for the tile's kind.

    dispatch() validates the request, then serves it from the TileCache or
    loads the tile's dataset for the requested date range and runs the
    handler. Handler and loader failures come back as TileRenderError.
    """

    def __init__(self, tiles: Dict[str, TileSpec], source, cache: TileCache,
                 sanitizer: Sanitizer, date_defaults: Optional[Dict[str, int]] = None):
        self.tiles = tiles
        self.source = source
        self.cache = cache
        self.sanitizer = sanitizer
        self.date_defaults = dict(date_defaults or {"default_days": 30, "max_days": 366})
        self._routes: Dict[str, Handler] = {}

    def route(self, kind: str):
        def decorator(fn: Handler) -> Handler:
            if kind in self._routes:
                raise ValueError(f"a handler for {kind!r} is already registered")
            self._routes[kind] = fn
            return fn
        return decorator

    def routes(self) -> List[str]:
        return sorted(self._routes)

    def spec(self, tile_id: Any) -> TileSpec:
        tid = validate_tile_id(tile_id)
        try:
            return self.tiles[tid]
        except KeyError:
            raise UnknownTileError(f"unknown tile {tid!r}") from None

    def _render(self, spec: TileSpec, handler: Handler, start, end) -> Any:
        try:
            df = self.source.load(spec.dataset, start, end) if spec.dataset else None
            return handler(spec, df, self.sanitizer)
        except DashboardError:
            raise
        except Exception as e:
            log.exception("handler for tile %s (%s) failed", spec.id, spec.kind)
            # details stay in the server log; clients only see that the tile failed
            raise TileRenderError(spec.id, "rendering failed") from e

    def dispatch(self, tile_id: Any, start: Any = None, end: Any = None) -> TileResult:
        spec = self.spec(tile_id)
        start_d, end_d = parse_date_range(start, end, **self.date_defaults)
        handler = self._routes.get(spec.kind)
        if handler is None:
            raise UnknownRouteError(f"no handler registered for tile kind {spec.kind!r}")

        key = make_key(spec.id, {"start": start_d, "end": end_d})
        t0 = time.perf_counter()
        body, cached = self.cache.get_or_compute(key, lambda: self._render(spec, handler, start_d, end_d))
        elapsed_ms = round((time.perf_counter() - t0) * 1000.0, 3)
        log.debug("tile %s served in %.1f ms (cached=%s)", spec.id, elapsed_ms, cached)
        return TileResult(spec.id, spec.kind, spec.title, body, cached, elapsed_ms)

    def dispatch_report(self, report: ReportSpec, start: Any = None, end: Any = None) -> List[TileResult]:
        # bad dates fail the whole report, before any tile runs
        parse_date_range(start, end, **self.date_defaults)
        results = []
        for tid in report.tiles:
            try:
                results.append(self.dispatch(tid, start, end))
            except DashboardError as e:
                spec = self.tiles.get(tid)
                results.append(TileResult(
                    tile_id=tid,
                    kind=spec.kind if spec else "unknown",
                    title=spec.title if spec else tid,
                    body=empty_msg(self.sanitizer.strip_tags(str(e))),
                    error=to_payload(e),
                ))
        return results

    def invalidate(self, tile_id: Optional[str] = None) -> int:
        if tile_id is None:
            return self.cache.clear()
        return self.cache.invalidate(self.spec(tile_id).id)


def default_dispatcher(tiles: Dict[str, TileSpec], source, cache: TileCache,
                       sanitizer: Sanitizer, date_defaults: Optional[Dict[str, int]] = None) -> CallbackDispatcher:
    d = CallbackDispatcher(tiles, source, cache, sanitizer, date_defaults)
    for kind, builder in BUILDERS.items():
        d.route(kind)(builder)
    return d
