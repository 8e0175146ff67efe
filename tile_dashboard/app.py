# tile_dashboard/app.py
from __future__ import annotations
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

import plotly.graph_objects as go
from dash import Dash, Input, Output, State, dcc, html
from flask import jsonify, request

from tile_dashboard.cache import TileCache
from tile_dashboard.dispatch import CallbackDispatcher, TileResult, default_dispatcher
from tile_dashboard.errors import DashboardError, UnknownReportError, ValidationError, to_payload
from tile_dashboard.log import get_logger
from tile_dashboard.pool import sqlite_pool
from tile_dashboard.sanitize import Sanitizer, from_config
from tile_dashboard.sources import build_source
from tile_dashboard.tiles import (
    GRAPH_HEIGHT,
    PLOT_BG,
    ReportSpec,
    body_to_json,
    empty_msg,
    load_reports,
    load_tiles,
)
from tile_dashboard.validation import parse_date_range, validate_report_id

log = get_logger(__name__)

CARD_STYLE = {
    "background": "#FFFFFF",
    "padding": "12px",
    "borderRadius": "10px",
    "boxShadow": "0 1px 3px rgba(0,0,0,0.08)",
}

INDEX_STRING = f"""
<!DOCTYPE html>
<html>
  <head>
    {{%metas%}}
    <title>{{%title%}}</title>
    {{%favicon%}}
    {{%css%}}
    <style>
      html, body {{ font-family: 'Open Sans', sans-serif; background: {PLOT_BG}; }}
      .container {{ max-width: 1280px; margin: 0 auto; padding: 16px; }}
      .row {{ display: grid; grid-template-columns: 1fr 1fr; gap: 12px; }}
      .controls {{ display: flex; gap: 12px; align-items: center; flex-wrap: wrap; }}
      .tile-meta {{ color: #94a3b8; font-size: 11px; }}
    </style>
  </head>
  <body>
    {{%app_entry%}}
    <footer>
      {{%config%}}
      {{%scripts%}}
      {{%renderer%}}
    </footer>
  </body>
</html>
"""


class DashboardView:
    """Callback bodies; registered on the Dash app by create_app()."""

    def __init__(self, dispatcher: CallbackDispatcher, reports: Dict[str, ReportSpec]):
        self.dispatcher = dispatcher
        self.reports = reports

    def report(self, report_id: Any) -> ReportSpec:
        rid = validate_report_id(report_id)
        try:
            return self.reports[rid]
        except KeyError:
            raise UnknownReportError(f"unknown report {rid}") from None

    def reload_data(self, n_clicks: Optional[int], report_id: Optional[str]) -> int:
        """Drop cached tiles of the selected report; returns the click count as a refresh token."""
        if not n_clicks or not report_id:
            return n_clicks or 0
        try:
            report = self.report(report_id)
        except DashboardError as e:
            log.warning("reload ignored: %s", e)
            return n_clicks
        dropped = sum(self.dispatcher.invalidate(t) for t in report.tiles)
        log.info("reload: dropped %d cached entries for report %s", dropped, report.id)
        return n_clicks

    def select_report(self, report_id: Optional[str], start: Optional[str], end: Optional[str],
                      token: Optional[int]) -> Dict[str, Any]:
        if not report_id:
            return {}
        try:
            report = self.report(report_id)
            start_d, end_d = parse_date_range(start, end, **self.dispatcher.date_defaults)
        except DashboardError as e:
            log.warning("rejected selection: %s", e)
            return {"error": str(e.args[0] if e.args else e)}
        return {"report_id": report.id, "start": start_d.isoformat(), "end": end_d.isoformat(),
                "token": token or 0}

    def render_report(self, selection: Optional[Dict[str, Any]]) -> List[Any]:
        if not selection:
            return [empty_msg("Select a report")]
        if "error" in selection:
            return [empty_msg(self.dispatcher.sanitizer.strip_tags(selection["error"]))]
        try:
            report = self.report(selection.get("report_id"))
            results = self.dispatcher.dispatch_report(report, selection.get("start"), selection.get("end"))
        except DashboardError as e:
            return [empty_msg(self.dispatcher.sanitizer.strip_tags(str(e.args[0] if e.args else e)))]
        return [html.Div(className="row", children=[tile_card(r) for r in results])]


def tile_card(result: TileResult) -> html.Div:
    body = result.body
    if isinstance(body, go.Figure):
        body = dcc.Graph(
            id=f"tile-{result.tile_id}",
            figure=body,
            style={"height": f"{GRAPH_HEIGHT}px"},
            config={"responsive": False},
        )
    meta = "error" if result.error else f"{'cached' if result.cached else 'fresh'} · {result.elapsed_ms:.1f} ms"
    return html.Div([html.H4(result.title), body, html.Div(meta, className="tile-meta")], style=CARD_STYLE)


def result_to_json(result: TileResult) -> Dict[str, Any]:
    out = {
        "tile_id": result.tile_id,
        "kind": result.kind,
        "title": result.title,
        "cached": result.cached,
        "elapsed_ms": result.elapsed_ms,
    }
    if result.error:
        out["error"] = result.error
    else:
        out.update(body_to_json(result.body))
    return out


def build_layout(cfg: Dict[str, Any], reports: Dict[str, ReportSpec]) -> html.Div:
    default_days = int(cfg["dates"]["default_days"])
    today = date.today()
    options = [{"label": r.title, "value": r.id} for r in reports.values()]
    header = html.Div(
        className="container",
        children=[
            html.H1(cfg["meta"]["title"]),
            html.Div(
                className="controls",
                children=[
                    dcc.Dropdown(
                        id="report_select",
                        options=options,
                        value=(options[0]["value"] if options else None),
                        placeholder="Select a report",
                        style={"minWidth": 360},
                    ),
                    dcc.DatePickerRange(
                        id="date_range",
                        start_date=(today - timedelta(days=default_days)).isoformat(),
                        end_date=today.isoformat(),
                        display_format="YYYY-MM-DD",
                    ),
                    html.Button("Reload", id="reload_btn", n_clicks=0, style={"height": "38px"}),
                    dcc.Store(id="reload_token"),
                    dcc.Store(id="selection"),
                ],
            ),
            html.Hr(),
        ],
    )
    return html.Div(children=[header, html.Div(id="tile_grid", className="container")])


def register_callbacks(app: Dash, view: DashboardView) -> None:
    app.callback(
        Output("reload_token", "data"),
        Input("reload_btn", "n_clicks"),
        State("report_select", "value"),
    )(view.reload_data)

    app.callback(
        Output("selection", "data"),
        Input("report_select", "value"),
        Input("date_range", "start_date"),
        Input("date_range", "end_date"),
        Input("reload_token", "data"),
    )(view.select_report)

    app.callback(
        Output("tile_grid", "children"),
        Input("selection", "data"),
    )(view.render_report)


def register_api(app: Dash, view: DashboardView, pool=None) -> None:
    server = app.server
    dispatcher = view.dispatcher

    @server.errorhandler(DashboardError)
    def _dashboard_error(e: DashboardError):
        if e.status >= 500:
            log.error("%s %s failed: %s", request.method, request.path, e)
        else:
            log.warning("%s %s rejected: %s", request.method, request.path, e)
        return jsonify(to_payload(e)), e.status

    @server.route("/healthz")
    def healthz():
        return jsonify({
            "status": "ok",
            "routes": dispatcher.routes(),
            "pool": pool.stats() if pool is not None else None,
        })

    @server.route("/api/tiles/<tile_id>")
    def api_tile(tile_id: str):
        result = dispatcher.dispatch(tile_id, request.args.get("start"), request.args.get("end"))
        return jsonify(result_to_json(result))

    @server.route("/api/reports/<report_id>")
    def api_report(report_id: str):
        report = view.report(report_id)
        results = dispatcher.dispatch_report(report, request.args.get("start"), request.args.get("end"))
        return jsonify({
            "report_id": report.id,
            "title": report.title,
            "tiles": [result_to_json(r) for r in results],
        })

    @server.route("/api/cache")
    def api_cache():
        return jsonify(dispatcher.cache.stats())

    @server.route("/api/cache/clear", methods=["POST"])
    def api_cache_clear():
        tile_id = request.args.get("tile_id")
        if tile_id is not None and not tile_id.strip():
            raise ValidationError("tile_id must not be empty", field="tile_id")
        dropped = dispatcher.invalidate(tile_id)
        return jsonify({"dropped": dropped, "tile_id": tile_id})


def create_app(cfg: Dict[str, Any]) -> Dash:
    tiles = load_tiles(cfg)
    reports = load_reports(cfg, tiles)
    pool = None
    if cfg["meta"].get("source") == "sqlite":
        pool = sqlite_pool(cfg["meta"]["db_path"], **cfg["pool"])
    source = build_source(cfg, pool=pool)
    cache = TileCache(maxsize=cfg["cache"]["maxsize"], ttl_s=cfg["cache"]["ttl_s"])
    sanitizer: Sanitizer = from_config(cfg)
    dispatcher = default_dispatcher(tiles, source, cache, sanitizer, cfg["dates"])
    view = DashboardView(dispatcher, reports)

    app = Dash(__name__, suppress_callback_exceptions=True, title=cfg["meta"]["title"])
    app.index_string = INDEX_STRING
    app.layout = build_layout(cfg, reports)
    register_callbacks(app, view)
    register_api(app, view, pool=pool)

    app.server.config["DISPATCHER"] = dispatcher
    app.server.config["DASHBOARD_VIEW"] = view
    app.server.config["POOL"] = pool
    log.info("dashboard ready: %d tiles, %d reports, source=%s",
             len(tiles), len(reports), cfg["meta"].get("source"))
    return app
