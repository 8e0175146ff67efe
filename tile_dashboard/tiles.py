# tile_dashboard/tiles.py
from __future__ import annotations
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pandas as pd
import plotly.express as px
import plotly.graph_objects as go
from dash import dash_table, dcc, html

from tile_dashboard.errors import ConfigError, ValidationError
from tile_dashboard.sanitize import Sanitizer
from tile_dashboard.validation import validate_report_id, validate_tile_id

TILE_KINDS = ("kpi", "bar", "hbar", "line", "pie", "waterfall", "table", "markdown")
AGGS = ("sum", "mean", "count", "last")

PLOT_BG = "#F0F7F9"
GRAPH_HEIGHT = 420
UIREV = "lock"  # freeze plot layout revisions across refreshes

TABLE_CELL_STYLE = {"padding": "6px", "fontFamily": "Open Sans", "fontSize": 13}
TABLE_HEADER_STYLE = {"fontWeight": "600", "backgroundColor": "#eef6f8"}


@dataclass
class TileSpec:
    id: str
    title: str
    kind: str
    dataset: Optional[str] = None
    x: Optional[str] = None
    y: List[str] = field(default_factory=list)
    names: Optional[str] = None
    values: Optional[str] = None
    agg: Optional[str] = None
    description: str = ""
    xangle: Optional[int] = None
    page_size: int = 12


@dataclass
class ReportSpec:
    id: str
    title: str
    tiles: List[str]


# =========================
# Config parsing
# =========================
def _tile_from_raw(raw: Dict[str, Any], datasets: Dict[str, Any]) -> TileSpec:
    if not isinstance(raw, dict):
        raise ConfigError(f"tile entry must be a mapping, got {raw!r}")
    try:
        tid = validate_tile_id(raw.get("id"))
    except ValidationError as e:
        raise ConfigError(str(e)) from e
    kind = raw.get("kind")
    if kind not in TILE_KINDS:
        raise ConfigError(f"tile {tid!r}: unknown kind {kind!r} (expected one of {TILE_KINDS})")
    y = raw.get("y") or []
    spec = TileSpec(
        id=tid,
        title=str(raw.get("title") or tid),
        kind=kind,
        dataset=raw.get("dataset"),
        x=raw.get("x"),
        y=[y] if isinstance(y, str) else list(y),
        names=raw.get("names"),
        values=raw.get("values"),
        agg=raw.get("agg"),
        description=str(raw.get("description") or ""),
        xangle=raw.get("xangle"),
        page_size=int(raw.get("page_size", 12)),
    )
    if kind != "markdown":
        if not spec.dataset:
            raise ConfigError(f"tile {tid!r}: kind {kind!r} needs a dataset")
        if spec.dataset not in datasets:
            raise ConfigError(f"tile {tid!r}: unknown dataset {spec.dataset!r}")
    if kind in ("bar", "hbar", "line") and not (spec.x and spec.y):
        raise ConfigError(f"tile {tid!r}: kind {kind!r} needs x and y")
    if kind in ("pie", "waterfall") and not (spec.names and spec.values):
        raise ConfigError(f"tile {tid!r}: kind {kind!r} needs names and values")
    if kind == "kpi" and not spec.y:
        raise ConfigError(f"tile {tid!r}: kind 'kpi' needs y")
    if spec.agg is not None and spec.agg not in AGGS:
        raise ConfigError(f"tile {tid!r}: unknown agg {spec.agg!r}")
    return spec


def load_tiles(cfg: Dict[str, Any]) -> Dict[str, TileSpec]:
    tiles: Dict[str, TileSpec] = {}
    for raw in cfg.get("tiles") or []:
        spec = _tile_from_raw(raw, cfg.get("datasets") or {})
        if spec.id in tiles:
            raise ConfigError(f"duplicate tile id {spec.id!r}")
        tiles[spec.id] = spec
    return tiles


def load_reports(cfg: Dict[str, Any], tiles: Dict[str, TileSpec]) -> Dict[str, ReportSpec]:
    reports: Dict[str, ReportSpec] = {}
    for raw in cfg.get("reports") or []:
        try:
            rid = validate_report_id(raw.get("id"))
        except ValidationError as e:
            raise ConfigError(str(e)) from e
        if rid in reports:
            raise ConfigError(f"duplicate report id {rid}")
        tile_ids = list(raw.get("tiles") or [])
        unknown = [t for t in tile_ids if t not in tiles]
        if unknown:
            raise ConfigError(f"report {rid}: unknown tiles {unknown}")
        reports[rid] = ReportSpec(id=rid, title=str(raw.get("title") or rid), tiles=tile_ids)
    return reports


# =========================
# Layout helpers
# =========================
def empty_msg(text: str = "No data") -> html.Div:
    return html.Div(text, style={"padding": "8px", "color": "#666", "fontStyle": "italic"})


def apply_figure_layout(fig: go.Figure, xangle: Optional[int] = None) -> go.Figure:
    fig.update_layout(
        template="plotly_white",
        height=GRAPH_HEIGHT,
        margin=dict(l=40, r=20, t=40, b=40),
        plot_bgcolor=PLOT_BG,
        paper_bgcolor=PLOT_BG,
        font=dict(family="'Open Sans', sans-serif"),
        legend=dict(orientation="h", yanchor="bottom", y=1.02, xanchor="right", x=1),
        uirevision=UIREV,
    )
    if xangle is not None:
        fig.update_xaxes(tickangle=xangle)
    return fig


def _has(df: pd.DataFrame, *cols: Optional[str]) -> bool:
    return not df.empty and all(c and c in df.columns for c in cols)


def aggregate(df: pd.DataFrame, spec: TileSpec) -> pd.DataFrame:
    """Group by spec.x with spec.agg over spec.y (or spec.values for pie/waterfall)."""
    key = spec.x or spec.names
    value_cols = spec.y or ([spec.values] if spec.values else [])
    if not spec.agg or not key or not _has(df, key, *value_cols):
        return df
    df = df.copy()
    for c in value_cols:
        df[c] = pd.to_numeric(df[c], errors="coerce")
    grouped = df.groupby(key, sort=True)[value_cols]
    # count is per column (non-null values), like the other aggregations
    out = getattr(grouped, spec.agg)()
    return out.reset_index()


# =========================
# Builders
# =========================
def build_bar(spec: TileSpec, df: pd.DataFrame, sanitizer: Sanitizer) -> go.Figure:
    fig = go.Figure()
    df = aggregate(df, spec)
    if _has(df, spec.x, *spec.y):
        fig = go.Figure(data=[go.Bar(x=df[spec.x], y=df[c], name=c) for c in spec.y])
        if len(spec.y) > 1:
            fig.update_layout(barmode="group")
    return apply_figure_layout(fig, xangle=spec.xangle)


def build_hbar(spec: TileSpec, df: pd.DataFrame, sanitizer: Sanitizer) -> go.Figure:
    fig = go.Figure()
    df = aggregate(df, spec)
    if _has(df, spec.x, *spec.y):
        sdf = df.sort_values(spec.y[0], ascending=True)
        fig = go.Figure(
            data=[go.Bar(x=sdf[c], y=sdf[spec.x], orientation="h", name=c) for c in spec.y]
        )
    return apply_figure_layout(fig)


def build_line(spec: TileSpec, df: pd.DataFrame, sanitizer: Sanitizer) -> go.Figure:
    fig = go.Figure()
    df = aggregate(df, spec)
    if _has(df, spec.x, *spec.y):
        sdf = df.sort_values(spec.x)
        for c in spec.y:
            y = pd.to_numeric(sdf[c], errors="coerce")
            fig.add_trace(go.Scatter(x=sdf[spec.x], y=y, mode="lines", name=c))
        fig.update_xaxes(title_text=spec.x)
        if len(spec.y) == 1:
            fig.update_yaxes(title_text=spec.y[0])
    return apply_figure_layout(fig, xangle=spec.xangle)


def build_pie(spec: TileSpec, df: pd.DataFrame, sanitizer: Sanitizer) -> go.Figure:
    fig = go.Figure()
    df = aggregate(df, spec)
    if _has(df, spec.names, spec.values):
        values = pd.to_numeric(df[spec.values], errors="coerce").fillna(0)
        if values.sum() > 0:
            fig = px.pie(names=df[spec.names].astype(str), values=values, hole=0.35)
    return apply_figure_layout(fig)


def build_waterfall(spec: TileSpec, df: pd.DataFrame, sanitizer: Sanitizer) -> go.Figure:
    fig = go.Figure()
    df = aggregate(df, spec)
    if _has(df, spec.names, spec.values):
        names = df[spec.names].astype(str).tolist() + ["Total"]
        values = pd.to_numeric(df[spec.values], errors="coerce").fillna(0).tolist()
        values.append(sum(values))
        measures = ["relative"] * (len(values) - 1) + ["total"]
        fig = go.Figure(go.Waterfall(x=names, y=values, measure=measures))
    return apply_figure_layout(fig, xangle=spec.xangle if spec.xangle is not None else -30)


def _data_table(df: pd.DataFrame, page_size: int, sanitizer: Sanitizer) -> dash_table.DataTable:
    text_cols = [c for c in df.columns if df[c].dtype == object]
    # object dtype + None keeps records JSON-safe (no numpy scalars, NaN or pd.NA)
    plain = df.astype(object).where(df.notna(), None)
    records = sanitizer.sanitize_records(plain.to_dict("records"), text_cols)
    return dash_table.DataTable(
        data=records,
        columns=[{"name": str(c), "id": str(c)} for c in df.columns],
        style_cell=TABLE_CELL_STYLE,
        style_header=TABLE_HEADER_STYLE,
        page_size=page_size,
        style_table={"maxHeight": "320px", "overflowY": "auto"},
        fixed_rows={"headers": True},
    )


def build_kpi(spec: TileSpec, df: pd.DataFrame, sanitizer: Sanitizer):
    if not _has(df, *spec.y):
        return empty_msg("No KPI data")
    agg = spec.agg or "sum"
    rows = []
    for c in spec.y:
        col = pd.to_numeric(df[c], errors="coerce")
        if agg == "count":
            v = float(col.notna().sum())
        elif agg == "last":
            v = float(col.dropna().iloc[-1]) if col.notna().any() else float("nan")
        else:
            v = float(getattr(col, agg)(skipna=True))
        rows.append({"KPI": c, "Value": round(v, 3)})
    return _data_table(pd.DataFrame(rows), spec.page_size, sanitizer)


def build_table(spec: TileSpec, df: pd.DataFrame, sanitizer: Sanitizer):
    if df.empty:
        return empty_msg()
    cols = [c for c in ([spec.x] if spec.x else []) + spec.y if c in df.columns]
    return _data_table(df[cols] if cols else df, spec.page_size, sanitizer)


def build_markdown(spec: TileSpec, df: Optional[pd.DataFrame], sanitizer: Sanitizer):
    """Render the description; with a dataset, append one bullet per row of spec.y[0]."""
    text = spec.description
    if df is not None and spec.y and _has(df, spec.y[0]):
        lines = []
        for _, row in df.iterrows():
            prefix = f"**{row[spec.x]}**: " if spec.x and spec.x in df.columns else ""
            lines.append(f"- {prefix}{row[spec.y[0]]}")
        text = "\n".join([text, "", *lines]) if text else "\n".join(lines)
    if not text:
        return empty_msg()
    return sanitizer.render_markdown(text, className="tile-markdown")


BUILDERS = {
    "kpi": build_kpi,
    "bar": build_bar,
    "hbar": build_hbar,
    "line": build_line,
    "pie": build_pie,
    "waterfall": build_waterfall,
    "table": build_table,
    "markdown": build_markdown,
}


def body_to_json(obj: Any) -> Dict[str, Any]:
    """JSON-safe form of a tile body for the HTTP API."""
    if isinstance(obj, go.Figure):
        return {"figure": json.loads(obj.to_json())}
    if isinstance(obj, dash_table.DataTable):
        return {"columns": [c["id"] for c in obj.columns], "data": obj.data}
    if isinstance(obj, dcc.Markdown):
        return {"markdown": obj.children}
    if isinstance(obj, html.Div):
        return {"message": obj.children}
    raise TypeError(f"cannot serialize tile body of type {type(obj).__name__}")
