# tile_dashboard/demo.py
from __future__ import annotations
import random
from datetime import date, timedelta
from pathlib import Path
from typing import Dict, Optional

import pandas as pd
from sqlalchemy import create_engine

from tile_dashboard.log import get_logger

log = get_logger(__name__)

REGIONS = ["north", "south", "east", "west"]
PRODUCTS = {"widget": 12.5, "gadget": 40.0, "gizmo": 7.25}
AUTHORS = ["ops", "sales", "finance"]

NOTE_TEMPLATES = [
    "Restocked <b>{product}</b> in {region}.",
    "Promo for {product} ended; see <a href=\"https://example.com/promo\">recap</a>.",
    # markup the sanitizer has to deal with
    "Imported row <script>alert('x')</script>for {region}.",
    "Check <a href=\"javascript:alert(1)\">this link</a> about {product}.",
    "Weekly sync done.",
]


def generate_demo_frames(days: int = 90, seed: int = 42, end: Optional[date] = None) -> Dict[str, pd.DataFrame]:
    """Synthetic sales/traffic/costs/notes; same seed -> same frames."""
    rng = random.Random(seed)
    end = end or date.today()
    start = end - timedelta(days=days - 1)

    sales_rows, traffic_rows, note_rows = [], [], []
    for i in range(days):
        d = start + timedelta(days=i)
        weekday_boost = 1.25 if d.weekday() < 5 else 0.8
        for region in REGIONS:
            for product, price in PRODUCTS.items():
                units = max(0, int(rng.gauss(20 * weekday_boost, 5)))
                sales_rows.append({
                    "date": d.isoformat(),
                    "region": region,
                    "product": product,
                    "units": units,
                    "revenue": round(units * price, 2),
                })
        visits = max(0, int(rng.gauss(1500 * weekday_boost, 200)))
        traffic_rows.append({
            "date": d.isoformat(),
            "visits": visits,
            "signups": int(visits * rng.uniform(0.01, 0.04)),
        })
        if i % 7 == 0:
            tmpl = rng.choice(NOTE_TEMPLATES)
            note_rows.append({
                "date": d.isoformat(),
                "author": rng.choice(AUTHORS),
                "note": tmpl.format(product=rng.choice(list(PRODUCTS)), region=rng.choice(REGIONS)),
            })

    costs = pd.DataFrame([
        {"component": "Materials", "amount": round(rng.uniform(20000, 30000), 2)},
        {"component": "Labor", "amount": round(rng.uniform(15000, 25000), 2)},
        {"component": "Logistics", "amount": round(rng.uniform(4000, 8000), 2)},
        {"component": "Returns credit", "amount": -round(rng.uniform(1000, 3000), 2)},
    ])

    return {
        "sales": pd.DataFrame(sales_rows),
        "traffic": pd.DataFrame(traffic_rows),
        "costs": costs,
        "notes": pd.DataFrame(note_rows),
    }


def write_csv(frames: Dict[str, pd.DataFrame], data_dir: str | Path) -> Path:
    out = Path(data_dir)
    out.mkdir(parents=True, exist_ok=True)
    for name, df in frames.items():
        df.to_csv(out / f"{name}.csv", index=False)
    log.info("wrote %d CSV datasets to %s", len(frames), out.as_posix())
    return out


def write_sqlite(frames: Dict[str, pd.DataFrame], db_path: str | Path) -> Path:
    p = Path(db_path)
    p.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(f"sqlite:///{p.as_posix()}")
    try:
        with engine.begin() as conn:
            for name, df in frames.items():
                df.to_sql(name, conn, if_exists="replace", index=False)
    finally:
        engine.dispose()
    log.info("wrote %d tables to %s", len(frames), p.as_posix())
    return p
