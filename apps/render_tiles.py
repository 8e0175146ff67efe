# apps/render_tiles.py
import argparse
import json
import sys
from datetime import datetime
from pathlib import Path

from tile_dashboard.app import result_to_json
from tile_dashboard.cache import TileCache
from tile_dashboard.config import load_config
from tile_dashboard.dispatch import default_dispatcher
from tile_dashboard.errors import DashboardError, to_payload
from tile_dashboard.log import configure_logging
from tile_dashboard.sanitize import from_config
from tile_dashboard.sources import build_source
from tile_dashboard.tiles import load_reports, load_tiles
from tile_dashboard.validation import parse_date_range, validate_report_id

DEFAULT_CONFIG_PATH = "configs/dashboard.yaml"


def _save_bundle(rendered, outdir: Path, config_path: str, start, end):
    outdir.mkdir(parents=True, exist_ok=True)
    for tile_id, payload in rendered.items():
        (outdir / f"{tile_id}.json").write_text(json.dumps(payload, indent=2), encoding="utf-8")

    # README.txt records config and range for traceability
    resolved_config = Path(config_path).resolve().as_posix()
    readme_text = f"config_path: {resolved_config}\nstart: {start}\nend: {end}\ntiles: {len(rendered)}\n"
    (outdir / "README.txt").write_text(readme_text, encoding="utf-8")
    print(f"\nSaved tile renders to: {outdir.as_posix()}")


def _parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Render dashboard tiles to JSON without a browser.")
    parser.add_argument(
        "-c",
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to YAML config file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument("--start", default=None, help="Range start, YYYY-MM-DD")
    parser.add_argument("--end", default=None, help="Range end, YYYY-MM-DD (default: today)")
    parser.add_argument("--report", default=None, help="Only render the tiles of this report id")
    parser.add_argument("--outdir", default=None, help="Output folder (default: renders/<timestamp>)")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = _parse_args(argv)
    cfg = load_config(args.config)
    configure_logging(cfg["meta"]["log_level"])

    tiles = load_tiles(cfg)
    reports = load_reports(cfg, tiles)
    dispatcher = default_dispatcher(
        tiles, build_source(cfg), TileCache(maxsize=0), from_config(cfg), cfg["dates"]
    )

    try:
        start, end = parse_date_range(args.start, args.end, **cfg["dates"])
        rid = validate_report_id(args.report) if args.report else None
    except DashboardError as e:
        print(f"Invalid arguments: {e}", file=sys.stderr)
        return 2

    if rid:
        if rid not in reports:
            print(f"Unknown report: {rid}", file=sys.stderr)
            return 1
        tile_ids = reports[rid].tiles
    else:
        tile_ids = list(tiles)

    rendered, failures = {}, 0
    print("\n--- Tiles ---")
    for tid in tile_ids:
        try:
            result = dispatcher.dispatch(tid, start, end)
        except DashboardError as e:
            failures += 1
            rendered[tid] = {"tile_id": tid, "error": to_payload(e)}
            print(f"{tid:<24} FAILED  {e}")
            continue
        rendered[tid] = result_to_json(result)
        print(f"{tid:<24} {result.kind:<10} cached={result.cached!s:<5} {result.elapsed_ms:8.1f} ms")

    outdir = Path(args.outdir) if args.outdir else Path("renders") / datetime.now().strftime("%Y-%m-%d_%H%M%S")
    _save_bundle(rendered, outdir, args.config, start, end)
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
