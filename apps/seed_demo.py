# apps/seed_demo.py
import argparse

from tile_dashboard.config import load_config
from tile_dashboard.demo import generate_demo_frames, write_csv, write_sqlite
from tile_dashboard.log import configure_logging

DEFAULT_CONFIG_PATH = "configs/dashboard.yaml"


def _parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Write the synthetic demo datasets.")
    parser.add_argument(
        "-c",
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to YAML config file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument("--days", type=int, default=90, help="Days of history ending today (default: 90)")
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--format", choices=["csv", "sqlite", "both"], default="both")
    return parser.parse_args(argv)


def main(argv=None):
    args = _parse_args(argv)
    cfg = load_config(args.config)
    configure_logging(cfg["meta"]["log_level"])

    frames = generate_demo_frames(days=args.days, seed=args.seed)
    if args.format in ("csv", "both"):
        write_csv(frames, cfg["meta"]["data_dir"])
    if args.format in ("sqlite", "both"):
        write_sqlite(frames, cfg["meta"]["db_path"])

    for name, df in frames.items():
        print(f"{name:<10} {len(df):>6} rows")


if __name__ == "__main__":
    main()
