# apps/dashboard.py
import argparse
import os

from tile_dashboard.app import create_app
from tile_dashboard.config import load_config
from tile_dashboard.log import configure_logging, get_logger

DEFAULT_CONFIG_PATH = os.environ.get("TD_CONFIG", "configs/dashboard.yaml")

log = get_logger("apps.dashboard")


def _parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Serve the tile dashboard.")
    parser.add_argument(
        "-c",
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to YAML config file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument("--host", default=None, help="Override server.host")
    parser.add_argument("--port", type=int, default=None, help="Override server.port")
    return parser.parse_args(argv)


def main(argv=None):
    args = _parse_args(argv)
    cfg = load_config(args.config)
    configure_logging(cfg["meta"]["log_level"])
    server = cfg["server"]
    host = args.host or server["host"]
    port = args.port or int(server["port"])

    if cfg["meta"]["source"] == "csv" and not os.path.isdir(cfg["meta"]["data_dir"]):
        log.warning("data directory '%s' not found; run apps/seed_demo.py or point TD_DATA_DIR at your data. "
                    "Tiles will render empty until data is added.", cfg["meta"]["data_dir"])
    elif cfg["meta"]["source"] == "sqlite" and not os.path.exists(cfg["meta"]["db_path"]):
        log.warning("database '%s' not found; run apps/seed_demo.py --format sqlite", cfg["meta"]["db_path"])

    app = create_app(cfg)
    # reloader off: it would start a second process with its own cache and pool
    app.run(debug=bool(server.get("debug")), host=host, port=port, use_reloader=False)


if __name__ == "__main__":
    main()
