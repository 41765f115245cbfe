#!/usr/bin/env python3
"""
run_callcap.py — Fully automated callcap run
Uses callcap_config.json. Run from project root.

  python run_callcap.py           # process the configured window
  python run_callcap.py --api     # start API server over the run store

Archive paths are derived from archive_root + window_start when not set.
"""

import argparse
import logging
import sys
from pathlib import Path


def main():
    parser = argparse.ArgumentParser(description="callcap — automated run from config")
    parser.add_argument("--api", action="store_true", help="Start API server")
    args = parser.parse_args()

    root = Path(__file__).parent
    sys.path.insert(0, str(root))

    from callcap.cli import setup_logging
    from callcap.config import ensure_config, parse_window

    config = ensure_config(root)
    setup_logging(False, config.get("log_file"))

    db_path = Path(config.get("db_path") or "callcap.db")
    if not db_path.is_absolute():
        db_path = root / db_path

    if args.api:
        import uvicorn
        from callcap.api import _build_app
        app = _build_app(db_path=db_path)
        print("Starting API at http://127.0.0.1:8766")
        uvicorn.run(app, host="127.0.0.1", port=8766, log_level="info")
        return

    if not config.get("window_start"):
        print("No window_start. Set it in callcap_config.json", file=sys.stderr)
        sys.exit(1)

    from callcap.errors import CallcapError
    from callcap.pipeline import build_pipeline

    config["db_path"] = str(db_path)
    window = parse_window(config["window_start"], int(config.get("window_minutes") or 1))
    try:
        pipeline = build_pipeline(config, window)
        summary  = pipeline.run(window, int(config["sensor_id"]))
    except (CallcapError, ValueError) as e:
        logging.getLogger("run_callcap").error(str(e))
        sys.exit(1)
    print(
        f"Done: {summary.records_fetched} records, {summary.succeeded} ok, "
        f"{summary.partial} partial, {summary.failed} failed"
    )


if __name__ == "__main__":
    main()
