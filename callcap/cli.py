"""
callcap/cli.py
Command-line interface for callcap — rebuild one PCAP per call from the
per-minute SIP/RTP archives.

USAGE:
  callcap --window-start "2025-02-11 09:02" --sensor-id 15 --archive-root /isilon/media-s2/media-s2-2
  callcap --window-start "2025-02-11 09:02" --rtp-archive rtp.tar --sip-archive sip.tar.gz
  callcap --config ./callcap_config.json --workers 4

EXAMPLES:
  # One minute, archives derived from the archive root
  callcap -w "2025-02-11 09:02" -s 15 --archive-root /isilon/media-s2/media-s2-2 \\
          --merged-dir /data/merged_pcaps --output-csv /data/pcap_processing_times.csv

  # DB password from the environment
  CALLCAP_DB_PASSWORD=secret callcap -w "2025-02-11 09:02" -s 15 --db-host 172.16.11.36
"""

import argparse
import logging
import sys
import time
from pathlib import Path

from callcap.config import load_config, parse_window
from callcap.errors import CallcapError
from callcap.models.record import STATUS_FAILED, STATUS_PARTIAL, RecordOutcome

logger = logging.getLogger(__name__)

GREEN  = '\033[92m'
YELLOW = '\033[93m'
RED    = '\033[91m'
CYAN   = '\033[96m'
RESET  = '\033[0m'
BOLD   = '\033[1m'

# argparse dest → config key, for flags that override config values
OVERRIDES = {
    'window_start':   'window_start',
    'window_minutes': 'window_minutes',
    'sensor_id':      'sensor_id',
    'db_host':        'db_host',
    'db_port':        'db_port',
    'db_user':        'db_user',
    'db_name':        'db_name',
    'archive_root':   'archive_root',
    'rtp_archive':    'rtp_archive',
    'sip_archive':    'sip_archive',
    'sip_dir':        'sip_fragment_dir',
    'rtp_dir':        'rtp_fragment_dir',
    'merged_dir':     'merged_dir',
    'output_csv':     'output_csv',
    'db':             'db_path',
    'workers':        'workers',
    'timeout':        'tool_timeout_sec',
    'pigz_threads':   'pigz_threads',
    'log_file':       'log_file',
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog        = 'callcap',
        description = 'callcap — per-call PCAP reconstruction from SIP/RTP archives',
        formatter_class = argparse.RawDescriptionHelpFormatter,
        epilog = """
EXIT CODES:
  0  run completed (individual calls may still have failed; see the CSV)
  1  database unreachable, archive missing, or bad configuration
        """
    )

    parser.add_argument('--config', '-c', type=Path, default=None,
                        help='Config file (default: ./callcap_config.json)')
    parser.add_argument('--window-start', '-w',
                        help='Calldate window start, "YYYY-MM-DD HH:MM[:SS]"')
    parser.add_argument('--window-minutes', type=int,
                        help='Window length in minutes (default: 1)')
    parser.add_argument('--sensor-id', '-s', type=int,
                        help='cdr.id_sensor to select')

    db = parser.add_argument_group('database')
    db.add_argument('--db-host')
    db.add_argument('--db-port', type=int)
    db.add_argument('--db-user')
    db.add_argument('--db-name')

    arc = parser.add_argument_group('archives')
    arc.add_argument('--archive-root', type=Path,
                     help='Root of the <date>/<HH>/<MM>/{RTP,SIP} archive tree')
    arc.add_argument('--rtp-archive', type=Path, help='Explicit rtp_*.tar path')
    arc.add_argument('--sip-archive', type=Path, help='Explicit sip_*.tar.gz path')

    out = parser.add_argument_group('output')
    out.add_argument('--sip-dir', type=Path, help='SIP fragment scratch directory')
    out.add_argument('--rtp-dir', type=Path, help='RTP fragment scratch directory')
    out.add_argument('--merged-dir', '-o', type=Path, help='Merged <call_id>.pcap directory')
    out.add_argument('--output-csv', type=Path, help='Per-call timing CSV')
    out.add_argument('--db', type=Path, help='SQLite run store (default: callcap.db)')
    out.add_argument('--no-db', action='store_true', help='Do not write the SQLite run store')

    run = parser.add_argument_group('execution')
    run.add_argument('--workers', type=int,
                     help='Parallel records (default: 1 = strictly sequential)')
    run.add_argument('--timeout', type=float,
                     help='Per external tool call timeout in seconds (default: 600)')
    run.add_argument('--pigz-threads', type=int, help='pigz -p value for SIP extraction')
    run.add_argument('--run-label', default='', help='Label stored with this run')
    run.add_argument('--log-file', type=Path, help='Also write logs to this file')
    run.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')
    return parser


def merge_args(config: dict, args: argparse.Namespace) -> dict:
    merged = dict(config)
    for dest, key in OVERRIDES.items():
        value = getattr(args, dest, None)
        if value is not None:
            merged[key] = str(value) if isinstance(value, Path) else value
    if getattr(args, 'no_db', False):
        merged['db_path'] = None
    return merged


def setup_logging(verbose: bool, log_file=None) -> None:
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level    = logging.DEBUG if verbose else logging.INFO,
        format   = '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt  = '%H:%M:%S',
        handlers = handlers,
    )


def main(argv=None):
    args   = build_parser().parse_args(argv)
    config = merge_args(load_config(path=args.config), args)

    # ── LOGGING SETUP ────────────────────────────────────────
    setup_logging(args.verbose, config.get('log_file'))

    # ── VALIDATE ─────────────────────────────────────────────
    if not config.get('window_start'):
        _print(f"{RED}Error: --window-start is required (or window_start in config){RESET}")
        sys.exit(1)
    try:
        window = parse_window(str(config['window_start']), int(config.get('window_minutes') or 1))
        from callcap.pipeline import build_pipeline
        pipeline = build_pipeline(config, window)
    except ValueError as e:
        _print(f"{RED}Error: {e}{RESET}")
        sys.exit(1)

    ctl = pipeline.controller
    _print(f"\n{BOLD}{CYAN}callcap — per-call PCAP reconstruction{RESET}\n")
    _print(f"Window           : {CYAN}{window.start} .. {window.end}{RESET}")
    _print(f"Sensor           : {CYAN}{config['sensor_id']}{RESET}")
    _print(f"RTP archive      : {CYAN}{ctl.rtp_archive}{RESET}")
    _print(f"SIP archive      : {CYAN}{ctl.sip_archive}{RESET}")
    _print(f"Merged output    : {CYAN}{ctl.merged_dir}{RESET}")
    _print(f"Workers          : {CYAN}{pipeline.workers}{RESET}")
    _print("")

    # ── RUN ──────────────────────────────────────────────────
    def progress(current: int, total: int, outcome: RecordOutcome):
        colour = {STATUS_FAILED: RED, STATUS_PARTIAL: YELLOW}.get(outcome.status, GREEN)
        _print(
            f"  [{current}/{total}] call {outcome.call_id}: "
            f"{colour}{outcome.status}{RESET}"
            + (f" ({outcome.failed_stage}: {outcome.reason})" if outcome.failed_stage else '')
        )

    _step("Processing call records...")
    t0 = time.time()
    try:
        summary = pipeline.run(
            window      = window,
            sensor_id   = int(config['sensor_id']),
            run_label   = args.run_label,
            progress_cb = progress,
        )
    except CallcapError as e:
        _print(f"{RED}Error: {e}{RESET}")
        sys.exit(1)
    _ok(f"Run finished in {_elapsed(t0)}")

    # ── SUMMARY ──────────────────────────────────────────────
    _print(f"\n{BOLD}{GREEN}✓ Complete{RESET}")
    _print(f"  Records    : {summary.records_fetched:,}")
    _print(f"  Success    : {summary.succeeded:,}")
    _print(f"  Partial    : {summary.partial:,}")
    _print(f"  Failed     : {summary.failed:,}")
    _print(f"  Throughput : {summary.records_per_second:.2f} records/second")
    _print(f"  Report     : {Path(config['output_csv']).resolve()}")
    if config.get('db_path'):
        _print(f"  Run store  : {Path(config['db_path']).resolve()}")


# ── PRINT HELPERS ────────────────────────────────────────────

def _step(msg):  _print(f"  {CYAN}→{RESET} {msg}")
def _ok(msg):    _print(f"  {GREEN}✓{RESET} {msg}")
def _print(msg): print(msg)

def _elapsed(t0: float) -> str:
    s = time.time() - t0
    return f"{s:.1f}s" if s < 60 else f"{int(s//60)}m {int(s%60)}s"


if __name__ == '__main__':
    main()
