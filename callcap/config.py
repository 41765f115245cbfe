"""
callcap/config.py
JSON config with archive-path auto-derivation. Persists to callcap_config.json.
CLI flags override whatever is loaded here.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from callcap.models.record import TimeWindow

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "callcap_config.json"
PASSWORD_ENV    = "CALLCAP_DB_PASSWORD"

DEFAULT_CONFIG = {
    "db_host": "127.0.0.1",
    "db_port": 3306,
    "db_user": "monitor",
    "db_password": "",
    "db_name": "voipmonitor",
    "sensor_id": 1,
    "window_start": None,          # "YYYY-MM-DD HH:MM[:SS]"
    "window_minutes": 1,
    "archive_root": None,          # e.g. /isilon/media-s2/media-s2-2
    "rtp_archive": None,           # explicit paths win over archive_root
    "sip_archive": None,
    "sip_fragment_dir": "/tmp/callcap/sip",
    "rtp_fragment_dir": "/tmp/callcap/rtp",
    "merged_dir": "merged_pcaps",
    "output_csv": "pcap_processing_times.csv",
    "db_path": "callcap.db",
    "pigz_threads": 4,
    "tool_timeout_sec": 600,
    "workers": 1,
    "log_file": None,
}

WINDOW_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d %H:%M", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%dT%H:%M")


def _config_path(project_root: Optional[Path] = None) -> Path:
    root = project_root or Path.cwd()
    return root / CONFIG_FILENAME


def load_config(project_root: Optional[Path] = None, path: Optional[Path] = None) -> Dict[str, Any]:
    """Load config from callcap_config.json. Returns defaults if missing."""
    path = path or _config_path(project_root)
    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return _with_env_password({**DEFAULT_CONFIG, **data})
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Config load failed: {e}")
    return _with_env_password(dict(DEFAULT_CONFIG))


def _with_env_password(config: Dict[str, Any]) -> Dict[str, Any]:
    if not config.get("db_password"):
        config["db_password"] = os.environ.get(PASSWORD_ENV, "")
    return config


def save_config(config: Dict[str, Any], project_root: Optional[Path] = None) -> Path:
    """Persist config to callcap_config.json. The DB password is never written."""
    path = _config_path(project_root)
    data = {k: v for k, v in config.items() if k != "db_password"}
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return path


def parse_window(start: str, minutes: int = 1) -> TimeWindow:
    """'2025-02-11 09:02' + 1 → [09:02:00, 09:03:00)."""
    if minutes <= 0:
        raise ValueError(f"window_minutes must be positive, got {minutes}")
    for fmt in WINDOW_FORMATS:
        try:
            begin = datetime.strptime(start.strip(), fmt)
            break
        except ValueError:
            continue
    else:
        raise ValueError(f"Unrecognised window start: {start!r}")
    return TimeWindow(begin, begin + timedelta(minutes=minutes))


def derive_archive_paths(archive_root: Path, when: datetime) -> Tuple[Path, Path]:
    """
    Per-minute archive layout written by the capture sensors:
      <root>/<YYYY-MM-DD>/<HH>/<MM>/RTP/rtp_<YYYY-MM-DD-HH-MM>.tar
      <root>/<YYYY-MM-DD>/<HH>/<MM>/SIP/sip_<YYYY-MM-DD-HH-MM>.tar.gz
    Returns (rtp_archive, sip_archive).
    """
    minute_dir = Path(archive_root) / when.strftime("%Y-%m-%d") / when.strftime("%H") / when.strftime("%M")
    stamp      = when.strftime("%Y-%m-%d-%H-%M")
    return (
        minute_dir / "RTP" / f"rtp_{stamp}.tar",
        minute_dir / "SIP" / f"sip_{stamp}.tar.gz",
    )


def resolve_archives(config: Dict[str, Any], window: TimeWindow) -> Tuple[Path, Path]:
    """
    Explicit rtp_archive/sip_archive win; otherwise derive both from
    archive_root and the window start.
    """
    rtp, sip = config.get("rtp_archive"), config.get("sip_archive")
    if rtp and sip:
        return Path(rtp), Path(sip)
    root = config.get("archive_root")
    if not root:
        raise ValueError("Set rtp_archive and sip_archive, or archive_root")
    derived_rtp, derived_sip = derive_archive_paths(Path(root), window.start)
    if window.end - window.start > timedelta(minutes=1):
        logger.warning(
            "Window spans more than one minute; archives derived from the first minute only"
        )
    return Path(rtp) if rtp else derived_rtp, Path(sip) if sip else derived_sip


def ensure_config(project_root: Optional[Path] = None, path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load or create config. Fills archive paths from archive_root when the
    window start is known. Returns merged config.
    """
    config = load_config(project_root, path)
    if config.get("window_start") and config.get("archive_root") and not (
        config.get("rtp_archive") and config.get("sip_archive")
    ):
        window = parse_window(config["window_start"], int(config.get("window_minutes") or 1))
        rtp, sip = resolve_archives(config, window)
        config["rtp_archive"], config["sip_archive"] = str(rtp), str(sip)
        logger.info(f"Derived archives: {rtp} | {sip}")
    return config
