"""
callcap/tools/base.py
Abstract base classes for the external capture tools.
To add a new backend: subclass RtpExtractor / SipExtractor / Merger.
The controller only ever talks to these interfaces.
"""

import logging
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import IO, List, Optional, Sequence

from callcap.models.record import (
    ExtractionResult, Extracted, MergeResult, NotProduced, ToolFailed,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SEC = 600


@dataclass
class ToolRun:
    """Raw result of one external process invocation."""
    argv:       List[str]
    returncode: Optional[int]     # None = killed on timeout
    stderr:     str = ''
    timed_out:  bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def run_tool(
    argv:        Sequence[str],
    timeout_sec: Optional[float] = DEFAULT_TIMEOUT_SEC,
    stdout:      Optional[IO[bytes]] = None,
) -> ToolRun:
    """
    Run one external tool and wait for it. Never raises for tool-side problems:
    a non-zero exit, a missing binary and a timeout all come back as a ToolRun.
    stdout, when given, receives the process output stream (no shell involved).
    """
    argv = [str(a) for a in argv]
    logger.debug(f"exec: {' '.join(argv)}")
    try:
        proc = subprocess.run(
            argv,
            stdout  = stdout if stdout is not None else subprocess.DEVNULL,
            stderr  = subprocess.PIPE,
            timeout = timeout_sec,
        )
    except subprocess.TimeoutExpired:
        logger.warning(f"{argv[0]} timed out after {timeout_sec}s")
        return ToolRun(argv, None, f"timeout after {timeout_sec}s", timed_out=True)
    except FileNotFoundError:
        return ToolRun(argv, 127, f"{argv[0]}: command not found")

    stderr = (proc.stderr or b'').decode('utf-8', errors='replace')
    return ToolRun(argv, proc.returncode, stderr)


def classify_extraction(run: ToolRun, dest: Path) -> ExtractionResult:
    """
    Shared result classification for both extraction strategies.
    Exit code first; then the destination must exist and be non-empty:
    the tools can report success while writing nothing.
    """
    if not run.ok:
        return ToolFailed(run.returncode, run.stderr.strip())
    if not dest.exists():
        return NotProduced(f"{dest.name} not created")
    size = dest.stat().st_size
    if size == 0:
        return NotProduced(f"{dest.name} is empty")
    return Extracted(dest, size)


class ExternalTool(ABC):

    def binaries(self) -> List[str]:
        """Executables this adapter runs, checked on PATH at preflight."""
        return []


class RtpExtractor(ExternalTool):
    """Index-positioned extraction: read only the chunks at the given offsets."""

    @abstractmethod
    def extract(
        self,
        archive:   Path,
        entry:     str,
        positions: Sequence[int],
        dest:      Path,
    ) -> ExtractionResult:
        """
        Write the chunks of `entry` at `positions`, in offset order, to dest.
        Single attempt, no retry. `entry` is already normalized.
        """
        ...


class SipExtractor(ExternalTool):
    """Pattern-matched extraction: stream out the archive entry matching a glob."""

    @abstractmethod
    def extract(self, archive: Path, entry: str, dest: Path) -> ExtractionResult:
        """
        Write the entry matching `<entry>.pcap*` to dest.
        Single attempt, no retry. An empty dest is NotProduced.
        """
        ...


class Merger(ExternalTool):
    """Two-stream merge ordered by packet timestamp."""

    @abstractmethod
    def merge(self, sip: Path, rtp: Path, dest: Path) -> MergeResult:
        """
        Merge signaling + media fragments into dest.
        Both inputs must exist and be non-empty. Calling without that is a
        caller bug and raises ValueError.
        """
        ...

    @staticmethod
    def check_inputs(*paths: Path) -> None:
        for p in paths:
            if not p.exists() or p.stat().st_size == 0:
                raise ValueError(f"merge input missing or empty: {p}")
