"""
callcap/tools/mergecap.py
Merge engine backed by Wireshark's mergecap. mergecap interleaves the two
inputs by packet timestamp (its default, non-append mode).

  mergecap -v -w <dest> <sip> <rtp>
"""

import logging
from pathlib import Path
from typing import Optional

from callcap.models.record import MergeResult, Merged, ToolFailed
from callcap.tools.base import DEFAULT_TIMEOUT_SEC, Merger, run_tool

logger = logging.getLogger(__name__)


class MergecapMerger(Merger):

    def __init__(
        self,
        binary:      str             = 'mergecap',
        timeout_sec: Optional[float] = DEFAULT_TIMEOUT_SEC,
    ):
        self.binary      = binary
        self.timeout_sec = timeout_sec

    def binaries(self):
        return [self.binary]

    def merge(self, sip: Path, rtp: Path, dest: Path) -> MergeResult:
        self.check_inputs(sip, rtp)

        # Truncate any stale output before mergecap writes it
        dest.unlink(missing_ok=True)
        dest.touch()

        run = run_tool(
            [self.binary, '-v', '-w', dest, sip, rtp],
            self.timeout_sec,
        )
        if not run.ok:
            # stderr verbatim
            return ToolFailed(run.returncode, run.stderr)
        logger.info(f"Successfully merged PCAPs to: {dest}")
        return Merged(dest)
