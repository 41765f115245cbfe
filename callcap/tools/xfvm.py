"""
callcap/tools/xfvm.py
RTP extraction through xfvm's --untar-gui mode, which seeks straight to the
tar chunk offsets recorded in cdr_tar_part instead of unpacking the whole
minute archive.

  xfvm -kc "--untar-gui=<rtp.tar> <entry>.pcap <pos1,pos2,...> <dest>"
"""

import logging
from pathlib import Path
from typing import Optional, Sequence

from callcap.models.record import ExtractionResult, Extracted
from callcap.tools.base import DEFAULT_TIMEOUT_SEC, RtpExtractor, classify_extraction, run_tool

logger = logging.getLogger(__name__)


class XfvmRtpExtractor(RtpExtractor):

    def __init__(
        self,
        binary:      str             = 'xfvm',
        timeout_sec: Optional[float] = DEFAULT_TIMEOUT_SEC,
    ):
        self.binary      = binary
        self.timeout_sec = timeout_sec

    def binaries(self):
        return [self.binary]

    def build_argv(self, archive: Path, entry: str, positions: Sequence[int], dest: Path):
        pos_list = ','.join(str(p) for p in positions)
        return [self.binary, '-kc', f"--untar-gui={archive} {entry}.pcap {pos_list} {dest}"]

    def extract(
        self,
        archive:   Path,
        entry:     str,
        positions: Sequence[int],
        dest:      Path,
    ) -> ExtractionResult:
        if not positions:
            raise ValueError("RTP extraction needs at least one position")
        run    = run_tool(self.build_argv(archive, entry, positions, dest), self.timeout_sec)
        result = classify_extraction(run, dest)
        if isinstance(result, Extracted):
            logger.info(f"RTP PCAP created: {dest} (size: {result.byte_size} bytes)")
        return result
