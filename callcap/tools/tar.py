"""
callcap/tools/tar.py
SIP extraction from the per-minute sip_*.tar.gz archive. tar decompresses
through pigz and writes the first member matching '<entry>.pcap*' to stdout,
which is redirected into the fragment file.

tar exits 0 even when the glob matches nothing in some builds, so an empty
fragment is reported as NotProduced rather than a tool failure.
"""

import logging
from pathlib import Path
from typing import Optional

from callcap.models.record import ExtractionResult, Extracted
from callcap.tools.base import DEFAULT_TIMEOUT_SEC, SipExtractor, classify_extraction, run_tool

logger = logging.getLogger(__name__)


class TarSipExtractor(SipExtractor):

    def __init__(
        self,
        pigz_threads: int             = 4,
        tar_binary:   str             = 'tar',
        timeout_sec:  Optional[float] = DEFAULT_TIMEOUT_SEC,
    ):
        self.pigz_threads = pigz_threads
        self.tar_binary   = tar_binary
        self.timeout_sec  = timeout_sec

    def binaries(self):
        return [self.tar_binary, self.compressor().split()[0]]

    def compressor(self) -> str:
        return f"pigz -p {self.pigz_threads}" if self.pigz_threads > 0 else 'gzip'

    def build_argv(self, archive: Path, entry: str):
        return [
            self.tar_binary,
            f"--use-compress-program={self.compressor()}",
            '--wildcards',
            '-xOf', str(archive),
            f"{entry}.pcap*",
        ]

    def extract(self, archive: Path, entry: str, dest: Path) -> ExtractionResult:
        with open(dest, 'wb') as out:
            run = run_tool(self.build_argv(archive, entry), self.timeout_sec, stdout=out)
        result = classify_extraction(run, dest)
        if isinstance(result, Extracted):
            logger.info(f"SIP PCAP created: {dest} (size: {result.byte_size} bytes)")
        return result
