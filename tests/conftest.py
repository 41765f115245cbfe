"""
tests/conftest.py
Stub extractors/merger that implement the real interfaces, write real
fragment files under tmp_path, and append to a shared call trace.
"""

from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest

from callcap.controller import CorrelationController
from callcap.models.record import Extracted, Merged, MergeResult, ExtractionResult
from callcap.tools.base import Merger, RtpExtractor, SipExtractor


class StubRtpExtractor(RtpExtractor):

    def __init__(self, trace: List[tuple], size: int = 12000,
                 failures: Optional[Dict[str, ExtractionResult]] = None):
        self.trace    = trace
        self.size     = size
        self.failures = failures or {}

    def extract(self, archive: Path, entry: str, positions: Sequence[int], dest: Path):
        self.trace.append(('rtp', entry, tuple(positions), dest))
        if entry in self.failures:
            return self.failures[entry]
        dest.write_bytes(b'\x01' * self.size)
        return Extracted(dest, self.size)


class StubSipExtractor(SipExtractor):

    def __init__(self, trace: List[tuple], size: int = 4000,
                 failures: Optional[Dict[str, ExtractionResult]] = None):
        self.trace    = trace
        self.size     = size
        self.failures = failures or {}

    def extract(self, archive: Path, entry: str, dest: Path):
        self.trace.append(('sip', entry, dest))
        if entry in self.failures:
            return self.failures[entry]
        dest.write_bytes(b'\x02' * self.size)
        return Extracted(dest, self.size)


class StubMerger(Merger):
    """Records whether both inputs existed (and were non-empty) at call time."""

    def __init__(self, trace: List[tuple], result: Optional[MergeResult] = None):
        self.trace  = trace
        self.result = result

    def merge(self, sip: Path, rtp: Path, dest: Path):
        self.trace.append((
            'merge', sip, rtp, dest,
            sip.exists() and sip.stat().st_size > 0,
            rtp.exists() and rtp.stat().st_size > 0,
        ))
        if self.result is not None:
            return self.result
        dest.write_bytes(sip.read_bytes() + rtp.read_bytes())
        return Merged(dest)


@pytest.fixture
def trace():
    return []


@pytest.fixture
def dirs(tmp_path):
    d = {
        'sip':    tmp_path / 'sip',
        'rtp':    tmp_path / 'rtp',
        'merged': tmp_path / 'merged',
    }
    for p in d.values():
        p.mkdir()
    return d


@pytest.fixture
def make_controller(tmp_path, dirs, trace):
    """
    make_controller(rtp_failures=..., sip_failures=..., merge_result=...)
    Failures are keyed by the normalized entry name.
    """
    def _make(rtp_failures=None, sip_failures=None, merge_result=None, merged_dir=None):
        return CorrelationController(
            rtp_extractor    = StubRtpExtractor(trace, failures=rtp_failures),
            sip_extractor    = StubSipExtractor(trace, failures=sip_failures),
            merger           = StubMerger(trace, result=merge_result),
            rtp_archive      = tmp_path / 'rtp_2025-02-11-09-02.tar',
            sip_archive      = tmp_path / 'sip_2025-02-11-09-02.tar.gz',
            rtp_fragment_dir = dirs['rtp'],
            sip_fragment_dir = dirs['sip'],
            merged_dir       = merged_dir or dirs['merged'],
        )
    return _make
