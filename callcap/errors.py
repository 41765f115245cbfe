"""
callcap/errors.py
Run-level failures. Anything raised from here aborts the whole run and is
checked before the per-record loop starts. Per-record failures never raise;
they become a RecordOutcome with status failed/partial.
"""


class CallcapError(Exception):
    """Base class for fatal run errors."""


class SourceUnavailable(CallcapError):
    """Record source unreachable, or it returned rows that cannot be decoded."""


class ArchiveMissing(CallcapError):
    """A required SIP or RTP archive is absent at start."""

    def __init__(self, path):
        self.path = path
        super().__init__(f"Archive not found: {path}")
