"""
callcap/models/record.py
Shared dataclass schema. Sources, extractors, the controller and the
reporters all use these types. Data and trivial derived properties only.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple, Union


# ── TERMINAL STATUS ──────────────────────────────────────────

STATUS_SUCCESS = 'success'
STATUS_PARTIAL = 'partial'
STATUS_FAILED  = 'failed'

BRANCH_RTP      = 'rtp'
BRANCH_SIP_ONLY = 'sip-only'

STAGE_RTP     = 'rtp'
STAGE_SIP     = 'sip'
STAGE_MERGE   = 'merge'
STAGE_PROMOTE = 'promote'


@dataclass(frozen=True)
class CallRecord:
    """One CDR row. Read-only once fetched."""
    call_id:            int
    connect_duration:   int
    archive_entry_name: str
    fragment_positions: Optional[Tuple[int, ...]] = None   # None = no RTP chunks attributed

    @property
    def has_rtp(self) -> bool:
        return self.connect_duration > 0 and self.fragment_positions is not None


@dataclass(frozen=True)
class TimeWindow:
    """Half-open calldate window [start, end)."""
    start: datetime
    end:   datetime


# ── EXTRACTION / MERGE RESULTS ───────────────────────────────

@dataclass(frozen=True)
class Extracted:
    path:      Path
    byte_size: int


@dataclass(frozen=True)
class NotProduced:
    reason: str = 'no output produced'


@dataclass(frozen=True)
class ToolFailed:
    exit_code:  Optional[int]   # None = killed on timeout
    diagnostic: str = ''


@dataclass(frozen=True)
class Merged:
    path: Path


@dataclass(frozen=True)
class Skipped:
    reason: str


ExtractionResult = Union[Extracted, NotProduced, ToolFailed]
MergeResult      = Union[Merged, Skipped, ToolFailed]


# ── OUTCOMES ─────────────────────────────────────────────────

@dataclass
class RecordOutcome:
    """Terminal state and stage timings for one processed record."""
    call_id:        int
    status:         str                 # success / partial / failed
    branch:         str                 # rtp / sip-only
    failed_stage:   Optional[str] = None
    reason:         str           = ''
    rtp_time:       float         = 0.0
    sip_time:       float         = 0.0
    merge_time:     float         = 0.0
    total_time:     float         = 0.0
    output_path:    Optional[Path] = None
    rtp_bytes:      int           = 0
    sip_bytes:      int           = 0
    merge_result:   Optional[MergeResult] = None
    cleanup_errors: List[str]     = field(default_factory=list)


@dataclass
class RunSummary:
    run_label:       str
    records_fetched: int   = 0
    succeeded:       int   = 0
    partial:         int   = 0
    failed:          int   = 0
    query_time:      float = 0.0
    total_time:      float = 0.0

    @property
    def processed(self) -> int:
        return self.succeeded + self.partial + self.failed

    @property
    def records_per_second(self) -> float:
        if self.total_time <= 0:
            return 0.0
        return self.processed / self.total_time
