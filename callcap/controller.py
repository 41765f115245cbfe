"""
callcap/controller.py
Per-record correlation and merge state machine.

  Start ─ has_rtp? ─┬─ yes ─ RTP extract ─ SIP extract ─ merge ──> success | partial
                    │            │              │
                    │            └── failed ────┴──────────────> failed
                    └─ no ── SIP extract ─ promote ────────────> success | failed

Cleanup of both fragment files runs after every terminal state. Nothing in
here raises for a per-record problem: every path ends in a RecordOutcome.

Fragment files are named <normalized entry>.<call_id>.pcap, so two records
pointing at the same archive entry never share an intermediate file.
"""

import logging
import shutil
import time
from pathlib import Path
from typing import Callable, List, Tuple

from callcap.models.record import (
    BRANCH_RTP, BRANCH_SIP_ONLY,
    STAGE_MERGE, STAGE_PROMOTE, STAGE_RTP, STAGE_SIP,
    STATUS_FAILED, STATUS_PARTIAL, STATUS_SUCCESS,
    CallRecord, Extracted, Merged, NotProduced, RecordOutcome, Skipped, ToolFailed,
)
from callcap.normalizer import normalize_entry_name
from callcap.tools.base import Merger, RtpExtractor, SipExtractor

logger = logging.getLogger(__name__)


class CorrelationController:

    def __init__(
        self,
        rtp_extractor:    RtpExtractor,
        sip_extractor:    SipExtractor,
        merger:           Merger,
        rtp_archive:      Path,
        sip_archive:      Path,
        rtp_fragment_dir: Path,
        sip_fragment_dir: Path,
        merged_dir:       Path,
        clock:            Callable[[], float] = time.monotonic,
    ):
        self.rtp_extractor    = rtp_extractor
        self.sip_extractor    = sip_extractor
        self.merger           = merger
        self.rtp_archive      = Path(rtp_archive)
        self.sip_archive      = Path(sip_archive)
        self.rtp_fragment_dir = Path(rtp_fragment_dir)
        self.sip_fragment_dir = Path(sip_fragment_dir)
        self.merged_dir       = Path(merged_dir)
        self.clock            = clock

    # ── PATHS ────────────────────────────────────────────────

    def fragment_paths(self, record: CallRecord) -> Tuple[Path, Path]:
        """(sip_fragment, rtp_fragment) for this record."""
        entry = normalize_entry_name(record.archive_entry_name)
        name  = f"{entry}.{record.call_id}.pcap"
        return self.sip_fragment_dir / name, self.rtp_fragment_dir / name

    def output_path(self, record: CallRecord) -> Path:
        return self.merged_dir / f"{record.call_id}.pcap"

    # ── ENTRY POINT ──────────────────────────────────────────

    def process(self, record: CallRecord) -> RecordOutcome:
        start = self.clock()
        entry = normalize_entry_name(record.archive_entry_name)
        sip_fragment, rtp_fragment = self.fragment_paths(record)

        outcome = RecordOutcome(
            call_id = record.call_id,
            status  = STATUS_FAILED,
            branch  = BRANCH_RTP if record.has_rtp else BRANCH_SIP_ONLY,
        )
        logger.info(f"Processing CDR ID: {record.call_id} ({outcome.branch})")

        try:
            if record.has_rtp:
                self._rtp_branch(record, entry, sip_fragment, rtp_fragment, outcome)
            else:
                self._sip_only_branch(record, entry, sip_fragment, outcome)
        except Exception as e:
            # Per-record: logged and reported, never propagated
            outcome.status = STATUS_FAILED
            outcome.reason = f"unexpected error: {e}"
            logger.error(
                f"call_id={record.call_id} aborted in stage "
                f"{outcome.failed_stage or 'unknown'}: {e}",
                exc_info=True,
            )
        finally:
            outcome.cleanup_errors = self._cleanup(record, sip_fragment, rtp_fragment)
            outcome.total_time     = self.clock() - start

        logger.info(f"[PERF] CDR {record.call_id} - {outcome.status}: {outcome.total_time:.2f}s")
        return outcome

    # ── BRANCHES ─────────────────────────────────────────────

    def _sip_only_branch(
        self,
        record:       CallRecord,
        entry:        str,
        sip_fragment: Path,
        outcome:      RecordOutcome,
    ) -> None:
        outcome.failed_stage = STAGE_SIP
        result, outcome.sip_time = self._timed(
            lambda: self.sip_extractor.extract(self.sip_archive, entry, sip_fragment)
        )
        if not isinstance(result, Extracted):
            self._fail(record, outcome, STAGE_SIP, result)
            return
        outcome.sip_bytes = result.byte_size

        # Nothing to merge against: the SIP fragment is the final capture
        outcome.failed_stage = STAGE_PROMOTE
        merged = self.output_path(record)
        try:
            shutil.move(str(result.path), str(merged))
        except OSError as e:
            self._fail(record, outcome, STAGE_PROMOTE, NotProduced(f"move failed: {e}"))
            return

        outcome.merge_result = Skipped('no media attributed')
        outcome.output_path  = merged
        outcome.status       = STATUS_SUCCESS
        outcome.failed_stage = None

    def _rtp_branch(
        self,
        record:       CallRecord,
        entry:        str,
        sip_fragment: Path,
        rtp_fragment: Path,
        outcome:      RecordOutcome,
    ) -> None:
        outcome.failed_stage = STAGE_RTP
        rtp, outcome.rtp_time = self._timed(
            lambda: self.rtp_extractor.extract(
                self.rtp_archive, entry, record.fragment_positions, rtp_fragment
            )
        )
        if not isinstance(rtp, Extracted):
            # No SIP-only fallback once media was expected
            self._fail(record, outcome, STAGE_RTP, rtp)
            return
        outcome.rtp_bytes = rtp.byte_size

        outcome.failed_stage = STAGE_SIP
        sip, outcome.sip_time = self._timed(
            lambda: self.sip_extractor.extract(self.sip_archive, entry, sip_fragment)
        )
        if not isinstance(sip, Extracted):
            self._fail(record, outcome, STAGE_SIP, sip)
            return
        outcome.sip_bytes = sip.byte_size

        outcome.failed_stage = STAGE_MERGE
        merged = self.output_path(record)
        result, outcome.merge_time = self._timed(
            lambda: self.merger.merge(sip.path, rtp.path, merged)
        )
        outcome.merge_result = result

        if isinstance(result, Merged):
            outcome.status       = STATUS_SUCCESS
            outcome.output_path  = result.path
            outcome.failed_stage = None
            return

        outcome.status = STATUS_PARTIAL
        outcome.reason = self._describe(result)
        # mergecap starts from a truncated file; empty means nothing recovered
        if merged.exists() and merged.stat().st_size > 0:
            outcome.output_path = merged
        logger.error(
            f"Failed to merge PCAPs for call_id={record.call_id}. "
            f"Exit code: {getattr(result, 'exit_code', None)}, "
            f"Error: {getattr(result, 'diagnostic', result)}"
        )

    # ── HELPERS ──────────────────────────────────────────────

    def _timed(self, fn):
        t0     = self.clock()
        result = fn()
        return result, self.clock() - t0

    def _fail(self, record: CallRecord, outcome: RecordOutcome, stage: str, result) -> None:
        outcome.status       = STATUS_FAILED
        outcome.failed_stage = stage
        outcome.reason       = self._describe(result)
        logger.error(
            f"Failed to extract {stage.upper()} PCAP for call_id={record.call_id}: {outcome.reason}"
            if stage in (STAGE_RTP, STAGE_SIP) else
            f"Failed to {stage} PCAP for call_id={record.call_id}: {outcome.reason}"
        )

    @staticmethod
    def _describe(result) -> str:
        if isinstance(result, ToolFailed):
            if result.exit_code is None:
                return result.diagnostic or 'timeout'
            return f"exit {result.exit_code}: {result.diagnostic}".rstrip(': ')
        if isinstance(result, NotProduced):
            return result.reason
        if isinstance(result, Skipped):
            return result.reason
        return repr(result)

    def _cleanup(self, record: CallRecord, *fragments: Path) -> List[str]:
        """Delete every fragment that exists. Failures are logged, never raised."""
        errors: List[str] = []
        for path in fragments:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                msg = f"{path}: {e}"
                errors.append(msg)
                logger.warning(f"Cleanup failed for call_id={record.call_id}: {msg}")
        return errors
