"""
callcap/exporters/csv_reporter.py
Per-record timing report. The file is recreated at the start of each run and
every row is flushed as soon as the record finishes, so an interrupted run
still leaves a usable report.

Columns: call_id, query_time, rtp_time, sip_time, merge_time, total_time,
         status, failed_stage, reason
"""

import csv
import logging
from pathlib import Path

from callcap.exporters.base import OutcomeReporter
from callcap.models.record import RecordOutcome

logger = logging.getLogger(__name__)

CSV_COLUMNS = [
    'call_id', 'query_time', 'rtp_time', 'sip_time', 'merge_time', 'total_time',
    'status', 'failed_stage', 'reason',
]


class CsvOutcomeReporter(OutcomeReporter):

    def __init__(self, path: Path):
        self.path    = Path(path)
        self._handle = None
        self._writer = None

    def start_run(self, run_label: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._handle = open(self.path, 'w', newline='', encoding='utf-8')
        self._writer = csv.writer(self._handle)
        self._writer.writerow(CSV_COLUMNS)
        self._handle.flush()
        logger.debug(f"CSV report → {self.path}")

    def record(self, outcome: RecordOutcome, query_time: float) -> None:
        if self._writer is None:
            raise RuntimeError("CsvOutcomeReporter.record() called before start_run()")
        self._writer.writerow([
            outcome.call_id,
            f"{query_time:.6f}",
            f"{outcome.rtp_time:.6f}",
            f"{outcome.sip_time:.6f}",
            f"{outcome.merge_time:.6f}",
            f"{outcome.total_time:.6f}",
            outcome.status,
            outcome.failed_stage or '',
            outcome.reason,
        ])
        self._handle.flush()

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None
            self._writer = None
