"""
callcap/pipeline.py
Run orchestration: preflight → fetch → per-record controller → report.

Fatal checks (ArchiveMissing, SourceUnavailable) happen before the first
record is touched. After that nothing raised by a single record can stop
the run; every fetched record produces exactly one report row.

With workers > 1 records are processed by a bounded thread pool. Fragment
files are namespaced by call id (see controller.py) and records that share a
call id always run one after another on the same worker.
Outcomes are still consumed, in fetch order, by the calling thread; the
reporters are never touched from a worker.
"""

from __future__ import annotations

import logging
import shutil
import time
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from callcap.controller import CorrelationController
from callcap.errors import ArchiveMissing
from callcap.exporters.base import OutcomeReporter
from callcap.models.record import (
    STATUS_PARTIAL, STATUS_SUCCESS,
    CallRecord, RecordOutcome, RunSummary, TimeWindow,
)
from callcap.sources.base import RecordSource

logger = logging.getLogger(__name__)


def log_perf(operation: str, duration: float) -> None:
    logger.info(f"[PERF] {operation}: {duration:.2f}s")


def ensure_directories(dirs: Iterable[Path]) -> None:
    """Create fragment/output directories that do not exist yet."""
    for d in dirs:
        d = Path(d)
        if not d.exists():
            d.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created directory: {d}")


def check_archives(archives: Sequence[Path]) -> None:
    for path in archives:
        if not Path(path).exists():
            logger.error(f"TAR file not found: {path}")
            raise ArchiveMissing(path)


def check_tools(tools: Sequence[str]) -> List[str]:
    """Warn about missing binaries. Not fatal: each call reports exit 127."""
    missing = [t for t in tools if shutil.which(t) is None]
    for t in missing:
        logger.warning(f"External tool not on PATH: {t}")
    return missing


class Pipeline:

    def __init__(
        self,
        source:     RecordSource,
        controller: CorrelationController,
        reporters:  Optional[List[OutcomeReporter]] = None,
        workers:    int = 1,
        clock:      Callable[[], float] = time.monotonic,
    ):
        self.source     = source
        self.controller = controller
        self.reporters  = reporters or []
        self.workers    = max(int(workers), 1)
        self.clock      = clock

    def preflight(self) -> None:
        check_archives([self.controller.rtp_archive, self.controller.sip_archive])
        ensure_directories([
            self.controller.sip_fragment_dir,
            self.controller.rtp_fragment_dir,
            self.controller.merged_dir,
        ])
        check_tools(self.required_tools())

    def required_tools(self) -> List[str]:
        """Binaries the configured adapters will invoke, in call order."""
        ctl   = self.controller
        tools: List[str] = []
        for adapter in (ctl.rtp_extractor, ctl.sip_extractor, ctl.merger):
            tools += [b for b in adapter.binaries() if b not in tools]
        return tools

    def run(
        self,
        window:      TimeWindow,
        sensor_id:   int,
        run_label:   str = '',
        progress_cb: Optional[Callable[[int, int, RecordOutcome], None]] = None,
    ) -> RunSummary:
        """
        Process every record in the window. Raises ArchiveMissing or
        SourceUnavailable before any record is processed; never afterwards.
        """
        run_start = self.clock()
        run_label = run_label or f"sensor{sensor_id}@{window.start:%Y-%m-%d %H:%M}"

        self.preflight()

        logger.info("Connecting to database...")
        q0         = self.clock()
        records    = self.source.fetch_records(window, sensor_id)
        query_time = self.clock() - q0
        log_perf("Database query completed", query_time)

        summary = RunSummary(
            run_label       = run_label,
            records_fetched = len(records),
            query_time      = query_time,
        )
        logger.info(f"Processing {len(records)} records...")

        for reporter in self.reporters:
            reporter.start_run(run_label)
        try:
            for i, outcome in enumerate(self._outcomes(records), 1):
                self._tally(summary, outcome)
                for reporter in self.reporters:
                    reporter.record(outcome, query_time)
                if progress_cb:
                    progress_cb(i, len(records), outcome)

            summary.total_time = self.clock() - run_start
            for reporter in self.reporters:
                reporter.finish_run(summary)
        finally:
            for reporter in self.reporters:
                reporter.close()

        log_perf("Total script execution", summary.total_time)
        logger.info(
            f"Processed {summary.processed} records at "
            f"{summary.records_per_second:.2f} records/second "
            f"(success={summary.succeeded} partial={summary.partial} failed={summary.failed})"
        )
        return summary

    def _outcomes(self, records: List[CallRecord]) -> Iterator[RecordOutcome]:
        if self.workers == 1 or len(records) < 2:
            for record in records:
                yield self.controller.process(record)
            return

        # Records sharing a call_id share fragment and output paths, so each
        # call_id is processed sequentially by a single worker.
        groups: Dict[int, List[int]] = {}
        for i, record in enumerate(records):
            groups.setdefault(record.call_id, []).append(i)

        slot: Dict[int, Tuple[Future, int]] = {}
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            for indexes in groups.values():
                future = pool.submit(self._process_batch, [records[i] for i in indexes])
                for pos, i in enumerate(indexes):
                    slot[i] = (future, pos)
            # fetch order, regardless of completion order
            for i in range(len(records)):
                future, pos = slot[i]
                yield future.result()[pos]

    def _process_batch(self, batch: List[CallRecord]) -> List[RecordOutcome]:
        return [self.controller.process(record) for record in batch]

    @staticmethod
    def _tally(summary: RunSummary, outcome: RecordOutcome) -> None:
        if outcome.status == STATUS_SUCCESS:
            summary.succeeded += 1
        elif outcome.status == STATUS_PARTIAL:
            summary.partial += 1
        else:
            summary.failed += 1


# ── FACTORY ──────────────────────────────────────────────────

def build_pipeline(config: Dict[str, Any], window: TimeWindow) -> Pipeline:
    """Wire the production components from a merged config dict."""
    from callcap.config import resolve_archives
    from callcap.exporters.csv_reporter import CsvOutcomeReporter
    from callcap.exporters.sqlite_exporter import SqliteOutcomeReporter
    from callcap.sources.mysql_source import MySQLRecordSource
    from callcap.tools.mergecap import MergecapMerger
    from callcap.tools.tar import TarSipExtractor
    from callcap.tools.xfvm import XfvmRtpExtractor

    timeout = config.get("tool_timeout_sec") or None
    rtp_archive, sip_archive = resolve_archives(config, window)

    controller = CorrelationController(
        rtp_extractor    = XfvmRtpExtractor(timeout_sec=timeout),
        sip_extractor    = TarSipExtractor(
            pigz_threads = int(config.get("pigz_threads", 4)),
            timeout_sec  = timeout,
        ),
        merger           = MergecapMerger(timeout_sec=timeout),
        rtp_archive      = rtp_archive,
        sip_archive      = sip_archive,
        rtp_fragment_dir = Path(config["rtp_fragment_dir"]),
        sip_fragment_dir = Path(config["sip_fragment_dir"]),
        merged_dir       = Path(config["merged_dir"]),
    )

    source = MySQLRecordSource(
        host     = config["db_host"],
        port     = int(config["db_port"]),
        user     = config["db_user"],
        password = config.get("db_password", ""),
        database = config["db_name"],
    )

    reporters: List[OutcomeReporter] = [CsvOutcomeReporter(Path(config["output_csv"]))]
    if config.get("db_path"):
        reporters.append(SqliteOutcomeReporter(Path(config["db_path"])))

    return Pipeline(
        source     = source,
        controller = controller,
        reporters  = reporters,
        workers    = int(config.get("workers") or 1),
    )
