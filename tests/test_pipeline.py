"""
tests/test_pipeline.py
Run orchestration: fatal preflight checks, per-record isolation, reporting.
Uses a fake RecordSource and the stub tools from conftest.py.
"""

import csv
import logging
import sqlite3
import threading
import time
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest

from callcap.errors import ArchiveMissing, SourceUnavailable
from callcap.exporters.csv_reporter import CsvOutcomeReporter
from callcap.exporters.sqlite_exporter import SqliteOutcomeReporter
from callcap.models.record import CallRecord, NotProduced, TimeWindow, ToolFailed
from callcap.pipeline import Pipeline, build_pipeline, check_archives, ensure_directories
from callcap.sources.base import RecordSource
from callcap.tools import MergecapMerger, TarSipExtractor, XfvmRtpExtractor

WINDOW = TimeWindow(datetime(2025, 2, 11, 9, 2), datetime(2025, 2, 11, 9, 3))

RECORDS = [
    CallRecord(100, 30, 'abc.pcap', (5, 9)),     # success (merged)
    CallRecord(101, 0,  'xyz.pcap', None),       # success (sip-only)
    CallRecord(102, 45, 'c.pcap',   (1,)),       # rtp failure
    CallRecord(104, 20, 'e.pcap',   (2,)),       # sip failure
]


class FakeSource(RecordSource):

    def __init__(self, records=None, error=None):
        self.records = list(records or [])
        self.error   = error
        self.calls   = []

    def fetch_records(self, window, sensor_id):
        self.calls.append((window, sensor_id))
        if self.error:
            raise self.error
        return list(self.records)


@pytest.fixture
def archives(tmp_path):
    rtp = tmp_path / 'rtp_2025-02-11-09-02.tar'
    sip = tmp_path / 'sip_2025-02-11-09-02.tar.gz'
    rtp.write_bytes(b'rtp')
    sip.write_bytes(b'sip')
    return rtp, sip


@pytest.fixture
def controller(make_controller, archives):
    return make_controller(
        rtp_failures={'c.pcap': ToolFailed(1, 'disk error')},
        sip_failures={'e.pcap': NotProduced()},
    )


# ── FATAL CHECKS ─────────────────────────────────────────────

class TestFatal:

    def test_missing_archive_stops_before_query(self, make_controller):
        source   = FakeSource(RECORDS)
        pipeline = Pipeline(source, make_controller())   # archives never created
        with pytest.raises(ArchiveMissing):
            pipeline.run(WINDOW, 15)
        assert source.calls == []

    def test_source_unavailable_propagates(self, controller, tmp_path):
        reporter = CsvOutcomeReporter(tmp_path / 'times.csv')
        pipeline = Pipeline(FakeSource(error=SourceUnavailable('down')), controller, [reporter])
        with pytest.raises(SourceUnavailable):
            pipeline.run(WINDOW, 15)
        assert not (tmp_path / 'times.csv').exists()

    def test_check_archives_message(self, tmp_path):
        with pytest.raises(ArchiveMissing) as exc:
            check_archives([tmp_path / 'nope.tar'])
        assert 'Archive not found' in str(exc.value)


# ── RUN ──────────────────────────────────────────────────────

class TestRun:

    def test_mixed_outcomes_counted(self, controller, trace):
        summary = Pipeline(FakeSource(RECORDS), controller).run(WINDOW, 15)
        assert summary.records_fetched == 4
        assert summary.succeeded == 2
        assert summary.partial == 0
        assert summary.failed == 2
        assert summary.processed == 4

    def test_failure_does_not_stop_later_records(self, make_controller, archives, trace):
        ctl = make_controller(rtp_failures={'abc.pcap': ToolFailed(1, 'x')})
        Pipeline(FakeSource(RECORDS), ctl).run(WINDOW, 15)
        processed = {t[1] for t in trace}
        assert {'xyz.pcap', 'c.pcap', 'e.pcap'} <= processed

    def test_every_record_reported(self, controller, tmp_path):
        csv_path = tmp_path / 'report' / 'times.csv'
        db_path  = tmp_path / 'callcap.db'
        reporters = [CsvOutcomeReporter(csv_path), SqliteOutcomeReporter(db_path)]
        Pipeline(FakeSource(RECORDS), controller, reporters).run(WINDOW, 15, run_label='t1')

        with open(csv_path, newline='') as f:
            rows = list(csv.DictReader(f))
        assert [r['call_id'] for r in rows] == ['100', '101', '102', '104']
        assert [r['status'] for r in rows] == ['success', 'success', 'failed', 'failed']
        assert rows[2]['failed_stage'] == 'rtp'

        conn = sqlite3.connect(str(db_path))
        try:
            run = conn.execute(
                "SELECT run_label, records_fetched, succeeded, failed FROM callcap_runs"
            ).fetchone()
            count = conn.execute("SELECT COUNT(*) FROM outcomes").fetchone()[0]
        finally:
            conn.close()
        assert run == ('t1', 4, 2, 2)
        assert count == 4

    def test_query_time_in_every_row(self, controller):
        ticks = iter(range(1000))
        reporter = MagicMock()
        pipeline = Pipeline(FakeSource(RECORDS), controller, [reporter],
                            clock=lambda: float(next(ticks)))
        summary = pipeline.run(WINDOW, 15)
        query_times = {c.args[1] for c in reporter.record.call_args_list}
        assert query_times == {summary.query_time}
        reporter.close.assert_called_once()

    def test_progress_callback(self, controller):
        seen = []
        Pipeline(FakeSource(RECORDS), controller).run(
            WINDOW, 15, progress_cb=lambda i, n, o: seen.append((i, n, o.call_id))
        )
        assert seen == [(1, 4, 100), (2, 4, 101), (3, 4, 102), (4, 4, 104)]

    def test_empty_window(self, controller, tmp_path):
        csv_path = tmp_path / 'times.csv'
        summary  = Pipeline(FakeSource([]), controller, [CsvOutcomeReporter(csv_path)]).run(WINDOW, 15)
        assert summary.records_fetched == 0
        assert len(csv_path.read_text().splitlines()) == 1

    def test_reporters_closed_on_error(self, controller):
        reporter = MagicMock()
        reporter.record.side_effect = OSError('disk full')
        with pytest.raises(OSError):
            Pipeline(FakeSource(RECORDS), controller, [reporter]).run(WINDOW, 15)
        reporter.close.assert_called_once()

    def test_default_run_label(self, controller):
        summary = Pipeline(FakeSource([]), controller).run(WINDOW, 15)
        assert summary.run_label == 'sensor15@2025-02-11 09:02'

    def test_preflight_creates_directories(self, make_controller, archives, tmp_path):
        ctl = make_controller(merged_dir=tmp_path / 'new' / 'merged')
        Pipeline(FakeSource([]), ctl).run(WINDOW, 15)
        assert (tmp_path / 'new' / 'merged').is_dir()


class TestWorkers:

    def test_parallel_keeps_fetch_order(self, controller, dirs):
        records = [CallRecord(i, 10, 'shared.pcap', (1,)) for i in range(1, 21)]
        seen = []
        summary = Pipeline(FakeSource(records), controller, workers=4).run(
            WINDOW, 15, progress_cb=lambda i, n, o: seen.append(o.call_id)
        )
        assert seen == list(range(1, 21))
        assert summary.succeeded == 20
        assert all((dirs['merged'] / f'{i}.pcap').exists() for i in range(1, 21))
        assert not any(dirs['sip'].iterdir())
        assert not any(dirs['rtp'].iterdir())

    def test_reporters_called_from_main_thread(self, controller):
        threads = set()
        reporter = MagicMock()
        reporter.record.side_effect = lambda *a: threads.add(threading.get_ident())
        Pipeline(FakeSource(RECORDS), controller, [reporter], workers=3).run(WINDOW, 15)
        assert threads == {threading.get_ident()}

    def test_records_sharing_call_id(self, controller, tmp_path):
        records = [
            CallRecord(5, 30, 'e', (1,)),
            CallRecord(5, 0,  'e', None),
            CallRecord(6, 30, 'f', (2,)),
            CallRecord(7, 0,  'g', None),
        ]
        db_path = tmp_path / 'callcap.db'
        seen    = []
        summary = Pipeline(
            FakeSource(records), controller, [SqliteOutcomeReporter(db_path)], workers=2,
        ).run(WINDOW, 15, progress_cb=lambda i, n, o: seen.append((o.call_id, o.branch, o.status)))

        assert seen == [
            (5, 'rtp', 'success'),
            (5, 'sip-only', 'success'),
            (6, 'rtp', 'success'),
            (7, 'sip-only', 'success'),
        ]
        assert summary.succeeded == 4
        conn = sqlite3.connect(str(db_path))
        try:
            count = conn.execute("SELECT COUNT(*) FROM outcomes WHERE call_id = 5").fetchone()[0]
        finally:
            conn.close()
        assert count == 2

    def test_same_call_id_never_overlaps(self, controller):
        records  = [CallRecord(9, 30, 'h', (1,)) for _ in range(3)] + \
                   [CallRecord(i, 30, 'h', (1,)) for i in range(10, 14)]
        active   = set()
        overlaps = []
        lock     = threading.Lock()
        real     = controller.process

        def process(record):
            with lock:
                if record.call_id in active:
                    overlaps.append(record.call_id)
                active.add(record.call_id)
            try:
                time.sleep(0.01)
                return real(record)
            finally:
                with lock:
                    active.discard(record.call_id)

        controller.process = process
        summary = Pipeline(FakeSource(records), controller, workers=4).run(WINDOW, 15)
        assert overlaps == []
        assert summary.succeeded == 7


# ── HELPERS / FACTORY ────────────────────────────────────────

def test_ensure_directories(tmp_path, caplog):
    caplog.set_level(logging.INFO)
    target = tmp_path / 'a' / 'b'
    ensure_directories([target])
    assert target.is_dir()
    assert 'Created directory' in caplog.text


def test_build_pipeline_wiring(tmp_path):
    config = {
        'db_host': '127.0.0.1', 'db_port': 3306, 'db_user': 'u', 'db_password': '',
        'db_name': 'voipmonitor', 'archive_root': '/isilon', 'rtp_archive': None,
        'sip_archive': None, 'sip_fragment_dir': str(tmp_path / 's'),
        'rtp_fragment_dir': str(tmp_path / 'r'), 'merged_dir': str(tmp_path / 'm'),
        'output_csv': str(tmp_path / 'o.csv'), 'db_path': None, 'pigz_threads': 2,
        'tool_timeout_sec': 30, 'workers': 2,
    }
    pipeline = build_pipeline(config, WINDOW)
    assert pipeline.workers == 2
    assert len(pipeline.reporters) == 1
    assert pipeline.controller.rtp_archive.name == 'rtp_2025-02-11-09-02.tar'
    assert pipeline.controller.sip_extractor.pigz_threads == 2
    assert pipeline.controller.merger.timeout_sec == 30


class TestRequiredTools:

    def test_tools_follow_configured_adapters(self, make_controller, archives):
        ctl = make_controller()
        ctl.rtp_extractor = XfvmRtpExtractor(binary='/opt/xfvm/bin/xfvm')
        ctl.sip_extractor = TarSipExtractor(pigz_threads=0, tar_binary='gtar')
        ctl.merger        = MergecapMerger()
        assert Pipeline(FakeSource([]), ctl).required_tools() == [
            '/opt/xfvm/bin/xfvm', 'gtar', 'gzip', 'mergecap',
        ]

    def test_pigz_only_when_threads_set(self, make_controller, archives):
        ctl = make_controller()
        ctl.sip_extractor = TarSipExtractor(pigz_threads=4)
        assert Pipeline(FakeSource([]), ctl).required_tools() == ['tar', 'pigz']

    def test_preflight_warns_only_for_missing(self, make_controller, archives, caplog):
        ctl = make_controller()
        ctl.sip_extractor = TarSipExtractor(pigz_threads=0)
        with patch('callcap.pipeline.shutil.which', side_effect=lambda t: None if t == 'gzip' else t):
            Pipeline(FakeSource([]), ctl).preflight()
        assert 'External tool not on PATH: gzip' in caplog.text
        assert 'pigz' not in caplog.text
