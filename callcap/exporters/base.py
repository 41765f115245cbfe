"""
callcap/exporters/base.py
Append-only outcome sinks. The pipeline calls start_run() once, record()
once per processed call (always from the controlling thread) and
finish_run() at the end.
"""

from abc import ABC, abstractmethod

from callcap.models.record import RecordOutcome, RunSummary


class OutcomeReporter(ABC):

    def start_run(self, run_label: str) -> None:
        pass

    @abstractmethod
    def record(self, outcome: RecordOutcome, query_time: float) -> None:
        ...

    def finish_run(self, summary: RunSummary) -> None:
        pass

    def close(self) -> None:
        pass
