"""
callcap/sources/base.py
Abstract record source. To add a new backend: subclass RecordSource and
implement fetch_records().
"""

from abc import ABC, abstractmethod
from typing import List

from callcap.models.record import CallRecord, TimeWindow


class RecordSource(ABC):

    @abstractmethod
    def fetch_records(self, window: TimeWindow, sensor_id: int) -> List[CallRecord]:
        """
        Return the calls for one sensor and calldate window, sorted by
        call_id ascending, deduplicated on
        (call_id, archive_entry_name, connect_duration).
        Raises SourceUnavailable; no partial results.
        """
        ...
