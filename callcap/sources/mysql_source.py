"""
callcap/sources/mysql_source.py
Reads call records from the VoIPmonitor MySQL/MariaDB schema.

  cdr            one row per call (id, calldate, id_sensor, connect_duration)
  cdr_next       fbasename, the entry name shared by the SIP and RTP archives
  cdr_tar_part   one row per RTP tar chunk attributed to the call (pos)

Positions arrive as a GROUP_CONCAT string ("5,9,14") or NULL when the call
has no RTP chunks. Depending on the driver/charset, columns may come back as
bytes; everything is decoded here so the rest of the pipeline sees plain
CallRecords.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pymysql
import pymysql.cursors

from callcap.errors import SourceUnavailable
from callcap.models.record import CallRecord, TimeWindow
from callcap.sources.base import RecordSource

logger = logging.getLogger(__name__)

CDR_QUERY = """
    SELECT cdr.id                         AS call_id,
           MAX(cdr.connect_duration)      AS connect_duration,
           cdr_next.fbasename             AS fbasename,
           GROUP_CONCAT(cdr_tar_part.pos ORDER BY cdr_tar_part.pos ASC SEPARATOR ',')
                                          AS tar_positions
    FROM cdr
    INNER JOIN cdr_next     ON cdr.id = cdr_next.cdr_ID
    LEFT JOIN  cdr_tar_part ON cdr.id = cdr_tar_part.cdr_id
    WHERE cdr.calldate >= %s AND cdr.calldate < %s AND cdr.id_sensor = %s
    GROUP BY cdr.id, cdr_next.fbasename, cdr.connect_duration
    ORDER BY cdr.id ASC
"""


class MySQLRecordSource(RecordSource):

    def __init__(
        self,
        host:            str,
        user:            str,
        password:        str,
        database:        str,
        port:            int = 3306,
        connect_timeout: int = 10,
        read_timeout:    int = 300,
    ):
        self.host            = host
        self.user            = user
        self.password        = password
        self.database        = database
        self.port            = int(port)
        self.connect_timeout = connect_timeout
        self.read_timeout    = read_timeout

    @contextmanager
    def _connect(self):
        try:
            conn = pymysql.connect(
                host            = self.host,
                port            = self.port,
                user            = self.user,
                password        = self.password,
                database        = self.database,
                cursorclass     = pymysql.cursors.DictCursor,
                charset         = 'utf8mb4',
                connect_timeout = self.connect_timeout,
                read_timeout    = self.read_timeout,
            )
        except pymysql.MySQLError as e:
            raise SourceUnavailable(
                f"Cannot connect to {self.user}@{self.host}:{self.port}/{self.database}: {e}"
            ) from e
        try:
            yield conn
        finally:
            conn.close()

    def fetch_records(self, window: TimeWindow, sensor_id: int) -> List[CallRecord]:
        logger.info(
            f"Querying CDRs {window.start} .. {window.end} sensor={sensor_id} "
            f"on {self.host}:{self.port}/{self.database}"
        )
        params = (
            window.start.strftime('%Y-%m-%d %H:%M:%S'),
            window.end.strftime('%Y-%m-%d %H:%M:%S'),
            int(sensor_id),
        )
        with self._connect() as conn:
            try:
                with conn.cursor() as cur:
                    cur.execute(CDR_QUERY, params)
                    rows = cur.fetchall()
            except pymysql.MySQLError as e:
                raise SourceUnavailable(f"CDR query failed: {e}") from e

        records = rows_to_records(rows)
        logger.info(f"Fetched {len(records)} call records")
        return records


# ── ROW DECODING ─────────────────────────────────────────────

def rows_to_records(rows: Iterable[Dict[str, Any]]) -> List[CallRecord]:
    """Decode, deduplicate and sort query rows. Malformed rows are fatal."""
    records: List[CallRecord] = []
    seen: set = set()

    for i, row in enumerate(rows):
        try:
            rec = row_to_record(row)
        except (KeyError, TypeError, ValueError) as e:
            raise SourceUnavailable(f"Malformed CDR row #{i}: {e}") from e
        key = (rec.call_id, rec.archive_entry_name, rec.connect_duration)
        if key in seen:
            continue
        seen.add(key)
        records.append(rec)

    records.sort(key=lambda r: r.call_id)
    return records


def row_to_record(row: Dict[str, Any]) -> CallRecord:
    call_id = int(_text(row['call_id']))
    if call_id <= 0:
        raise ValueError(f"call_id must be positive, got {call_id}")

    fbasename = _text(row['fbasename'])
    if not fbasename:
        raise ValueError(f"empty fbasename for call {call_id}")

    return CallRecord(
        call_id            = call_id,
        connect_duration   = _duration(row.get('connect_duration')),
        archive_entry_name = fbasename,
        fragment_positions = parse_positions(row.get('tar_positions')),
    )


def parse_positions(raw: Any) -> Optional[Tuple[int, ...]]:
    """'5,9,14' -> (5, 9, 14). NULL or empty -> None."""
    text = _text(raw)
    if not text or not text.strip():
        return None
    positions = tuple(int(p) for p in text.split(',') if p.strip())
    if any(p < 0 for p in positions):
        raise ValueError(f"negative tar position in {text!r}")
    return positions or None


def _duration(raw: Any) -> int:
    # NULL or unparsable durations count as unanswered
    try:
        value = int(_text(raw) or 0)
    except (TypeError, ValueError):
        return 0
    return max(value, 0)


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode('utf-8')   # UnicodeDecodeError is a ValueError
    return str(value)
