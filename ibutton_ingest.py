"""iButton Hygrochron CSV ingestion.

Two export flavours exist. Multi-logger files concatenate one block per
device, each opened by a ``Date/time logger downloaded:`` line and separated
from the next by a two-line gap, the whole file closed by ``download complete``
(or ``-end-``). Single-logger files hold one device whose timestamp column is
either ``YYYY/MM/DD HH:MM:SS`` text or, when the file went through a
spreadsheet, an Excel serial day count.

Temperatures are always degrees Celsius. Files may contain non-UTF-8 bytes;
the ``encoding`` argument controls how lines are decoded.
"""

from __future__ import annotations

import io
import re
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from microclim import (
    MalformedFileError,
    MissingSerialError,
    NameParser,
    ParsedLoggerData,
    UnrecognizedTimestampError,
    build_environment_table,
    concat_environment_tables,
    dprint,
    make_result,
    parse_timestamps,
    read_lines,
    source_metadata,
    warn_anomaly,
)
from unit_conversion import CELSIUS, PERCENT


IBUTTON_START_MARKER = "Date/time logger downloaded:"
IBUTTON_END_MARKERS = ("download complete", "-end-")
IBUTTON_BLOCK_GAP = 2
IBUTTON_ENCODING = "latin-1"

MULTI_SERIAL_MARKER = "Logger serial number"
SINGLE_SERIAL_MARKER = "Serial No"

DEFAULT_EXCEL_ORIGIN = "1899-12-30"
SECONDS_PER_DAY = 60 * 60 * 24

IBUTTON_COLUMNS = ("Timestamp", "Temp", "RH")
BLOCK_TIMESTAMP_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y/%m/%d %H:%M:%S",
    "%m-%d-%Y %H:%M",
    "%m/%d/%Y %H:%M",
    "%m-%d-%y %H:%M",
    "%m/%d/%y %H:%M",
)
SINGLE_TIMESTAMP_FORMATS = ("%Y/%m/%d %H:%M:%S",)

IBUTTON_UNITS = {"Temp": CELSIUS, "RH": PERCENT}

_DATA_ROW_RE = re.compile(r",-?\d+(?:\.\d+)?,-?\d+(?:\.\d+)?")
_TEXT_TIMESTAMP_ROW_RE = re.compile(r"\d{4}/\d{2}/\d{2}\s\d{2}:\d{2}:\d{2},-?\d")
_EXCEL_TIMESTAMP_ROW_RE = re.compile(r"^\s*\d+(?:\.\d+)?,-?\d")
_PUNCT_RE = re.compile(r"[^\w\s]")

STATIC_COLUMNS_WARNING = "using static column name order (Timestamp, Temp, RH)"


def _marker_lines(lines: Sequence[str], marker: str) -> List[int]:
    return [idx for idx, line in enumerate(lines) if marker in line]


def _first_match(lines: Sequence[str], pattern: re.Pattern) -> Optional[int]:
    for idx, line in enumerate(lines):
        if pattern.search(line):
            return idx
    return None


def _end_of_file_lines(lines: Sequence[str]) -> List[int]:
    """Return the end-of-file marker lines, trying each marker in turn."""

    for marker in IBUTTON_END_MARKERS:
        found = _marker_lines(lines, marker)
        if found:
            return found
    raise MalformedFileError(
        "Could not determine end of data set. Tried keywords "
        + " and ".join(f"'{marker}'" for marker in IBUTTON_END_MARKERS)
        + "."
    )


def segment_ibutton_blocks(lines: Sequence[str], notes: List[str]) -> List[List[str]]:
    """Split a multi-logger export into one list of lines per device."""

    starts = _marker_lines(lines, IBUTTON_START_MARKER)
    if not starts:
        raise MalformedFileError(
            f"Could not determine start of data set. Tried keyword '{IBUTTON_START_MARKER}'."
        )
    end_of_file = _end_of_file_lines(lines)

    ends = [start - IBUTTON_BLOCK_GAP for start in starts[1:]] + [eof - 1 for eof in end_of_file]
    if len(starts) != len(ends):
        raise MalformedFileError(
            f"Unequal number of data set headers ({len(starts)}) and footers ({len(ends)})."
        )

    blocks: List[List[str]] = []
    for pos, (start, end) in enumerate(zip(starts, ends)):
        if end < start:
            raise MalformedFileError(f"Data set {pos + 1} ends before it starts (line {start + 1}).")
        if pos + 1 < len(starts):
            gap = lines[end + 1 : starts[pos + 1]]
            if any(_DATA_ROW_RE.search(line) for line in gap):
                warn_anomaly(
                    notes,
                    f"Data rows found between data set {pos + 1} and {pos + 2}; "
                    f"the {IBUTTON_BLOCK_GAP}-line gap between data sets may not hold for this file.",
                )
        blocks.append(list(lines[start : end + 1]))
    dprint(f"[ibutton] {len(blocks)} data sets at lines {[s + 1 for s in starts]}")
    return blocks


def _read_data_rows(rows: Sequence[str]) -> pd.DataFrame:
    """Read ``Timestamp, Temp, RH`` from data rows, dropping trailing columns."""

    n_columns = len(rows[0].split(","))
    names = list(IBUTTON_COLUMNS) + [f"__extra{i}" for i in range(max(n_columns - 3, 0))]
    return pd.read_csv(
        io.StringIO("\n".join(rows)),
        header=None,
        names=names,
        usecols=list(IBUTTON_COLUMNS),
        dtype=str,
        skip_blank_lines=True,
        on_bad_lines="skip",
        engine="python",
    )


def block_serial(lines: Sequence[str]) -> str:
    """Return the serial from the ``Logger serial number`` line of a block."""

    for line in lines:
        if MULTI_SERIAL_MARKER in line:
            parts = line.split(",", 1)
            serial = _PUNCT_RE.sub("", parts[1]).strip() if len(parts) > 1 else ""
            if serial:
                return serial
            break
    raise MissingSerialError(f"No logger serial number found using keyword '{MULTI_SERIAL_MARKER}'")


def parse_ibutton_block(
    lines: Sequence[str], tz: Optional[str] = None, notes: Optional[List[str]] = None
) -> pd.DataFrame:
    """Parse one device block of a multi-logger export into readings."""

    notes = [] if notes is None else notes
    data_start = _first_match(lines, _DATA_ROW_RE)
    if data_start is None:
        raise MalformedFileError("No temperature/humidity rows found in data set.")
    warn_anomaly(notes, STATIC_COLUMNS_WARNING)

    serial = block_serial(lines)
    frame = _read_data_rows(lines[data_start:])
    timestamps = parse_timestamps(frame["Timestamp"], BLOCK_TIMESTAMP_FORMATS)
    dprint(f"[ibutton] serial={serial} rows={len(frame)} first data line={data_start + 1}")
    return build_environment_table(
        timestamps,
        {"Temp": frame["Temp"], "RH": frame["RH"]},
        serial=serial,
        timezone=tz,
    )


def read_ibutton_csv(
    csv_file: str,
    parse_name: Optional[NameParser] = None,
    tz: Optional[str] = None,
    encoding: str = IBUTTON_ENCODING,
) -> ParsedLoggerData:
    """Parse an iButton export holding data dumps of multiple loggers.

    Parameters
    ----------
    csv_file:
        Path to the multi-logger CSV export.
    parse_name:
        Optional hook called with the file name; its mapping is merged into
        the result metadata.
    tz:
        Optional timezone label stored verbatim in the ``Timezone`` column.
    encoding:
        Text encoding used to decode the file; undecodable bytes are replaced.
    """

    notes: List[str] = []
    lines = read_lines(csv_file, encoding=encoding)
    blocks = segment_ibutton_blocks(lines, notes)
    if not _marker_lines(lines, MULTI_SERIAL_MARKER):
        raise MissingSerialError(f"No logger serial number found using keyword '{MULTI_SERIAL_MARKER}'")

    tables = [parse_ibutton_block(block, tz=tz, notes=notes) for block in blocks]
    environment = concat_environment_tables(tables)

    metadata = source_metadata(csv_file, parse_name)
    metadata["serials"] = [block_serial(block) for block in blocks]
    return make_result(environment, IBUTTON_UNITS, notes=notes, metadata=metadata)


def excel_serial_to_datetime(values: pd.Series, origin: str = DEFAULT_EXCEL_ORIGIN) -> pd.Series:
    """Convert Excel serial day counts into datetimes rounded to the second."""

    days = pd.to_numeric(values, errors="coerce").to_numpy(dtype="float64")
    seconds = np.round(days * SECONDS_PER_DAY)
    converted = pd.to_datetime(seconds, unit="s", origin=pd.Timestamp(origin))
    return pd.Series(converted, index=values.index)


def read_ibutton_single_csv(
    csv_file: str,
    parse_name: Optional[NameParser] = None,
    excel_origin: str = DEFAULT_EXCEL_ORIGIN,
    tz: Optional[str] = None,
    encoding: str = IBUTTON_ENCODING,
) -> ParsedLoggerData:
    """Parse an iButton export holding the data dump of one logger.

    The timestamp column may have been corrupted into Excel serial dates;
    those are counted in days from ``excel_origin``, which defaults to
    ``"1899-12-30"`` but is ``"1904-01-01"`` for files saved by spreadsheets
    using the 1904 date system.
    """

    notes: List[str] = []
    lines = read_lines(csv_file, encoding=encoding)

    starts = _marker_lines(lines, IBUTTON_START_MARKER)
    if starts:
        start = starts[0]
    else:
        start = 0
        warn_anomaly(
            notes,
            f"Could not determine start of data set. Tried keyword '{IBUTTON_START_MARKER}'. Using line 1.",
        )
    end = next((eof for eof in _end_of_file_lines(lines) if eof > start), None)
    if end is None:
        raise MalformedFileError("End-of-file marker precedes the start of the data set.")

    window = lines[start:end]
    excel_date = False
    data_start = _first_match(window, _TEXT_TIMESTAMP_ROW_RE)
    if data_start is None:
        data_start = _first_match(window, _EXCEL_TIMESTAMP_ROW_RE)
        excel_date = True
    if data_start is None:
        raise UnrecognizedTimestampError(
            "Unrecognized timestamp format, or timestamp not in first column."
        )
    warn_anomaly(notes, STATIC_COLUMNS_WARNING)

    frame = _read_data_rows(window[data_start:])
    if excel_date:
        timestamps = excel_serial_to_datetime(frame["Timestamp"], excel_origin)
    else:
        timestamps = parse_timestamps(frame["Timestamp"], SINGLE_TIMESTAMP_FORMATS)

    serial_pos = _marker_lines(lines, SINGLE_SERIAL_MARKER)
    if not serial_pos:
        raise MissingSerialError(f"No logger serial number found using keyword '{SINGLE_SERIAL_MARKER}'")
    parts = lines[serial_pos[0]].replace('"', "").split(",", 1)
    serial = parts[1].strip() if len(parts) > 1 else ""
    if not serial:
        raise MissingSerialError(f"Empty logger serial number on line {serial_pos[0] + 1}")
    dprint(f"[ibutton] serial={serial} excel_date={excel_date} rows={len(frame)}")

    environment = build_environment_table(
        timestamps,
        {"Temp": frame["Temp"], "RH": frame["RH"]},
        serial=serial,
        timezone=tz,
    )

    metadata = source_metadata(csv_file, parse_name)
    metadata.update(
        {
            "serial": serial,
            "timestamp_encoding": "excel" if excel_date else "text",
            "excel_origin": excel_origin,
        }
    )
    return make_result(environment, IBUTTON_UNITS, notes=notes, metadata=metadata)


__all__ = [
    "parse_ibutton_block",
    "read_ibutton_csv",
    "read_ibutton_single_csv",
]
