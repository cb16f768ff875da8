"""Ink-Bird THC-4 text export ingestion.

The export carries a fixed 14-line preamble whose last line holds the column
headers, followed by whitespace-separated rows::

        No.    Time                   Temperature°C    Humidity%
    1    2021-03-04 10:00:00    21.5    45.0

Temperatures are always degrees Celsius and the export has no serial number.
"""

from __future__ import annotations

import io
import re
from typing import Dict, List, Optional

import pandas as pd

from microclim import (
    MalformedFileError,
    NameParser,
    ParsedLoggerData,
    build_environment_table,
    dprint,
    make_result,
    parse_timestamps,
    read_text,
    source_metadata,
)
from unit_conversion import CELSIUS, PERCENT


INKBIRD_PREAMBLE_LINES = 14
INKBIRD_TIMESTAMP_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y/%m/%d %H:%M:%S")
TEMP_HEADER = "Temp"
HUMIDITY_HEADER = "Humidity"

_HEADER_SPLIT_RE = re.compile(r"\s{2,}")


def inkbird_column_names(header_line: str) -> List[str]:
    """Split the preamble header on runs of two or more whitespace characters."""

    tokens = _HEADER_SPLIT_RE.split(header_line.rstrip())
    if tokens and tokens[0] == "":
        tokens = tokens[1:]
    return tokens


def _read_rows(lines: List[str]) -> pd.DataFrame:
    body = "\n".join(lines[INKBIRD_PREAMBLE_LINES:])
    if not body.strip():
        return pd.DataFrame(columns=[0, 1, 2])
    return pd.read_csv(io.StringIO(body), sep=r"\s+", header=None, dtype=str, engine="python")


def _merged_column(raw: pd.DataFrame, position: int) -> Optional[pd.Series]:
    """Return the column at ``position`` once date and time count as one."""

    source = position if position < 2 else position + 1
    if position == 1 or source not in raw.columns:
        return None
    return raw[source]


def read_inkbird_txt(
    txt_file: str, parse_name: Optional[NameParser] = None, tz: Optional[str] = None
) -> ParsedLoggerData:
    """Parse an Ink-Bird THC-4 text export.

    ``tz`` is stored verbatim in the ``Timezone`` column; it is not validated
    and is not used to shift the timestamps.
    """

    lines = read_text(txt_file).splitlines()
    header_line = lines[INKBIRD_PREAMBLE_LINES - 1] if len(lines) >= INKBIRD_PREAMBLE_LINES else ""
    col_names = inkbird_column_names(header_line)
    dprint(f"[inkbird] columns={col_names}")

    raw = _read_rows(lines)
    if not {1, 2}.issubset(raw.columns):
        raise MalformedFileError("Ink-Bird rows must carry a date and a time column")
    stamp_text = raw[1].astype("string") + " " + raw[2].astype("string")
    timestamps = parse_timestamps(stamp_text, INKBIRD_TIMESTAMP_FORMATS)

    readings: Dict[str, pd.Series] = {}
    units: Dict[str, str] = {}
    for position, name in enumerate(col_names):
        if TEMP_HEADER in name and "Temp" not in readings:
            values = _merged_column(raw, position)
            if values is not None:
                readings["Temp"] = pd.to_numeric(values, errors="coerce")
                units["Temp"] = CELSIUS
        elif HUMIDITY_HEADER in name and "RH" not in readings:
            values = _merged_column(raw, position)
            if values is not None:
                readings["RH"] = pd.to_numeric(values, errors="coerce")
                units["RH"] = PERCENT

    environment = build_environment_table(
        timestamps, readings, serial=None, timezone=tz, require_serial=False
    )
    return make_result(environment, units, metadata=source_metadata(txt_file, parse_name))


__all__ = ["read_inkbird_txt"]
