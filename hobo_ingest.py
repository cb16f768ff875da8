"""Onset HOBO pendant logger CSV ingestion.

A HOBO export starts with a plot-title line followed by a quoted header line
whose tokens carry the column names together with the logger serial number
(``S/N: 10234567``) and the UTC offset of the timestamps (``GMT-05:00``)::

    "Plot Title: 10234567"
    "#","Date Time, GMT-05:00","Temp, °F (LGR S/N: 10234567, SEN S/N: 10234567)",...
    1,06/15/19 10:00:00 AM,72.5,...

Rows that only carry a device event (``Coupler Attached`` and friends) have no
readings; they are split off into the event table.
"""

from __future__ import annotations

import io
import re
from typing import Dict, Iterable, List, Optional

import pandas as pd

from microclim import (
    EVENT_COLUMNS,
    TIMESTAMP_FORMAT,
    AmbiguousSerialError,
    MissingSerialError,
    MissingTimezoneError,
    MissingUnitError,
    ParsedLoggerData,
    build_environment_table,
    dprint,
    make_result,
    parse_timestamps,
    read_text,
    source_metadata,
)
from unit_conversion import (
    ILLUMINANCE_UNIT_PATTERNS,
    PERCENT,
    TEMP_UNIT_PATTERNS,
    convert_illuminance,
    convert_temperature,
    detect_unit,
    resolve_units_out,
    target_unit,
)


HOBO_EVENT_NAMES = (
    "Host Connected",
    "Coupler Detached",
    "Coupler Attached",
    "End Of File",
    "Stopped",
)

_SERIAL_RE = re.compile(r"(?<=S/N:\s)[0-9]+")
_GMT_RE = re.compile(r"GMT[+-][0-9][0-9]")

TIMESTAMP_HEADER = "Date Time"
TEMP_HEADER = "Temp"
RH_HEADER = "RH"
ILLUMINANCE_HEADER = "Intensity"

DATE_ORDERS: Dict[str, str] = {
    "ymd": "ymd",
    "year-month-day": "ymd",
    "mdy": "mdy",
    "month-day-year": "mdy",
    "dmy": "dmy",
    "day-month-year": "dmy",
}

_CLOCK_FORMATS = ("%H:%M:%S", "%I:%M:%S %p", "%H:%M", "%I:%M %p")
_DATE_SEPARATORS = ("/", "-", ".")


def resolve_dateorder(dateorder: str) -> str:
    key = str(dateorder).strip().lower()
    if key not in DATE_ORDERS:
        raise ValueError(
            f"dateorder must be one of 'ymd', 'mdy', 'dmy'; got {dateorder!r}"
        )
    return DATE_ORDERS[key]


def hobo_datetime_formats(order: str) -> List[str]:
    """Return candidate ``strftime`` formats for a date component order."""

    formats: List[str] = []
    for year in ("%Y", "%y"):
        fields = {"y": year, "m": "%m", "d": "%d"}
        for sep in _DATE_SEPARATORS:
            date = sep.join(fields[c] for c in order)
            for clock in _CLOCK_FORMATS:
                formats.append(f"{date} {clock}")
    return formats


def split_header(line: str) -> List[str]:
    """Split the quoted HOBO header line into its column tokens."""

    if not line.strip():
        return []
    frame = pd.read_csv(
        io.StringIO(line),
        header=None,
        dtype=str,
        keep_default_na=False,
        skipinitialspace=True,
    )
    return [str(token).strip() for token in frame.iloc[0].tolist()]


def _find_token(header_bits: Iterable[str], needle: str) -> Optional[int]:
    """Return the position of the first header token containing ``needle``."""

    for idx, bit in enumerate(header_bits):
        if needle in bit:
            return idx
    return None


def extract_serial(header_bits: Iterable[str]) -> str:
    serials: List[str] = []
    for bit in header_bits:
        for match in _SERIAL_RE.findall(bit):
            if match not in serials:
                serials.append(match)
    if not serials:
        raise MissingSerialError("No 'S/N: <digits>' token found in HOBO header")
    if len(serials) > 1:
        raise AmbiguousSerialError(
            f"Multiple serial numbers in HOBO header: {', '.join(serials)}"
        )
    return serials[0]


def extract_timezone_token(header_bits: List[str]) -> str:
    idx = _find_token(header_bits, TIMESTAMP_HEADER)
    match = _GMT_RE.search(header_bits[idx]) if idx is not None else None
    if match is None:
        raise MissingTimezoneError(
            f"No 'GMT+HH' offset found in the '{TIMESTAMP_HEADER}' header token"
        )
    return match.group(0)


def olson_timezone(token: str) -> str:
    """Convert a ``GMT+05`` style token into an ``Etc/GMT+5`` identifier."""

    sign, hours = token[3], token[4:6]
    if hours[0] == "0":
        return f"Etc/GMT{sign}{hours[1]}"
    return f"Etc/{token}"


def _column(raw: pd.DataFrame, idx: Optional[int]) -> pd.Series:
    if idx is None or idx not in raw.columns:
        return pd.Series(pd.NA, index=raw.index, dtype="object")
    return raw[idx]


def _read_rows(lines: List[str]) -> pd.DataFrame:
    body = "\n".join(lines[2:])
    if not body.strip():
        return pd.DataFrame()
    return pd.read_csv(io.StringIO(body), header=None, dtype=str, skip_blank_lines=True)


def _melt_events(
    raw: pd.DataFrame, header_bits: List[str], stamps: pd.Series, serial: str
) -> Optional[pd.DataFrame]:
    """Return device events in long form, or ``None`` without event columns."""

    found: Dict[str, int] = {}
    for name in HOBO_EVENT_NAMES:
        idx = _find_token(header_bits, name)
        if idx is not None:
            found[name] = idx
    if not found:
        return None

    wide = pd.DataFrame({"Timestamp": stamps}, index=raw.index)
    for name, idx in found.items():
        wide[name] = _column(raw, idx)
    wide["__row"] = range(len(wide))

    long = wide.melt(
        id_vars=["__row", "Timestamp"],
        value_vars=list(found),
        var_name="EventType",
        value_name="__value",
    )
    long = long.dropna(subset=["__value"])
    order = {name: pos for pos, name in enumerate(HOBO_EVENT_NAMES)}
    long["__order"] = long["EventType"].map(order)
    long = long.sort_values(["__row", "__order"], kind="stable")
    long["LoggerSerial"] = serial
    dprint(f"[hobo] {len(long)} device events in columns {list(found)}")
    return long[list(EVENT_COLUMNS)].reset_index(drop=True)


def read_hobo_csv(
    csv_file: str, dateorder: str = "ymd", units_out: str = "as-is"
) -> ParsedLoggerData:
    """Parse a HOBO pendant logger CSV export.

    Parameters
    ----------
    csv_file:
        Path to the HOBO CSV export.
    dateorder:
        Order of the year, month and day components of the timestamps:
        ``"ymd"``, ``"mdy"`` or ``"dmy"``.
    units_out:
        ``"as-is"`` keeps the units of the file, ``"metric"`` converts to
        degrees Celsius and lux, ``"imperial"`` to degrees Fahrenheit and
        lumen per square foot.

    Returns
    -------
    ParsedLoggerData
        Readings, device events (``None`` when the export has no event
        columns) and the units of the emitted measurement columns.
    """

    order = resolve_dateorder(dateorder)
    mode = resolve_units_out(units_out)

    lines = read_text(csv_file).splitlines()
    title = lines[0].strip().strip('"') if lines else ""
    header_bits = split_header(lines[1]) if len(lines) > 1 else []

    serial = extract_serial(header_bits)
    tz_token = extract_timezone_token(header_bits)
    olson = olson_timezone(tz_token)
    dprint(f"[hobo] serial={serial} tz={tz_token} -> {olson} columns={header_bits}")

    raw = _read_rows(lines)
    ts_raw = _column(raw, _find_token(header_bits, TIMESTAMP_HEADER))
    try:
        timestamps = parse_timestamps(ts_raw, hobo_datetime_formats(order)).dt.tz_localize(
            olson, ambiguous="NaT", nonexistent="NaT"
        )
    except KeyError as exc:
        raise MissingTimezoneError(f"Unknown timezone '{olson}' from token '{tz_token}'") from exc

    readings: Dict[str, pd.Series] = {}
    units: Dict[str, str] = {}

    temp_idx = _find_token(header_bits, TEMP_HEADER)
    if temp_idx is not None:
        detected = detect_unit(header_bits, TEMP_UNIT_PATTERNS)
        if detected is None:
            raise MissingUnitError(f"Unknown temperature unit in '{header_bits[temp_idx]}'")
        unit = target_unit("Temp", detected, mode)
        readings["Temp"] = convert_temperature(_column(raw, temp_idx), detected, unit)
        units["Temp"] = unit

    rh_idx = _find_token(header_bits, RH_HEADER)
    if rh_idx is not None:
        readings["RH"] = pd.to_numeric(_column(raw, rh_idx), errors="coerce")
        units["RH"] = PERCENT

    illum_idx = _find_token(header_bits, ILLUMINANCE_HEADER)
    if illum_idx is not None:
        detected = detect_unit(header_bits, ILLUMINANCE_UNIT_PATTERNS)
        if detected is None:
            raise MissingUnitError(f"Unknown illuminance unit in '{header_bits[illum_idx]}'")
        unit = target_unit("Illuminance", detected, mode)
        readings["Illuminance"] = convert_illuminance(_column(raw, illum_idx), detected, unit)
        units["Illuminance"] = unit

    environment = build_environment_table(
        timestamps, readings, serial=serial, timezone=olson, require_timezone=True
    )
    events = _melt_events(raw, header_bits, timestamps.dt.strftime(TIMESTAMP_FORMAT), serial)

    metadata = source_metadata(csv_file)
    metadata.update(
        {
            "plot_title": title,
            "serial": serial,
            "timezone_token": tz_token,
            "timezone": olson,
        }
    )
    return make_result(environment, units, events=events, metadata=metadata)


__all__ = ["HOBO_EVENT_NAMES", "olson_timezone", "read_hobo_csv"]
