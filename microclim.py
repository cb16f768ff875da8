"""Normalized result object and shared helpers for microclimate logger ingest.

Every vendor parser (``hobo_ingest``, ``inkbird_ingest``, ``ibutton_ingest``)
returns a :class:`ParsedLoggerData`. The helpers in this module build the
environment table, the units lookup and the warning list the same way for all
formats so that the shape of the result never depends on the vendor.
"""

from __future__ import annotations

import os
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

# Debug toggler: set MICROCLIM_DEBUG=1 to enable verbose parse logs
DEBUG = os.getenv("MICROCLIM_DEBUG", "0") == "1"


def dprint(*args, **kwargs):
    if DEBUG:
        print(*args, **kwargs)


TIME_COMPONENTS: Tuple[str, ...] = ("Year", "Month", "Day", "Hour", "Minute", "Second")
MEASUREMENTS: Tuple[str, ...] = ("Temp", "RH", "Illuminance")
ENV_COLUMNS: Tuple[str, ...] = TIME_COMPONENTS + ("Timezone", "Timestamp", "LoggerSerial") + MEASUREMENTS
EVENT_COLUMNS: Tuple[str, ...] = ("Timestamp", "EventType", "LoggerSerial")
UNITS_COLUMNS: Tuple[str, ...] = ("Variable", "Unit")

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

NameParser = Callable[[str], Mapping[str, object]]


class LoggerParseError(ValueError):
    """Base class for files a vendor parser cannot handle."""


class AmbiguousSerialError(LoggerParseError):
    """More than one distinct serial number where exactly one is expected."""


class MissingSerialError(LoggerParseError):
    """No serial number token could be found."""


class MissingTimezoneError(LoggerParseError):
    """No timezone offset token could be found."""


class MissingUnitError(LoggerParseError):
    """A measurement header carries none of the known unit substrings."""


class MalformedFileError(LoggerParseError):
    """Structural markers are absent or inconsistent."""


class UnrecognizedTimestampError(LoggerParseError):
    """No known timestamp encoding matches the data rows."""


class LoggerFormatWarning(UserWarning):
    """Non-fatal anomaly found while parsing a logger export."""


@dataclass(frozen=True)
class ParsedLoggerData:
    """Readings, device events and units parsed from one logger export."""

    environment_table: pd.DataFrame
    units_table: pd.DataFrame
    event_table: Optional[pd.DataFrame] = None
    warnings: Tuple[str, ...] = ()
    metadata: Mapping[str, object] = field(default_factory=dict)


def _require_result(x: object) -> ParsedLoggerData:
    if not isinstance(x, ParsedLoggerData):
        raise TypeError(f"expected ParsedLoggerData, got {type(x).__name__}")
    return x


def get_env_df(x: ParsedLoggerData) -> pd.DataFrame:
    """Return the environmental readings of a parsed logger export."""

    return _require_result(x).environment_table.copy()


def get_event_df(x: ParsedLoggerData) -> Optional[pd.DataFrame]:
    """Return the device-event table, or ``None`` when the format has none."""

    events = _require_result(x).event_table
    return None if events is None else events.copy()


def get_units_df(x: ParsedLoggerData) -> pd.DataFrame:
    return _require_result(x).units_table.copy()


def warn_anomaly(collected: List[str], message: str) -> None:
    """Report a non-fatal anomaly to the caller and keep it for the result."""

    dprint(f"[warn] {message}")
    warnings.warn(message, LoggerFormatWarning, stacklevel=3)
    collected.append(message)


def read_text(path: str, encoding: str = "utf-8-sig") -> str:
    """Read a logger export as text, dropping stray null bytes.

    ``encoding`` differs by vendor. HOBO and Ink-Bird exports are UTF-8 and
    may start with a BOM, which the default ``utf-8-sig`` strips. iButton
    dumps can carry Latin-1 bytes, so their readers pass ``latin-1`` (see
    :func:`read_lines`). Bytes that do not decode are replaced, not raised.
    """

    with open(path, "rb") as file:
        raw = file.read()
    cleaned = raw.replace(b"\x00", b"")
    return cleaned.decode(encoding, errors="replace")


def read_lines(path: str, encoding: str = "latin-1") -> List[str]:
    return read_text(path, encoding=encoding).splitlines()


def source_metadata(path: str, parse_name: Optional[NameParser] = None) -> Dict[str, object]:
    """Return file-level metadata, merged with the optional name hook output."""

    name = Path(path).name
    meta: Dict[str, object] = {"source": name}
    if parse_name is not None:
        meta.update(dict(parse_name(name)))
    return meta


def parse_timestamps(values: pd.Series, formats: Iterable[str]) -> pd.Series:
    """Parse text timestamps trying ``formats`` in order, first match per row."""

    text = values.astype("string").str.strip().fillna("")
    parsed = pd.Series(pd.NaT, index=values.index, dtype="datetime64[ns]")
    for fmt in formats:
        pending = (parsed.isna() & (text != "")).astype(bool)
        if not pending.any():
            break
        attempt = pd.to_datetime(text[pending], format=fmt, errors="coerce")
        hits = attempt.notna()
        if hits.any():
            dprint(f"[timestamps] {int(hits.sum())} rows matched '{fmt}'")
            parsed.loc[attempt.index[hits]] = attempt[hits]
    return parsed


def build_environment_table(
    timestamps: pd.Series,
    readings: Mapping[str, pd.Series],
    serial: object = None,
    timezone: Optional[str] = None,
    require_serial: bool = True,
    require_timezone: bool = False,
) -> pd.DataFrame:
    """Return the normalized environment table for one record set.

    Parameters
    ----------
    timestamps:
        Parsed datetimes (naive or tz-aware) aligned with ``readings``.
    readings:
        Numeric series keyed by measurement name (``Temp``, ``RH``,
        ``Illuminance``). Only the keys present become columns.
    serial, timezone:
        Scalars repeated on every row; ``None`` is stored as missing.
    require_serial, require_timezone:
        Whether a missing serial or timezone makes a row incomplete.

    Rows missing a timestamp or any provided reading are dropped. Time
    components are decomposed from the same value that is formatted into
    ``Timestamp`` so they always recombine to it.
    """

    frame = pd.DataFrame(index=timestamps.index)
    frame["__ts"] = timestamps
    frame["Timezone"] = timezone
    frame["LoggerSerial"] = serial
    for name in MEASUREMENTS:
        if name in readings:
            frame[name] = pd.to_numeric(readings[name], errors="coerce").astype("float64")

    subset = ["__ts"] + [name for name in MEASUREMENTS if name in readings]
    if require_serial:
        subset.append("LoggerSerial")
    if require_timezone:
        subset.append("Timezone")
    before = len(frame)
    frame = frame.dropna(subset=subset)
    dprint(f"[env] kept {len(frame)} of {before} rows (required: {subset})")

    ts = frame["__ts"]
    out = pd.DataFrame(index=frame.index)
    if len(frame):
        out["Year"] = ts.dt.year.astype("int64")
        out["Month"] = ts.dt.month.astype("int64")
        out["Day"] = ts.dt.day.astype("int64")
        out["Hour"] = ts.dt.hour.astype("int64")
        out["Minute"] = ts.dt.minute.astype("int64")
        out["Second"] = ts.dt.second.astype("int64")
        out["Timestamp"] = ts.dt.strftime(TIMESTAMP_FORMAT)
    else:
        for name in TIME_COMPONENTS:
            out[name] = pd.Series(dtype="int64")
        out["Timestamp"] = pd.Series(dtype="object")
    out["Timezone"] = frame["Timezone"]
    out["LoggerSerial"] = frame["LoggerSerial"]
    for name in MEASUREMENTS:
        if name in frame.columns:
            out[name] = frame[name]

    ordered = [col for col in ENV_COLUMNS if col in out.columns]
    return out[ordered].reset_index(drop=True)


def concat_environment_tables(tables: Sequence[pd.DataFrame]) -> pd.DataFrame:
    """Concatenate per-record-set tables in source order."""

    if not tables:
        return build_environment_table(pd.Series(dtype="datetime64[ns]"), {})
    combined = pd.concat(list(tables), ignore_index=True, sort=False)
    ordered = [col for col in ENV_COLUMNS if col in combined.columns]
    return combined[ordered]


def build_units_table(environment: pd.DataFrame, units: Mapping[str, str]) -> pd.DataFrame:
    """Return the ``Variable``/``Unit`` rows for every populated measurement."""

    rows: List[Dict[str, str]] = []
    for name in MEASUREMENTS:
        if name not in environment.columns or not environment[name].notna().any():
            continue
        if name not in units:
            raise MissingUnitError(f"No unit recorded for populated column '{name}'")
        rows.append({"Variable": name, "Unit": units[name]})
    return pd.DataFrame(rows, columns=list(UNITS_COLUMNS))


def make_result(
    environment: pd.DataFrame,
    units: Mapping[str, str],
    events: Optional[pd.DataFrame] = None,
    notes: Sequence[str] = (),
    metadata: Optional[Mapping[str, object]] = None,
) -> ParsedLoggerData:
    return ParsedLoggerData(
        environment_table=environment,
        units_table=build_units_table(environment, units),
        event_table=events,
        warnings=tuple(notes),
        metadata=dict(metadata or {}),
    )


__all__ = [
    "AmbiguousSerialError",
    "LoggerFormatWarning",
    "LoggerParseError",
    "MalformedFileError",
    "MissingSerialError",
    "MissingTimezoneError",
    "MissingUnitError",
    "ParsedLoggerData",
    "UnrecognizedTimestampError",
    "get_env_df",
    "get_event_df",
    "get_units_df",
]
