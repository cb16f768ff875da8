import sys
from pathlib import Path

import pandas as pd
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from microclim import (
    LoggerFormatWarning,
    MissingUnitError,
    ParsedLoggerData,
    build_environment_table,
    build_units_table,
    get_env_df,
    get_event_df,
    get_units_df,
    make_result,
    parse_timestamps,
    warn_anomaly,
)


def _timestamps(*values):
    return pd.Series(pd.to_datetime(list(values)))


def test_build_environment_table_drops_incomplete_rows():
    ts = pd.Series(pd.to_datetime(["2024-01-01 00:00:00", None, "2024-01-01 00:10:00", "2024-01-01 00:20:00"]))
    temp = pd.Series([4.5, 4.6, None, 4.8])

    env = build_environment_table(ts, {"Temp": temp}, serial="SN-1", timezone="Etc/GMT+0")

    assert env["Timestamp"].tolist() == ["2024-01-01 00:00:00", "2024-01-01 00:20:00"]
    assert env["Temp"].tolist() == [4.5, 4.8]
    assert list(env.columns) == [
        "Year", "Month", "Day", "Hour", "Minute", "Second",
        "Timezone", "Timestamp", "LoggerSerial", "Temp",
    ]


def test_build_environment_table_serial_optional():
    ts = _timestamps("2024-01-01 00:00:00")

    kept = build_environment_table(ts, {"RH": pd.Series([50.0])}, serial=None, require_serial=False)
    dropped = build_environment_table(ts, {"RH": pd.Series([50.0])}, serial=None)

    assert len(kept) == 1
    assert kept["LoggerSerial"].isna().all()
    assert dropped.empty
    assert "Year" in dropped.columns


def test_build_units_table_mirrors_populated_columns():
    env = pd.DataFrame({"Temp": [1.0, 2.0], "RH": [None, None]})

    units = build_units_table(env, {"Temp": "deg C", "RH": "percent (%)"})

    assert units.to_dict("records") == [{"Variable": "Temp", "Unit": "deg C"}]


def test_build_units_table_requires_unit_for_populated_column():
    env = pd.DataFrame({"Illuminance": [10.0]})

    with pytest.raises(MissingUnitError):
        build_units_table(env, {})


def test_parse_timestamps_first_matching_format_wins():
    values = pd.Series(["2024-02-03 04:05:06", "02/03/2024 04:05", "", None, "garbage"])

    parsed = parse_timestamps(values, ["%Y-%m-%d %H:%M:%S", "%m/%d/%Y %H:%M"])

    assert parsed.iloc[0] == pd.Timestamp("2024-02-03 04:05:06")
    assert parsed.iloc[1] == pd.Timestamp("2024-02-03 04:05:00")
    assert parsed.iloc[2:].isna().all()


def test_accessors_reject_other_objects():
    for bogus in (None, {}, pd.DataFrame()):
        with pytest.raises(TypeError):
            get_env_df(bogus)
        with pytest.raises(TypeError):
            get_event_df(bogus)
        with pytest.raises(TypeError):
            get_units_df(bogus)


def test_accessors_return_copies():
    env = build_environment_table(_timestamps("2024-01-01 00:00:00"), {"Temp": pd.Series([1.0])}, serial="A")
    result = make_result(env, {"Temp": "deg C"})

    extracted = get_env_df(result)
    extracted.loc[0, "Temp"] = 99.0

    assert isinstance(result, ParsedLoggerData)
    assert result.environment_table.loc[0, "Temp"] == 1.0
    assert get_event_df(result) is None
    assert get_units_df(result)["Variable"].tolist() == ["Temp"]


def test_warn_anomaly_records_and_warns():
    notes = []

    with pytest.warns(LoggerFormatWarning, match="defaulting"):
        warn_anomaly(notes, "defaulting to line 1")

    assert notes == ["defaulting to line 1"]
