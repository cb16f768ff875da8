import sys
from pathlib import Path

import pandas as pd
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from ibutton_ingest import (
    excel_serial_to_datetime,
    parse_ibutton_block,
    read_ibutton_csv,
    read_ibutton_single_csv,
)
from microclim import (
    LoggerFormatWarning,
    MalformedFileError,
    MissingSerialError,
    UnrecognizedTimestampError,
    get_env_df,
)


SERIAL_A = "5D0000003E9ADB41"
SERIAL_B = "7A00000041D3E541"

MULTI_LINES = [
    "Date/time logger downloaded:,06/20/19 10:00",
    f'Logger serial number:,"{SERIAL_A}"',
    "Date/Time,Temp,RH,Extra",
    "2019-06-15 10:00:00,21.50,55.20,x",
    "2019-06-15 10:30:00,21.75,55.00,x",
    "",
    "",
    "Date/time logger downloaded:,06/20/19 10:05",
    f'Logger serial number:,"{SERIAL_B}"',
    "Date/Time,Temp,RH",
    "6/15/2019 10:00,20.00,60.10",
    "6/15/2019 10:30,20.25,60.00",
    "download complete",
]


def _write(tmp_path, lines, name="ibuttons.csv", encoding="utf-8"):
    path = tmp_path / name
    path.write_text("\n".join([*lines, ""]), encoding=encoding)
    return str(path)


def test_read_ibutton_csv_concatenates_blocks_in_file_order(tmp_path):
    path = _write(tmp_path, MULTI_LINES)

    with pytest.warns(LoggerFormatWarning):
        result = read_ibutton_csv(path)
    env = get_env_df(result)

    assert env["LoggerSerial"].tolist() == [SERIAL_A, SERIAL_A, SERIAL_B, SERIAL_B]
    assert env["Timestamp"].tolist() == [
        "2019-06-15 10:00:00",
        "2019-06-15 10:30:00",
        "2019-06-15 10:00:00",
        "2019-06-15 10:30:00",
    ]
    assert env["Temp"].tolist() == [21.5, 21.75, 20.0, 20.25]
    assert env["RH"].tolist() == [55.2, 55.0, 60.1, 60.0]
    assert "Extra" not in env.columns
    assert result.event_table is None
    assert result.metadata["serials"] == [SERIAL_A, SERIAL_B]
    assert result.units_table["Unit"].tolist() == ["deg C", "percent (%)"]
    assert any("static column" in note for note in result.warnings)


def test_read_ibutton_csv_serial_constant_per_block(tmp_path):
    path = _write(tmp_path, MULTI_LINES)

    with pytest.warns(LoggerFormatWarning):
        env = read_ibutton_csv(path).environment_table

    # Blocks are contiguous: one run per logger.
    changes = (env["LoggerSerial"] != env["LoggerSerial"].shift()).sum()
    assert changes == 2


def test_read_ibutton_csv_end_marker_fallback_and_timezone_label(tmp_path):
    lines = MULTI_LINES[:-1] + ["-end-"]
    path = _write(tmp_path, lines)

    with pytest.warns(LoggerFormatWarning):
        env = read_ibutton_csv(path, tz="Etc/GMT+5").environment_table

    assert len(env) == 4
    assert set(env["Timezone"]) == {"Etc/GMT+5"}


def test_read_ibutton_csv_handles_non_utf8_bytes(tmp_path):
    lines = list(MULTI_LINES)
    lines[2] = "Date/Time,Temp (°C),RH"
    path = _write(tmp_path, lines, encoding="latin-1")

    with pytest.warns(LoggerFormatWarning):
        env = read_ibutton_csv(path).environment_table

    assert len(env) == 4


def test_read_ibutton_csv_requires_start_marker(tmp_path):
    path = _write(tmp_path, [line for line in MULTI_LINES if "downloaded" not in line])

    with pytest.raises(MalformedFileError):
        read_ibutton_csv(path)


def test_read_ibutton_csv_requires_end_marker(tmp_path):
    path = _write(tmp_path, MULTI_LINES[:-1])

    with pytest.raises(MalformedFileError):
        read_ibutton_csv(path)


def test_read_ibutton_csv_rejects_unequal_markers(tmp_path):
    lines = MULTI_LINES[:6] + ["download complete", "", "download complete"]
    path = _write(tmp_path, lines)

    with pytest.raises(MalformedFileError):
        read_ibutton_csv(path)


def test_read_ibutton_csv_requires_serial(tmp_path):
    lines = [line for line in MULTI_LINES if "serial" not in line]
    path = _write(tmp_path, lines)

    with pytest.raises(MissingSerialError):
        read_ibutton_csv(path)


def test_read_ibutton_csv_warns_on_data_in_block_gap(tmp_path):
    lines = list(MULTI_LINES)
    lines[6] = "2019-06-15 11:00:00,21.00,55.00"
    path = _write(tmp_path, lines)

    with pytest.warns(LoggerFormatWarning, match="gap"):
        result = read_ibutton_csv(path)

    assert any("gap" in note for note in result.warnings)


def test_parse_ibutton_block_discards_trailing_columns():
    block = MULTI_LINES[:6]
    notes = []

    with pytest.warns(LoggerFormatWarning):
        env = parse_ibutton_block(block, notes=notes)

    assert env.columns[-2:].tolist() == ["Temp", "RH"]
    assert env["LoggerSerial"].unique().tolist() == [SERIAL_A]
    assert len(notes) == 1


def test_parse_ibutton_block_requires_data_rows():
    with pytest.raises(MalformedFileError):
        parse_ibutton_block(MULTI_LINES[:3])


SINGLE_TEXT_LINES = [
    '"Serial No:","2F00000012345678"',
    "Date/time logger downloaded:,2019/06/20",
    "Date/Time,Unit,Value",
    "2019/06/15 10:00:00,21.50,55.20",
    "2019/06/15 10:30:00,21.75,55.00",
    "-end-",
]


def test_read_ibutton_single_csv_text_timestamps(tmp_path):
    path = _write(tmp_path, SINGLE_TEXT_LINES, name="single.csv")

    with pytest.warns(LoggerFormatWarning):
        result = read_ibutton_single_csv(path)
    env = result.environment_table

    assert env["Timestamp"].tolist() == ["2019-06-15 10:00:00", "2019-06-15 10:30:00"]
    assert set(env["LoggerSerial"]) == {"2F00000012345678"}
    assert result.metadata["timestamp_encoding"] == "text"
    assert result.event_table is None


def test_read_ibutton_single_csv_excel_serial_dates(tmp_path):
    lines = [
        "Serial No:,2F00000012345678",
        "Date/time logger downloaded:,x",
        "1.5,21.00,55.00",
        "43631.25,22.00,54.00",
        "download complete",
    ]
    path = _write(tmp_path, lines, name="excel.csv")

    with pytest.warns(LoggerFormatWarning):
        result = read_ibutton_single_csv(path)
    env = result.environment_table

    assert env["Timestamp"].tolist() == ["1899-12-31 12:00:00", "2019-06-15 06:00:00"]
    assert env["Temp"].tolist() == [21.0, 22.0]
    assert result.metadata["timestamp_encoding"] == "excel"


def test_read_ibutton_single_csv_1904_origin(tmp_path):
    lines = [
        "Serial No:,2F00000012345678",
        "1.5,21.00,55.00",
        "download complete",
    ]
    path = _write(tmp_path, lines, name="mac.csv")

    with pytest.warns(LoggerFormatWarning, match="start of data set"):
        result = read_ibutton_single_csv(path, excel_origin="1904-01-01")

    assert result.environment_table["Timestamp"].tolist() == ["1904-01-02 12:00:00"]
    assert any("Using line 1" in note for note in result.warnings)


def test_excel_serial_to_datetime_half_day():
    converted = excel_serial_to_datetime(pd.Series(["1.5", "0"]))
    assert converted.tolist() == [
        pd.Timestamp("1899-12-31 12:00:00"),
        pd.Timestamp("1899-12-30 00:00:00"),
    ]


def test_read_ibutton_single_csv_unrecognized_timestamps(tmp_path):
    lines = [
        "Serial No:,2F00000012345678",
        "Date/time logger downloaded:,x",
        "15.06.2019 10:00,21.00,55.00",
        "download complete",
    ]
    path = _write(tmp_path, lines, name="bad.csv")

    with pytest.raises(UnrecognizedTimestampError):
        read_ibutton_single_csv(path)


def test_read_ibutton_single_csv_requires_serial(tmp_path):
    path = _write(tmp_path, SINGLE_TEXT_LINES[1:], name="noserial.csv")

    with pytest.warns(LoggerFormatWarning):
        with pytest.raises(MissingSerialError):
            read_ibutton_single_csv(path)


def test_read_ibutton_single_csv_requires_end_marker(tmp_path):
    path = _write(tmp_path, SINGLE_TEXT_LINES[:-1], name="noend.csv")

    with pytest.raises(MalformedFileError):
        read_ibutton_single_csv(path)


def test_parse_ibutton_block_accepts_whole_number_readings():
    block = [
        "Date/time logger downloaded:,06/20/19 10:00",
        f'Logger serial number:,"{SERIAL_A}"',
        "Date/Time,Temp,RH",
        "2019-06-15 10:00:00,21.5,100",
        "2019-06-15 10:30:00,21.5,99.5",
        "2019-06-15 11:00:00,22,98",
    ]

    with pytest.warns(LoggerFormatWarning):
        env = parse_ibutton_block(block)

    assert env["Timestamp"].tolist() == [
        "2019-06-15 10:00:00",
        "2019-06-15 10:30:00",
        "2019-06-15 11:00:00",
    ]
    assert env["RH"].tolist() == [100.0, 99.5, 98.0]
    assert env["Temp"].tolist() == [21.5, 21.5, 22.0]


def test_read_ibutton_csv_three_blocks(tmp_path):
    serial_c = "9C0000004A1B2C41"
    lines = MULTI_LINES[:-1] + [
        "",
        "",
        "Date/time logger downloaded:,06/20/19 10:10",
        f'Logger serial number:,"{serial_c}"',
        "Date/Time,Temp,RH",
        "2019-06-15 10:00:00,19.00,65.00",
        "2019-06-15 10:30:00,19.25,64.50",
        "download complete",
    ]
    path = _write(tmp_path, lines)

    with pytest.warns(LoggerFormatWarning):
        result = read_ibutton_csv(path)
    env = result.environment_table

    assert result.metadata["serials"] == [SERIAL_A, SERIAL_B, serial_c]
    assert env["LoggerSerial"].tolist() == [SERIAL_A] * 2 + [SERIAL_B] * 2 + [serial_c] * 2
    assert env["Temp"].tolist() == [21.5, 21.75, 20.0, 20.25, 19.0, 19.25]
    assert not any("gap" in note for note in result.warnings)


def test_read_ibutton_single_csv_excel_midnight_serial(tmp_path):
    lines = [
        "Serial No:,2F00000012345678",
        "Date/time logger downloaded:,x",
        "43631,21.00,55.00",
        "43631.25,22.00,54.00",
        "download complete",
    ]
    path = _write(tmp_path, lines, name="midnight.csv")

    with pytest.warns(LoggerFormatWarning):
        result = read_ibutton_single_csv(path)
    env = result.environment_table

    assert env["Timestamp"].tolist() == ["2019-06-15 00:00:00", "2019-06-15 06:00:00"]
    assert env["Temp"].tolist() == [21.0, 22.0]
    assert result.metadata["timestamp_encoding"] == "excel"
