"""Unit vocabularies and conversions for logger measurement columns."""

import re
from typing import Dict, Iterable, Optional, Tuple

import numpy as np
import pandas as pd


CELSIUS = "deg C"
FAHRENHEIT = "deg F"
PERCENT = "percent (%)"
LUX = "lux"
LUMEN_PER_SQFT = "lumen/ft^2"

# 1 lumen per square foot expressed in lux.
LUX_PER_LUMEN_SQFT = 10.7639104

UNITS_OUT_MODES: Dict[str, str] = {
    "as-is": "as-is",
    "as.is": "as-is",
    "as_is": "as-is",
    "metric": "metric",
    "imperial": "imperial",
}

# Header substrings that identify the unit of a column, first match wins.
# The single-character wildcard absorbs the degree sign, which some exports
# write as mojibake ("Â°").
TEMP_UNIT_PATTERNS: Tuple[Tuple[re.Pattern, str], ...] = (
    (re.compile(r"Temp, .{1,2}F"), FAHRENHEIT),
    (re.compile(r"Temp, .{1,2}C"), CELSIUS),
)
ILLUMINANCE_UNIT_PATTERNS: Tuple[Tuple[re.Pattern, str], ...] = (
    (re.compile(r"Intensity, lum/ft"), LUMEN_PER_SQFT),
    (re.compile(r"Intensity, Lux"), LUX),
)

METRIC_UNITS = {"Temp": CELSIUS, "Illuminance": LUX}
IMPERIAL_UNITS = {"Temp": FAHRENHEIT, "Illuminance": LUMEN_PER_SQFT}


def resolve_units_out(units_out: str) -> str:
    """Return the canonical unit output mode or raise ``ValueError``."""

    key = str(units_out).strip().lower()
    if key not in UNITS_OUT_MODES:
        raise ValueError(
            f"units_out must be one of 'as-is', 'metric', 'imperial'; got {units_out!r}"
        )
    return UNITS_OUT_MODES[key]


def detect_unit(header_bits: Iterable[str], patterns) -> Optional[str]:
    """Return the unit whose pattern first matches any header token."""

    bits = list(header_bits)
    for pattern, unit in patterns:
        if any(pattern.search(bit) for bit in bits):
            return unit
    return None


def target_unit(variable: str, detected: str, mode: str) -> str:
    if mode == "metric":
        return METRIC_UNITS.get(variable, detected)
    if mode == "imperial":
        return IMPERIAL_UNITS.get(variable, detected)
    return detected


def _as_float(values: pd.Series) -> np.ndarray:
    return np.asarray(pd.to_numeric(values, errors="coerce"), dtype="float64")


def convert_temperature(values: pd.Series, from_unit: str, to_unit: str) -> pd.Series:
    """Convert a temperature series between ``deg C`` and ``deg F``."""

    data = _as_float(values)
    if from_unit == to_unit:
        converted = data
    elif from_unit == FAHRENHEIT and to_unit == CELSIUS:
        converted = (data - 32.0) * 5.0 / 9.0
    elif from_unit == CELSIUS and to_unit == FAHRENHEIT:
        converted = data * 9.0 / 5.0 + 32.0
    else:
        raise ValueError(f"Cannot convert temperature from {from_unit!r} to {to_unit!r}")
    return pd.Series(converted, index=values.index, dtype="float64")


def convert_illuminance(values: pd.Series, from_unit: str, to_unit: str) -> pd.Series:
    """Convert an illuminance series between ``lux`` and ``lumen/ft^2``."""

    data = _as_float(values)
    if from_unit == to_unit:
        converted = data
    elif from_unit == LUMEN_PER_SQFT and to_unit == LUX:
        converted = data * LUX_PER_LUMEN_SQFT
    elif from_unit == LUX and to_unit == LUMEN_PER_SQFT:
        converted = data / LUX_PER_LUMEN_SQFT
    else:
        raise ValueError(f"Cannot convert illuminance from {from_unit!r} to {to_unit!r}")
    return pd.Series(converted, index=values.index, dtype="float64")
