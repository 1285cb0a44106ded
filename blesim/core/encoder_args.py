"""Turn operator tokens into typed encoder arguments."""

from __future__ import annotations

import math
import re
from collections.abc import Callable, Sequence
from typing import Any

from blesim.core.encoders import (
    BatteryLevelArgs,
    BloodPressureArgs,
    HeartRateArgs,
    PulseOximeterArgs,
    TemperatureArgs,
    TextArgs,
    UIntArgs,
    WeightScaleArgs,
)
from blesim.core.errors import InsufficientArgumentsError, InvalidArgumentError

_LEADING_INT_RE = re.compile(r"\s*[+-]?[0-9]+")


def parse_int(token: str) -> int:
    """Parse the leading decimal digits of a token ("72.6" -> 72, "1e3" -> 1)."""
    match = _LEADING_INT_RE.match(token)
    if match is None:
        raise InvalidArgumentError(f"'{token}' is not a number")
    return int(match.group(0))


def parse_float(token: str) -> float:
    try:
        number = float(token)
    except ValueError as exc:
        raise InvalidArgumentError(f"'{token}' is not a number") from exc
    if not math.isfinite(number):
        raise InvalidArgumentError(f"'{token}' is not a finite number")
    return number


def _require(tokens: Sequence[str], count: int, usage: str) -> None:
    if len(tokens) < count:
        raise InsufficientArgumentsError(usage)


def _optional(tokens: Sequence[str], index: int) -> str | None:
    if index < len(tokens) and tokens[index]:
        return tokens[index]
    return None


def _blood_pressure(tokens: Sequence[str]) -> BloodPressureArgs:
    _require(tokens, 3, "Blood pressure requires 3 values: systolic diastolic pulse")
    return BloodPressureArgs(
        systolic=parse_int(tokens[0]),
        diastolic=parse_int(tokens[1]),
        pulse_rate=parse_int(tokens[2]),
    )


def _pulse_oximeter(tokens: Sequence[str]) -> PulseOximeterArgs:
    _require(
        tokens,
        2,
        "Pulse oximeter requires at least 2 values: spo2% pulse [perfusionIndex]",
    )
    perfusion = _optional(tokens, 2)
    return PulseOximeterArgs(
        spo2=parse_int(tokens[0]),
        pulse_rate=parse_int(tokens[1]),
        perfusion_index=parse_float(perfusion) if perfusion is not None else None,
    )


def _weight_scale(tokens: Sequence[str]) -> WeightScaleArgs:
    _require(tokens, 1, "Weight scale requires at least 1 value: weight [kg|lb]")
    unit = _optional(tokens, 1)
    return WeightScaleArgs(
        weight=parse_float(tokens[0]),
        unit=unit if unit in ("kg", "lb") else "kg",
    )


def _temperature(tokens: Sequence[str]) -> TemperatureArgs:
    _require(tokens, 1, "Temperature requires at least 1 value: temperature [C|F]")
    unit = _optional(tokens, 1)
    return TemperatureArgs(
        value=parse_float(tokens[0]),
        unit=unit.upper() if unit and unit.upper() in ("C", "F") else "C",
    )


def _single_int(factory: Callable[[int], Any], label: str) -> Callable[[Sequence[str]], Any]:
    def _parse(tokens: Sequence[str]) -> Any:
        _require(tokens, 1, f"{label} requires 1 value")
        return factory(parse_int(tokens[0]))

    return _parse


def _text(tokens: Sequence[str]) -> TextArgs:
    return TextArgs(text=" ".join(tokens))


_PARSERS: dict[str, Callable[[Sequence[str]], Any]] = {
    "blood-pressure": _blood_pressure,
    "pulse-oximeter": _pulse_oximeter,
    "weight-scale": _weight_scale,
    "battery-level": _single_int(BatteryLevelArgs, "Battery level"),
    "heart-rate": _single_int(HeartRateArgs, "Heart rate"),
    "temperature": _temperature,
    "uint8": _single_int(UIntArgs, "uint8"),
    "uint16": _single_int(UIntArgs, "uint16"),
    "uint32": _single_int(UIntArgs, "uint32"),
    "text": _text,
}


def _permissive(token: str) -> int | float | str:
    try:
        return int(token, 10)
    except ValueError:
        pass
    try:
        number = float(token)
    except ValueError:
        return token
    return number if math.isfinite(number) else token


def parse_encoder_args(encoder_type: str, tokens: Sequence[str]) -> Any:
    """Return the argument struct ``encoder_type`` expects for ``tokens``.

    Unregistered encoder types fall back to a tuple where each token is a
    number when it parses as one and the raw string otherwise.
    """
    parser = _PARSERS.get(encoder_type)
    if parser is None:
        return tuple(_permissive(token) for token in tokens)
    return parser(list(tokens))
