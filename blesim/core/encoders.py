"""Measurement encoders for Bluetooth SIG characteristic formats.

Each encoder is a tagged variant: a name bound to a typed argument dataclass
and a pure function producing the little-endian wire bytes for it.
"""

from __future__ import annotations

import math
import struct
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass
from typing import Any

from blesim.core.errors import InvalidArgumentError, UnknownEncoderError
from blesim.core.model import EncoderInfo

SFLOAT_EXPONENT = 0xF
SFLOAT_MANTISSA_MASK = 0x0FFF
FLOAT_EXPONENT = -2
FLOAT_MANTISSA_MASK = 0xFFFFFF


def js_round(value: float) -> int:
    """Round half up, matching the behaviour device firmware expects."""
    return math.floor(value + 0.5)


def encode_sfloat(value: float) -> int:
    """Encode a value as a 16-bit short float with a fixed 10^-1 exponent."""
    if value == 0:
        return 0x0000
    mantissa = js_round(value * 10) & SFLOAT_MANTISSA_MASK
    return (SFLOAT_EXPONENT << 12) | mantissa


def encode_float(value: float) -> int:
    """Encode a value as a 32-bit IEEE-11073 float with a fixed 10^-2 exponent."""
    mantissa = js_round(value * 100) & FLOAT_MANTISSA_MASK
    return ((FLOAT_EXPONENT & 0xFF) << 24) | mantissa


@dataclass(frozen=True)
class BloodPressureArgs:
    systolic: int
    diastolic: int
    pulse_rate: int


@dataclass(frozen=True)
class PulseOximeterArgs:
    spo2: int
    pulse_rate: int
    perfusion_index: float | None = None


@dataclass(frozen=True)
class WeightScaleArgs:
    weight: float
    unit: str = "kg"


@dataclass(frozen=True)
class BatteryLevelArgs:
    level: int


@dataclass(frozen=True)
class UIntArgs:
    value: int


@dataclass(frozen=True)
class TextArgs:
    text: str


@dataclass(frozen=True)
class HeartRateArgs:
    bpm: int


@dataclass(frozen=True)
class TemperatureArgs:
    value: float
    unit: str = "C"


@dataclass(frozen=True)
class Encoder:
    name: str
    args_type: type
    encode: Callable[[Any], bytes]
    description: str
    example: str

    @property
    def info(self) -> EncoderInfo:
        return EncoderInfo(name=self.name, description=self.description, example=self.example)


def _number(value: Any, *, field: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidArgumentError(f"{field} must be a number, got {value!r}")
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidArgumentError(f"{field} must be finite, got {value!r}")
    return value


def _integer(value: Any, *, field: str) -> int:
    number = _number(value, field=field)
    if isinstance(number, float):
        if not number.is_integer():
            raise InvalidArgumentError(f"{field} must be an integer, got {value!r}")
        return int(number)
    return number


def _pack(fmt: str, *values: int, context: str) -> bytes:
    try:
        return struct.pack(fmt, *values)
    except struct.error as exc:
        raise InvalidArgumentError(f"{context} value out of range: {exc}") from exc


def _encode_blood_pressure(args: BloodPressureArgs) -> bytes:
    systolic = _integer(args.systolic, field="systolic")
    diastolic = _integer(args.diastolic, field="diastolic")
    pulse_rate = _integer(args.pulse_rate, field="pulse_rate")
    mean_arterial = (systolic + diastolic) / 3
    return struct.pack(
        "<BHHHH",
        0x04,  # pulse rate present
        encode_sfloat(systolic),
        encode_sfloat(diastolic),
        encode_sfloat(mean_arterial),
        encode_sfloat(pulse_rate),
    )


def _encode_pulse_oximeter(args: PulseOximeterArgs) -> bytes:
    spo2 = _integer(args.spo2, field="spo2")
    pulse_rate = _integer(args.pulse_rate, field="pulse_rate")
    if args.perfusion_index is None:
        return _pack("<BBH", 0x00, spo2, pulse_rate * 10, context="pulse-oximeter")
    perfusion = _number(args.perfusion_index, field="perfusion_index")
    return _pack(
        "<BBHB",
        0x01,
        spo2,
        pulse_rate * 10,
        js_round(perfusion * 10),
        context="pulse-oximeter",
    )


def _encode_weight_scale(args: WeightScaleArgs) -> bytes:
    weight = _number(args.weight, field="weight")
    if args.unit not in ("kg", "lb"):
        raise InvalidArgumentError(f"unit must be 'kg' or 'lb', got {args.unit!r}")
    if args.unit == "lb":
        return _pack("<BH", 0x01, js_round(weight * 100), context="weight-scale")
    return _pack("<BH", 0x00, js_round(weight * 200), context="weight-scale")


def _encode_battery_level(args: BatteryLevelArgs) -> bytes:
    level = _integer(args.level, field="level")
    return bytes([max(0, min(100, level))])


def _uint_encoder(fmt: str, mask: int) -> Callable[[UIntArgs], bytes]:
    def _encode(args: UIntArgs) -> bytes:
        return struct.pack(fmt, _integer(args.value, field="value") & mask)

    return _encode


def _encode_text(args: TextArgs) -> bytes:
    if not isinstance(args.text, str):
        raise InvalidArgumentError(f"text must be a string, got {args.text!r}")
    return args.text.encode("utf-8")


def _encode_heart_rate(args: HeartRateArgs) -> bytes:
    bpm = _integer(args.bpm, field="bpm")
    if bpm > 0xFF:
        return _pack("<BH", 0x01, bpm, context="heart-rate")
    return _pack("<BB", 0x00, bpm, context="heart-rate")


def _encode_temperature(args: TemperatureArgs) -> bytes:
    value = _number(args.value, field="value")
    if args.unit not in ("C", "F"):
        raise InvalidArgumentError(f"unit must be 'C' or 'F', got {args.unit!r}")
    flags = 0x01 if args.unit == "F" else 0x00
    return struct.pack("<BI", flags, encode_float(value))


_ENCODERS: tuple[Encoder, ...] = (
    Encoder(
        name="blood-pressure",
        args_type=BloodPressureArgs,
        encode=_encode_blood_pressure,
        description="Blood Pressure Measurement (0x2A35) with pulse rate",
        example="120 80 72 (systolic, diastolic, pulse)",
    ),
    Encoder(
        name="pulse-oximeter",
        args_type=PulseOximeterArgs,
        encode=_encode_pulse_oximeter,
        description="Pulse Oximeter Measurement - SpO2 and pulse rate",
        example="98 72 [2.5] (SpO2%, pulse rate, perfusion index)",
    ),
    Encoder(
        name="weight-scale",
        args_type=WeightScaleArgs,
        encode=_encode_weight_scale,
        description="Weight Scale Measurement (0x2A9D)",
        example="75.5 or 165 lb",
    ),
    Encoder(
        name="battery-level",
        args_type=BatteryLevelArgs,
        encode=_encode_battery_level,
        description="Battery Level (0x2A19) - 0-100%",
        example="85",
    ),
    Encoder(
        name="heart-rate",
        args_type=HeartRateArgs,
        encode=_encode_heart_rate,
        description="Heart Rate Measurement (0x2A37)",
        example="72",
    ),
    Encoder(
        name="temperature",
        args_type=TemperatureArgs,
        encode=_encode_temperature,
        description="Temperature Measurement (0x2A1C)",
        example="36.6 or 98.1 F",
    ),
    Encoder(
        name="uint32",
        args_type=UIntArgs,
        encode=_uint_encoder("<I", 0xFFFFFFFF),
        description="Unsigned 32-bit integer (0-4294967295)",
        example="12345",
    ),
    Encoder(
        name="text",
        args_type=TextArgs,
        encode=_encode_text,
        description="Plain text string",
        example="any text",
    ),
    Encoder(
        name="uint8",
        args_type=UIntArgs,
        encode=_uint_encoder("<B", 0xFF),
        description="Unsigned 8-bit integer (0-255)",
        example="42",
    ),
    Encoder(
        name="uint16",
        args_type=UIntArgs,
        encode=_uint_encoder("<H", 0xFFFF),
        description="Unsigned 16-bit integer (0-65535)",
        example="1234",
    ),
)

ENCODERS: dict[str, Encoder] = {encoder.name: encoder for encoder in _ENCODERS}


def get_encoder(encoder_type: str) -> Encoder:
    encoder = ENCODERS.get(encoder_type)
    if encoder is None:
        raise UnknownEncoderError(encoder_type)
    return encoder


def is_registered(encoder_type: str) -> bool:
    return encoder_type in ENCODERS


def list_encoders() -> Iterator[EncoderInfo]:
    for encoder in ENCODERS.values():
        yield encoder.info


def _bind(encoder: Encoder, args: Any) -> Any:
    if isinstance(args, encoder.args_type):
        return args
    if isinstance(args, (str, bytes)) or not isinstance(args, Sequence):
        raise InvalidArgumentError(
            f"{encoder.name} expects {encoder.args_type.__name__} or a sequence of values"
        )
    try:
        return encoder.args_type(*args)
    except TypeError as exc:
        raise InvalidArgumentError(
            f"{encoder.name} got {len(args)} value(s). Expected format: {encoder.example}"
        ) from exc


def encode(encoder_type: str, args: Any) -> bytes:
    """Encode ``args`` with the named encoder.

    ``args`` is either the encoder's argument dataclass or a positional
    sequence bound to it.
    """
    encoder = get_encoder(encoder_type)
    return encoder.encode(_bind(encoder, args))
