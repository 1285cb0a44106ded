from __future__ import annotations

import types

import pytest

from blesim.core.encoders import (
    BloodPressureArgs,
    PulseOximeterArgs,
    WeightScaleArgs,
    encode,
    encode_sfloat,
    list_encoders,
)
from blesim.core.errors import InvalidArgumentError, UnknownEncoderError


def test_sfloat_zero_and_fixed_exponent() -> None:
    assert encode_sfloat(0) == 0x0000
    assert encode_sfloat(7.2) == 0xF048
    assert encode_sfloat(120) == 0xF4B0


def test_sfloat_masks_mantissa_to_twelve_bits() -> None:
    assert encode_sfloat(500) == 0xF000 | (5000 & 0x0FFF)


def test_blood_pressure_layout() -> None:
    payload = encode("blood-pressure", (120, 80, 72))
    assert len(payload) == 9
    assert payload[0] == 0x04
    assert payload.hex() == "04b0f420f39bf2d0f2"


@pytest.mark.parametrize("values", [(90, 60, 50), (200, 120, 180), (1, 1, 1)])
def test_blood_pressure_is_always_nine_bytes(values: tuple[int, int, int]) -> None:
    payload = encode("blood-pressure", BloodPressureArgs(*values))
    assert len(payload) == 9
    assert payload[0] == 0x04


def test_pulse_oximeter_without_perfusion_index() -> None:
    payload = encode("pulse-oximeter", PulseOximeterArgs(spo2=98, pulse_rate=72))
    assert payload.hex() == "0062d002"


def test_pulse_oximeter_with_perfusion_index_sets_flag() -> None:
    payload = encode("pulse-oximeter", (98, 72, 2.5))
    assert len(payload) == 5
    assert payload[0] & 0x01
    assert payload[4] == 25


def test_pulse_oximeter_out_of_range_is_invalid() -> None:
    with pytest.raises(InvalidArgumentError):
        encode("pulse-oximeter", (300, 72))


def test_weight_scale_kg() -> None:
    assert encode("weight-scale", WeightScaleArgs(75.5, "kg")) == bytes([0x00, 0xFC, 0x3A])


def test_weight_scale_lb() -> None:
    assert encode("weight-scale", (165, "lb")) == bytes([0x01, 0x74, 0x40])


def test_weight_scale_defaults_to_kg() -> None:
    assert encode("weight-scale", (75.5,)) == bytes([0x00, 0xFC, 0x3A])


def test_weight_scale_rejects_unknown_unit() -> None:
    with pytest.raises(InvalidArgumentError):
        encode("weight-scale", (80, "stone"))


def test_battery_level_clamps() -> None:
    assert encode("battery-level", (150,)) == bytes([100])
    assert encode("battery-level", (-5,)) == bytes([0])
    assert encode("battery-level", (85,)) == bytes([85])


def test_unsigned_integers_are_little_endian_and_truncated() -> None:
    assert encode("uint8", (42,)) == bytes([42])
    assert encode("uint8", (256,)) == bytes([0])
    assert encode("uint16", (1234,)).hex() == "d204"
    assert encode("uint32", (12345,)).hex() == "39300000"


def test_text_is_utf8() -> None:
    assert encode("text", ("héllo",)) == "héllo".encode("utf-8")


def test_heart_rate_switches_to_uint16_above_255() -> None:
    assert encode("heart-rate", (72,)).hex() == "0048"
    assert encode("heart-rate", (300,)).hex() == "012c01"


def test_temperature_float_format() -> None:
    assert encode("temperature", (36.6,)).hex() == "004c0e00fe"
    assert encode("temperature", (98.1, "F"))[0] == 0x01


def test_unknown_encoder() -> None:
    with pytest.raises(UnknownEncoderError):
        encode("glucose", (5,))


def test_wrong_argument_count_is_invalid() -> None:
    with pytest.raises(InvalidArgumentError):
        encode("blood-pressure", (120, 80))


def test_non_numeric_argument_is_invalid() -> None:
    with pytest.raises(InvalidArgumentError):
        encode("uint8", ("forty",))


def test_string_is_not_accepted_as_argument_sequence() -> None:
    with pytest.raises(InvalidArgumentError):
        encode("text", "hello")


def test_list_encoders_is_lazy_and_restartable() -> None:
    listing = list_encoders()
    assert isinstance(listing, types.GeneratorType)

    first = [info.name for info in listing]
    second = [info.name for info in list_encoders()]
    assert first == second
    assert {"blood-pressure", "pulse-oximeter", "weight-scale", "battery-level", "text"} <= set(first)
    assert all(info.description and info.example for info in list_encoders())
