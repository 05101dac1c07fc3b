"""
Unit conversion between canonical units and each transport's encoding.

Canonical: brightness/saturation 0-100 percent, hue 0-360 degrees,
kelvin 2500-9000. Both the lifx-async HSBK type and the LIFX cloud API use
the same device-side encoding (hue in float degrees, saturation and
brightness as 0.0-1.0 fractions), so one pair of helpers covers both.
"""

import re

from .constants import (
    BRIGHTNESS_MAX,
    HUE_MAX,
    KELVIN_MAX,
    KELVIN_MIN,
)


def _clamp(value, low, high):
    return max(low, min(high, value))


def fraction_to_percent(value: float) -> int:
    """0.0-1.0 -> 0-100, rounded and clamped."""
    return _clamp(round(float(value) * BRIGHTNESS_MAX), 0, BRIGHTNESS_MAX)


def percent_to_fraction(value: float) -> float:
    """0-100 -> 0.0-1.0, rounded to 6 places (finer than the 16-bit device steps)."""
    return round(_clamp(float(value), 0, BRIGHTNESS_MAX) / BRIGHTNESS_MAX, 6)


def device_hue_to_degrees(value: float) -> int:
    return _clamp(round(float(value)), 0, HUE_MAX)


def degrees_to_device_hue(value: float) -> float:
    return float(_clamp(float(value), 0, HUE_MAX))


def clamp_kelvin(value: int) -> int:
    """Devices report 1500-9000K; canonical range is 2500-9000K."""
    return _clamp(int(value), KELVIN_MIN, KELVIN_MAX)


def ms_to_seconds(duration_ms: int) -> float:
    return max(0, int(duration_ms)) / 1000.0


def normalize_light_id(light_id: str) -> str:
    """Return a device serial in canonical form: 12 lowercase hex digits.

    Both transports name a bulb by its serial (MAC-like). The LAN library and
    the cloud API may format it differently, so ids are normalized before
    they are used as merge keys.

    Raises ValueError if input is empty or not 12 hex digits (colons/hyphens optional).
    """
    if not light_id:
        raise ValueError("Light id cannot be empty")

    hex_only = re.sub(r"[:\-\s]", "", light_id.strip().lower())
    if not re.fullmatch(r"[0-9a-f]{12}", hex_only):
        raise ValueError(f"Invalid light id format: {light_id}")
    return hex_only
