#!/usr/bin/env python3
"""Color resolution for the light proxy bridge.

Decides which color (if any) rides along with a brightness command, how an
xy pair is encoded for Home Assistant (CCT kelvin or raw xy), and which color
requests are stale preset re-syncs that must not reach the light.
"""

import logging
import math
from typing import Any, Dict, Iterable, Optional, Tuple

from state import ColorMode, ColorOnModeConfig, ColorOrigin

logger = logging.getLogger(__name__)

CCT_COLOR_MODE = "color_temp"
FULL_COLOR_MODES = frozenset({"hs", "xy", "rgb", "rgbw", "rgbww"})

# Requests this close (CIE xy distance) to a dim-to-warm preset are re-syncs
PRESET_RESYNC_EPSILON = 0.005

ColorTarget = Tuple[float, float, Optional[int]]


def supports_cct(supported: Iterable[str]) -> bool:
    return CCT_COLOR_MODE in supported


def supports_full_color(supported: Iterable[str]) -> bool:
    return any(mode in FULL_COLOR_MODES for mode in supported)


def fade_color(config: ColorOnModeConfig, level: int) -> Optional[ColorTarget]:
    """Dim-to-warm color for a level, or None when fade mode is off.

    Linear between the fade color (level 0) and the on color (level 100).
    """
    if not config.fade_enabled or level <= 0:
        return None
    if None in (config.on_x, config.on_y, config.fade_x, config.fade_y):
        return None
    fraction = level / 100.0
    x = config.fade_x + (config.on_x - config.fade_x) * fraction
    y = config.fade_y + (config.on_y - config.fade_y) * fraction
    return (x, y, config.on_mode)


def turn_on_color(config: ColorOnModeConfig) -> Optional[ColorTarget]:
    """Color to apply when the light goes from off to on."""
    if config.origin == ColorOrigin.PREVIOUS and config.previous_x is not None and config.previous_y is not None:
        return (config.previous_x, config.previous_y, config.previous_mode)
    if config.origin == ColorOrigin.PRESET and config.on_x is not None and config.on_y is not None:
        return (config.on_x, config.on_y, config.on_mode)
    return None


def resolve_brightness_color(config: ColorOnModeConfig, target: int, turning_on: bool) -> Optional[ColorTarget]:
    """Color to attach to a brightness command, if any.

    Dim-to-warm wins over the turn-on color; nothing is attached when the
    target is 0.
    """
    if target <= 0:
        return None
    faded = fade_color(config, target)
    if faded is not None:
        return faded
    if turning_on:
        return turn_on_color(config)
    return None


def should_send_as_cct(mode: Optional[int], supported: Iterable[str]) -> bool:
    """CCT when asked for and supported, or when full color is unavailable."""
    supported = set(supported)
    if not supports_cct(supported):
        return False
    if mode == ColorMode.CCT:
        return True
    if mode is None:
        return True
    return not supports_full_color(supported)


def encode_color(x: float, y: float, mode: Optional[int], supported: Iterable[str]) -> Dict[str, Any]:
    """LightCommand color fields for an xy target."""
    if should_send_as_cct(mode, supported):
        return {"color_temp_kelvin": xy_to_kelvin(x, y)}
    return {"xy_color": (x, y)}


def is_preset_resync(config: ColorOnModeConfig, x: float, y: float) -> bool:
    """True when fade mode is on and (x, y) matches the on or fade preset."""
    if not config.fade_enabled:
        return False
    for px, py in ((config.on_x, config.on_y), (config.fade_x, config.fade_y)):
        if px is None or py is None:
            continue
        if math.hypot(x - px, y - py) <= PRESET_RESYNC_EPSILON:
            return True
    return False


# colour-space helpers ----------------------------------------------

def kelvin_to_xy(kelvin: float) -> Tuple[float, float]:
    """Convert color temperature to CIE 1931 x,y using Krystek polynomials."""
    T = max(1000, min(kelvin, 25000))
    invT = 1000.0 / T

    if T <= 4000:
        x = (-0.2661239 * invT**3
             - 0.2343589 * invT**2
             + 0.8776956 * invT
             + 0.179910)
    else:
        x = (-3.0258469 * invT**3
             + 2.1070379 * invT**2
             + 0.2226347 * invT
             + 0.240390)

    if T <= 2222:
        y = (-1.1063814 * x**3
             - 1.34811020 * x**2
             + 2.18555832 * x
             - 0.20219683)
    elif T <= 4000:
        y = (-0.9549476 * x**3
             - 1.37418593 * x**2
             + 2.09137015 * x
             - 0.16748867)
    else:
        y = (3.0817580 * x**3
             - 5.87338670 * x**2
             + 3.75112997 * x
             - 0.37001483)

    return (x, y)


def xy_to_kelvin(x: float, y: float) -> int:
    """Convert CIE 1931 x,y to correlated color temperature (McCamy)."""
    denominator = 0.1858 - y
    if denominator == 0:
        return 6500
    n = (x - 0.3320) / denominator
    cct = 449.0 * n**3 + 3525.0 * n**2 + 6823.3 * n + 5520.33
    return int(round(max(1000, min(cct, 25000))))
