#!/usr/bin/env python3
"""On-mode and rate resolution.

Answers the questions every on/off path asks: what level does "turn on" go
to, and how fast does a click or hold ramp run. Each answer falls back in the
same order: the specific setting, then the configured default, then a fixed
constant.
"""

import logging
from typing import Optional

from state import (
    BrightnessOnModeConfig,
    BrightnessOrigin,
    ColorOnModeConfig,
    ColorOrigin,
    Direction,
    LightState,
    RateConfig,
)

logger = logging.getLogger(__name__)

FULL_LEVEL = 100


def resolve_on_level(light: LightState, config: BrightnessOnModeConfig) -> int:
    """Level used by "turn on" commands and clicks."""
    if config.origin == BrightnessOrigin.PRESET:
        if config.preset_level is not None and config.preset_level > 0:
            return config.preset_level
        return FULL_LEVEL

    level = light.last_level or light.level or FULL_LEVEL
    if level <= 0:
        level = FULL_LEVEL
    return level


def click_rate_ms(rates: RateConfig, direction: Direction) -> int:
    rate = rates.click_rate_up if direction == Direction.UP else rates.click_rate_down
    if rate > 0:
        return rate
    return max(rates.brightness_rate_default, 0)


def hold_rate_ms(rates: RateConfig, direction: Direction, fallback_ms: int) -> int:
    rate = rates.hold_rate_up if direction == Direction.UP else rates.hold_rate_down
    if rate > 0:
        return rate
    if rates.brightness_rate_default > 0:
        return rates.brightness_rate_default
    return fallback_ms


def update_brightness_on_mode(
    config: BrightnessOnModeConfig,
    preset_id: Optional[int],
    preset_level: Optional[int],
    origin: Optional[BrightnessOrigin] = None,
) -> None:
    """Apply an UPDATE_BRIGHTNESS_ON_MODE from the proxy.

    Without an explicit origin, a usable preset (id and level both > 0)
    selects Preset, anything else selects Previous.
    """
    config.preset_id = preset_id or 0
    config.preset_level = preset_level

    has_preset = config.preset_id > 0 and preset_level is not None and preset_level > 0
    if origin is None:
        origin = BrightnessOrigin.PRESET if has_preset else BrightnessOrigin.PREVIOUS
    config.origin = origin

    logger.info(
        f"Brightness on mode: {config.origin.value} "
        f"(preset_id={config.preset_id}, preset_level={config.preset_level})"
    )


def update_color_on_mode(
    config: ColorOnModeConfig,
    origin: Optional[int],
    on_x: Optional[float],
    on_y: Optional[float],
    on_mode: Optional[int],
    fade_x: Optional[float] = None,
    fade_y: Optional[float] = None,
    fade_mode: Optional[int] = None,
    fade_preset_id: Optional[int] = None,
) -> None:
    """Apply an UPDATE_COLOR_ON_MODE from the proxy.

    Dim-to-warm is enabled iff both the on and fade colors are complete and
    the fade preset id, when given, is not 0.
    """
    try:
        config.origin = ColorOrigin(origin or 0)
    except ValueError:
        logger.warning(f"Unknown color preset origin {origin!r}, using none")
        config.origin = ColorOrigin.NONE

    config.on_x, config.on_y, config.on_mode = on_x, on_y, on_mode
    config.fade_x, config.fade_y, config.fade_mode = fade_x, fade_y, fade_mode

    pairs_defined = None not in (on_x, on_y, fade_x, fade_y)
    config.fade_enabled = pairs_defined and fade_preset_id != 0

    logger.info(
        f"Color on mode: origin={config.origin.name.lower()}, "
        f"on=({on_x}, {on_y}), fade=({fade_x}, {fade_y}), fade_enabled={config.fade_enabled}"
    )


def record_previous_color(
    config: ColorOnModeConfig,
    x: Optional[float],
    y: Optional[float],
    mode: Optional[int],
) -> None:
    config.previous_x, config.previous_y, config.previous_mode = x, y, mode
