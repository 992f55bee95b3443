#!/usr/bin/env python3
"""Proxy command dispatch.

Maps proxy command names to LightDriver operations. Parameters arrive as a
flat dict of strings; every numeric value goes through the lenient coercion
helpers, so a malformed value behaves like a missing one.
"""

import logging
import xml.etree.ElementTree as ET
from typing import Any, Callable, Dict, Optional

from buttons import BINDING_BUTTONS, ButtonAction
from config import to_float, to_int
from state import BrightnessOrigin

logger = logging.getLogger(__name__)

Params = Dict[str, Any]

PREVIOUS_ON_PRESET = "Previous On"


def parse_scene_elements(elements: Any) -> Dict[str, Any]:
    """Scene elements as a flat dict.

    Accepts either a dict or the proxy's XML form
    (<element><level>50</level>...</element>).
    """
    if isinstance(elements, dict):
        return dict(elements)
    if not isinstance(elements, str) or not elements.strip():
        return {}
    try:
        root = ET.fromstring(elements)
    except ET.ParseError as e:
        logger.warning(f"Unparsable scene elements: {e}")
        return {}
    return {child.tag: (child.text or "").strip() for child in root}


def _rate(params: Params, key: str = "RATE") -> Optional[int]:
    return to_int(params.get(key))


def _on(driver, params: Params) -> None:
    driver.on(_rate(params))


def _off(driver, params: Params) -> None:
    driver.off(_rate(params))


def _toggle(driver, params: Params) -> None:
    driver.toggle()


def _button_action(driver, params: Params) -> None:
    driver.button_action(params.get("BUTTON_ID"), params.get("ACTION"))


def _binding_handler(action: ButtonAction) -> Callable[[Any, Params], None]:
    def handler(driver, params: Params) -> None:
        binding = to_int(params.get("BINDING_ID"))
        button = BINDING_BUTTONS.get(binding)
        if button is None:
            logger.warning(f"Ignoring {action.name} for unknown binding {params.get('BINDING_ID')!r}")
            return
        driver.button_action(int(button), int(action))

    return handler


def _set_brightness_target(driver, params: Params) -> None:
    target = to_int(params.get("LIGHT_BRIGHTNESS_TARGET")) or 0
    preset_id = params.get("LIGHT_BRIGHTNESS_TARGET_PRESET_ID")
    driver.set_brightness_target(
        target,
        _rate(params),
        preset_id=to_int(preset_id) if preset_id is not None else None,
    )


def _set_level(driver, params: Params) -> None:
    driver.set_brightness_target(to_int(params.get("LEVEL")) or 0, _rate(params))


def _set_color_target(driver, params: Params) -> None:
    x = to_float(params.get("LIGHT_COLOR_TARGET_X"))
    y = to_float(params.get("LIGHT_COLOR_TARGET_Y"))
    if x is None or y is None:
        logger.warning(f"Ignoring SET_COLOR_TARGET without a valid xy: {params}")
        return
    driver.set_color_target(
        x,
        y,
        to_int(params.get("LIGHT_COLOR_TARGET_MODE")) or 0,
        _rate(params, "LIGHT_COLOR_TARGET_RATE") or 0,
    )


def _select_effect(driver, params: Params) -> None:
    effect = params.get("value")
    if effect is None:
        logger.warning("Ignoring SELECT_LIGHT_EFFECT without a value")
        return
    driver.select_effect(effect)


def _brightness_origin(value: Any) -> Optional[BrightnessOrigin]:
    """BRIGHTNESS_PRESET_ORIGIN as "previous"/"preset" or 1/2; None when absent."""
    if value is None or value == "":
        return None
    number = to_int(value)
    if number is not None:
        return {1: BrightnessOrigin.PREVIOUS, 2: BrightnessOrigin.PRESET}.get(number)
    try:
        return BrightnessOrigin(str(value).strip().lower())
    except ValueError:
        logger.warning(f"Ignoring unknown brightness on-mode origin {value!r}")
        return None


def _update_brightness_on_mode(driver, params: Params) -> None:
    driver.update_brightness_on_mode(
        to_int(params.get("BRIGHTNESS_PRESET_ID")) or 0,
        to_int(params.get("BRIGHTNESS_PRESET_LEVEL")),
        _brightness_origin(params.get("BRIGHTNESS_PRESET_ORIGIN")),
    )


def _update_color_on_mode(driver, params: Params) -> None:
    driver.update_color_on_mode(
        to_int(params.get("COLOR_PRESET_ORIGIN")) or 0,
        to_float(params.get("COLOR_PRESET_COLOR_X")),
        to_float(params.get("COLOR_PRESET_COLOR_Y")),
        to_int(params.get("COLOR_PRESET_COLOR_MODE")),
        fade_x=to_float(params.get("COLOR_FADE_PRESET_COLOR_X")),
        fade_y=to_float(params.get("COLOR_FADE_PRESET_COLOR_Y")),
        fade_mode=to_int(params.get("COLOR_FADE_PRESET_COLOR_MODE")),
        fade_preset_id=to_int(params.get("COLOR_FADE_PRESET_ID")) or 0,
    )


def _update_color_preset(driver, params: Params) -> None:
    if params.get("NAME") != PREVIOUS_ON_PRESET:
        logger.debug(f"Ignoring color preset {params.get('NAME')!r}")
        return
    driver.update_previous_color(
        to_float(params.get("COLOR_X")),
        to_float(params.get("COLOR_Y")),
        to_int(params.get("COLOR_MODE")),
    )


def _push_scene(driver, params: Params) -> None:
    scene_id = params.get("SCENE_ID")
    if scene_id is None:
        logger.warning("Ignoring PUSH_SCENE without SCENE_ID")
        return
    driver.define_scene(scene_id, parse_scene_elements(params.get("ELEMENTS")))


def _activate_scene(driver, params: Params) -> None:
    driver.activate_scene(params.get("SCENE_ID"))


def _ramp_scene_up(driver, params: Params) -> None:
    driver.ramp_scene_up(params.get("SCENE_ID"), _rate(params) or 0)


def _ramp_scene_down(driver, params: Params) -> None:
    driver.ramp_scene_down(params.get("SCENE_ID"), _rate(params) or 0)


def _stop_scene_ramp(driver, params: Params) -> None:
    driver.stop_scene_ramp()


def _rate_setter(name: str, keep_on_invalid: bool) -> Callable[[Any, Params], None]:
    def handler(driver, params: Params) -> None:
        rate = _rate(params)
        if rate is None:
            if keep_on_invalid:
                logger.debug(f"Ignoring invalid {name}: {params.get('RATE')!r}")
                return
            rate = 0
        driver.set_rate(name, rate)

    return handler


def _synchronize(driver, params: Params) -> None:
    driver.synchronize()


COMMANDS: Dict[str, Callable[[Any, Params], None]] = {
    "ON": _on,
    "OFF": _off,
    "TOGGLE": _toggle,
    "BUTTON_ACTION": _button_action,
    "DO_PUSH": _binding_handler(ButtonAction.PRESS),
    "DO_RELEASE": _binding_handler(ButtonAction.RELEASE),
    "DO_CLICK": _binding_handler(ButtonAction.CLICK),
    "SET_BRIGHTNESS_TARGET": _set_brightness_target,
    "SET_LEVEL": _set_level,
    "GROUP_SET_LEVEL": _set_level,
    "GROUP_RAMP_TO_LEVEL": _set_level,
    "SET_COLOR_TARGET": _set_color_target,
    "SELECT_LIGHT_EFFECT": _select_effect,
    "UPDATE_BRIGHTNESS_ON_MODE": _update_brightness_on_mode,
    "UPDATE_COLOR_ON_MODE": _update_color_on_mode,
    "UPDATE_COLOR_PRESET": _update_color_preset,
    "PUSH_SCENE": _push_scene,
    "ACTIVATE_SCENE": _activate_scene,
    "RAMP_SCENE_UP": _ramp_scene_up,
    "RAMP_SCENE_DOWN": _ramp_scene_down,
    "STOP_SCENE_RAMP": _stop_scene_ramp,
    # Defaults reset to 0 on a bad value, directional rates keep their value
    "UPDATE_BRIGHTNESS_RATE_DEFAULT": _rate_setter("brightness_rate_default", keep_on_invalid=False),
    "UPDATE_COLOR_RATE_DEFAULT": _rate_setter("color_rate_default", keep_on_invalid=False),
    "SET_CLICK_RATE_UP": _rate_setter("click_rate_up", keep_on_invalid=True),
    "SET_CLICK_RATE_DOWN": _rate_setter("click_rate_down", keep_on_invalid=True),
    "SET_HOLD_RATE_UP": _rate_setter("hold_rate_up", keep_on_invalid=True),
    "SET_HOLD_RATE_DOWN": _rate_setter("hold_rate_down", keep_on_invalid=True),
    "SYNCHRONIZE": _synchronize,
}


def dispatch(driver, command: str, params: Optional[Params] = None) -> bool:
    """Run a proxy command. Returns False for unknown commands."""
    handler = COMMANDS.get(command)
    if handler is None:
        logger.warning(f"Ignoring unknown proxy command {command!r}")
        return False
    logger.debug(f"<- proxy {command}: {params}")
    handler(driver, params or {})
    return True
