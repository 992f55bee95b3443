#!/usr/bin/env python3
"""Home Assistant state snapshot parser.

Feeds `get_states` results and `state_changed` new_state payloads for the
bridged entity into LightState, and turns the differences into proxy
notifications. Brightness and color changes go through the ramp engine so
they are held back while a commanded transition is still running.
"""

import logging
from typing import Any, Callable, Dict, Optional

from color import kelvin_to_xy, supports_cct, supports_full_color
from config import to_float, to_int
from light_controller import scale_value
from notifier import (
    BrightnessChanged,
    CapabilitiesChanged,
    ColorChanged,
    ExtrasSetupChanged,
    ExtrasStateChanged,
    Notification,
    OnlineChanged,
    effects_setup_xml,
    effects_state_xml,
)
from ramp import RampEngine
from state import DEFAULT_EFFECT, Channel, ColorMode, DriverState

logger = logging.getLogger(__name__)


class StateParser:
    """Applies state snapshots of one entity to DriverState."""

    def __init__(
        self,
        state: DriverState,
        ramp: RampEngine,
        emit: Callable[[Notification], None],
        brightness_scale: int = 255,
        on_first_snapshot: Optional[Callable[[], None]] = None,
    ):
        self.state = state
        self.ramp = ramp
        self._emit = emit
        self.brightness_scale = brightness_scale
        self._on_first_snapshot = on_first_snapshot

    def brightness_changed(self, level: int) -> BrightnessChanged:
        """BRIGHTNESS_CHANGED for a level, echoing the preset it was set from."""
        light = self.state.light
        if light.brightness_preset_id is not None and light.brightness_preset_level == level:
            return BrightnessChanged(current=level, preset_id=light.brightness_preset_id)
        return BrightnessChanged(current=level)

    def parse(self, snapshot: Optional[Dict[str, Any]]) -> bool:
        """Apply one snapshot. Returns False when it is not for our entity."""
        if not isinstance(snapshot, dict):
            logger.debug(f"Ignoring empty state snapshot: {snapshot!r}")
            return False
        if snapshot.get("entity_id") != self.state.entity_id:
            return False

        logger.debug(f"State snapshot for {self.state.entity_id}: {snapshot}")

        if self.state.waiting_for_initial_state and self._on_first_snapshot is not None:
            self._on_first_snapshot()

        light = self.state.light
        power = snapshot.get("state")
        attributes = snapshot.get("attributes")

        if not isinstance(attributes, dict):
            self._parse_power(power)
            if light.online:
                logger.warning(f"{self.state.entity_id} reported no attributes, marking offline")
                light.online = False
                self._emit(OnlineChanged(False))
            return True

        if not light.online:
            light.online = True
            self._emit(OnlineChanged(True))

        self._parse_power(power)
        self._parse_brightness(power, attributes)
        self._parse_color(attributes)
        self._parse_kelvin_bounds(attributes)
        self._parse_effects(attributes)
        self._parse_capabilities(attributes)
        return True

    def _parse_power(self, power: Optional[str]) -> None:
        light = self.state.light
        if power == "off":
            light.on = False
            light.level = 0
            self.ramp.on_snapshot(Channel.BRIGHTNESS, self.brightness_changed(0))
        elif power == "on" and not light.has_brightness:
            light.on = True
            light.level = 100
            light.last_level = 100
            self.ramp.on_snapshot(Channel.BRIGHTNESS, self.brightness_changed(100))
        elif power == "on":
            light.on = True

    def _parse_brightness(self, power: Optional[str], attributes: Dict[str, Any]) -> None:
        if "brightness" not in attributes or attributes["brightness"] is None:
            return

        raw = to_float(attributes["brightness"])
        if raw is None:
            logger.debug(f"Unparsable brightness {attributes['brightness']!r}, keeping {self.state.light.level}")
            return

        light = self.state.light
        level = scale_value(raw, 100, self.brightness_scale)
        # HA keeps the last brightness while off; it still feeds the "Previous" on level
        if level > 0:
            light.last_level = level

        if power == "on":
            light.level = level
            self.ramp.on_snapshot(Channel.BRIGHTNESS, self.brightness_changed(level))

    def _parse_color(self, attributes: Dict[str, Any]) -> None:
        color_mode = attributes.get("color_mode")
        if color_mode is None:
            return

        light = self.state.light
        if color_mode == "color_temp":
            kelvin = to_float(attributes.get("color_temp_kelvin"))
            if kelvin is None:
                return
            x, y = kelvin_to_xy(kelvin)
            mode = ColorMode.CCT
        else:
            xy = attributes.get("xy_color")
            if not isinstance(xy, (list, tuple)) or len(xy) < 2:
                return
            x, y = to_float(xy[0]), to_float(xy[1])
            if x is None or y is None:
                return
            mode = ColorMode.FULL_COLOR

        light.color_x, light.color_y, light.color_mode = x, y, mode
        self.ramp.on_snapshot(Channel.COLOR, ColorChanged(x=x, y=y, mode=int(mode)))

    def _parse_kelvin_bounds(self, attributes: Dict[str, Any]) -> None:
        light = self.state.light
        min_kelvin = to_int(attributes.get("min_color_temp_kelvin"))
        if min_kelvin is not None:
            light.min_kelvin = min_kelvin
        max_kelvin = to_int(attributes.get("max_color_temp_kelvin"))
        if max_kelvin is not None:
            light.max_kelvin = max_kelvin

    def _parse_effects(self, attributes: Dict[str, Any]) -> None:
        light = self.state.light

        effect = attributes.get("effect")
        effect = DEFAULT_EFFECT if effect is None else str(effect)
        if effect != light.last_effect:
            light.last_effect = effect
            self._emit(ExtrasStateChanged(effects_state_xml(effect)))

        effects = attributes.get("effect_list")
        if isinstance(effects, (list, tuple)):
            effects = [str(e) for e in effects]
            light.has_effects = True
            if effects != light.effects_list:
                light.effects_list = effects
                self._emit(ExtrasSetupChanged(effects_setup_xml(effects, light.last_effect)))
        else:
            light.effects_list = []
            light.has_effects = False

    def _parse_capabilities(self, attributes: Dict[str, Any]) -> None:
        modes = attributes.get("supported_color_modes")
        light = self.state.light
        if isinstance(modes, (list, tuple)):
            light.supported_attributes = {str(m) for m in modes}
            light.has_brightness = "onoff" not in light.supported_attributes

        if not light.supported_attributes:
            return

        has_color = supports_full_color(light.supported_attributes)
        has_cct = supports_cct(light.supported_attributes) or has_color
        capabilities = CapabilitiesChanged(
            dimmer=light.has_brightness,
            supports_color=has_color,
            supports_cct=has_cct,
            kelvin_min=light.min_kelvin if has_cct else 0,
            kelvin_max=light.max_kelvin if has_cct else 0,
            has_extras=light.has_effects,
        )
        params = capabilities.to_params()
        if params == light.capabilities:
            return

        light.capabilities = params
        logger.info(f"Capabilities for {self.state.entity_id}: {params}")
        self._emit(capabilities)
