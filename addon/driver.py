#!/usr/bin/env python3
"""Light driver: one bridged Home Assistant light behind the proxy.

Composes the pieces around a single DriverState:
- StateParser ingests Home Assistant snapshots
- RampEngine gates CHANGED notifications while transitions run
- HoldClickStateMachine turns button presses into clicks and hold ramps
- SceneEngine stores and plays scenes

Every handler runs synchronously on the event loop. Service calls are queued
on the light controller and notifications go out through the Notifier, so no
handler ever awaits.
"""

import logging
from typing import Any, Dict, Optional

from buttons import HoldClickStateMachine
from color import encode_color, is_preset_resync, resolve_brightness_color
from config import BridgeConfig
from light_controller import HomeAssistantLightController, LightCommand
from notifier import (
    BrightnessChanging,
    ColorChanging,
    Notification,
    Notifier,
)
from on_mode import (
    click_rate_ms,
    record_previous_color,
    resolve_on_level,
    update_brightness_on_mode,
    update_color_on_mode,
)
from ramp import RampEngine
from scenes import SceneEngine, SceneStore
from state import BrightnessOrigin, Channel, ColorMode, Direction, DriverState
from state_parser import StateParser
from timers import TimerHandle, TimerService

logger = logging.getLogger(__name__)


class LightDriver:
    """Translates proxy commands and HA state for one light entity."""

    def __init__(
        self,
        config: BridgeConfig,
        sink: HomeAssistantLightController,
        timers: TimerService,
        notifier: Notifier,
        scene_store: Optional[SceneStore] = None,
    ):
        self.config = config
        self.sink = sink
        self.timers = timers
        self.notifier = notifier

        self.state = DriverState(entity_id=config.entity_id)
        self.state.rates.brightness_rate_default = max(config.brightness_rate_default, 0)
        self.state.rates.color_rate_default = max(config.color_rate_default, 0)

        self.ramp = RampEngine(self.state, timers, self.notify)
        self.parser = StateParser(
            self.state,
            self.ramp,
            self.notify,
            brightness_scale=config.brightness_scale,
            on_first_snapshot=self._release_startup_gate,
        )
        self.buttons = HoldClickStateMachine(
            self,
            hold_detect_ms=config.hold_detect_ms,
            misfire_grace_ms=config.hold_misfire_grace_ms,
            hold_rate_default_ms=config.hold_rate_default_ms,
        )
        self.scenes = SceneEngine(self, scene_store or SceneStore())

    # ------------------------------------------------------------------
    # Startup gate
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Arm the startup watchdog. Call once the event loop is running."""
        if not self.state.waiting_for_initial_state or self.state.watchdog is not None:
            return
        self.state.watchdog = self.timers.schedule(self.config.startup_watchdog_ms, self._on_watchdog)
        logger.info(
            f"Waiting up to {self.config.startup_watchdog_ms}ms for initial state of {self.state.entity_id}"
        )

    def notify(self, notification: Notification) -> None:
        """Send a notification to the proxy unless the startup gate is closed."""
        if self.state.waiting_for_initial_state:
            logger.debug(f"Dropping {notification.name} while waiting for initial state")
            return
        self.notifier.send(notification)

    def _release_startup_gate(self) -> None:
        self.timers.cancel(self.state.watchdog)
        self.state.watchdog = None
        self.state.waiting_for_initial_state = False
        logger.info(f"Received initial state for {self.state.entity_id}")

    def _on_watchdog(self, handle: TimerHandle) -> None:
        if handle is not self.state.watchdog:
            return
        self.state.watchdog = None
        if self.state.waiting_for_initial_state:
            self.state.waiting_for_initial_state = False
            logger.warning(
                f"No state for {self.state.entity_id} after {self.config.startup_watchdog_ms}ms, "
                "resuming notifications"
            )

    def handle_state(self, snapshot: Optional[Dict[str, Any]]) -> bool:
        """Feed one Home Assistant state snapshot to the parser."""
        return self.parser.parse(snapshot)

    # ------------------------------------------------------------------
    # Brightness
    # ------------------------------------------------------------------

    def on_level(self) -> int:
        return resolve_on_level(self.state.light, self.state.brightness_on_mode)

    def on(self, rate: Optional[int] = None) -> None:
        if rate is None:
            rate = click_rate_ms(self.state.rates, Direction.UP)
        self.set_brightness_target(self.on_level(), rate)

    def off(self, rate: Optional[int] = None) -> None:
        if rate is None:
            rate = click_rate_ms(self.state.rates, Direction.DOWN)
        self.set_brightness_target(0, rate)

    def toggle(self) -> None:
        light = self.state.light
        # HA can keep a brightness while off, so require both
        if light.on and light.level > 0:
            self.off()
        else:
            self.on()

    def set_brightness_target(self, target: int, rate: Optional[int] = None, preset_id: Optional[int] = None) -> None:
        """Ramp the light to target (0-100) over rate ms.

        Attaches the dim-to-warm or turn-on color to the same service call and
        starts the brightness ramp timer.
        """
        light = self.state.light
        target = max(0, min(100, int(target)))
        if rate is None:
            rate = self.state.rates.brightness_rate_default
        rate = max(int(rate), 0)
        # Hold and scene ramps record their own LevelRamp after this call
        self.state.level_ramp = None

        if preset_id is not None:
            light.brightness_preset_id = preset_id
            light.brightness_preset_level = target
        else:
            light.brightness_preset_id = None
            light.brightness_preset_level = None

        self.ramp.issue_transition(
            Channel.BRIGHTNESS,
            rate,
            BrightnessChanging(current=light.level, target=target, rate=rate),
        )

        if target == 0:
            transition = rate / 1000 if light.has_brightness else None
            logger.info(f"Turning off {self.state.entity_id} over {rate}ms")
            self.sink.submit(LightCommand(on=False, transition=transition))
            return

        light.last_level = target
        turning_on = light.level == 0 or not light.on
        color = resolve_brightness_color(self.state.color_on_mode, target, turning_on)

        if not light.has_brightness:
            if color is not None:
                logger.debug(f"{self.state.entity_id} has no brightness support, dropping color {color}")
            self.sink.submit(LightCommand())
            return

        color_fields: Dict[str, Any] = {}
        if color is not None:
            x, y, mode = color
            color_fields = encode_color(x, y, mode, light.supported_attributes)
            self.notify(ColorChanging(
                target_x=x,
                target_y=y,
                mode=mode if mode is not None else int(ColorMode.FULL_COLOR),
                rate=self.state.rates.color_rate_default,
            ))

        logger.info(f"Setting {self.state.entity_id} to {target}% over {rate}ms")
        self.sink.submit(LightCommand(level=target, transition=rate / 1000, **color_fields))

    def synchronize(self) -> None:
        """Re-send the current brightness to the proxy."""
        self.notify(self.parser.brightness_changed(self.state.light.level))

    # ------------------------------------------------------------------
    # Color and effects
    # ------------------------------------------------------------------

    def set_color_target(self, x: float, y: float, mode: Optional[int] = None, rate: Optional[int] = None) -> bool:
        """Move the light to an xy color. Returns False when suppressed."""
        if is_preset_resync(self.state.color_on_mode, x, y):
            logger.debug(f"Ignoring color ({x}, {y}): matches a dim-to-warm preset")
            return False

        mode = int(ColorMode.FULL_COLOR) if mode is None else mode
        rate = max(int(rate or 0), 0)

        self.ramp.issue_transition(
            Channel.COLOR,
            rate,
            ColorChanging(target_x=x, target_y=y, mode=mode, rate=rate),
        )

        command = LightCommand(
            transition=rate / 1000 if rate > 0 else None,
            **encode_color(x, y, mode, self.state.light.supported_attributes),
        )
        logger.info(f"Setting {self.state.entity_id} color to ({x}, {y}) mode {mode} over {rate}ms")
        self.sink.submit(command)
        return True

    def select_effect(self, effect: Any) -> None:
        logger.info(f"Selecting effect {effect!r} on {self.state.entity_id}")
        self.sink.submit(LightCommand(effect=str(effect)))

    # ------------------------------------------------------------------
    # Configuration from the proxy
    # ------------------------------------------------------------------

    def update_brightness_on_mode(
        self,
        preset_id: Optional[int],
        preset_level: Optional[int],
        origin: Optional[BrightnessOrigin] = None,
    ) -> None:
        update_brightness_on_mode(self.state.brightness_on_mode, preset_id, preset_level, origin)

    def update_color_on_mode(self, origin: Optional[int], on_x, on_y, on_mode, fade_x=None, fade_y=None,
                             fade_mode=None, fade_preset_id=None) -> None:
        update_color_on_mode(
            self.state.color_on_mode, origin, on_x, on_y, on_mode,
            fade_x=fade_x, fade_y=fade_y, fade_mode=fade_mode, fade_preset_id=fade_preset_id,
        )

    def update_previous_color(self, x: Optional[float], y: Optional[float], mode: Optional[int]) -> None:
        record_previous_color(self.state.color_on_mode, x, y, mode)

    def set_rate(self, name: str, rate: int) -> None:
        """Set one of the RateConfig fields, e.g. "click_rate_up"."""
        if not hasattr(self.state.rates, name):
            raise AttributeError(f"Unknown rate {name!r}")
        setattr(self.state.rates, name, max(int(rate), 0))
        logger.info(f"{name} = {rate}ms")

    # ------------------------------------------------------------------
    # Buttons and scenes
    # ------------------------------------------------------------------

    def button_action(self, button_id: Any, action: Any) -> bool:
        return self.buttons.handle(button_id, action)

    def define_scene(self, scene_id: Any, elements: Dict[str, Any]) -> None:
        self.scenes.define(scene_id, elements)

    def activate_scene(self, scene_id: Any) -> None:
        self.scenes.activate(scene_id)

    def ramp_scene_up(self, scene_id: Any, rate: Optional[int] = None) -> None:
        self.scenes.ramp_up(scene_id, rate)

    def ramp_scene_down(self, scene_id: Any, rate: Optional[int] = None) -> None:
        self.scenes.ramp_down(scene_id, rate)

    def stop_scene_ramp(self) -> None:
        self.scenes.stop_ramp()

    def snapshot(self) -> Dict[str, Any]:
        """Plain-data view of the light for diagnostics."""
        light = self.state.light
        return {
            "entity_id": self.state.entity_id,
            "online": light.online,
            "waiting_for_initial_state": self.state.waiting_for_initial_state,
            "on": light.on,
            "level": light.level,
            "last_level": light.last_level,
            "color": {
                "x": light.color_x,
                "y": light.color_y,
                "mode": int(light.color_mode),
            },
            "kelvin_range": [light.min_kelvin, light.max_kelvin],
            "supported_color_modes": sorted(light.supported_attributes),
            "effect": light.last_effect,
            "effects": list(light.effects_list),
            "ramps": {channel.value: self.ramp.is_active(channel) for channel in Channel},
        }
