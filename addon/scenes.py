#!/usr/bin/env python3
"""Scene storage and activation.

Scenes are pushed by the proxy as flat element tables (level, rate, colorX,
colorY, colorMode, colorRate, enable flags) and stored verbatim in a JSON
file keyed by scene id.

Activation with both brightness and color sends one combined service call so
the light never shows the new brightness in the old color (or vice versa).
Home Assistant has no hold-to-ramp primitive, so scene ramps are timed
transitions that can be frozen by STOP_SCENE_RAMP.
"""

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from color import encode_color
from config import to_bool, to_float, to_int
from light_controller import LightCommand
from notifier import BrightnessChanging, ColorChanging
from state import Channel, LevelRamp

logger = logging.getLogger(__name__)


def coerce_element(value: Any) -> Any:
    """Coerce an element value from the proxy: booleans, then numbers."""
    if not isinstance(value, str):
        return value
    if value in ("True", "true"):
        return True
    if value in ("False", "false"):
        return False
    number = to_float(value)
    if number is None:
        return value
    return int(number) if number.is_integer() else number


def _first_int(elements: Dict[str, Any], *keys: str) -> Optional[int]:
    for key in keys:
        value = to_int(elements.get(key))
        if value is not None:
            return value
    return None


@dataclass
class Scene:
    """Typed view of a stored scene."""
    level: Optional[int] = None
    level_enabled: bool = False
    rate_ms: int = 0
    color_x: Optional[float] = None
    color_y: Optional[float] = None
    color_mode: Optional[int] = None
    color_enabled: bool = False
    color_rate_ms: int = 0

    @classmethod
    def from_elements(cls, elements: Dict[str, Any]) -> "Scene":
        level = _first_int(elements, "level", "brightness")
        flagged = bool(to_bool(elements.get("brightnessEnabled")) or to_bool(elements.get("levelEnabled")))
        color_x = to_float(elements.get("colorX"))
        color_y = to_float(elements.get("colorY"))
        return cls(
            level=level,
            level_enabled=flagged or level is not None,
            rate_ms=_first_int(elements, "rate", "brightnessRate") or 0,
            color_x=color_x,
            color_y=color_y,
            color_mode=to_int(elements.get("colorMode")),
            color_enabled=bool(to_bool(elements.get("colorEnabled"))) and color_x is not None and color_y is not None,
            color_rate_ms=to_int(elements.get("colorRate")) or 0,
        )


class SceneStore:
    """Scene elements persisted to a JSON file."""

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._scenes: Dict[str, Dict[str, Any]] = {}

        if path and os.path.exists(path):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                if isinstance(data, dict) and isinstance(data.get("scenes"), dict):
                    self._scenes = data["scenes"]
                    logger.info(f"Loaded {len(self._scenes)} scene(s) from {path}")
                else:
                    logger.warning(f"Invalid scene file format at {path}, starting fresh")
            except (json.JSONDecodeError, OSError) as e:
                logger.warning(f"Failed to load scenes from {path}: {e}")

    def get(self, scene_id: Any) -> Optional[Dict[str, Any]]:
        return self._scenes.get(str(scene_id))

    def put(self, scene_id: Any, elements: Dict[str, Any]) -> None:
        self._scenes[str(scene_id)] = elements
        self._save()

    def _save(self) -> None:
        if not self.path:
            return
        try:
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump({"scenes": self._scenes}, f, indent=2)
            logger.debug(f"Saved scenes to {self.path}")
        except OSError as e:
            logger.error(f"Failed to save scenes to {self.path}: {e}")


class SceneEngine:
    """Scene commands: define, activate, ramp up/down, stop."""

    def __init__(self, driver, store: SceneStore):
        self.driver = driver
        self.state = driver.state
        self.store = store

    def define(self, scene_id: Any, elements: Dict[str, Any]) -> None:
        coerced = {name: coerce_element(value) for name, value in elements.items()}
        self.store.put(scene_id, coerced)
        logger.info(f"Stored scene {scene_id}: {coerced}")

    def load(self, scene_id: Any) -> Optional[Scene]:
        elements = self.store.get(scene_id)
        if elements is None:
            return None
        return Scene.from_elements(elements)

    def activate(self, scene_id: Any) -> None:
        scene = self.load(scene_id)
        if scene is None:
            logger.warning(f"No scene data for scene {scene_id}")
            return

        if scene.level_enabled and scene.color_enabled:
            self._activate_combined(scene_id, scene)
            return

        if scene.level_enabled:
            self.driver.set_brightness_target(scene.level or 0, scene.rate_ms)
        if scene.color_enabled:
            self.driver.set_color_target(scene.color_x, scene.color_y, scene.color_mode or 0, scene.color_rate_ms)

    def _activate_combined(self, scene_id: Any, scene: Scene) -> None:
        light = self.state.light
        target = scene.level or 0
        max_rate = max(scene.rate_ms, scene.color_rate_ms)
        transition = max_rate / 1000
        self.state.level_ramp = None

        self.driver.ramp.issue_combined(
            (Channel.BRIGHTNESS, Channel.COLOR),
            max_rate,
            BrightnessChanging(current=light.level, target=target, rate=scene.rate_ms),
            ColorChanging(
                target_x=scene.color_x,
                target_y=scene.color_y,
                mode=scene.color_mode or 0,
                rate=scene.color_rate_ms,
            ),
        )

        if target == 0:
            command = LightCommand(on=False, transition=transition)
        else:
            command = LightCommand(
                level=target,
                transition=transition,
                **encode_color(scene.color_x, scene.color_y, scene.color_mode, light.supported_attributes),
            )

        logger.info(f"Activating scene {scene_id}: level={target}, color=({scene.color_x}, {scene.color_y}), {max_rate}ms")
        self.driver.sink.submit(command)

    def ramp_up(self, scene_id: Any, rate: Optional[int] = None) -> None:
        scene = self.load(scene_id)
        if scene is None:
            logger.warning(f"No scene data for scene {scene_id}")
            return
        target = scene.level if scene.level is not None else 100
        self._ramp_to(target, rate if rate and rate > 0 else scene.rate_ms)

    def ramp_down(self, scene_id: Any, rate: Optional[int] = None) -> None:
        scene = self.load(scene_id)
        if rate is None or rate <= 0:
            rate = scene.rate_ms if scene is not None else 0
        self._ramp_to(0, rate)

    def stop_ramp(self) -> None:
        level_ramp = self.state.level_ramp
        if level_ramp is None:
            logger.info("No scene ramp to stop")
            return

        level = level_ramp.level_at(self.driver.timers.now_ms())
        self.state.level_ramp = None
        self.driver.ramp.release(Channel.BRIGHTNESS)

        logger.info(f"Stopping scene ramp at {level}%")
        if level > 0:
            self.driver.sink.submit(LightCommand(level=level, transition=0))
        else:
            self.driver.sink.submit(LightCommand(on=False, transition=0))

    def _ramp_to(self, target: int, rate: int) -> None:
        level_ramp = LevelRamp(
            start_ms=self.driver.timers.now_ms(),
            duration_ms=rate,
            start_level=self.state.light.level,
            target_level=target,
        )
        self.driver.set_brightness_target(target, rate)
        self.state.level_ramp = level_ramp
