#!/usr/bin/env python3
"""Test suite for scenes.py - scene storage, activation and ramps."""

import json

import pytest

from notifier import BrightnessChanged, ColorChanged
from scenes import Scene, SceneStore, coerce_element
from state import Channel

COLOR_SCENE = {
    "level": "60",
    "rate": "1000",
    "levelEnabled": "true",
    "colorX": "0.3",
    "colorY": "0.3",
    "colorMode": "0",
    "colorRate": "2000",
    "colorEnabled": "True",
}


class TestCoercion:

    @pytest.mark.parametrize("raw,expected", [
        ("true", True),
        ("False", False),
        ("42", 42),
        ("0.35", 0.35),
        ("hello", "hello"),
        (7, 7),
    ])
    def test_coerce_element(self, raw, expected):
        assert coerce_element(raw) == expected

    def test_scene_from_elements(self):
        scene = Scene.from_elements({k: coerce_element(v) for k, v in COLOR_SCENE.items()})
        assert scene == Scene(
            level=60,
            level_enabled=True,
            rate_ms=1000,
            color_x=0.3,
            color_y=0.3,
            color_mode=0,
            color_enabled=True,
            color_rate_ms=2000,
        )

    def test_level_zero_counts_as_present(self):
        scene = Scene.from_elements({"brightness": 0, "brightnessRate": 500})
        assert scene.level == 0
        assert scene.level_enabled is True
        assert scene.rate_ms == 500

    def test_color_needs_both_coordinates(self):
        scene = Scene.from_elements({"colorEnabled": True, "colorX": 0.3})
        assert scene.color_enabled is False
        assert scene.level_enabled is False


class TestSceneStore:

    def test_persists_across_instances(self, tmp_path):
        path = str(tmp_path / "scenes.json")
        SceneStore(path).put(4, {"level": 10})

        reloaded = SceneStore(path)
        assert reloaded.get("4") == {"level": 10}
        assert reloaded.get(4) == {"level": 10}

    def test_corrupt_file_starts_empty(self, tmp_path):
        path = tmp_path / "scenes.json"
        path.write_text("{not json")
        store = SceneStore(str(path))
        assert store.get(1) is None

        store.put(1, {"level": 5})
        assert json.loads(path.read_text()) == {"scenes": {"1": {"level": 5}}}

    def test_memory_only_store(self):
        store = SceneStore()
        store.put("a", {"level": 1})
        assert store.get("a") == {"level": 1}


class TestSceneActivation:

    def test_define_coerces_and_stores(self, bridge):
        bridge.driver.define_scene("1", COLOR_SCENE)
        stored = bridge.driver.scenes.store.get("1")
        assert stored["level"] == 60
        assert stored["colorEnabled"] is True

    def test_combined_scene_is_one_call(self, bridge):
        bridge.go_online(power="off")
        bridge.driver.define_scene("1", COLOR_SCENE)

        bridge.driver.activate_scene("1")

        calls = bridge.calls()
        assert calls == [{
            "domain": "light",
            "service": "turn_on",
            "service_data": {"brightness": 153, "xy_color": [0.3, 0.3], "transition": 2.0},
            "target": {"entity_id": "light.kitchen"},
        }]
        assert bridge.names() == ["LIGHT_BRIGHTNESS_CHANGING", "LIGHT_COLOR_CHANGING"]
        assert bridge.driver.ramp.is_active(Channel.SCENE)

    def test_combined_scene_defers_both_channels(self, bridge):
        bridge.go_online(power="off")
        bridge.driver.define_scene("1", COLOR_SCENE)
        bridge.driver.activate_scene("1")
        bridge.take()

        bridge.timers.advance(1000)
        bridge.feed(brightness=153, color_mode="xy", xy_color=[0.3, 0.3])
        assert bridge.take() == []

        bridge.timers.advance(1000)
        assert bridge.take() == [
            BrightnessChanged(current=60),
            ColorChanged(x=0.3, y=0.3, mode=0),
        ]

    def test_combined_scene_to_zero_turns_off(self, bridge):
        bridge.go_online(brightness=255)
        bridge.driver.define_scene("2", dict(COLOR_SCENE, level="0"))
        bridge.driver.activate_scene("2")

        calls = bridge.calls()
        assert calls[0]["service"] == "turn_off"
        assert calls[0]["service_data"] == {"transition": 2.0}

    def test_level_only_scene_uses_brightness_path(self, bridge):
        bridge.go_online(power="off")
        bridge.driver.define_scene("3", {"level": "40", "rate": "500"})
        bridge.driver.activate_scene("3")

        calls = bridge.calls()
        assert len(calls) == 1
        assert calls[0]["service_data"] == {"brightness": 102, "transition": 0.5}
        assert bridge.driver.ramp.is_active(Channel.BRIGHTNESS)
        assert not bridge.driver.ramp.is_active(Channel.SCENE)

    def test_color_only_scene_uses_color_path(self, bridge):
        bridge.go_online(brightness=255)
        bridge.driver.define_scene("4", {"colorX": "0.2", "colorY": "0.25", "colorEnabled": "true"})
        bridge.driver.activate_scene("4")

        calls = bridge.calls()
        assert calls[0]["service_data"] == {"xy_color": [0.2, 0.25]}
        assert bridge.names() == ["LIGHT_COLOR_CHANGING"]

    def test_missing_scene_is_noop(self, bridge):
        bridge.go_online(brightness=255)
        bridge.driver.activate_scene("missing")
        assert bridge.calls() == []
        assert bridge.take() == []

    def test_brightness_command_releases_scene_brightness(self, bridge):
        bridge.go_online(power="off")
        bridge.driver.define_scene("1", COLOR_SCENE)
        bridge.driver.activate_scene("1")
        bridge.driver.set_brightness_target(30, 0)
        bridge.take()

        bridge.feed(brightness=77)
        assert bridge.take() == [BrightnessChanged(current=30)]
        assert bridge.driver.ramp.is_active(Channel.SCENE)


class TestSceneRamps:

    def test_ramp_up_to_scene_level(self, bridge):
        bridge.go_online(power="off")
        bridge.driver.define_scene("5", {"level": "80", "rate": "3000"})

        bridge.driver.ramp_scene_up("5")
        assert bridge.calls()[0]["service_data"] == {"brightness": 204, "transition": 3.0}

        bridge.driver.ramp_scene_up("5", 500)
        assert bridge.calls()[0]["service_data"] == {"brightness": 204, "transition": 0.5}

    def test_ramp_up_defaults_to_full(self, bridge):
        bridge.go_online(power="off")
        bridge.driver.define_scene("6", {"colorX": "0.3", "colorY": "0.3", "colorEnabled": "true"})
        bridge.driver.ramp_scene_up("6", 1000)
        assert bridge.calls()[0]["service_data"]["brightness"] == 255

    def test_ramp_up_missing_scene_is_noop(self, bridge):
        bridge.go_online(power="off")
        bridge.driver.ramp_scene_up("nope", 1000)
        assert bridge.calls() == []

    def test_ramp_down_missing_scene_still_ramps(self, bridge):
        bridge.go_online(brightness=255)
        bridge.driver.ramp_scene_down("nope", 4000)
        assert bridge.calls() == [{
            "domain": "light",
            "service": "turn_off",
            "service_data": {"transition": 4.0},
            "target": {"entity_id": "light.kitchen"},
        }]

    def test_stop_ramp_freezes_at_interpolated_level(self, bridge):
        bridge.go_online(brightness=255)
        bridge.driver.ramp_scene_down("nope", 4000)
        bridge.calls()

        bridge.timers.advance(1000)
        bridge.driver.stop_scene_ramp()

        # lerp(100, 0, 1000, 4000) = 75
        assert bridge.calls()[0]["service_data"] == {"brightness": 191, "transition": 0}
        assert not bridge.driver.ramp.is_active(Channel.BRIGHTNESS)

    def test_stop_ramp_at_zero_turns_off(self, bridge):
        bridge.go_online(brightness=255)
        bridge.driver.ramp_scene_down("nope", 1000)
        bridge.calls()

        bridge.timers.advance(2000)
        bridge.driver.stop_scene_ramp()
        assert bridge.calls()[0]["service"] == "turn_off"

    def test_stop_without_ramp_does_nothing(self, bridge):
        bridge.go_online(brightness=204)
        bridge.driver.stop_scene_ramp()
        assert bridge.calls() == []

    def test_stop_after_plain_brightness_command_does_nothing(self, bridge):
        bridge.go_online(brightness=255)
        bridge.driver.ramp_scene_down("nope", 1000)
        bridge.timers.advance(2000)
        bridge.driver.set_brightness_target(60, 0)
        bridge.calls()

        bridge.timers.advance(5000)
        bridge.driver.stop_scene_ramp()
        assert bridge.calls() == []
        assert bridge.state.level_ramp is None

    def test_stop_twice_only_freezes_once(self, bridge):
        bridge.go_online(brightness=255)
        bridge.driver.ramp_scene_down("nope", 4000)
        bridge.timers.advance(1000)
        bridge.driver.stop_scene_ramp()
        bridge.calls()

        bridge.driver.stop_scene_ramp()
        assert bridge.calls() == []
