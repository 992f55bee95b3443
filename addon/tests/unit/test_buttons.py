#!/usr/bin/env python3
"""Test suite for buttons.py - press/hold/click handling."""

import pytest

from buttons import ButtonAction, parse_action, parse_button
from state import ButtonId, Direction


PRESS = int(ButtonAction.PRESS)
RELEASE = int(ButtonAction.RELEASE)
CLICK = int(ButtonAction.CLICK)


class TestParsing:
    """Button id / action parsing."""

    def test_parse_button_accepts_strings(self):
        assert parse_button("0") == ButtonId.TOP
        assert parse_button("2") == ButtonId.TOGGLE

    def test_parse_button_rejects_unknown(self):
        assert parse_button("7") is None
        assert parse_button("top") is None
        assert parse_button(None) is None

    def test_parse_action(self):
        assert parse_action("1") == ButtonAction.PRESS
        assert parse_action(0) == ButtonAction.RELEASE
        assert parse_action("3") is None


class TestHoldRamp:
    """Holding a button past the detect time starts a ramp."""

    @pytest.fixture
    def on_bridge(self, bridge):
        # brightness 204/255 -> 80%
        bridge.go_online(brightness=204)
        return bridge

    def test_scenario_hold_down_then_release_freezes(self, on_bridge):
        """Press bottom at t=0, ramp at t=300, release at t=4000."""
        b = on_bridge
        b.driver.button_action(ButtonId.BOTTOM, PRESS)
        assert b.calls() == []

        b.timers.advance(300)
        calls = b.calls()
        assert len(calls) == 1
        assert calls[0]["service"] == "turn_on"
        assert calls[0]["service_data"]["brightness"] == 3  # 1%
        assert calls[0]["service_data"]["transition"] == 5.0

        ramp = b.state.level_ramp
        assert ramp.start_level == 80
        assert ramp.target_level == 1
        assert ramp.duration_ms == 5000
        assert ramp.start_ms == 300

        b.timers.advance(3700)
        b.driver.button_action(ButtonId.BOTTOM, RELEASE)

        # lerp(80, 1, 3700, 5000) = 21.54 -> 22%
        calls = b.calls()
        assert len(calls) == 1
        assert calls[0]["service_data"]["brightness"] == 56
        assert calls[0]["service_data"]["transition"] == 0.0
        assert b.state.holds == {}

    def test_hold_rate_uses_direction_rate(self, on_bridge):
        b = on_bridge
        b.driver.set_rate("hold_rate_down", 3000)
        b.driver.button_action(ButtonId.BOTTOM, PRESS)
        b.timers.advance(300)
        assert b.calls()[0]["service_data"]["transition"] == 3.0

    def test_hold_rate_falls_back_to_default_brightness_rate(self, on_bridge):
        b = on_bridge
        b.driver.set_rate("brightness_rate_default", 2500)
        b.driver.button_action(ButtonId.TOP, PRESS)
        b.timers.advance(300)
        assert b.calls()[0]["service_data"]["transition"] == 2.5

    def test_exactly_one_ramp_command_while_held(self, on_bridge):
        b = on_bridge
        b.driver.button_action(ButtonId.TOP, PRESS)
        b.timers.advance(10000)
        calls = b.calls()
        assert len(calls) == 1
        assert calls[0]["service_data"]["brightness"] == 255

    def test_hold_announces_brightness_changing(self, on_bridge):
        b = on_bridge
        b.driver.button_action(ButtonId.TOP, PRESS)
        b.timers.advance(300)
        changing = [n for n in b.take() if n.name == "LIGHT_BRIGHTNESS_CHANGING"]
        assert len(changing) == 1
        assert changing[0].to_params() == {
            "LIGHT_BRIGHTNESS_CURRENT": 80,
            "LIGHT_BRIGHTNESS_TARGET": 100,
            "RATE": 5000,
        }

    def test_misfire_release_becomes_click(self, bridge):
        """Release within the grace period after the ramp starts is a click."""
        bridge.go_online(power="off")
        bridge.driver.set_rate("click_rate_up", 750)

        bridge.driver.button_action(ButtonId.TOP, PRESS)
        bridge.timers.advance(300)
        assert len(bridge.calls()) == 1

        bridge.timers.advance(200)
        bridge.driver.button_action(ButtonId.TOP, RELEASE)

        calls = bridge.calls()
        assert len(calls) == 1
        assert calls[0]["service"] == "turn_on"
        assert calls[0]["service_data"]["brightness"] == 255
        assert calls[0]["service_data"]["transition"] == 0.75

    def test_release_just_after_grace_freezes(self, on_bridge):
        b = on_bridge
        b.driver.button_action(ButtonId.BOTTOM, PRESS)
        b.timers.advance(300)
        b.calls()

        b.timers.advance(251)
        b.driver.button_action(ButtonId.BOTTOM, RELEASE)

        calls = b.calls()
        # lerp(80, 1, 251, 5000) = 76.03 -> 76%
        assert calls[0]["service_data"]["brightness"] == 194
        assert calls[0]["service_data"]["transition"] == 0.0

    def test_direction_fixed_at_press_time(self, on_bridge):
        """A toggle pressed while on ramps down even if the light turns off meanwhile."""
        b = on_bridge
        b.driver.button_action(ButtonId.TOGGLE, PRESS)
        session = b.state.holds[ButtonId.TOGGLE]
        assert session.direction == Direction.DOWN
        assert session.pending_target == 1

        b.feed("off")
        b.timers.advance(300)
        assert b.calls()[-1]["service_data"]["brightness"] == 3

    def test_new_press_supersedes_previous(self, on_bridge):
        b = on_bridge
        b.driver.button_action(ButtonId.TOP, PRESS)
        b.timers.advance(100)
        b.driver.button_action(ButtonId.BOTTOM, PRESS)
        b.timers.advance(1000)

        calls = b.calls()
        assert len(calls) == 1
        assert calls[0]["service_data"]["brightness"] == 3
        assert list(b.state.holds) == [ButtonId.BOTTOM]


class TestClicks:
    """Short presses and explicit CLICK actions."""

    def test_scenario_quick_press_release_turns_off(self, bridge):
        bridge.go_online(brightness=204)
        bridge.driver.set_rate("click_rate_down", 1000)

        bridge.driver.button_action(ButtonId.BOTTOM, PRESS)
        bridge.timers.advance(100)
        bridge.driver.button_action(ButtonId.BOTTOM, RELEASE)
        bridge.timers.advance(5000)

        calls = bridge.calls()
        assert calls == [{
            "domain": "light",
            "service": "turn_off",
            "service_data": {"transition": 1.0},
            "target": {"entity_id": "light.kitchen"},
        }]
        assert bridge.timers.pending() == []

    def test_click_rate_falls_back_to_default(self, bridge):
        bridge.go_online(power="off")
        bridge.driver.set_rate("brightness_rate_default", 400)
        bridge.driver.button_action(ButtonId.TOP, CLICK)
        assert bridge.calls()[0]["service_data"]["transition"] == 0.4

    def test_top_click_uses_previous_level(self, bridge):
        # HA keeps the brightness attribute while off
        bridge.go_online(power="off", brightness=153)
        bridge.driver.button_action(ButtonId.TOP, CLICK)
        assert bridge.calls()[0]["service_data"]["brightness"] == 153

    def test_toggle_click(self, bridge):
        bridge.go_online(brightness=255)
        bridge.driver.button_action(ButtonId.TOGGLE, CLICK)
        assert bridge.calls()[0]["service"] == "turn_off"

        bridge.feed("off")
        bridge.driver.button_action(ButtonId.TOGGLE, CLICK)
        assert bridge.calls()[0]["service"] == "turn_on"

    def test_release_without_press_is_click(self, bridge):
        bridge.go_online(brightness=255)
        bridge.driver.button_action(ButtonId.BOTTOM, RELEASE)
        assert bridge.calls()[0]["service"] == "turn_off"

    def test_click_cancels_pending_hold(self, bridge):
        bridge.go_online(power="off")
        bridge.driver.button_action(ButtonId.TOP, PRESS)
        bridge.driver.button_action(ButtonId.TOP, CLICK)
        bridge.timers.advance(1000)

        calls = bridge.calls()
        assert len(calls) == 1
        assert bridge.state.holds == {}

    @pytest.mark.parametrize("button_id,action", [
        ("9", "1"),
        ("top", "1"),
        ("0", "5"),
        (None, None),
    ])
    def test_malformed_input_is_ignored(self, bridge, button_id, action):
        bridge.go_online(brightness=255)
        assert bridge.driver.button_action(button_id, action) is False
        assert bridge.calls() == []
        assert bridge.timers.pending() == []
