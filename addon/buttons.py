#!/usr/bin/env python3
"""Button handling for the proxy's dimmer keypad.

Classifies press/release sequences into clicks and hold ramps:
- press starts a hold-detect timer
- release before it fires is a click (on / off / toggle)
- if it fires, a ramp toward the hold target starts; release then freezes
  the light at the interpolated level
- a release right after the ramp started is a misfire and becomes a click

Direction and hold target are decided at press time and never revisited.
"""

import logging
from enum import IntEnum
from typing import Any, Optional

from config import to_int
from on_mode import click_rate_ms, hold_rate_ms
from state import ButtonHoldSession, ButtonId, Direction, LevelRamp
from timers import TimerHandle

logger = logging.getLogger(__name__)

# Proxy button-link bindings -> buttons
BINDING_BUTTONS = {
    200: ButtonId.TOP,
    201: ButtonId.BOTTOM,
    202: ButtonId.TOGGLE,
}


class ButtonAction(IntEnum):
    RELEASE = 0
    PRESS = 1
    CLICK = 2


def parse_button(value: Any) -> Optional[ButtonId]:
    number = to_int(value)
    if number is None:
        return None
    try:
        return ButtonId(number)
    except ValueError:
        return None


def parse_action(value: Any) -> Optional[ButtonAction]:
    number = to_int(value)
    if number is None:
        return None
    try:
        return ButtonAction(number)
    except ValueError:
        return None


class HoldClickStateMachine:
    """Press/hold/click state machine driving the light's brightness."""

    def __init__(self, driver, hold_detect_ms: int, misfire_grace_ms: int, hold_rate_default_ms: int):
        self.driver = driver
        self.state = driver.state
        self.timers = driver.timers
        self.hold_detect_ms = hold_detect_ms
        self.misfire_grace_ms = misfire_grace_ms
        self.hold_rate_default_ms = hold_rate_default_ms

    def handle(self, button_id: Any, action: Any) -> bool:
        """Handle a BUTTON_ACTION. Returns False for malformed input."""
        button = parse_button(button_id)
        button_action = parse_action(action)
        if button is None or button_action is None:
            logger.warning(f"Ignoring button action {action!r} for button {button_id!r}")
            return False

        if button_action == ButtonAction.PRESS:
            self.press(button)
        elif button_action == ButtonAction.RELEASE:
            self.release(button)
        else:
            self.click(button)
        return True

    def press(self, button: ButtonId) -> None:
        self._cancel_sessions()

        direction = self._direction_for(button)
        if button == ButtonId.TOP:
            target = 100
        elif button == ButtonId.BOTTOM:
            target = 1
        else:
            target = 1 if self.state.light.on else 100

        session = ButtonHoldSession(
            button=button,
            direction=direction,
            pending_target=target,
            press_ms=self.timers.now_ms(),
        )
        session.detect_timer = self.timers.schedule(self.hold_detect_ms, self._on_hold_detected)
        self.state.holds[button] = session
        logger.debug(f"Button {button.name} pressed ({direction.value}, target={target})")

    def release(self, button: ButtonId) -> None:
        session = self.state.holds.pop(button, None)
        if session is None:
            # Release without a tracked press, e.g. a PUSH lost in transit
            self._click(button)
            return

        self.timers.cancel(session.detect_timer)
        session.detect_timer = None

        if not session.active:
            self._click(button, session.direction)
            return

        now = self.timers.now_ms()
        held_after_ramp_ms = now - session.ramp_start_ms
        if held_after_ramp_ms <= self.misfire_grace_ms:
            logger.info(f"Button {button.name} hold released after {held_after_ramp_ms}ms, treating as click")
            self._click(button, session.direction)
            return

        ramp = self.state.level_ramp
        frozen = ramp.level_at(now) if ramp is not None else self.state.light.level
        logger.info(f"Button {button.name} hold released, freezing at {frozen}%")
        self.driver.set_brightness_target(frozen, 0)

    def click(self, button: ButtonId) -> None:
        self._cancel_sessions()
        self._click(button)

    def _direction_for(self, button: ButtonId) -> Direction:
        if button == ButtonId.TOP:
            return Direction.UP
        if button == ButtonId.BOTTOM:
            return Direction.DOWN
        return Direction.DOWN if self.state.light.on else Direction.UP

    def _click(self, button: ButtonId, direction: Optional[Direction] = None) -> None:
        if direction is None:
            direction = self._direction_for(button)
        rate = click_rate_ms(self.state.rates, direction)
        if direction == Direction.UP:
            self.driver.set_brightness_target(self.driver.on_level(), rate)
        else:
            self.driver.set_brightness_target(0, rate)

    def _on_hold_detected(self, handle: TimerHandle) -> None:
        session = next((s for s in self.state.holds.values() if s.detect_timer is handle), None)
        if session is None:
            return
        session.detect_timer = None

        rate = hold_rate_ms(self.state.rates, session.direction, self.hold_rate_default_ms)
        now = self.timers.now_ms()
        level_ramp = LevelRamp(
            start_ms=now,
            duration_ms=rate,
            start_level=self.state.light.level,
            target_level=session.pending_target,
        )
        session.active = True
        session.ramp_start_ms = now

        logger.info(f"Button {session.button.name} held, ramping to {session.pending_target}% over {rate}ms")
        self.driver.set_brightness_target(session.pending_target, rate)
        self.state.level_ramp = level_ramp

    def _cancel_sessions(self) -> None:
        for session in self.state.holds.values():
            self.timers.cancel(session.detect_timer)
            session.detect_timer = None
        self.state.holds.clear()
