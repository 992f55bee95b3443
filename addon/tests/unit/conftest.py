"""Shared fixtures: a manual clock and a fully wired driver."""

from typing import List

import pytest

from config import BridgeConfig
from driver import LightDriver
from light_controller import HomeAssistantLightController
from notifier import Notification, Notifier
from scenes import SceneStore
from timers import TimerHandle

ENTITY_ID = "light.kitchen"


class ManualTimerService:
    """TimerService driven by advance() instead of the event loop."""

    def __init__(self, start_ms: int = 0):
        self.now = start_ms
        self._scheduled: List[tuple] = []
        self._seq = 0

    def now_ms(self) -> int:
        return self.now

    def schedule(self, duration_ms, callback) -> TimerHandle:
        handle = TimerHandle(callback, duration_ms)
        self._seq += 1
        self._scheduled.append((self.now + max(duration_ms, 0), self._seq, handle))
        return handle

    def cancel(self, handle) -> None:
        if handle is not None:
            handle.cancel()

    def pending(self) -> List[TimerHandle]:
        return [h for _, _, h in self._scheduled if h.active]

    def advance(self, ms: int) -> None:
        """Move the clock forward, firing due timers in due-time order."""
        end = self.now + ms
        while True:
            due = sorted(
                (entry for entry in self._scheduled if entry[2].active and entry[0] <= end),
                key=lambda entry: (entry[0], entry[1]),
            )
            if not due:
                break
            when, _, handle = due[0]
            self.now = when
            handle.fire()
        self.now = end
        self._scheduled = [entry for entry in self._scheduled if entry[2].active]


class Bridge:
    """A LightDriver wired to a manual clock, recording everything it sends."""

    def __init__(self, tmp_path=None, **overrides):
        options = {"entity_id": ENTITY_ID}
        options.update(overrides)
        self.config = BridgeConfig.from_dict(options)
        self.timers = ManualTimerService()
        self.notifier = Notifier()
        self.notifications: List[Notification] = []
        self.notifier.subscribe(self.notifications.append)
        self.controller = HomeAssistantLightController(ENTITY_ID, self.config.brightness_scale)
        store_path = str(tmp_path / "scenes.json") if tmp_path is not None else None
        self.driver = LightDriver(self.config, self.controller, self.timers, self.notifier, SceneStore(store_path))

    @property
    def state(self):
        return self.driver.state

    def calls(self) -> list:
        """Service calls submitted since the last call to calls()."""
        return self.controller.drain()

    def names(self) -> List[str]:
        return [n.name for n in self.notifications]

    def take(self) -> List[Notification]:
        """Notifications sent since the last take()."""
        sent = list(self.notifications)
        self.notifications.clear()
        return sent

    def feed(self, power="on", **attributes) -> bool:
        return self.driver.handle_state({
            "entity_id": ENTITY_ID,
            "state": power,
            "attributes": attributes,
        })

    def go_online(self, power="on", **attributes) -> None:
        """Deliver an initial snapshot and forget what it produced."""
        attributes.setdefault("supported_color_modes", ["color_temp", "xy"])
        self.feed(power, **attributes)
        self.take()
        self.calls()


@pytest.fixture
def timers():
    return ManualTimerService()


@pytest.fixture
def bridge(tmp_path):
    return Bridge(tmp_path)


@pytest.fixture
def make_bridge(tmp_path):
    def factory(**overrides):
        return Bridge(tmp_path, **overrides)
    return factory
