#!/usr/bin/env python3
"""Driver state for the light proxy bridge.

Everything the driver knows lives in one DriverState aggregate that is passed
by reference to each component:
- LightState mirrors what Home Assistant last reported
- on-mode configs and rates are set by proxy configuration commands
- ramp timers, hold sessions and the last level ramp are runtime only

Nothing here is persisted; the proxy re-sends its configuration on startup.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Set

from timers import TimerHandle

DEFAULT_EFFECT = "Select Effect"
DEFAULT_MIN_KELVIN = 500
DEFAULT_MAX_KELVIN = 20000


class ColorMode(IntEnum):
    """Proxy color mode for an xy pair."""
    FULL_COLOR = 0
    CCT = 1


class BrightnessOrigin(Enum):
    """Where the "turn on" level comes from."""
    PREVIOUS = "previous"
    PRESET = "preset"


class ColorOrigin(IntEnum):
    """Where the "turn on" color comes from."""
    NONE = 0
    PREVIOUS = 1
    PRESET = 2


class Channel(Enum):
    """Notification channels gated by ramp timers."""
    BRIGHTNESS = "brightness"
    COLOR = "color"
    SCENE = "scene"  # combined brightness + color


class ButtonId(IntEnum):
    """Physical buttons of the proxy's dimmer keypad."""
    TOP = 0
    BOTTOM = 1
    TOGGLE = 2


class Direction(Enum):
    UP = "up"
    DOWN = "down"


def lerp(start: float, target: float, elapsed_ms: float, duration_ms: float) -> int:
    """Level reached after elapsed_ms of a linear ramp, clamped to the ramp."""
    if duration_ms <= 0:
        return int(round(target))
    fraction = max(0.0, min(1.0, elapsed_ms / duration_ms))
    return int(round(start + (target - start) * fraction))


@dataclass
class LightState:
    """Local mirror of the external light."""
    on: bool = False
    level: int = 0  # 0-100
    last_level: int = 100  # last non-zero level, for "Previous" on mode
    color_x: Optional[float] = None
    color_y: Optional[float] = None
    color_mode: ColorMode = ColorMode.FULL_COLOR
    min_kelvin: int = DEFAULT_MIN_KELVIN
    max_kelvin: int = DEFAULT_MAX_KELVIN
    supported_attributes: Set[str] = field(default_factory=set)
    has_brightness: bool = True
    has_effects: bool = False
    last_effect: str = DEFAULT_EFFECT
    effects_list: List[str] = field(default_factory=list)
    online: bool = False
    # Preset reported back in BRIGHTNESS_CHANGED when the level matches it
    brightness_preset_id: Optional[int] = None
    brightness_preset_level: Optional[int] = None
    # Last capabilities payload sent to the proxy
    capabilities: Optional[Dict[str, Any]] = None


@dataclass
class BrightnessOnModeConfig:
    origin: BrightnessOrigin = BrightnessOrigin.PREVIOUS
    preset_id: int = 0
    preset_level: Optional[int] = None


@dataclass
class ColorOnModeConfig:
    origin: ColorOrigin = ColorOrigin.NONE
    on_x: Optional[float] = None
    on_y: Optional[float] = None
    on_mode: Optional[int] = None
    fade_x: Optional[float] = None
    fade_y: Optional[float] = None
    fade_mode: Optional[int] = None
    fade_enabled: bool = False
    # "Previous On" color preset reported by the proxy
    previous_x: Optional[float] = None
    previous_y: Optional[float] = None
    previous_mode: Optional[int] = None


@dataclass
class RateConfig:
    """Transition rates in ms. Zero means "not configured"."""
    brightness_rate_default: int = 0
    color_rate_default: int = 0
    click_rate_up: int = 0
    click_rate_down: int = 0
    hold_rate_up: int = 0
    hold_rate_down: int = 0


@dataclass
class RampTimer:
    """Timer deferring CHANGED notifications until a transition completes.

    gates holds the channels this timer defers; pending holds the latest
    deferred notification per channel.
    """
    channel: Channel
    handle: Optional[TimerHandle] = None
    gates: Set[Channel] = field(default_factory=set)
    pending: Dict[Channel, Any] = field(default_factory=dict)

    @property
    def active(self) -> bool:
        return self.handle is not None and self.handle.active

    def reset(self) -> None:
        self.handle = None
        self.gates = set()
        self.pending = {}


@dataclass
class ButtonHoldSession:
    """One press of one button, from press until release."""
    button: ButtonId
    direction: Direction
    pending_target: int
    press_ms: int
    ramp_start_ms: int = 0
    active: bool = False  # hold ramp started
    detect_timer: Optional[TimerHandle] = None


@dataclass
class LevelRamp:
    """Last commanded hold/scene ramp, used to freeze at the current level."""
    start_ms: int = 0
    duration_ms: int = 0
    start_level: int = 0
    target_level: int = 0

    def level_at(self, now_ms: int) -> int:
        return lerp(self.start_level, self.target_level, now_ms - self.start_ms, self.duration_ms)


def _default_ramps() -> Dict[Channel, RampTimer]:
    return {channel: RampTimer(channel) for channel in Channel}


@dataclass
class DriverState:
    """Single aggregate of all mutable driver state."""
    entity_id: str
    light: LightState = field(default_factory=LightState)
    brightness_on_mode: BrightnessOnModeConfig = field(default_factory=BrightnessOnModeConfig)
    color_on_mode: ColorOnModeConfig = field(default_factory=ColorOnModeConfig)
    rates: RateConfig = field(default_factory=RateConfig)
    ramps: Dict[Channel, RampTimer] = field(default_factory=_default_ramps)
    holds: Dict[ButtonId, ButtonHoldSession] = field(default_factory=dict)
    # Last hold or scene ramp, cleared by any other brightness command
    level_ramp: Optional[LevelRamp] = None
    # Startup gate: outbound notifications are dropped until HA reports the light
    waiting_for_initial_state: bool = True
    watchdog: Optional[TimerHandle] = None
