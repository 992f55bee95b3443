#!/usr/bin/env python3
"""Outbound notifications toward the proxy.

Each notification is a small dataclass carrying its proxy name and the
parameters the proxy expects. The Notifier fans them out to whoever is
subscribed (the proxy event websocket in production, lists in tests).
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Dict, Iterable, List, Optional
from xml.sax.saxutils import quoteattr

logger = logging.getLogger(__name__)


@dataclass
class Notification:
    name: ClassVar[str] = ""

    def to_params(self) -> Dict[str, Any]:
        raise NotImplementedError

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "params": self.to_params()}


@dataclass
class BrightnessChanging(Notification):
    name: ClassVar[str] = "LIGHT_BRIGHTNESS_CHANGING"
    current: int
    target: int
    rate: int

    def to_params(self) -> Dict[str, Any]:
        return {
            "LIGHT_BRIGHTNESS_CURRENT": self.current,
            "LIGHT_BRIGHTNESS_TARGET": self.target,
            "RATE": self.rate,
        }


@dataclass
class BrightnessChanged(Notification):
    name: ClassVar[str] = "LIGHT_BRIGHTNESS_CHANGED"
    current: int
    preset_id: Optional[int] = None

    def to_params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {"LIGHT_BRIGHTNESS_CURRENT": self.current}
        if self.preset_id is not None:
            params["LIGHT_BRIGHTNESS_CURRENT_PRESET_ID"] = self.preset_id
        return params


@dataclass
class ColorChanging(Notification):
    name: ClassVar[str] = "LIGHT_COLOR_CHANGING"
    target_x: float
    target_y: float
    mode: int
    rate: int

    def to_params(self) -> Dict[str, Any]:
        return {
            "LIGHT_COLOR_TARGET_X": self.target_x,
            "LIGHT_COLOR_TARGET_Y": self.target_y,
            "LIGHT_COLOR_TARGET_COLOR_MODE": self.mode,
            "LIGHT_COLOR_TARGET_COLOR_RATE": self.rate,
        }


@dataclass
class ColorChanged(Notification):
    name: ClassVar[str] = "LIGHT_COLOR_CHANGED"
    x: float
    y: float
    mode: int

    def to_params(self) -> Dict[str, Any]:
        return {
            "LIGHT_COLOR_CURRENT_X": self.x,
            "LIGHT_COLOR_CURRENT_Y": self.y,
            "LIGHT_COLOR_CURRENT_COLOR_MODE": self.mode,
        }


@dataclass
class CapabilitiesChanged(Notification):
    name: ClassVar[str] = "DYNAMIC_CAPABILITIES_CHANGED"
    dimmer: bool
    supports_color: bool
    supports_cct: bool
    kelvin_min: int
    kelvin_max: int
    has_extras: bool

    def to_params(self) -> Dict[str, Any]:
        return {
            "dimmer": self.dimmer,
            "set_level": self.dimmer,
            "supports_target": self.dimmer,
            "supports_color": self.supports_color,
            "supports_color_correlated_temperature": self.supports_cct,
            "color_correlated_temperature_min": self.kelvin_min,
            "color_correlated_temperature_max": self.kelvin_max,
            "has_extras": self.has_extras,
        }


@dataclass
class OnlineChanged(Notification):
    name: ClassVar[str] = "ONLINE_CHANGED"
    state: bool

    def to_params(self) -> Dict[str, Any]:
        return {"STATE": self.state}


@dataclass
class ExtrasSetupChanged(Notification):
    name: ClassVar[str] = "EXTRAS_SETUP_CHANGED"
    xml: str

    def to_params(self) -> Dict[str, Any]:
        return {"XML": self.xml}


@dataclass
class ExtrasStateChanged(Notification):
    name: ClassVar[str] = "EXTRAS_STATE_CHANGED"
    xml: str

    def to_params(self) -> Dict[str, Any]:
        return {"XML": self.xml}


def effects_state_xml(effect: str) -> str:
    return (
        '<extras_state><extra><object id="effect" value=' + quoteattr(effect)
        + '/></extra></extras_state>'
    )


def effects_setup_xml(effects: Iterable[str], current: str) -> str:
    items = "".join(f"<item text={quoteattr(e)} value={quoteattr(e)}/>" for e in effects)
    return (
        '<extras_setup><extra><section label="Effects">'
        '<object type="list" id="effect" label="Effect" command="SELECT_LIGHT_EFFECT" value='
        + quoteattr(current)
        + '><list maxselections="1" minselections="1">' + items + '</list></object>'
        '</section></extra></extras_setup>'
    )


class Notifier:
    """Fans proxy notifications out to subscribers."""

    def __init__(self):
        self._subscribers: List[Callable[[Notification], None]] = []

    def subscribe(self, callback: Callable[[Notification], None]) -> Callable[[], None]:
        """Register a subscriber. Returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def send(self, notification: Notification) -> None:
        logger.debug(f"-> proxy {notification.name}: {notification.to_params()}")
        for callback in list(self._subscribers):
            callback(notification)
