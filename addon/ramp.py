#!/usr/bin/env python3
"""Ramp reconciliation: one CHANGED notification per commanded transition.

Home Assistant reports the target state of a transition almost immediately,
while the proxy expects CHANGED only once the ramp has finished. Every
transition command therefore starts a timer for its channel; snapshots that
arrive while the timer runs are held (latest wins) and forwarded once when it
fires.

Scene activation uses a combined timer that gates the brightness and color
channels together. A later brightness or color command releases its channel
from that timer.
"""

import logging
from typing import Callable, Iterable, Optional

from notifier import Notification
from state import Channel, DriverState, RampTimer
from timers import TimerHandle, TimerService

logger = logging.getLogger(__name__)

# Order in which deferred notifications are flushed on fire
FLUSH_ORDER = (Channel.BRIGHTNESS, Channel.COLOR)


class RampEngine:
    """Owns the per-channel ramp timers in DriverState.ramps."""

    def __init__(self, state: DriverState, timers: TimerService, emit: Callable[[Notification], None]):
        self.state = state
        self.timers = timers
        self._emit = emit

    def issue_transition(self, channel: Channel, rate_ms: int, *changing: Notification) -> None:
        """Announce a transition and (re)start the channel's timer.

        Any previous timer on the channel is cancelled first, so its pending
        notification can never be sent.
        """
        for notification in changing:
            self._emit(notification)
        self.release(channel)
        if rate_ms > 0:
            self._start(channel, rate_ms, {channel})

    def issue_combined(self, channels: Iterable[Channel], rate_ms: int, *changing: Notification) -> None:
        """Like issue_transition, with one timer gating several channels."""
        channels = set(channels)
        for notification in changing:
            self._emit(notification)
        for channel in channels:
            self.release(channel)
        self.cancel(Channel.SCENE)
        if rate_ms > 0:
            self._start(Channel.SCENE, rate_ms, channels)

    def on_snapshot(self, channel: Channel, notification: Notification) -> None:
        """Forward a CHANGED notification now, or hold it until the ramp ends."""
        ramp = self._gate_for(channel)
        if ramp is None:
            self._emit(notification)
            return
        ramp.pending[channel] = notification
        logger.debug(f"Deferred {notification.name} until {ramp.channel.value} ramp completes")

    def cancel(self, channel: Channel) -> None:
        """Drop a channel's timer and anything it was holding."""
        ramp = self.state.ramps[channel]
        if ramp.handle is not None:
            self.timers.cancel(ramp.handle)
        ramp.reset()

    def is_active(self, channel: Channel) -> bool:
        return self.state.ramps[channel].active

    def _gate_for(self, channel: Channel) -> Optional[RampTimer]:
        own = self.state.ramps[channel]
        if own.active:
            return own
        scene = self.state.ramps[Channel.SCENE]
        if scene.active and channel in scene.gates:
            return scene
        return None

    def release(self, channel: Channel) -> None:
        """Cancel a channel's timer and drop it from the combined scene timer."""
        self.cancel(channel)
        scene = self.state.ramps[Channel.SCENE]
        if channel is Channel.SCENE or not scene.active or channel not in scene.gates:
            return
        scene.gates.discard(channel)
        scene.pending.pop(channel, None)
        if not scene.gates:
            self.cancel(Channel.SCENE)

    def _start(self, channel: Channel, rate_ms: int, gates: set) -> None:
        ramp = self.state.ramps[channel]
        ramp.gates = set(gates)
        ramp.pending = {}
        ramp.handle = self.timers.schedule(rate_ms, self._on_fire)

    def _on_fire(self, handle: TimerHandle) -> None:
        ramp = next((r for r in self.state.ramps.values() if r.handle is handle), None)
        if ramp is None:
            return
        pending = ramp.pending
        ramp.reset()
        for channel in FLUSH_ORDER:
            notification = pending.get(channel)
            if notification is not None:
                self._emit(notification)
