"""
Light controller for the bridged Home Assistant light.
Turns LightCommands into light.turn_on / light.turn_off service calls.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class LightCommand:
    """Command to control the light."""
    on: bool = True
    level: Optional[int] = None  # 0-100
    transition: Optional[float] = None  # seconds
    xy_color: Optional[Tuple[float, float]] = None
    color_temp_kelvin: Optional[int] = None
    effect: Optional[str] = None


def scale_value(value: float, to_max: int, from_max: int) -> int:
    """Map value from a 0-from_max range onto 0-to_max, rounding half up."""
    return int(value * to_max / from_max + 0.5)


class HomeAssistantLightController:
    """External command sink for one light entity.

    Commands are fire-and-forget: submit() builds and queues the service call
    immediately and run() delivers queued calls over the websocket client.
    """

    def __init__(self, entity_id: str, brightness_scale: int = 255):
        self.entity_id = entity_id
        self.brightness_scale = brightness_scale
        self._outbox: asyncio.Queue = asyncio.Queue()

    def build_service_call(self, command: LightCommand) -> Dict[str, Any]:
        """Build the service call for a command."""
        service_data: Dict[str, Any] = {}

        if command.on:
            service = "turn_on"
            if command.level is not None:
                service_data["brightness"] = scale_value(command.level, self.brightness_scale, 100)
            if command.xy_color is not None:
                service_data["xy_color"] = list(command.xy_color)
            if command.color_temp_kelvin is not None:
                service_data["color_temp_kelvin"] = command.color_temp_kelvin
            if command.effect is not None:
                service_data["effect"] = command.effect
        else:
            service = "turn_off"

        if command.transition is not None:
            service_data["transition"] = command.transition

        return {
            "domain": "light",
            "service": service,
            "service_data": service_data,
            "target": {"entity_id": self.entity_id},
        }

    def submit(self, command: LightCommand) -> Dict[str, Any]:
        """Queue a command for delivery. Returns the service call."""
        call = self.build_service_call(command)
        logger.info(f"Sending light.{call['service']} to {self.entity_id}: {call['service_data']}")
        self._outbox.put_nowait(call)
        return call

    def drain(self) -> List[Dict[str, Any]]:
        """Remove and return every queued call without sending it."""
        calls = []
        while not self._outbox.empty():
            calls.append(self._outbox.get_nowait())
        return calls

    async def run(self, ws_client) -> None:
        """Deliver queued calls until cancelled."""
        while True:
            call = await self._outbox.get()
            try:
                await ws_client.call_service(
                    call["domain"],
                    call["service"],
                    call["service_data"],
                    call["target"],
                )
            except Exception as e:
                logger.error(f"Failed to send light.{call['service']} to {self.entity_id}: {e}")
