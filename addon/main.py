#!/usr/bin/env python3
"""Light proxy bridge - Home Assistant websocket client and entry point."""

import asyncio
import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional

import websockets

from config import BridgeConfig, get_data_directory, load_config
from driver import LightDriver
from light_controller import HomeAssistantLightController
from notifier import Notifier
from scenes import SceneStore
from timers import TimerService
from webserver import ProxyServer

logger = logging.getLogger(__name__)


class HomeAssistantWebSocketClient:
    """WebSocket client for Home Assistant, feeding one LightDriver."""

    def __init__(self, config: BridgeConfig, driver: LightDriver, controller: HomeAssistantLightController):
        """Initialize the client.

        Args:
            config: Bridge configuration (connection settings and entity)
            driver: Driver receiving state snapshots for the entity
            controller: Light controller whose queued service calls we deliver
        """
        self.config = config
        self.access_token = config.ha_token
        self.driver = driver
        self.controller = controller
        self.websocket = None
        self.message_id = 1
        self.sender_task: Optional[asyncio.Task] = None

    @property
    def websocket_url(self) -> str:
        """Get the WebSocket URL."""
        return self.config.websocket_url

    def _get_next_message_id(self) -> int:
        """Get the next message ID."""
        current_id = self.message_id
        self.message_id += 1
        return current_id

    async def authenticate(self) -> bool:
        """Authenticate with Home Assistant."""
        try:
            # Wait for auth_required message
            auth_required = await self.websocket.recv()
            auth_msg = json.loads(auth_required)

            if auth_msg["type"] != "auth_required":
                logger.error(f"Unexpected message type: {auth_msg['type']}")
                return False

            await self.websocket.send(json.dumps({
                "type": "auth",
                "access_token": self.access_token
            }))

            auth_result = await self.websocket.recv()
            result_msg = json.loads(auth_result)

            if result_msg["type"] == "auth_ok":
                logger.info("Successfully authenticated with Home Assistant")
                return True
            logger.error(f"Authentication failed: {result_msg}")
            return False

        except Exception as e:
            logger.error(f"Authentication error: {e}")
            return False

    async def subscribe_events(self, event_type: Optional[str] = None) -> int:
        """Subscribe to events.

        Args:
            event_type: Specific event type to subscribe to, or None for all events

        Returns:
            Message ID of the subscription request
        """
        message_id = self._get_next_message_id()

        subscribe_msg = {
            "id": message_id,
            "type": "subscribe_events"
        }

        if event_type:
            subscribe_msg["event_type"] = event_type

        await self.websocket.send(json.dumps(subscribe_msg))
        logger.info(f"Subscribed to events (id: {message_id}, type: {event_type or 'all'})")

        return message_id

    async def call_service(self, domain: str, service: str, service_data: Dict[str, Any],
                           target: Optional[Dict[str, Any]] = None) -> int:
        """Call a Home Assistant service.

        Returns:
            Message ID of the service call
        """
        if not self.websocket:
            raise ConnectionError("WebSocket not connected")

        message_id = self._get_next_message_id()
        service_msg = {
            "id": message_id,
            "type": "call_service",
            "domain": domain,
            "service": service,
            "service_data": service_data or {},
        }
        if target:
            service_msg["target"] = target

        await self.websocket.send(json.dumps(service_msg))
        logger.debug(f"Called service: {domain}.{service} (id: {message_id})")
        return message_id

    async def get_states(self) -> List[Dict[str, Any]]:
        """Get all entity states.

        Returns:
            List of entity states, or empty list if failed
        """
        logger.info("Requesting all entity states...")
        result = await self.send_message_wait_response({"type": "get_states"})

        if isinstance(result, list):
            logger.info(f"Loaded {len(result)} entity states")
            return result

        logger.error(f"Failed to get states or invalid response: {type(result)}")
        return []

    async def load_initial_state(self) -> bool:
        """Feed the configured entity's current state to the driver."""
        states = await self.get_states()
        for entity_state in states:
            if entity_state.get("entity_id") == self.config.entity_id:
                return self.driver.handle_state(entity_state)
        logger.warning(f"Entity {self.config.entity_id} not found in Home Assistant states")
        return False

    async def handle_message(self, message: Dict[str, Any]):
        """Handle incoming messages."""
        msg_type = message.get("type")

        if msg_type == "event":
            event = message.get("event", {})
            event_type = event.get("event_type", "unknown")
            event_data = event.get("data", {})

            if event_type != "state_changed":
                logger.debug(f"Event received: {event_type}")
                return
            if event_data.get("entity_id") != self.config.entity_id:
                return

            new_state = event_data.get("new_state")
            if new_state is None:
                logger.warning(f"{self.config.entity_id} was removed from Home Assistant")
                return
            self.driver.handle_state(new_state)

        elif msg_type == "result":
            success = message.get("success", False)
            if not success:
                logger.error(f"Request {message.get('id')} failed: {message.get('error')}")
            else:
                logger.debug(f"Result for message {message.get('id')}: success")

        else:
            logger.debug(f"Received message type: {msg_type}")

    async def send_message_wait_response(self, message: Dict[str, Any]) -> Optional[Any]:
        """Send a request and wait for its result, skipping unrelated frames."""
        if not self.websocket:
            logger.error("WebSocket not connected")
            return None

        message["id"] = self._get_next_message_id()
        msg_id = message["id"]

        try:
            await self.websocket.send(json.dumps(message))
        except Exception as e:
            logger.error(f"WebSocket send failed for id={msg_id}: {e}")
            return None

        loop = asyncio.get_running_loop()
        deadline = loop.time() + 10.0

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.error(f"Timeout waiting for response to message id={msg_id}")
                return None

            try:
                frame = await asyncio.wait_for(self.websocket.recv(), timeout=remaining)
            except asyncio.TimeoutError:
                logger.error(f"Timeout waiting for response to message id={msg_id}")
                return None
            except Exception as e:
                logger.error(f"Error waiting for response to id={msg_id}: {e}")
                return None

            try:
                data = json.loads(frame)
            except json.JSONDecodeError:
                logger.debug(f"Ignoring non-JSON frame while waiting for id={msg_id}: {frame!r}")
                continue

            if data.get("id") != msg_id:
                continue

            if data.get("type") == "result" and data.get("success", False):
                return data.get("result")

            logger.error(f"Error response to id={msg_id}: {data.get('error')}")
            return None

    async def listen(self):
        """Main listener loop."""
        try:
            logger.info(f"Connecting to {self.websocket_url}")

            async with websockets.connect(self.websocket_url) as websocket:
                self.websocket = websocket

                if not await self.authenticate():
                    logger.error("Failed to authenticate")
                    return

                await self.load_initial_state()
                await self.subscribe_events("state_changed")

                # Deliver queued light commands while we listen
                self.sender_task = asyncio.create_task(self.controller.run(self))

                logger.info(f"Listening for state changes of {self.config.entity_id}...")
                async for message in websocket:
                    try:
                        msg = json.loads(message)
                        await self.handle_message(msg)
                    except json.JSONDecodeError:
                        logger.error(f"Failed to decode message: {message}")
                    except Exception as e:
                        logger.error(f"Error handling message: {e}")

        except websockets.exceptions.ConnectionClosed:
            logger.warning("WebSocket connection closed")
        except Exception as e:
            logger.error(f"Connection error: {e}")
        finally:
            if self.sender_task and not self.sender_task.done():
                self.sender_task.cancel()
                try:
                    await self.sender_task
                except asyncio.CancelledError:
                    pass
            self.sender_task = None
            self.websocket = None

            dropped = self.controller.drain()
            if dropped:
                logger.warning(f"Dropped {len(dropped)} light command(s) while disconnected")

    async def run(self):
        """Run the client with automatic reconnection."""
        reconnect_interval = 5

        while True:
            try:
                await self.listen()
            except Exception as e:
                logger.error(f"Unexpected error: {e}")

            logger.info(f"Reconnecting in {reconnect_interval} seconds...")
            await asyncio.sleep(reconnect_interval)


async def run_bridge(config: BridgeConfig):
    """Wire up the driver, the HA client and the proxy server and run them."""
    notifier = Notifier()
    controller = HomeAssistantLightController(config.entity_id, config.brightness_scale)
    scene_store = SceneStore(os.path.join(get_data_directory(), "scenes.json"))
    driver = LightDriver(config, controller, TimerService(), notifier, scene_store)
    driver.start()

    client = HomeAssistantWebSocketClient(config, driver, controller)
    server = ProxyServer(driver, notifier, config.proxy_port)

    await asyncio.gather(client.run(), server.start())


def main():
    """Main entry point."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    config = load_config()
    logging.getLogger().setLevel(getattr(logging, config.log_level.upper(), logging.INFO))

    if not config.ha_token:
        logger.error("HA_TOKEN environment variable is required")
        logger.info("Please set HA_TOKEN with your Home Assistant long-lived access token")
        sys.exit(1)

    if not config.entity_id:
        logger.error("LIGHT_ENTITY_ID (or entity_id in options.json) is required")
        sys.exit(1)

    try:
        asyncio.run(run_bridge(config))
    except KeyboardInterrupt:
        logger.info("Shutting down...")


if __name__ == "__main__":
    main()
