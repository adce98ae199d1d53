"""Smart-home bridge: JSON light messages in, retained status documents out.

The pub/sub transport is injected. Anything with a paho-style interface
(``connect``, ``subscribe``, ``publish``, ``loop_start``/``loop_stop`` and an
assignable ``on_message``) works; the adapter never opens sockets itself.
"""
from __future__ import annotations

import json
import logging
import math
from typing import Any, List, Optional

from command_queue import Command
from light_state import Light

logger = logging.getLogger(__name__)


class BridgeAdapter:
    def __init__(
        self,
        controller,
        client,
        broker: str,
        port: int,
        device_id: str,
        state_topic: str,
    ) -> None:
        self._controller = controller
        self._client = client
        self.broker = broker
        self.port = port
        self.device_id = device_id
        self.state_topic = state_topic
        self.command_topic = f"{state_topic}/set"

    # ------------------------------ lifecycle ------------------------------ #
    def start(self) -> None:
        self._client.on_message = self._on_message
        self._controller.add_state_listener(self.publish_state)
        try:
            self._client.connect(self.broker, self.port)
            self._client.subscribe(self.command_topic)
            self._client.loop_start()
        except OSError as exc:
            # Local input keeps working without the bridge.
            logger.error(
                "Bridge %s could not reach %s:%s: %s",
                self.device_id, self.broker, self.port, exc,
            )
            return
        logger.info("Bridge %s listening on %s", self.device_id, self.command_topic)
        snapshot = self._controller.light_snapshot()
        if snapshot is not None:
            self.publish_state(snapshot)

    def stop(self) -> None:
        try:
            self._client.loop_stop()
            self._client.disconnect()
        except OSError as exc:
            logger.warning("Bridge %s disconnect failed: %s", self.device_id, exc)

    # ------------------------------- inbound ------------------------------- #
    def _on_message(self, client, userdata, message) -> None:
        if message.topic != self.command_topic:
            return
        self.handle_payload(message.payload)

    def handle_payload(self, payload) -> List[Command]:
        """Decode one JSON command document and enqueue the resulting commands."""
        commands = self.decode_payload(payload)
        for command in commands:
            self._controller.add_input_command(command)
        return commands

    def decode_payload(self, payload) -> List[Command]:
        if isinstance(payload, (bytes, bytearray)):
            payload = payload.decode("utf-8", errors="replace")
        try:
            data = json.loads(payload)
        except (TypeError, ValueError) as exc:
            logger.warning("Ignoring malformed bridge payload %r: %s", payload, exc)
            return []
        if not isinstance(data, dict):
            logger.warning("Ignoring non-object bridge payload %r", data)
            return []

        commands: List[Command] = []
        state = data.get("state")
        if isinstance(state, str) and state.upper() in ("ON", "OFF"):
            commands.append(Command.set_power(state.upper() == "ON"))

        brightness = data.get("brightness")
        if _is_number(brightness):
            commands.append(Command.set_brightness(int(brightness)))

        color = _decode_color(data.get("color"))
        if color is not None:
            commands.append(Command.set_color(*color))

        effect = data.get("effect")
        if isinstance(effect, str):
            commands.append(Command.select_effect(effect))
        return commands

    # ------------------------------- outbound ------------------------------ #
    def state_payload(self, light: Light) -> str:
        data = light.as_dict()
        data["state"] = "ON" if light.state else "OFF"
        data["color_mode"] = "rgbw"
        data["device_id"] = self.device_id
        return json.dumps(data, sort_keys=True)

    def publish_state(self, light: Light) -> None:
        try:
            self._client.publish(self.state_topic, self.state_payload(light), retain=True)
        except (OSError, RuntimeError, ValueError) as exc:
            logger.warning("Bridge %s failed to publish state: %s", self.device_id, exc)


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _decode_color(color: Any) -> Optional[tuple]:
    if not isinstance(color, dict):
        return None
    keys = ("r", "g", "b", "w") if "w" in color else ("r", "g", "b")
    values = [color.get(key) for key in keys]
    if not all(_is_number(value) for value in values):
        logger.warning("Ignoring malformed colour %r", color)
        return None
    return tuple(int(value) for value in values)
