"""
MIDI listener for a rotary knob controller.

Decodes the knob's relative control-change messages and button notes into
controller commands. Endless encoders send 1..63 for clockwise detents and
65..127 (two's complement) for counter-clockwise ones.
"""
from __future__ import annotations

import logging
import threading
from typing import List, Optional

import mido

from command_queue import BRIGHTNESS_STEP, Command

logger = logging.getLogger(__name__)

# Default mapping; most small knob boxes ship with these.
KNOB_CONTROL = 0x0A      # 10
NOTE_PRESS = 0x24        # 36, knob push
NOTE_EFFECT = 0x25       # 37, side button


class KnobDecoder:
    """Turn incoming MIDI messages into zero or more commands."""

    def __init__(
        self,
        control: int = KNOB_CONTROL,
        press_note: int = NOTE_PRESS,
        effect_note: int = NOTE_EFFECT,
        step: int = BRIGHTNESS_STEP,
    ) -> None:
        self.control = control
        self.press_note = press_note
        self.effect_note = effect_note
        self.step = step

    def decode(self, msg: mido.Message) -> List[Command]:
        if msg.type == "control_change" and msg.control == self.control:
            return self._decode_turn(msg.value)
        # Some controllers send note_on with velocity 0 instead of note_off.
        if msg.type == "note_on" and msg.velocity > 0:
            if msg.note == self.press_note:
                return [Command.toggle_power()]
            if msg.note == self.effect_note:
                return [Command.select_next_effect()]
        return []

    def _decode_turn(self, value: int) -> List[Command]:
        if 0 < value < 64:
            return [Command.increment_brightness(value * self.step)]
        if value > 64:
            return [Command.decrement_brightness((128 - value) * self.step)]
        return []


def list_input_ports() -> List[str]:
    return list(mido.get_input_names())


def guess_knob_port() -> Optional[str]:
    """Try to find a knob controller port heuristically."""
    for name in mido.get_input_names():
        name_lower = name.lower()
        if "knob" in name_lower or "encoder" in name_lower or "volume" in name_lower:
            return name
    return None


class KnobListener:
    """Background thread feeding decoded knob commands to a controller."""

    def __init__(self, controller, port_name: str, decoder: Optional[KnobDecoder] = None) -> None:
        if not port_name:
            raise ValueError("MIDI port is required")
        self._controller = controller
        self._port_name = port_name
        self._decoder = decoder or KnobDecoder()
        self._port = None
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()

    def start(self) -> None:
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="knob-listener", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 1.0) -> None:
        self._stop.set()
        port = self._port
        if port is not None:
            try:
                port.close()
            except (OSError, RuntimeError) as exc:
                logger.warning("Error closing MIDI port %s: %s", self._port_name, exc)
        thread = self._thread
        if thread and thread.is_alive():
            thread.join(timeout=timeout)
        self._thread = None

    def handle(self, msg: mido.Message) -> None:
        for command in self._decoder.decode(msg):
            logger.debug("Knob -> %s %s", command.kind.value, command.value)
            self._controller.add_input_command(command)

    def _run(self) -> None:
        logger.info("Opening MIDI input: %s", self._port_name)
        try:
            with mido.open_input(self._port_name) as port:
                self._port = port
                for message in port:
                    if self._stop.is_set():
                        break
                    self.handle(message)
        except (OSError, RuntimeError, ValueError) as exc:
            if not self._stop.is_set():
                logger.error("Error while listening on %s: %s", self._port_name, exc)
        finally:
            self._port = None
        logger.info("Knob listener stopped")
