"""Input commands and the multi-producer queue that feeds the control loop."""
from __future__ import annotations

import logging
import queue
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional

logger = logging.getLogger(__name__)

# Bump when CommandKind gains or changes members.
COMMAND_VERSION = 1

BRIGHTNESS_STEP = 8


class CommandKind(Enum):
    INCREMENT_BRIGHTNESS = "increment_brightness"
    DECREMENT_BRIGHTNESS = "decrement_brightness"
    TOGGLE_POWER = "toggle_power"
    SET_POWER = "set_power"
    SET_BRIGHTNESS = "set_brightness"
    SELECT_NEXT_EFFECT = "select_next_effect"
    SELECT_EFFECT = "select_effect"
    SET_COLOR = "set_color"


@dataclass(frozen=True)
class Command:
    """One discrete user or remote intent.

    ``value`` carries the argument where the kind needs one: a step for the
    brightness increments, a bool for SET_POWER, an int for SET_BRIGHTNESS,
    an effect name for SELECT_EFFECT and an (r, g, b[, w]) tuple for SET_COLOR.
    """

    kind: CommandKind
    value: Any = None

    @classmethod
    def increment_brightness(cls, step: int = BRIGHTNESS_STEP) -> "Command":
        return cls(CommandKind.INCREMENT_BRIGHTNESS, step)

    @classmethod
    def decrement_brightness(cls, step: int = BRIGHTNESS_STEP) -> "Command":
        return cls(CommandKind.DECREMENT_BRIGHTNESS, step)

    @classmethod
    def toggle_power(cls) -> "Command":
        return cls(CommandKind.TOGGLE_POWER)

    @classmethod
    def set_power(cls, on: bool) -> "Command":
        return cls(CommandKind.SET_POWER, bool(on))

    @classmethod
    def set_brightness(cls, brightness: int) -> "Command":
        return cls(CommandKind.SET_BRIGHTNESS, brightness)

    @classmethod
    def select_next_effect(cls) -> "Command":
        return cls(CommandKind.SELECT_NEXT_EFFECT)

    @classmethod
    def select_effect(cls, name: str) -> "Command":
        return cls(CommandKind.SELECT_EFFECT, name)

    @classmethod
    def set_color(cls, *rgbw: int) -> "Command":
        return cls(CommandKind.SET_COLOR, tuple(rgbw))


class CommandQueue:
    """Unbounded FIFO shared by any number of producers and one consumer.

    ``enqueue`` never blocks. Only the control loop calls ``drain_all``.
    """

    def __init__(self) -> None:
        self._queue: "queue.SimpleQueue[Command]" = queue.SimpleQueue()

    def enqueue(self, command: Command) -> None:
        self._queue.put_nowait(command)

    def try_dequeue(self) -> Optional[Command]:
        try:
            return self._queue.get_nowait()
        except queue.Empty:
            return None

    def drain_all(self) -> List[Command]:
        """Commands queued at the time of the call; later arrivals wait for the next drain."""
        drained: List[Command] = []
        for _ in range(self._queue.qsize()):
            command = self.try_dequeue()
            if command is None:
                break
            drained.append(command)
        if drained:
            logger.debug("Drained %d command(s)", len(drained))
        return drained

    def __len__(self) -> int:
        return self._queue.qsize()
