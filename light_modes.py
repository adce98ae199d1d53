"""Mode state machine: applies input commands to the light and drives the fixture."""
from __future__ import annotations

import colorsys
import logging
import math
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from command_queue import BRIGHTNESS_STEP, Command, CommandKind
from light_state import Light, SerialCommand

logger = logging.getLogger(__name__)

RgbTuple = Tuple[int, int, int]

RAINBOW_PERIOD_SEC = 6.0
BREATH_PERIOD_SEC = 4.0
COLORFADE_SLOW_SEGMENT_SEC = 4.0
COLORFADE_FAST_SEGMENT_SEC = 1.0
FLASH_PERIOD_SEC = 1.0

COLORFADE_PALETTE: Tuple[RgbTuple, ...] = (
    (255, 0, 0),
    (0, 255, 0),
    (0, 0, 255),
)


class Mode(ABC):
    """Behaviour driven by the control loop: one command at a time, one tick at a time."""

    @abstractmethod
    def handle_command(self, command: Command) -> None:
        ...

    @abstractmethod
    def advance(self) -> None:
        ...


class LightMode(Mode):
    """Knob-driven light mode.

    The stored ``Light`` keeps the user's base colour. Animated effects are
    rendered into a separate frame each tick, and only frames that differ
    from the last transmitted one reach the serial client.
    """

    def __init__(
        self,
        serial_client,
        light: Optional[Light] = None,
        tick_seconds: float = 0.02,
    ) -> None:
        if tick_seconds <= 0:
            raise ValueError("tick_seconds must be positive")
        self._serial = serial_client
        self._light = light if light is not None else Light()
        self._tick_seconds = tick_seconds
        self._effect_ticks = 0
        self._last_sent: Optional[Light] = None
        self._last_command: Optional[SerialCommand] = None
        self.snapshot: Light = self._light.copy()

    @property
    def light(self) -> Light:
        return self._light

    @property
    def last_sent(self) -> Optional[Light]:
        return self._last_sent

    # ------------------------------- commands ------------------------------ #
    def handle_command(self, command: Command) -> None:
        light = self._light
        kind = command.kind
        if kind == CommandKind.TOGGLE_POWER:
            light.state = not light.state
        elif kind == CommandKind.SET_POWER:
            light.state = bool(command.value)
        elif kind == CommandKind.INCREMENT_BRIGHTNESS:
            light.brightness = light.brightness + self._step(command)
        elif kind == CommandKind.DECREMENT_BRIGHTNESS:
            light.brightness = light.brightness - self._step(command)
        elif kind == CommandKind.SET_BRIGHTNESS:
            light.brightness = command.value
        elif kind == CommandKind.SELECT_NEXT_EFFECT:
            light.next_effect()
            self._effect_ticks = 0
        elif kind == CommandKind.SELECT_EFFECT:
            if light.set_effect(command.value):
                self._effect_ticks = 0
        elif kind == CommandKind.SET_COLOR:
            try:
                light.set_channels(command.value)
            except (TypeError, ValueError, OverflowError) as exc:
                logger.debug("Ignoring malformed colour %r: %s", command.value, exc)
        else:
            logger.debug("Ignoring unsupported command %s", kind)
            return
        self.request_update()

    @staticmethod
    def _step(command: Command) -> int:
        return BRIGHTNESS_STEP if command.value is None else int(command.value)

    # --------------------------------- ticks ------------------------------- #
    def advance(self) -> None:
        self._effect_ticks += 1
        self.request_update()

    def request_update(self) -> None:
        """Send the rendered frame to the fixture if it differs from the last one sent."""
        self.snapshot = self._light.copy()
        frame = self.render()
        if frame == self._last_sent:
            return
        # Remember the frame even if the hand-off fails: stale frames are never resent.
        self._last_sent = frame
        command = frame.to_serial_command()
        if command == self._last_command:
            return
        self._last_command = command
        try:
            self._serial.add_command(command)
        except Exception as exc:
            logger.error("Failed to queue frame %s: %s", command.channels, exc)

    # ------------------------------- effects ------------------------------- #
    def render(self) -> Light:
        frame = self._light.copy()
        effect = frame.active_effect
        if not frame.state or effect in (None, "Solid"):
            return frame

        elapsed = self._effect_ticks * self._tick_seconds
        if effect == "Rainbow":
            hue = (elapsed / RAINBOW_PERIOD_SEC) % 1.0
            frame.set_channels(_hsv_rgb(hue) + (0,))
        elif effect == "Breath":
            level = 0.5 + 0.5 * math.cos(2 * math.pi * elapsed / BREATH_PERIOD_SEC)
            frame.brightness = round(self._light.brightness * level)
        elif effect == "colorfade_slow":
            frame.set_channels(_palette_blend(elapsed / COLORFADE_SLOW_SEGMENT_SEC) + (0,))
        elif effect == "colorfade_fast":
            frame.set_channels(_palette_blend(elapsed / COLORFADE_FAST_SEGMENT_SEC) + (0,))
        elif effect == "flash":
            if (elapsed % FLASH_PERIOD_SEC) >= FLASH_PERIOD_SEC / 2:
                frame.brightness = 0
        return frame


def _hsv_rgb(hue: float) -> RgbTuple:
    r, g, b = colorsys.hsv_to_rgb(hue, 1.0, 1.0)
    return (int(r * 255), int(g * 255), int(b * 255))


def _palette_blend(position: float) -> RgbTuple:
    idx = int(position) % len(COLORFADE_PALETTE)
    frac = position - int(position)
    start = COLORFADE_PALETTE[idx]
    end = COLORFADE_PALETTE[(idx + 1) % len(COLORFADE_PALETTE)]
    return tuple(  # type: ignore[return-value]
        round(a + (b - a) * frac) for a, b in zip(start, end)
    )
