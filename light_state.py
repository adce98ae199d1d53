"""RGBW light state: channel values, brightness, power and the effect vocabulary."""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Optional, Tuple

MAX_VALUE = 255

# Order matters for "select next effect".
EFFECT_ORDER: Tuple[str, ...] = (
    "Solid",
    "Rainbow",
    "Breath",
    "colorfade_slow",
    "colorfade_fast",
    "flash",
)
EFFECTS: FrozenSet[str] = frozenset(EFFECT_ORDER)

RgbwTuple = Tuple[int, int, int, int]

_CLAMPED_FIELDS = frozenset(("r", "g", "b", "w", "brightness"))


def clamp(value: Any) -> int:
    return max(0, min(int(value), MAX_VALUE))


@dataclass(frozen=True)
class SerialCommand:
    """Fully resolved channel intensities, ready for the wire."""

    r: int
    g: int
    b: int
    w: int

    def __post_init__(self) -> None:
        for name in ("r", "g", "b", "w"):
            object.__setattr__(self, name, clamp(getattr(self, name)))

    @property
    def channels(self) -> RgbwTuple:
        return (self.r, self.g, self.b, self.w)


@dataclass
class Light:
    """One addressable RGBW fixture.

    Channel and brightness assignments are clamped to [0, 255] no matter
    where they come from. Equality and hashing cover every field, which is
    what the mode uses to skip identical hardware writes.
    """

    r: int = 0
    g: int = 0
    b: int = 0
    w: int = MAX_VALUE
    brightness: int = MAX_VALUE
    state: bool = False
    active_effect: Optional[str] = None
    effects: FrozenSet[str] = field(default=EFFECTS)

    def __setattr__(self, name: str, value: Any) -> None:
        if name in _CLAMPED_FIELDS:
            value = clamp(value)
        elif name == "state":
            value = bool(value)
        elif name == "effects":
            value = frozenset(value)
        super().__setattr__(name, value)

    def __hash__(self) -> int:
        return hash(self._key())

    def _key(self) -> tuple:
        return (
            self.r,
            self.g,
            self.b,
            self.w,
            self.brightness,
            self.state,
            self.active_effect,
            self.effects,
        )

    @property
    def channels(self) -> RgbwTuple:
        return (self.r, self.g, self.b, self.w)

    def set_channels(self, rgbw) -> None:
        """Set r, g, b and optionally w; a 3-tuple leaves white untouched."""
        values = tuple(rgbw)
        if len(values) not in (3, 4):
            raise ValueError(f"Expected 3 or 4 channel values, got {len(values)}")
        # Convert everything first so a bad value leaves the light untouched.
        clamped = tuple(clamp(value) for value in values)
        self.r, self.g, self.b = clamped[:3]
        if len(clamped) == 4:
            self.w = clamped[3]

    def set_effect(self, name: Optional[str]) -> bool:
        """Activate ``name`` if it is a known effect. Unknown names are ignored."""
        if name not in self.effects:
            return False
        changed = self.active_effect != name
        self.active_effect = name
        return changed

    def next_effect(self) -> str:
        order = [name for name in EFFECT_ORDER if name in self.effects]
        if self.active_effect in order:
            idx = (order.index(self.active_effect) + 1) % len(order)
        else:
            idx = 0
        self.active_effect = order[idx]
        return self.active_effect

    def scaled_channels(self) -> RgbwTuple:
        """Channel intensities as transmitted: brightness-scaled, zero when off."""
        if not self.state:
            return (0, 0, 0, 0)
        return tuple(  # type: ignore[return-value]
            channel * self.brightness // MAX_VALUE for channel in self.channels
        )

    def to_serial_command(self) -> SerialCommand:
        return SerialCommand(*self.scaled_channels())

    def copy(self) -> "Light":
        return dataclasses.replace(self)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state,
            "brightness": self.brightness,
            "color": {"r": self.r, "g": self.g, "b": self.b, "w": self.w},
            "effect": self.active_effect,
            "effect_list": [name for name in EFFECT_ORDER if name in self.effects],
        }
