"""
Control loop for the RGBW knob light.

Knob and bridge threads push commands into one queue; a fixed-tick loop
drains it into the active mode, which drives the serial fixture.

The command line only wires the knob. A process that owns a pub/sub client
enables the bridge by setting ``mqtt_broker`` and passing the client to
``run(config, bridge_client=...)``.
"""
from __future__ import annotations

import argparse
import logging
import sys
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

import knob_listener
from bridge_adapter import BridgeAdapter
from command_queue import BRIGHTNESS_STEP, Command, CommandQueue
from light_modes import LightMode, Mode
from light_state import Light
from serial_client import DEFAULT_BAUDRATE, SerialClient, list_serial_ports

logger = logging.getLogger(__name__)

DEFAULT_TICK_MS = 20

StateListener = Callable[[Light], None]


@dataclass
class ControllerConfig:
    serial_port: str = ""
    baudrate: int = DEFAULT_BAUDRATE
    tick_ms: int = DEFAULT_TICK_MS
    midi_port: Optional[str] = None
    brightness_step: int = BRIGHTNESS_STEP
    mqtt_broker: Optional[str] = None
    mqtt_port: int = 1883
    device_id: str = "knob-light"
    state_topic: str = "knob-light/light"

    def __post_init__(self) -> None:
        if self.tick_ms <= 0:
            raise ValueError("tick_ms must be positive")
        if self.bridge_enabled and not self.state_topic:
            raise ValueError("state_topic is required when a broker is set")

    @property
    def tick_seconds(self) -> float:
        return self.tick_ms / 1000.0

    @property
    def bridge_enabled(self) -> bool:
        return bool(self.mqtt_broker)


def next_deadline(previous: float, period: float, now: float) -> float:
    """Deadline of the next tick. A late tick restarts the schedule from ``now``."""
    deadline = previous + period
    return deadline if deadline > now else now


class Controller:
    """Owns the command queue, the active mode and the tick thread.

    The mode, and through it the light, is only ever touched from the tick
    thread. Other threads talk to the controller through
    ``add_input_command`` and read state through ``light_snapshot``.
    """

    def __init__(
        self,
        serial_client,
        tick_seconds: float = DEFAULT_TICK_MS / 1000.0,
        queue: Optional[CommandQueue] = None,
        mode: Optional[Mode] = None,
    ) -> None:
        if tick_seconds <= 0:
            raise ValueError("tick_seconds must be positive")
        self.serial_client = serial_client
        self._tick_seconds = tick_seconds
        self._queue = queue if queue is not None else CommandQueue()
        self._mode = mode if mode is not None else LightMode(serial_client, tick_seconds=tick_seconds)
        self._continue = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._listeners: List[StateListener] = []
        self._listeners_lock = threading.Lock()
        self._last_published: Optional[Light] = None
        self.ticks = 0

    @property
    def mode(self) -> Mode:
        return self._mode

    @property
    def running(self) -> bool:
        return self._continue.is_set()

    # ------------------------------ lifecycle ------------------------------ #
    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self.serial_client.start()
        self._continue.set()
        self._thread = threading.Thread(target=self._run, name="control-loop", daemon=True)
        self._thread.start()
        logger.info("Control loop started (tick %.0f ms)", self._tick_seconds * 1000)

    def stop(self, timeout: float = 1.0) -> None:
        """Ask the loop to exit after its current tick and wait for it."""
        self._continue.clear()
        thread = self._thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=timeout)
        self._thread = None
        logger.info("Control loop stopped after %d ticks", self.ticks)

    # ------------------------------- inputs -------------------------------- #
    def add_input_command(self, command: Command) -> None:
        """Thread-safe, never blocks."""
        self._queue.enqueue(command)

    def add_state_listener(self, callback: StateListener) -> None:
        with self._listeners_lock:
            self._listeners.append(callback)

    def light_snapshot(self) -> Optional[Light]:
        snapshot = getattr(self._mode, "snapshot", None)
        return snapshot.copy() if snapshot is not None else None

    # -------------------------------- ticks -------------------------------- #
    def _run(self) -> None:
        next_tick = time.monotonic()
        while self._continue.is_set():
            try:
                self.run_tick()
            except Exception:
                logger.exception("Control loop tick failed")
            now = time.monotonic()
            next_tick = next_deadline(next_tick, self._tick_seconds, now)
            if next_tick > now:
                time.sleep(next_tick - now)

    def run_tick(self) -> None:
        """Drain the queue into the mode, advance it once, publish changes."""
        for command in self._queue.drain_all():
            try:
                self._mode.handle_command(command)
            except Exception:
                logger.exception("Command %r failed", command)
        try:
            self._mode.advance()
        except Exception:
            logger.exception("Mode tick failed")
        self.ticks += 1
        self._notify_listeners()

    def _notify_listeners(self) -> None:
        snapshot = getattr(self._mode, "snapshot", None)
        if snapshot is None or snapshot == self._last_published:
            return
        self._last_published = snapshot
        with self._listeners_lock:
            listeners = list(self._listeners)
        for callback in listeners:
            try:
                callback(snapshot.copy())
            except Exception:
                logger.exception("State listener %r failed", callback)


# --------------------------------- CLI ------------------------------------ #
def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Drive an RGBW serial light from a MIDI knob controller."
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("list", help="List serial ports and MIDI input ports")

    run = sub.add_parser("run", help="Run the control loop")
    run.add_argument("--serial-port", required=True, help="Serial port of the fixture")
    run.add_argument("--baud", type=int, default=DEFAULT_BAUDRATE, help="Serial baud rate")
    run.add_argument(
        "--midi-port",
        help="Exact MIDI input port name (otherwise tries to guess a knob port)",
    )
    run.add_argument(
        "--tick-ms", type=int, default=DEFAULT_TICK_MS, help="Control loop period in ms"
    )
    run.add_argument(
        "--step", type=int, default=BRIGHTNESS_STEP, help="Brightness change per knob detent"
    )
    run.add_argument("--debug", action="store_true", help="Enable debug logging")

    return parser.parse_args(argv)


def list_ports() -> None:
    ports = list_serial_ports()
    print("Serial ports:" if ports else "No serial ports found.")
    for device in ports:
        print(f"  {device}")
    midi = knob_listener.list_input_ports()
    print("MIDI input ports:" if midi else "No MIDI input ports found.")
    for idx, name in enumerate(midi):
        print(f"  [{idx}] {name}")


def build_bridge(controller: Controller, client, config: ControllerConfig) -> BridgeAdapter:
    return BridgeAdapter(
        controller,
        client,
        broker=config.mqtt_broker,
        port=config.mqtt_port,
        device_id=config.device_id,
        state_topic=config.state_topic,
    )


def run(config: ControllerConfig, bridge_client=None) -> int:
    serial_client = SerialClient(config.serial_port, config.baudrate)
    controller = Controller(serial_client, tick_seconds=config.tick_seconds)

    bridge = None
    if config.bridge_enabled and bridge_client is not None:
        bridge = build_bridge(controller, bridge_client, config)
    elif config.bridge_enabled:
        logging.warning(
            "Broker %s configured but no client supplied; bridge disabled.",
            config.mqtt_broker,
        )

    port_name = config.midi_port or knob_listener.guess_knob_port()
    listener = None
    if port_name:
        decoder = knob_listener.KnobDecoder(step=config.brightness_step)
        listener = knob_listener.KnobListener(controller, port_name, decoder)
    else:
        logging.warning("No MIDI knob port found; running without local input.")

    controller.start()
    if listener:
        listener.start()
    if bridge:
        bridge.start()
    try:
        logging.info("Running... Ctrl+C to stop.")
        while controller.running:
            time.sleep(0.5)
    except KeyboardInterrupt:
        logging.info("Stopping.")
    finally:
        if bridge:
            bridge.stop()
        if listener:
            listener.stop()
        controller.stop()
        serial_client.close()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    if args.command in (None, "list"):
        list_ports()
        return 0

    level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        config = ControllerConfig(
            serial_port=args.serial_port,
            baudrate=args.baud,
            tick_ms=args.tick_ms,
            midi_port=args.midi_port,
            brightness_step=args.step,
        )
        return run(config)
    except ValueError as exc:
        logging.error("Invalid configuration: %s", exc)
        return 2


if __name__ == "__main__":
    sys.exit(main())
