"""Serial link to the fixture's microcontroller: frame encoding and the sender thread."""
from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Any, Callable, List, Optional

import serial
import serial.tools.list_ports

from light_state import SerialCommand

logger = logging.getLogger(__name__)

DEFAULT_BAUDRATE = 115200


def encode_frame(command: SerialCommand) -> bytes:
    """One ASCII line per frame: ``RGBW r g b w``."""
    r, g, b, w = command.channels
    return f"RGBW {r} {g} {b} {w}\n".encode("ascii")


def list_serial_ports() -> List[str]:
    return [port.device for port in serial.tools.list_ports.comports()]


class SerialClient:
    """Fire-and-forget frame sender.

    ``add_command`` only queues; a background thread owns the port and writes
    frames in submission order. A failed write drops the frame and closes the
    port so the next frame reopens it.
    """

    def __init__(
        self,
        port: str,
        baudrate: int = DEFAULT_BAUDRATE,
        serial_factory: Callable[..., Any] = serial.Serial,
        mirror: Optional[Any] = None,
    ) -> None:
        if not port:
            raise ValueError("Serial port is required")
        self._port = port
        self._baudrate = baudrate
        self._serial_factory = serial_factory
        self._serial: Optional[Any] = None
        self._queue: "queue.SimpleQueue[SerialCommand]" = queue.SimpleQueue()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        # Optional mirror that visualizes the outgoing frames (simulator, tests).
        self._mirror = mirror
        self.frames_sent = 0

    # ------------------------------ lifecycle ------------------------------ #
    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._sender_loop, name="serial-sender", daemon=True
        )
        self._thread.start()
        logger.info("Serial sender started for %s @ %d", self._port, self._baudrate)

    def close(self, timeout: float = 1.0) -> None:
        """Stop the sender thread and release the port."""
        self._stop.set()
        thread = self._thread
        if thread and thread.is_alive():
            thread.join(timeout=timeout)
        self._thread = None
        self._close_serial()

    def set_mirror(self, mirror: Optional[Any]) -> None:
        self._mirror = mirror

    # ------------------------------- commands ------------------------------ #
    def add_command(self, command: SerialCommand) -> None:
        self._queue.put_nowait(command)

    def pending(self) -> int:
        return self._queue.qsize()

    # ------------------------------- sender -------------------------------- #
    def _sender_loop(self) -> None:
        while not self._stop.is_set():
            try:
                command = self._queue.get(timeout=0.1)
            except queue.Empty:
                continue
            self._send(command)

    def _send(self, command: SerialCommand) -> None:
        data = encode_frame(command)
        if self._mirror:
            try:
                self._mirror.handle_frame(command)
            except Exception as exc:
                logger.warning("Mirror error: %s", exc)
        try:
            self._write_line(data)
        except (serial.SerialException, OSError, ValueError) as exc:
            logger.error("Serial write to %s failed, frame dropped: %s", self._port, exc)
            self._close_serial()
            return
        self.frames_sent += 1

    # ------------------------------- transport ----------------------------- #
    def _ensure_serial(self) -> Any:
        ser = self._serial
        if ser and ser.is_open:
            return ser
        ser = self._serial_factory(
            self._port, self._baudrate, timeout=1, write_timeout=0.05
        )
        try:
            ser.dtr = False  # avoid resets on some boards
        except (AttributeError, serial.SerialException, OSError):
            pass
        self._serial = ser
        logger.info("Opened serial port %s", self._port)
        return ser

    def _write_line(self, data: bytes) -> None:
        ser = self._ensure_serial()
        try:
            if getattr(ser, "out_waiting", 0) > 256:
                ser.reset_output_buffer()
            ser.write(data)
        except serial.SerialTimeoutException:
            ser.reset_output_buffer()
            ser.write(data)
        logger.debug("sent: %s", data.decode("ascii").strip())
        # Small yield so bursts of frames do not hammer the driver.
        time.sleep(0.002)

    def _close_serial(self) -> None:
        ser = self._serial
        self._serial = None
        if ser and ser.is_open:
            try:
                ser.close()
            except (serial.SerialException, OSError) as exc:
                logger.warning("Error closing %s: %s", self._port, exc)
