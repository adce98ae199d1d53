import threading
import time

import pytest
import serial

from light_state import SerialCommand


class RecordingSerialClient:
    """Stands in for SerialClient; records every queued frame."""

    def __init__(self, fail: bool = False) -> None:
        self.commands: list[SerialCommand] = []
        self.fail = fail
        self.started = 0
        self.attempts = 0
        self._lock = threading.Lock()

    def start(self) -> None:
        self.started += 1

    def add_command(self, command: SerialCommand) -> None:
        self.attempts += 1
        if self.fail:
            raise OSError("link down")
        with self._lock:
            self.commands.append(command)


class FakeSerialPort:
    """Minimal pyserial.Serial look-alike used by the sender thread tests."""

    def __init__(
        self, port, baudrate, timeout=None, write_timeout=None, fail_writes=0, timeout_writes=0
    ):
        self.port = port
        self.baudrate = baudrate
        self.is_open = True
        self.dtr = True
        self.out_waiting = 0
        self.written: list[bytes] = []
        self.fail_writes = fail_writes
        self.timeout_writes = timeout_writes
        self.buffer_resets = 0

    def write(self, data: bytes) -> int:
        if self.timeout_writes:
            self.timeout_writes -= 1
            raise serial.SerialTimeoutException("Write timeout")
        if self.fail_writes:
            self.fail_writes -= 1
            raise OSError("write failed")
        self.written.append(data)
        return len(data)

    def reset_output_buffer(self) -> None:
        self.buffer_resets += 1

    def close(self) -> None:
        self.is_open = False


def wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


@pytest.fixture
def serial_client():
    return RecordingSerialClient()
