import dataclasses
import threading

import pytest

from command_queue import BRIGHTNESS_STEP, Command, CommandKind, CommandQueue


def test_single_producer_fifo():
    queue = CommandQueue()
    commands = [
        Command.toggle_power(),
        Command.increment_brightness(),
        Command.increment_brightness(),
    ]
    for command in commands:
        queue.enqueue(command)

    assert queue.drain_all() == commands
    assert queue.drain_all() == []
    assert len(queue) == 0


def test_try_dequeue_empty():
    assert CommandQueue().try_dequeue() is None


def test_commands_are_immutable():
    command = Command.set_color(1, 2, 3, 4)
    assert command.kind == CommandKind.SET_COLOR
    assert command.value == (1, 2, 3, 4)
    with pytest.raises(dataclasses.FrozenInstanceError):
        command.value = (0, 0, 0)  # type: ignore[misc]


def test_default_step():
    assert Command.increment_brightness().value == BRIGHTNESS_STEP
    assert Command.decrement_brightness(3).value == 3


def test_concurrent_producers_keep_their_order():
    queue = CommandQueue()
    per_producer = 1000
    barrier = threading.Barrier(2)

    def produce(producer_id):
        barrier.wait()
        for i in range(per_producer):
            queue.enqueue(Command(CommandKind.SET_BRIGHTNESS, (producer_id, i)))

    threads = [threading.Thread(target=produce, args=(pid,)) for pid in (0, 1)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    drained = queue.drain_all()
    assert len(drained) == 2 * per_producer
    for pid in (0, 1):
        sequence = [cmd.value[1] for cmd in drained if cmd.value[0] == pid]
        assert sequence == list(range(per_producer))


class RefillingQueue(CommandQueue):
    """Enqueues another command every time one is taken, like a busy producer."""

    def try_dequeue(self):
        command = super().try_dequeue()
        if command is not None:
            self.enqueue(Command.increment_brightness())
        return command


def test_drain_is_bounded_by_entries_present_at_call():
    queue = RefillingQueue()
    queue.enqueue(Command.toggle_power())
    queue.enqueue(Command.toggle_power())

    assert queue.drain_all() == [Command.toggle_power(), Command.toggle_power()]
    assert len(queue) == 2
