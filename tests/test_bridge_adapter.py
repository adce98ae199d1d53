import json
from types import SimpleNamespace

from bridge_adapter import BridgeAdapter
from command_queue import Command
from controller import Controller
from light_state import Light


class FakeMqttClient:
    def __init__(self, fail_connect=False):
        self.on_message = None
        self.fail_connect = fail_connect
        self.connected_to = None
        self.subscriptions = []
        self.published = []
        self.looping = False

    def connect(self, host, port):
        if self.fail_connect:
            raise ConnectionRefusedError("broker down")
        self.connected_to = (host, port)

    def subscribe(self, topic):
        self.subscriptions.append(topic)

    def publish(self, topic, payload, retain=False):
        self.published.append((topic, payload, retain))

    def loop_start(self):
        self.looping = True

    def loop_stop(self):
        self.looping = False

    def disconnect(self):
        self.connected_to = None


def make_bridge(serial_client, client=None):
    controller = Controller(serial_client, tick_seconds=0.01)
    client = client or FakeMqttClient()
    bridge = BridgeAdapter(controller, client, "broker.local", 1883, "desk-lamp", "home/desk")
    return controller, client, bridge


def test_decode_full_payload(serial_client):
    _, _, bridge = make_bridge(serial_client)
    payload = json.dumps(
        {
            "state": "ON",
            "brightness": 77,
            "color": {"r": 1, "g": 2, "b": 3, "w": 4},
            "effect": "Breath",
        }
    )
    assert bridge.decode_payload(payload) == [
        Command.set_power(True),
        Command.set_brightness(77),
        Command.set_color(1, 2, 3, 4),
        Command.select_effect("Breath"),
    ]


def test_decode_rgb_only_and_off(serial_client):
    _, _, bridge = make_bridge(serial_client)
    commands = bridge.decode_payload(b'{"state": "off", "color": {"r": 9, "g": 8, "b": 7}}')
    assert commands == [Command.set_power(False), Command.set_color(9, 8, 7)]


def test_malformed_payloads_are_ignored(serial_client):
    _, _, bridge = make_bridge(serial_client)
    assert bridge.decode_payload(b"not json") == []
    assert bridge.decode_payload("[1, 2]") == []
    assert bridge.decode_payload('{"brightness": "high", "color": {"r": "x"}}') == []
    assert bridge.decode_payload('{"brightness": true}') == []


def test_messages_flow_into_light(serial_client):
    controller, client, bridge = make_bridge(serial_client)
    bridge.start()
    assert client.connected_to == ("broker.local", 1883)
    assert client.subscriptions == ["home/desk/set"]
    assert client.looping

    message = SimpleNamespace(topic="home/desk/set", payload=b'{"state": "ON", "effect": "Rainbow"}')
    client.on_message(client, None, message)
    client.on_message(client, None, SimpleNamespace(topic="elsewhere", payload=b'{"state": "OFF"}'))
    controller.run_tick()

    light = controller.light_snapshot()
    assert light.state is True
    assert light.active_effect == "Rainbow"

    topic, payload, retain = client.published[-1]
    assert topic == "home/desk"
    assert retain is True
    status = json.loads(payload)
    assert status["state"] == "ON"
    assert status["effect"] == "Rainbow"
    assert status["device_id"] == "desk-lamp"


def test_unknown_effect_from_bridge_is_noop(serial_client):
    controller, _, bridge = make_bridge(serial_client)
    bridge.handle_payload('{"effect": "Rainbow"}')
    bridge.handle_payload('{"effect": "disco"}')
    controller.run_tick()
    assert controller.light_snapshot().active_effect == "Rainbow"


def test_broker_unavailable_keeps_local_input(serial_client):
    controller, client, bridge = make_bridge(serial_client, FakeMqttClient(fail_connect=True))
    bridge.start()
    controller.add_input_command(Command.toggle_power())
    controller.run_tick()
    assert controller.light_snapshot().state is True


def test_state_payload(serial_client):
    _, _, bridge = make_bridge(serial_client)
    payload = json.loads(bridge.state_payload(Light(r=5, brightness=9)))
    assert payload["state"] == "OFF"
    assert payload["brightness"] == 9
    assert payload["color"]["r"] == 5
    assert payload["color_mode"] == "rgbw"
