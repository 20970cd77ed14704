"""Tests for the MCP tools, run against a scripted bus."""

import json
import sys
from unittest.mock import MagicMock, patch

import pytest

from hiwonder_bus_servo.errors import TransportOpenError
from hiwonder_bus_servo.models.servo import LoadMode
from hiwonder_bus_servo.protocol.commands import BROADCAST_ADDRESS, Command
from hiwonder_bus_servo.protocol.framing import parse_frame


def _get_server_module():
    """Import server module with FastMCP mocked to avoid init issues."""
    mock_fastmcp_cls = MagicMock()
    mock_fastmcp_instance = MagicMock()
    # Make the @mcp.tool() decorator a no-op that returns the function unchanged
    mock_fastmcp_instance.tool.return_value = lambda fn: fn
    mock_fastmcp_instance.resource.return_value = lambda fn: fn
    mock_fastmcp_instance.prompt.return_value = lambda fn: fn
    mock_fastmcp_cls.return_value = mock_fastmcp_instance

    with patch.dict(sys.modules, {}):
        with patch("mcp.server.fastmcp.FastMCP", mock_fastmcp_cls):
            sys.modules.pop("hiwonder_bus_servo.server", None)
            import hiwonder_bus_servo.server as server_mod

    return server_mod


@pytest.fixture
def server(client):
    server_mod = _get_server_module()
    with patch.object(server_mod, "_get_client", return_value=client):
        yield server_mod


def _sent(transport):
    return [parse_frame(frame) for frame in transport.written]


def test_not_connected_raises():
    server = _get_server_module()
    server._client = None
    with pytest.raises(RuntimeError, match="connect"):
        server.stop_move(1)


def test_connect_uses_environment(monkeypatch):
    server = _get_server_module()
    server._client = None
    monkeypatch.setenv(server.ENV_PORT, "/dev/ttyUSB3")
    monkeypatch.setenv(server.ENV_BAUDRATE, "57600")

    with patch.object(server.ServoClient, "open") as mock_open:
        result = server.connect()

    mock_open.assert_called_once_with(
        BROADCAST_ADDRESS, port="/dev/ttyUSB3", baudrate=57600
    )
    assert result == {"connected": True, "port": "/dev/ttyUSB3", "baudrate": 57600}


def test_connect_explicit_arguments_win(monkeypatch):
    server = _get_server_module()
    server._client = None
    monkeypatch.setenv(server.ENV_PORT, "/dev/ttyUSB3")

    with patch.object(server.ServoClient, "open") as mock_open:
        server.connect(port="/dev/ttyS1", baudrate=9600)

    mock_open.assert_called_once_with(
        BROADCAST_ADDRESS, port="/dev/ttyS1", baudrate=9600
    )


def test_connect_rejects_malformed_baudrate(monkeypatch):
    server = _get_server_module()
    server._client = None
    monkeypatch.setenv(server.ENV_BAUDRATE, "fast")

    with patch.object(server.ServoClient, "open") as mock_open:
        result = server.connect()

    assert "error" in result
    assert "fast" in result["error"]
    mock_open.assert_not_called()


def test_connect_reports_open_failure():
    server = _get_server_module()
    server._client = None
    failure = TransportOpenError("Could not open serial device /dev/missing")

    with patch.object(server.ServoClient, "open", side_effect=failure):
        result = server.connect(port="/dev/missing", baudrate=115200)

    assert result == {"error": "Could not open serial device /dev/missing"}
    assert server._client is None


def test_servo_checks_connection_under_bus_lock(client):
    server = _get_server_module()
    server._client = client
    seen = []

    def check():
        seen.append(server._bus_lock.locked())
        return client

    with patch.object(server, "_get_client", side_effect=check):
        server.stop_move(1)
        server.read_servo_id()

    assert seen == [True, True]


def test_disconnect_closes_client(client, transport):
    server = _get_server_module()
    server._client = client
    assert server.disconnect() == {"disconnected": True}
    assert transport.closed
    assert server._client is None


def test_move_servo(server, transport):
    result = server.move_servo(1, 500, 1000)
    assert result == {"address": 1, "position": 500, "time_ms": 1000, "started": True}
    assert transport.written == [bytes.fromhex("55 55 01 07 01 F4 01 E8 03 16")]


def test_move_servo_clamps_and_waits(server, transport):
    result = server.move_servo(4, 1200, 0, wait=True)
    assert result["position"] == 1000
    assert result["started"] is False
    (frame,) = _sent(transport)
    assert frame.address == 4
    assert frame.command == Command.MOVE_TIME_WAIT_WRITE


def test_move_servo_rejects_bad_arguments(server, transport):
    assert "error" in server.move_servo(0, 500)
    assert "error" in server.move_servo(BROADCAST_ADDRESS, 500)
    assert "error" in server.move_servo(1, 500, 70000)
    assert transport.written == []


def test_start_and_stop(server, transport):
    server.start_move(2)
    server.stop_move(3)
    frames = _sent(transport)
    assert [(f.address, f.command) for f in frames] == [
        (2, Command.MOVE_START),
        (3, Command.MOVE_STOP),
    ]


def test_scan_bus_skips_silent_addresses(server, transport):
    replies = {2: b"\x10\x00", 4: b"\xff\xff"}

    def answer():
        request = parse_frame(transport.written[-1])
        if request.address in replies:
            transport.queue_frame(
                Command.POS_READ, replies[request.address], address=request.address
            )

    transport.on_write = answer
    result = server.scan_bus(1, 5)
    assert result == {
        "servos": [
            {"address": 2, "position": 16},
            {"address": 4, "position": -1},
        ]
    }


def test_scan_bus_rejects_broadcast(server):
    assert "error" in server.scan_bus(1, BROADCAST_ADDRESS)


def test_read_servo_id(server, transport):
    transport.queue_frame(Command.ID_READ, b"\x07", address=7)
    assert server.read_servo_id() == {"address": 7}
    assert _sent(transport)[0].address == BROADCAST_ADDRESS


def test_read_servo_id_timeout(server):
    assert "error" in server.read_servo_id()


def test_set_servo_id(server, transport):
    assert server.set_servo_id(BROADCAST_ADDRESS, 12) == {"address": 12}
    (frame,) = _sent(transport)
    assert frame.address == BROADCAST_ADDRESS
    assert frame.payload == b"\x0c"


def test_set_servo_id_rejects_broadcast_target(server, transport):
    assert "error" in server.set_servo_id(1, BROADCAST_ADDRESS)
    assert transport.written == []


def test_get_servo_status(server, transport):
    transport.queue_frame(Command.POS_READ, b"\xf4\x01")
    transport.queue_frame(Command.MOVE_TIME_READ, b"\xf4\x01\x00\x00")
    transport.queue_frame(Command.TEMP_READ, b"\x28")
    transport.queue_frame(Command.TEMP_MAX_LIMIT_READ, b"\x55")
    transport.queue_frame(Command.VIN_READ, b"\x30\x2a")
    transport.queue_frame(Command.SERVO_OR_MOTOR_MODE_READ, b"\x00\x00\x00\x00")
    transport.queue_frame(Command.LOAD_OR_UNLOAD_READ, b"\x01")
    transport.queue_frame(Command.LED_CTRL_READ, b"\x00")

    status = server.get_servo_status(1)

    assert status["position"] == 500
    assert status["target"] == {"position": 500, "time_ms": 0}
    assert status["temperature_c"] == 40
    assert status["max_temperature_c"] == 85
    assert status["voltage_mv"] == 10800
    assert status["mode"]["mode"] == "servo"
    assert status["loaded"] is True
    assert status["power_led"] is True


def test_get_servo_status_reports_errors(server):
    status = server.get_servo_status(1)
    assert "error" in status


def test_set_mode(server, transport):
    result = server.set_mode(1, "motor", -2000)
    assert result == {"address": 1, "mode": "motor", "speed": -1000}
    assert _sent(transport)[0].payload == b"\x01\x00\x18\xfc"


def test_set_mode_servo_ignores_speed(server, transport):
    result = server.set_mode(1, "SERVO", 300)
    assert result["speed"] == 0
    assert _sent(transport)[0].payload == b"\x00\x00\x00\x00"


def test_set_mode_unknown(server, transport):
    assert "error" in server.set_mode(1, "spin")
    assert transport.written == []


def test_set_load(server, transport):
    server.set_load(1, False)
    assert _sent(transport)[0].payload == bytes([LoadMode.UNLOAD])


def test_set_angle_offset_persist(server, transport):
    result = server.set_angle_offset(1, -10, persist=True)
    assert result["persisted"] is True
    commands = [f.command for f in _sent(transport)]
    assert commands == [Command.ANGLE_OFFSET_ADJUST, Command.ANGLE_OFFSET_WRITE]


def test_set_angle_offset_out_of_range(server, transport):
    assert "error" in server.set_angle_offset(1, 126)
    assert transport.written == []


def test_get_angle_offset(server, transport):
    transport.queue_frame(Command.ANGLE_OFFSET_READ, b"\xf6")
    assert server.get_angle_offset(1) == {"address": 1, "offset": -10}


def test_set_angle_limits_reports_clamped_values(server, transport):
    result = server.set_angle_limits(1, 600, 200)
    assert result == {"address": 1, "min_limit": 600, "max_limit": 601}


def test_get_angle_limits(server, transport):
    transport.queue_frame(Command.ANGLE_LIMIT_READ, b"\x64\x00\x84\x03")
    assert server.get_angle_limits(1) == {
        "address": 1,
        "min_limit": 100,
        "max_limit": 900,
    }


def test_voltage_limits(server, transport):
    result = server.set_voltage_limits(1, 3000, 13000)
    assert result == {"address": 1, "min_limit": 4500, "max_limit": 12000}
    transport.queue_frame(Command.VIN_LIMIT_READ, b"\x94\x11\xe0\x2e")
    assert server.get_voltage_limits(1)["max_limit"] == 12000


def test_set_max_temperature(server, transport):
    assert server.set_max_temperature(1, 120)["max_temp"] == 100


def test_led_tools(server, transport):
    server.set_power_led(1, False)
    server.set_led_warnings(1, over_temperature=False)
    frames = _sent(transport)
    assert frames[0].payload == b"\x01"
    assert frames[1].payload == b"\x06"

    transport.queue_frame(Command.LED_ERROR_READ, b"\x02")
    assert server.get_led_warnings(1) == {
        "address": 1,
        "over_temperature": False,
        "over_voltage": True,
        "stall": False,
    }


def test_connection_resource(client, transport):
    server = _get_server_module()
    server._client = None
    assert json.loads(server.resource_connection()) == {"connected": False}

    server._client = client
    transport.queue_frame(Command.TEMP_READ, b"\x20")
    client.temp_read()
    state = json.loads(server.resource_connection())
    assert state["connected"] is True
    assert state["last_exchange"] == "ok"


def test_command_catalog_resource():
    server = _get_server_module()
    catalog = json.loads(server.resource_command_catalog())
    by_name = {entry["name"]: entry for entry in catalog}
    assert len(catalog) == len(Command)
    assert by_name["move_time_write"]["request_size"] == 4
    assert by_name["pos_read"]["reply_size"] == 2
    assert by_name["move_start"]["reply_size"] is None
    assert by_name["id_read"]["broadcast"] is True


def test_calibrate_prompt_mentions_address():
    server = _get_server_module()
    assert "servo 3" in server.calibrate_servo(3)
