"""MCP server entry point for a Hiwonder bus servo chain.

Exposes tools, resources, and prompts via the Model Context Protocol
using the official Python MCP SDK with stdio transport.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from contextlib import contextmanager
from typing import Any, Iterator

from mcp.server.fastmcp import FastMCP

from .client import ServoClient
from .errors import ExchangeError, TransportOpenError
from .models.servo import LoadMode, Mode, PowerLed
from .protocol.commands import (
    BROADCAST_ADDRESS,
    CATALOG,
    MAX_ADDRESS,
    MIN_ADDRESS,
    Command,
)
from .transport.serial_connection import DEFAULT_BAUDRATE, DEFAULT_PORT

logger = logging.getLogger(__name__)

ENV_PORT = "HIWONDER_SERVO_PORT"
ENV_BAUDRATE = "HIWONDER_SERVO_BAUDRATE"

mcp = FastMCP(
    "hiwonder-bus-servo",
    instructions="MCP server for Hiwonder / LewanSoul serial bus servos",
)

# Global connection state. The bus is half-duplex, so every tool holds
# _bus_lock for the whole of its exchange(s).
_client: ServoClient | None = None
_bus_lock = threading.Lock()


def _get_client() -> ServoClient:
    """Get the active client, raising if not connected."""
    if _client is None or not _client.session.is_open:
        raise RuntimeError(
            "Not connected to the servo bus. Use the 'connect' tool first."
        )
    return _client


@contextmanager
def _servo(address: int) -> Iterator[ServoClient]:
    """Lock the bus and point the shared client at ``address``."""
    with _bus_lock:
        client = _get_client()
        client.address = address
        yield client


def _valid_address(address: int) -> bool:
    return MIN_ADDRESS <= address <= MAX_ADDRESS


def _address_error(address: int) -> dict[str, str]:
    return {"error": f"Address must be {MIN_ADDRESS}-{MAX_ADDRESS}, got {address}"}


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
def connect(port: str | None = None, baudrate: int | None = None) -> dict[str, Any]:
    """Open the serial port the servo chain is attached to.

    Args:
        port: Serial device path. Defaults to $HIWONDER_SERVO_PORT,
              then /dev/ttyAMA0.
        baudrate: Line speed. Defaults to $HIWONDER_SERVO_BAUDRATE,
                  then 115200.
    """
    global _client
    if _client is not None and _client.session.is_open:
        return {"connected": True, "message": "Already connected"}

    port = port or os.environ.get(ENV_PORT, DEFAULT_PORT)
    if not baudrate:
        raw_baudrate = os.environ.get(ENV_BAUDRATE, str(DEFAULT_BAUDRATE))
        try:
            baudrate = int(raw_baudrate)
        except ValueError:
            return {"error": f"Invalid {ENV_BAUDRATE} value: {raw_baudrate!r}"}

    try:
        _client = ServoClient.open(BROADCAST_ADDRESS, port=port, baudrate=baudrate)
    except TransportOpenError as e:
        return {"error": str(e)}
    return {"connected": True, "port": port, "baudrate": baudrate}


@mcp.tool()
def disconnect() -> dict[str, bool]:
    """Close the serial port."""
    global _client
    if _client is None:
        return {"disconnected": True}
    with _bus_lock:
        _client.close()
        _client = None
    return {"disconnected": True}


@mcp.tool()
def scan_bus(start: int = MIN_ADDRESS, end: int = MAX_ADDRESS) -> dict[str, Any]:
    """Find servos on the bus by reading the position of each address.

    Args:
        start: First address to probe (1-253, default 1).
        end: Last address to probe (1-253, default 253).
    """
    if not _valid_address(start) or not _valid_address(end):
        return {"error": f"Address range must be {MIN_ADDRESS}-{MAX_ADDRESS}"}
    if start > end:
        start, end = end, start

    found = []
    for address in range(start, end + 1):
        with _servo(address) as servo:
            try:
                position = servo.pos_read()
            except ExchangeError:
                continue
        found.append({"address": address, "position": position})

    return {"servos": found}


# ─── ADDRESS TOOLS ────────────────────────────────────────────────────

@mcp.tool()
def read_servo_id() -> dict[str, Any]:
    """Read the id of the single servo connected to the bus.

    Uses the broadcast address; every servo on the line answers, so
    connect only the servo you want to identify.
    """
    with _bus_lock:
        client = _get_client()
        try:
            return {"address": client.id_read()}
        except ExchangeError as e:
            return {"error": str(e)}


@mcp.tool()
def set_servo_id(address: int, new_id: int) -> dict[str, Any]:
    """Assign a new id to a servo.

    Args:
        address: Current id, or 254 to rename whichever servo is connected.
        new_id: New id (1-253).
    """
    if not _valid_address(address) and address != BROADCAST_ADDRESS:
        return _address_error(address)
    if not _valid_address(new_id):
        return _address_error(new_id)

    with _servo(address) as servo:
        servo.id_write(new_id)
    return {"address": new_id}


# ─── MOTION TOOLS ─────────────────────────────────────────────────────

@mcp.tool()
def move_servo(
    address: int, position: int, time_ms: int = 0, wait: bool = False
) -> dict[str, Any]:
    """Move a servo to a position.

    Args:
        address: Servo id (1-253).
        position: Target position 0-1000 (0.24 degree steps, 1000 = 240 degrees).
        time_ms: Time to reach the target in milliseconds (0 = full speed).
        wait: If true, preload the move and start it later with start_move.
    """
    if not _valid_address(address):
        return _address_error(address)
    if not 0 <= time_ms <= 0xFFFF:
        return {"error": f"time_ms must be 0-65535, got {time_ms}"}

    command = Command.MOVE_TIME_WAIT_WRITE if wait else Command.MOVE_TIME_WRITE
    params = CATALOG[command].clamp(position=position, time_ms=time_ms)

    with _servo(address) as servo:
        if wait:
            servo.move_time_wait_write(**params)
        else:
            servo.move_time_write(**params)

    return {"address": address, **params, "started": not wait}


@mcp.tool()
def start_move(address: int) -> dict[str, Any]:
    """Start a move preloaded with move_servo(wait=True)."""
    if not _valid_address(address):
        return _address_error(address)
    with _servo(address) as servo:
        servo.move_start()
    return {"address": address, "started": True}


@mcp.tool()
def stop_move(address: int) -> dict[str, Any]:
    """Stop a servo where it is."""
    if not _valid_address(address):
        return _address_error(address)
    with _servo(address) as servo:
        servo.move_stop()
    return {"address": address, "stopped": True}


# ─── STATUS TOOLS ─────────────────────────────────────────────────────

@mcp.tool()
def get_servo_status(address: int) -> dict[str, Any]:
    """Read position, target, temperature, voltage and modes of a servo.

    Args:
        address: Servo id (1-253).
    """
    if not _valid_address(address):
        return _address_error(address)

    with _servo(address) as servo:
        try:
            return {
                "address": address,
                "position": servo.pos_read(),
                "target": servo.move_time_read().to_dict(),
                "temperature_c": servo.temp_read(),
                "max_temperature_c": servo.temp_max_limit_read(),
                "voltage_mv": servo.vin_read(),
                "mode": servo.servo_or_motor_mode_read().to_dict(),
                "loaded": servo.load_or_unload_read() == LoadMode.LOAD,
                "power_led": servo.led_ctrl_read() == PowerLed.ON,
            }
        except ExchangeError as e:
            return {"error": str(e)}


@mcp.tool()
def set_mode(address: int, mode: str, speed: int = 0) -> dict[str, Any]:
    """Switch a servo between position control and continuous rotation.

    Args:
        address: Servo id (1-253).
        mode: "servo" or "motor".
        speed: Rotation speed -1000..1000, used in motor mode only.
    """
    if not _valid_address(address):
        return _address_error(address)
    try:
        parsed = Mode[mode.upper()]
    except KeyError:
        return {"error": f"Unknown mode '{mode}'. Valid: servo, motor"}

    params = CATALOG[Command.SERVO_OR_MOTOR_MODE_WRITE].clamp(mode=parsed, speed=speed)
    if parsed == Mode.SERVO:
        params["speed"] = 0

    with _servo(address) as servo:
        servo.servo_or_motor_mode_write(**params)
    return {"address": address, "mode": parsed.name.lower(), "speed": params["speed"]}


@mcp.tool()
def set_load(address: int, loaded: bool) -> dict[str, Any]:
    """Enable (loaded) or release (unloaded) the servo's holding torque."""
    if not _valid_address(address):
        return _address_error(address)
    with _servo(address) as servo:
        servo.load_or_unload_write(LoadMode.LOAD if loaded else LoadMode.UNLOAD)
    return {"address": address, "loaded": loaded}


# ─── CALIBRATION TOOLS ────────────────────────────────────────────────

@mcp.tool()
def set_angle_offset(address: int, offset: int, persist: bool = False) -> dict[str, Any]:
    """Adjust the servo's zero position.

    Args:
        address: Servo id (1-253).
        offset: Offset in 0.24 degree steps (-125..125).
        persist: Also save the offset to the servo's flash.
    """
    if not _valid_address(address):
        return _address_error(address)
    if not -125 <= offset <= 125:
        return {"error": f"Offset must be -125..125, got {offset}"}

    with _servo(address) as servo:
        servo.angle_offset_adjust(offset)
        if persist:
            servo.angle_offset_write()
    return {"address": address, "offset": offset, "persisted": persist}


@mcp.tool()
def get_angle_offset(address: int) -> dict[str, Any]:
    """Read the servo's zero position offset."""
    if not _valid_address(address):
        return _address_error(address)
    with _servo(address) as servo:
        try:
            return {"address": address, "offset": servo.angle_offset_read()}
        except ExchangeError as e:
            return {"error": str(e)}


@mcp.tool()
def set_angle_limits(address: int, min_limit: int, max_limit: int) -> dict[str, Any]:
    """Restrict the servo's travel. Values are clamped to 0..1000, min < max."""
    if not _valid_address(address):
        return _address_error(address)
    params = CATALOG[Command.ANGLE_LIMIT_WRITE].clamp(
        min_limit=min_limit, max_limit=max_limit
    )
    with _servo(address) as servo:
        servo.angle_limit_write(**params)
    return {"address": address, **params}


@mcp.tool()
def get_angle_limits(address: int) -> dict[str, Any]:
    """Read the servo's travel limits."""
    if not _valid_address(address):
        return _address_error(address)
    with _servo(address) as servo:
        try:
            return {"address": address, **servo.angle_limit_read().to_dict()}
        except ExchangeError as e:
            return {"error": str(e)}


@mcp.tool()
def set_voltage_limits(address: int, min_mv: int, max_mv: int) -> dict[str, Any]:
    """Set the input voltage window (mV). Clamped to 4500..12000, min < max."""
    if not _valid_address(address):
        return _address_error(address)
    params = CATALOG[Command.VIN_LIMIT_WRITE].clamp(min_limit=min_mv, max_limit=max_mv)
    with _servo(address) as servo:
        servo.vin_limit_write(**params)
    return {"address": address, **params}


@mcp.tool()
def get_voltage_limits(address: int) -> dict[str, Any]:
    """Read the servo's input voltage window (mV)."""
    if not _valid_address(address):
        return _address_error(address)
    with _servo(address) as servo:
        try:
            return {"address": address, **servo.vin_limit_read().to_dict()}
        except ExchangeError as e:
            return {"error": str(e)}


@mcp.tool()
def set_max_temperature(address: int, max_temp: int = 85) -> dict[str, Any]:
    """Set the over-temperature cut-off, clamped to 50..100 degrees C."""
    if not _valid_address(address):
        return _address_error(address)
    params = CATALOG[Command.TEMP_MAX_LIMIT_WRITE].clamp(max_temp=max_temp)
    with _servo(address) as servo:
        servo.temp_max_limit_write(**params)
    return {"address": address, **params}


# ─── LED TOOLS ────────────────────────────────────────────────────────

@mcp.tool()
def set_power_led(address: int, on: bool) -> dict[str, Any]:
    """Turn the servo's power LED on or off."""
    if not _valid_address(address):
        return _address_error(address)
    with _servo(address) as servo:
        servo.led_ctrl_write(PowerLed.ON if on else PowerLed.OFF)
    return {"address": address, "power_led": on}


@mcp.tool()
def set_led_warnings(
    address: int,
    over_temperature: bool = True,
    over_voltage: bool = True,
    stall: bool = True,
) -> dict[str, Any]:
    """Choose which faults make the servo's LED flash."""
    if not _valid_address(address):
        return _address_error(address)
    with _servo(address) as servo:
        servo.led_error_write(over_temperature, over_voltage, stall)
    return {
        "address": address,
        "over_temperature": over_temperature,
        "over_voltage": over_voltage,
        "stall": stall,
    }


@mcp.tool()
def get_led_warnings(address: int) -> dict[str, Any]:
    """Read which faults make the servo's LED flash."""
    if not _valid_address(address):
        return _address_error(address)
    with _servo(address) as servo:
        try:
            return {"address": address, **servo.led_error_read().to_dict()}
        except ExchangeError as e:
            return {"error": str(e)}


# ─── RESOURCES ────────────────────────────────────────────────────────

@mcp.resource("hiwonder://bus/connection")
def resource_connection() -> str:
    """Serial connection state."""
    if _client is None or not _client.session.is_open:
        return json.dumps({"connected": False})
    session = _client.session
    return json.dumps({
        "connected": True,
        "transport": repr(session.transport),
        "last_exchange": session.last_status.value if session.last_status else None,
    })


@mcp.resource("hiwonder://catalog/commands")
def resource_command_catalog() -> str:
    """Every protocol command with its request fields and reply size."""
    return json.dumps([
        {
            "name": d.command.name.lower(),
            "id": int(d.command),
            "fields": list(d.fields),
            "request_size": d.request_size,
            "reply_size": d.reply_size if d.is_read else None,
            "clamps": [
                {"field": c.field, "low": c.low, "high": c.high, "above": c.above}
                for c in d.clamps
            ],
            "broadcast": d.broadcast,
        }
        for d in CATALOG.values()
    ], indent=2)


# ─── PROMPTS ──────────────────────────────────────────────────────────

@mcp.prompt()
def calibrate_servo(address: int) -> str:
    """Walk through centering and limiting a newly mounted servo."""
    return f"""Calibrate servo {address}.

1. Use get_servo_status to check voltage and temperature are sane.
2. Use move_servo to send it to position 500 (mechanical center).
3. If the horn is not centered, use set_angle_offset in small steps,
   then persist=true once it looks right.
4. Move slowly towards each end stop and note the safe extremes.
5. Store them with set_angle_limits and confirm with get_angle_limits."""


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(level=logging.INFO)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
