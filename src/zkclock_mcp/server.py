"""MCP server entry point for ZK-protocol time clocks.

Exposes the time-clock client as tools and resources via the Model
Context Protocol using the official Python MCP SDK with stdio transport.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from .client import TimeClockClient, diagnose_connection as run_diagnosis
from .config import AppConfig, load_config
from .errors import ClockError, ConfigError
from .models.attendance import decode_attendance
from .models.capacity import DeviceCapacity
from .models.file_formats import export_csv, load_capture, save_capture
from .models.layouts import list_layouts
from .sync import sync_attendance as run_sync_attendance

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "zkclock",
    instructions="MCP server for ZK-protocol biometric attendance time clocks",
)

# Global connection state
_client: TimeClockClient | None = None
_last_capacity: DeviceCapacity | None = None


def _get_client() -> TimeClockClient:
    """Get the active client, raising if not connected."""
    if _client is None or not _client.connected:
        raise RuntimeError(
            "Not connected to device. Use the 'connect' tool first."
        )
    return _client


def _error(e: Exception) -> dict[str, Any]:
    logger.warning("%s: %s", type(e).__name__, e)
    return {"error": str(e), "error_type": type(e).__name__}


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
def connect(
    host: str | None = None,
    port: int | None = None,
    timeout: float | None = None,
) -> dict[str, Any]:
    """Open a session with the time clock over TCP (port 4370).

    Unspecified arguments come from the config file or ZKCLOCK_* variables.

    Args:
        host: Device IP address.
        port: Device TCP port.
        timeout: Read timeout in seconds.
    """
    global _client
    if _client is not None and _client.connected:
        host_now, port_now = _client.address
        return {
            "connected": True,
            "message": "Already connected",
            "host": host_now,
            "port": port_now,
        }

    try:
        device = load_config().device
    except ConfigError as e:
        return _error(e)
    if host is not None:
        device.host = host
    if port is not None:
        device.port = port
    if timeout is not None:
        device.timeout = timeout
    try:
        AppConfig(device=device).validate()
    except ConfigError as e:
        return _error(e)

    client = TimeClockClient.from_config(device)
    try:
        client.connect()
    except ClockError as e:
        return _error(e)

    _client = client
    return {
        "connected": True,
        "host": device.host,
        "port": device.port,
        "session_id": f"0x{client.session_id:04X}",
        "record_layout": client.layout.name,
    }


@mcp.tool()
def disconnect() -> dict[str, bool]:
    """Close the session with the time clock."""
    global _client
    if _client is None:
        return {"disconnected": True}
    _client.disconnect()
    _client = None
    return {"disconnected": True}


@mcp.tool()
def diagnose_connection(host: str | None = None, port: int | None = None) -> dict[str, Any]:
    """Check TCP reachability and the protocol handshake step by step.

    Args:
        host: Device IP address (defaults to configured host).
        port: Device TCP port (defaults to configured port).
    """
    try:
        device = load_config().device
    except ConfigError as e:
        return _error(e)
    diagnosis = run_diagnosis(
        host or device.host,
        port or device.port,
        timeout=device.timeout,
    )
    return diagnosis.to_dict()


# ─── DEVICE TOOLS ─────────────────────────────────────────────────────

@mcp.tool()
def get_device_capacity() -> dict[str, Any]:
    """Read record, user and fingerprint counters from the device."""
    global _last_capacity
    client = _get_client()
    try:
        _last_capacity = client.get_capacity()
    except ClockError as e:
        return _error(e)
    return _last_capacity.to_dict()


@mcp.tool()
def download_attendance(
    export_path: str | None = None,
    capture_path: str | None = None,
    limit: int = 50,
) -> dict[str, Any]:
    """Download every attendance punch stored on the device.

    The device is locked during the transfer and unlocked afterwards.

    Args:
        export_path: Optional CSV file to write all records to.
        capture_path: Optional file to save the raw ATTLOG buffer to.
        limit: Maximum number of records to include in the reply.
    """
    client = _get_client()
    try:
        raw = client.download_raw()
    except ClockError as e:
        return _error(e)

    records = client.decode(raw)
    result: dict[str, Any] = {
        "count": len(records),
        "records": [r.to_dict() for r in records[:max(limit, 0)]],
    }
    if export_path:
        result["export_path"] = str(export_csv(records, export_path))
    if capture_path:
        result["capture_path"] = str(save_capture(raw, capture_path))
    return result


@mcp.tool()
def clear_attendance(confirm: bool = False) -> dict[str, Any]:
    """Delete ALL attendance records from the device.

    Args:
        confirm: Must be True; download the records first.
    """
    if not confirm:
        return {"error": "Refusing to clear without confirm=True"}
    client = _get_client()
    try:
        client.clear_attendance()
    except ClockError as e:
        return _error(e)
    return {"cleared": True}


@mcp.tool()
def sync_attendance(
    auto_clear: bool | None = None,
    threshold: int | None = None,
    export_path: str | None = None,
) -> dict[str, Any]:
    """Download attendance and clear the device when it is nearly full.

    Args:
        auto_clear: Override the configured auto-clear policy.
        threshold: Override the configured record-count threshold.
        export_path: Optional CSV file to write the downloaded records to.
    """
    client = _get_client()
    try:
        sync = load_config().sync
    except ConfigError as e:
        return _error(e)

    try:
        records, result = run_sync_attendance(
            client,
            auto_clear=sync.auto_clear_enabled if auto_clear is None else auto_clear,
            threshold=sync.auto_clear_threshold if threshold is None else threshold,
        )
    except ClockError as e:
        return _error(e)

    reply = result.to_dict()
    if export_path:
        reply["export_path"] = str(export_csv(records, export_path))
    return reply


# ─── LAYOUT & CAPTURE TOOLS ──────────────────────────────────────────

@mcp.tool()
def list_record_layouts() -> dict[str, Any]:
    """List the known 40-byte attendance record layouts."""
    return {"layouts": [layout.to_dict() for layout in list_layouts()]}


@mcp.tool()
def decode_capture(path: str, layout: str = "flat-v1", limit: int = 50) -> dict[str, Any]:
    """Decode a saved raw ATTLOG capture with a given record layout.

    Use this to check which layout matches a device before relying on it.

    Args:
        path: Capture file saved by download_attendance.
        layout: Record layout name (see list_record_layouts).
        limit: Maximum number of records to include in the reply.
    """
    if not Path(path).exists():
        return {"error": f"File not found: {path}"}
    try:
        raw = load_capture(path)
        records = decode_attendance(raw, layout)
    except ValueError as e:
        return _error(e)
    return {
        "layout": layout,
        "bytes": len(raw),
        "count": len(records),
        "records": [r.to_dict() for r in records[:max(limit, 0)]],
    }


# ─── MCP RESOURCES ───────────────────────────────────────────────────

@mcp.resource("zkclock://device/status")
def resource_device_status() -> str:
    """Connection state of the time clock."""
    if _client is None:
        return json.dumps({"connected": False, "state": "DISCONNECTED"})
    host, port = _client.address
    return json.dumps({
        "connected": _client.connected,
        "state": _client.state.name,
        "host": host,
        "port": port,
        "record_layout": _client.layout.name,
    })


@mcp.resource("zkclock://device/capacity")
def resource_device_capacity() -> str:
    """Most recently read capacity counters."""
    if _last_capacity is None:
        return json.dumps({"capacity": None})
    return json.dumps({"capacity": _last_capacity.to_dict()})


@mcp.resource("zkclock://catalog/layouts")
def resource_layouts() -> str:
    """Known attendance record layouts."""
    return json.dumps({"layouts": [layout.to_dict() for layout in list_layouts()]})


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(level=logging.INFO)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
