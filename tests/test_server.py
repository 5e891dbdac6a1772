"""Tests for the MCP tool and resource handlers."""

from __future__ import annotations

import json
import sys
from datetime import timezone
from unittest.mock import MagicMock, patch

import pytest

from zkclock_mcp.client import TimeClockClient
from zkclock_mcp.config import AppConfig
from zkclock_mcp.protocol.commands import Command


def _get_server_module():
    """Import server module with FastMCP mocked to avoid init issues."""
    mock_fastmcp_cls = MagicMock()
    mock_fastmcp_instance = MagicMock()
    # Make the @mcp.tool() decorator a no-op that returns the function unchanged
    mock_fastmcp_instance.tool.return_value = lambda fn: fn
    mock_fastmcp_instance.resource.return_value = lambda fn: fn
    mock_fastmcp_cls.return_value = mock_fastmcp_instance

    with patch.dict(sys.modules, {}):
        with patch("mcp.server.fastmcp.FastMCP", mock_fastmcp_cls):
            # Remove cached server module so it re-imports with our mock
            sys.modules.pop("zkclock_mcp.server", None)
            import zkclock_mcp.server as server_mod

    return server_mod


@pytest.fixture
def device(fake_device, make_record):
    sizes = [0] * 20
    sizes[8], sizes[16], sizes[19] = 2, 100000, 99998
    attlog = make_record("20", 86400) + make_record("65", 172800)
    return fake_device(attlog=attlog, free_sizes=sizes)


@pytest.fixture
def server(monkeypatch, device):
    server_mod = _get_server_module()

    class FakeNetworkClient(TimeClockClient):
        @classmethod
        def from_config(cls, config, **kwargs):
            return super().from_config(
                config, socket_factory=device.factory, tz=timezone.utc
            )

    monkeypatch.setattr(server_mod, "TimeClockClient", FakeNetworkClient)
    monkeypatch.setattr(server_mod, "load_config", lambda: AppConfig())
    yield server_mod
    server_mod.disconnect()


def test_tools_require_connection(server):
    with pytest.raises(RuntimeError, match="connect"):
        server.get_device_capacity()


def test_connect_and_status(server, device):
    result = server.connect(host="10.0.0.77")
    assert result["connected"] is True
    assert result["host"] == "10.0.0.77"
    assert result["session_id"] == f"0x{device.session_id:04X}"
    assert result["record_layout"] == "flat-v1"

    status = json.loads(server.resource_device_status())
    assert status["state"] == "CONNECTED"
    assert status["host"] == "10.0.0.77"

    assert server.connect()["message"] == "Already connected"
    assert device.count(Command.CONNECT) == 1


def test_connect_failure_reported(server, device):
    device.timeout_on.add(Command.CONNECT)
    result = server.connect()
    assert result["error_type"] == "DeviceTimeoutError"
    assert json.loads(server.resource_device_status())["connected"] is False


def test_capacity_tool_and_resource(server):
    assert json.loads(server.resource_device_capacity()) == {"capacity": None}
    server.connect()
    capacity = server.get_device_capacity()
    assert capacity["record_count"] == 2
    assert capacity["record_capacity"] == 100000
    assert json.loads(server.resource_device_capacity())["capacity"]["record_count"] == 2


def test_download_exports_and_captures(server, tmp_path):
    server.connect()
    result = server.download_attendance(
        export_path=str(tmp_path / "out.csv"),
        capture_path=str(tmp_path / "attlog.bin"),
        limit=1,
    )
    assert result["count"] == 2
    assert result["records"] == [{
        "user_id": 20,
        "timestamp": "2000-01-02T00:00:00+00:00",
        "verify_type": 1,
        "status": 0,
    }]
    assert (tmp_path / "out.csv").read_text().count("\n") == 3

    decoded = server.decode_capture(str(tmp_path / "attlog.bin"))
    assert decoded["count"] == 2
    assert decoded["bytes"] == 80


def test_download_error_reported(server, device):
    server.connect()
    device.chunk_failures = 3
    result = server.download_attendance()
    assert result["error_type"] == "ChunkReadError"
    assert device.count(Command.ENABLE_DEVICE) == 1


def test_clear_requires_confirm(server, device):
    server.connect()
    assert "error" in server.clear_attendance()
    assert device.count(Command.CLEAR_ATTLOG) == 0
    assert server.clear_attendance(confirm=True) == {"cleared": True}
    assert device.count(Command.CLEAR_ATTLOG) == 1


def test_sync_tool_overrides(server, device, tmp_path):
    server.connect()
    result = server.sync_attendance(
        auto_clear=True, threshold=2, export_path=str(tmp_path / "sync.csv")
    )
    assert result["downloaded"] == 2
    assert result["device_cleared"] is True
    assert (tmp_path / "sync.csv").exists()


def test_sync_tool_uses_config_policy(server, device):
    server.connect()
    result = server.sync_attendance()
    assert result["device_cleared"] is False
    assert device.count(Command.GET_FREE_SIZES) == 0


def test_disconnect(server, device):
    server.connect()
    assert server.disconnect() == {"disconnected": True}
    assert device.closed
    assert server.disconnect() == {"disconnected": True}


def test_list_record_layouts(server):
    names = [layout["name"] for layout in server.list_record_layouts()["layouts"]]
    assert "flat-v1" in names
    assert "indexed-v2" in names
    assert json.loads(server.resource_layouts())["layouts"][0]["name"] == "flat-v1"


def test_decode_capture_missing_file(server, tmp_path):
    assert "error" in server.decode_capture(str(tmp_path / "nope.bin"))


def test_decode_capture_unknown_layout(server, tmp_path):
    path = tmp_path / "dump.bin"
    path.write_bytes(bytes(40))
    assert server.decode_capture(str(path), layout="flat-v0")["error_type"] == "ValueError"


@pytest.mark.parametrize(
    "kwargs", [{"timeout": -1}, {"timeout": 0}, {"port": 70000}, {"host": " "}]
)
def test_connect_rejects_bad_overrides(server, device, kwargs):
    result = server.connect(**kwargs)
    assert result["error_type"] == "ConfigError"
    assert device.requests == []
    assert json.loads(server.resource_device_status())["connected"] is False


def test_decode_capture_truncated_header(server, tmp_path):
    path = tmp_path / "short.bin"
    path.write_bytes(b"ZKATTLOG\x01")
    result = server.decode_capture(str(path))
    assert result["error_type"] == "ValueError"
    assert "Truncated capture header" in result["error"]
