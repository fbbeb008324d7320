"""Unit tests for the boardlink command line."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from boardlink.cli.main import cli
from boardlink.models import PortInfo
from boardlink.transport import SerialManager


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def fake_manager(serial_factory, esp32_port):
    mgr = SerialManager(
        port_lister=lambda: [esp32_port],
        serial_factory=serial_factory,
        read_timeout=0.01,
    )
    with patch("boardlink.cli.main._make_manager", return_value=mgr):
        yield mgr
    if mgr.link is not None:
        mgr.disconnect()


class TestIdentify:
    def test_hex_ids(self, runner):
        result = runner.invoke(cli, ["identify", "0x2E8A", "0x0005"])
        assert result.exit_code == 0
        assert result.output.strip() == "Raspberry Pi Pico"

    def test_unknown_ids(self, runner):
        result = runner.invoke(cli, ["identify", "0x1234", "0x5678"])
        assert result.exit_code == 0
        assert result.output.strip() == "Unknown Board"

    def test_json_output(self, runner):
        result = runner.invoke(cli, ["--json-output", "identify", "4292", "60000"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["board_type"] == "ESP32 (CP2102)"
        assert data["usb_vendor_id"] == 0x10C4

    def test_bad_id(self, runner):
        result = runner.invoke(cli, ["identify", "zz", "0x0005"])
        assert result.exit_code == 2
        assert "Invalid USB id" in result.output


class TestPorts:
    def test_lists_boards(self, runner):
        found = [
            PortInfo.from_ids(0x2341, 0x0043, device="/dev/ttyACM0"),
            PortInfo.from_ids(None, None, device="/dev/ttyS0"),
        ]
        with patch("boardlink.transport.list_ports", return_value=found):
            result = runner.invoke(cli, ["ports"])
        assert result.exit_code == 0
        assert "/dev/ttyACM0" in result.output
        assert "2341:0043" in result.output
        assert "Arduino Uno" in result.output
        assert "Unknown Board" in result.output

    def test_no_ports(self, runner):
        with patch("boardlink.transport.list_ports", return_value=[]):
            result = runner.invoke(cli, ["ports"])
        assert result.exit_code == 0
        assert "No serial ports found." in result.output


class TestUpload:
    def test_uploads_program(self, runner, fake_manager, serial_factory, tmp_path):
        program = tmp_path / "blink.py"
        program.write_text("from machine import Pin\nPin(2, Pin.OUT).value(1)\n")

        result = runner.invoke(cli, ["upload", str(program)])

        assert result.exit_code == 0, result.output
        assert "[  0%] Starting upload..." in result.output
        assert "Upload complete!" in result.output
        writes = serial_factory.last.writes
        assert writes[:3] == [b"\x03", b"\x03", b"\x01"]
        assert b"from machine import Pin\n" in writes
        assert writes[-2:] == [b"\x04", b"\x02"]
        assert not fake_manager.is_connected()

    def test_empty_program_rejected(self, runner, fake_manager, serial_factory, tmp_path):
        program = tmp_path / "empty.py"
        program.write_text("  \n")

        result = runner.invoke(cli, ["upload", str(program)])

        assert result.exit_code == 2
        assert serial_factory.created == []

    def test_arduino_rejected(self, runner, fake_manager, serial_factory, tmp_path):
        program = tmp_path / "sketch.py"
        program.write_text("print(1)")

        result = runner.invoke(cli, ["upload", "--board", "arduino", str(program)])

        assert result.exit_code == 1
        assert "compiled image" in result.output
        assert serial_factory.last.writes == []

    def test_connect_failure(self, runner, tmp_path):
        program = tmp_path / "main.py"
        program.write_text("print(1)")
        mgr = SerialManager(port_lister=lambda: [])

        with patch("boardlink.cli.main._make_manager", return_value=mgr):
            result = runner.invoke(cli, ["upload", str(program)])

        assert result.exit_code == 1
        assert "ERROR: Failed to connect" in result.output
