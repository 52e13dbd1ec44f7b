"""
Tests for the bricklink CLI
===========================

Commands run through click's CliRunner with the transport replaced by
the scripted brick simulators from conftest.py.
"""

import click
import pytest
from click.testing import CliRunner
from unittest.mock import Mock, patch

from brick_sdk import __version__
from brick_sdk.cli.bricklink import build_transport, main
from brick_sdk.cli.errors import ExitCode
from brick_sdk.comms.ev3 import PROJECTS_PATH
from brick_sdk.comms.serial import PortInfo, SerialTransport
from brick_sdk.comms.transport import Transport
from brick_sdk.comms.tunnel import TunnelTransport
from brick_sdk.comms.usb import EV3_USB, UsbTransport
from brick_sdk.config import BrickConfig
from brick_sdk.errors import TransportError


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def no_settle_delay():
    with patch("brick_sdk.comms.connection.time.sleep"):
        yield


def run_with(runner, transport, args):
    with patch("brick_sdk.cli.bricklink.build_transport", return_value=transport):
        return runner.invoke(main, args, env={"BRICK_FAMILY": None, "BRICK_TRANSPORT": None})


# =============================================================================
# Basic Commands
# =============================================================================

class TestBasics:
    """Tests for help, version and port listing."""

    def test_help(self, runner):
        """The group help lists the commands."""
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "Manage files" in result.output
        for command in ("ports", "ls", "tree", "upload", "download", "rm", "mkdir", "free"):
            assert command in result.output

    def test_version(self, runner):
        """--version prints the package version."""
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert f"bricklink, version {__version__}" in result.output

    def test_ports(self, runner):
        """Serial ports and USB bricks are listed."""
        ports = [PortInfo("/dev/rfcomm0", "Bluetooth")]
        with patch("brick_sdk.cli.bricklink.list_serial_ports", return_value=ports), \
                patch("brick_sdk.cli.bricklink.find_usb_brick", side_effect=[None, "1:7"]):
            result = runner.invoke(main, ["ports"])
        assert result.exit_code == 0
        assert "/dev/rfcomm0 - Bluetooth (brick)" in result.output
        assert "USB EV3 brick at 1:7" in result.output


# =============================================================================
# Transport Selection
# =============================================================================

class TestBuildTransport:
    """Tests for choosing a transport from the configuration."""

    def test_serial_with_port(self):
        """An explicit port is used as-is."""
        transport = build_transport(BrickConfig(port="/dev/rfcomm3", timeout=2.0))
        assert isinstance(transport, SerialTransport)
        assert transport.device == "/dev/rfcomm3"
        assert transport.timeout == 2.0

    def test_serial_auto_detect(self):
        """Without a port the brick port is detected."""
        with patch("brick_sdk.cli.bricklink.find_brick_port", return_value="/dev/rfcomm0"):
            transport = build_transport(BrickConfig())
        assert transport.device == "/dev/rfcomm0"

    def test_serial_auto_detect_fails(self):
        """No port and nothing detected is a usage error."""
        with patch("brick_sdk.cli.bricklink.find_brick_port", return_value=None):
            with pytest.raises(click.BadParameter):
                build_transport(BrickConfig())

    def test_usb_uses_family_profile(self):
        """USB picks the profile of the configured family."""
        transport = build_transport(BrickConfig(transport="usb", family="ev3"))
        assert isinstance(transport, UsbTransport)
        assert transport.profile is EV3_USB

    def test_tunnel(self):
        """The tunnel needs a host."""
        transport = build_transport(BrickConfig(transport="tunnel", host="h", tcp_port=99))
        assert isinstance(transport, TunnelTransport)
        assert (transport.host, transport.port) == ("h", 99)

    def test_tunnel_without_host(self, runner):
        """A tunnel without host exits with INVALID_ARGS."""
        result = runner.invoke(main, ["--transport", "tunnel", "ls"], env={"BRICK_HOST": None})
        assert result.exit_code == ExitCode.INVALID_ARGS
        assert "--host" in result.output


# =============================================================================
# NXT Commands
# =============================================================================

class TestNxtCommands:
    """Tests for commands against the NXT simulator."""

    def test_ls(self, runner, nxt_sim):
        """ls lists every file with its size."""
        nxt_sim.files = {"robot.rxe": b"x" * 300, "beep.rso": b"y" * 20}
        result = run_with(runner, nxt_sim, ["ls"])
        assert result.exit_code == 0
        assert "robot.rxe" in result.output
        assert "300" in result.output
        assert "2 file(s)" in result.output

    def test_upload(self, runner, nxt_sim):
        """upload stores the local file under its name."""
        with runner.isolated_filesystem():
            with open("robot.rxe", "wb") as f:
                f.write(bytes(120))
            result = run_with(runner, nxt_sim, ["upload", "robot.rxe"])
        assert result.exit_code == 0, result.output
        assert nxt_sim.files["robot.rxe"] == bytes(120)
        assert "Uploaded robot.rxe as robot.rxe" in result.output

    def test_upload_missing_local_file(self, runner, nxt_sim):
        """click rejects a missing local file."""
        result = run_with(runner, nxt_sim, ["upload", "does-not-exist.rxe"])
        assert result.exit_code == 2

    def test_download(self, runner, nxt_sim):
        """download saves the remote file locally."""
        nxt_sim.files["log.rdt"] = b"data" * 30
        with runner.isolated_filesystem():
            result = run_with(runner, nxt_sim, ["download", "log.rdt", "out.rdt"])
            with open("out.rdt", "rb") as f:
                saved = f.read()
        assert result.exit_code == 0, result.output
        assert saved == b"data" * 30
        assert "Saved 120 bytes" in result.output

    def test_download_missing_file(self, runner, nxt_sim):
        """Firmware errors exit with BRICK_ERROR."""
        with runner.isolated_filesystem():
            result = run_with(runner, nxt_sim, ["download", "gone.rdt"])
        assert result.exit_code == ExitCode.BRICK_ERROR
        assert "NXT error: File not found" in result.output

    def test_rm(self, runner, nxt_sim):
        """rm deletes the file."""
        nxt_sim.files["beep.rso"] = b"x"
        result = run_with(runner, nxt_sim, ["rm", "beep.rso"])
        assert result.exit_code == 0
        assert nxt_sim.files == {}

    def test_free(self, runner, nxt_sim):
        """free shows the free flash."""
        nxt_sim.free_flash = 4096
        result = run_with(runner, nxt_sim, ["free"])
        assert result.exit_code == 0
        assert "4096 bytes free" in result.output

    def test_tree_requires_ev3(self, runner, nxt_sim):
        """tree is an EV3 command."""
        result = run_with(runner, nxt_sim, ["tree"])
        assert result.exit_code == ExitCode.INVALID_ARGS
        assert "--family ev3" in result.output

    def test_connection_failure(self, runner):
        """A transport that cannot open exits with BRICK_ERROR."""
        transport = Mock(spec=Transport)
        transport.length_prefixed = True
        transport.open.side_effect = TransportError("Serial port not found: /dev/rfcomm9")
        result = run_with(runner, transport, ["ls"])
        assert result.exit_code == ExitCode.BRICK_ERROR
        assert "Connection error: Failed to open connection" in result.output


# =============================================================================
# EV3 Commands
# =============================================================================

class TestEv3Commands:
    """Tests for commands against the EV3 simulator."""

    def test_ls(self, runner, ev3_sim):
        """ls shows folders and files of the projects folder."""
        ev3_sim.listings[PROJECTS_PATH] = "./\n../\nDemo/\n12 notes.rtf\n"
        result = run_with(runner, ev3_sim, ["--family", "ev3", "ls"])
        assert result.exit_code == 0, result.output
        assert "Demo/" in result.output
        assert "notes.rtf" in result.output
        assert "1 file(s)" in result.output

    def test_tree(self, runner, ev3_sim):
        """tree prints the walked structure."""
        ev3_sim.listings = {
            "/prjs/": "Demo/\nLocked/\n",
            "/prjs/Demo": "42 Demo.rbf\n",
        }
        result = run_with(runner, ev3_sim, ["--family", "ev3", "tree", "/prjs/"])
        assert result.exit_code == 0, result.output
        assert "  Demo/" in result.output
        assert "    Demo.rbf  42" in result.output
        assert "  Locked/  [not browsable]" in result.output

    def test_upload_to_projects(self, runner, ev3_sim):
        """Bare names are placed in the projects folder."""
        with runner.isolated_filesystem():
            with open("sound.rsf", "wb") as f:
                f.write(b"abc")
            result = run_with(runner, ev3_sim, ["--family", "ev3", "upload", "sound.rsf"])
        assert result.exit_code == 0, result.output
        assert ev3_sim.files[PROJECTS_PATH + "sound.rsf"] == b"abc"

    def test_mkdir(self, runner, ev3_sim):
        """mkdir creates a directory."""
        result = run_with(runner, ev3_sim, ["--family", "ev3", "mkdir", "/tmp/new"])
        assert result.exit_code == 0
        assert "/tmp/new" in ev3_sim.directories

    def test_free_requires_nxt(self, runner, ev3_sim):
        """free is an NXT command."""
        result = run_with(runner, ev3_sim, ["--family", "ev3", "free"])
        assert result.exit_code == ExitCode.INVALID_ARGS
