"""
bricklink - Brick File Management Command-Line Interface
========================================================

This module implements the command-line interface for managing files on
a LEGO Mindstorms NXT or EV3 brick over Bluetooth (serial), USB or a TCP
tunnel.

Usage Examples
--------------
List available serial ports and attached USB bricks:
    $ bricklink ports

List files on an NXT paired as /dev/rfcomm0:
    $ bricklink --port /dev/rfcomm0 ls

Upload a program:
    $ bricklink --port /dev/rfcomm0 upload robot.rxe

Show the project tree of an EV3 connected by USB:
    $ bricklink --transport usb --family ev3 tree

Download a datalog through a tunnel:
    $ bricklink --transport tunnel --host 192.168.1.20 download log.rdt

Settings can also come from the environment (BRICK_TRANSPORT,
BRICK_FAMILY, BRICK_PORT, BRICK_HOST, BRICK_TCP_PORT, BRICK_TIMEOUT);
command-line options take precedence.

Exit Codes
----------
0 - Success
1 - Connection, transfer or firmware error
2 - Invalid arguments or missing local files
3 - Internal error
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

import click

from brick_sdk import __version__
from brick_sdk.cli.errors import handle_cli_exception
from brick_sdk.comms import (
    EV3_USB,
    NXT_USB,
    PROJECTS_PATH,
    Connection,
    DirectoryWalker,
    Ev3FileSystem,
    Ev3Reply,
    NxtFileSystem,
    NxtReply,
    SerialTransport,
    TransferSession,
    Transport,
    TunnelTransport,
    UsbTransport,
    find_brick_port,
    find_usb_brick,
    format_port_list,
    join_path,
    list_serial_ports,
    parse_listing,
)
from brick_sdk.config import FAMILIES, TRANSPORTS, BrickConfig

# Configure logging
logger = logging.getLogger(__name__)

FileSystem = Union[NxtFileSystem, Ev3FileSystem]


# =============================================================================
# CLI Context and Utilities
# =============================================================================

class Context:
    """
    Shared context for CLI commands.

    Stores the resolved connection settings and verbosity.
    """

    def __init__(self) -> None:
        self.config: BrickConfig = BrickConfig()
        self.verbose: bool = False

    def setup_logging(self) -> None:
        """Configure logging based on verbosity."""
        level = logging.DEBUG if self.verbose else logging.INFO
        logging.basicConfig(
            level=level,
            format="%(levelname)s: %(message)s" if self.verbose else "%(message)s",
        )

    @property
    def is_ev3(self) -> bool:
        return self.config.family == "ev3"


pass_context = click.make_pass_decorator(Context, ensure=True)


def progress_bar(current: int, total: int) -> None:
    """Simple text progress bar for file transfers."""
    if total == 0:
        return
    percent = current * 100 // total
    filled = percent // 2
    bar = "=" * filled + "-" * (50 - filled)
    click.echo(f"\r[{bar}] {percent:3d}% ({current}/{total} bytes)", nl=False)
    if current >= total:
        click.echo()  # Newline at end


def build_transport(config: BrickConfig) -> Transport:
    """
    Create the transport described by config.

    Raises:
        click.BadParameter: If a required setting is missing.
    """
    if config.transport == "usb":
        profile = EV3_USB if config.family == "ev3" else NXT_USB
        return UsbTransport(profile, timeout=config.timeout)

    if config.transport == "tunnel":
        if not config.host:
            raise click.BadParameter("--host is required for the tunnel transport")
        return TunnelTransport(config.host, config.tcp_port, timeout=config.timeout)

    port = config.port or find_brick_port()
    if not port:
        raise click.BadParameter(
            "No serial port specified and auto-detect failed. "
            "Use --port or 'bricklink ports' to find available ports."
        )
    return SerialTransport(port, timeout=config.timeout)


@contextmanager
def open_file_system(ctx: Context) -> Iterator[FileSystem]:
    """Open a connection to the configured brick and yield its file system."""
    config = ctx.config
    reply_type = Ev3Reply if ctx.is_ev3 else NxtReply
    transport = build_transport(config)

    click.echo(f"Connecting to {config.family.upper()} brick via {config.transport}...")
    with Connection(transport, reply_type, settle_delay=config.settle_delay) as conn:
        if ctx.is_ev3:
            yield Ev3FileSystem(conn)
        else:
            yield NxtFileSystem(conn)


def require_ev3(ctx: Context, command: str) -> None:
    if not ctx.is_ev3:
        raise click.BadParameter(f"'{command}' is only available with --family ev3")


def require_nxt(ctx: Context, command: str) -> None:
    if ctx.is_ev3:
        raise click.BadParameter(f"'{command}' is only available with --family nxt")


def remote_name(ctx: Context, name: str) -> str:
    """Resolve a bare EV3 file name against the projects folder."""
    if ctx.is_ev3 and not name.startswith(("/", "..")):
        return join_path(PROJECTS_PATH, name)
    return name


# =============================================================================
# Main CLI Group
# =============================================================================

@click.group()
@click.option(
    "-t", "--transport",
    type=click.Choice(TRANSPORTS),
    default=None,
    help="Transport to use (default: serial)",
)
@click.option(
    "-f", "--family",
    type=click.Choice(FAMILIES),
    default=None,
    help="Brick firmware family (default: nxt)",
)
@click.option(
    "-p", "--port",
    type=str,
    default=None,
    help="Serial port device (auto-detect if not specified)",
)
@click.option("--host", type=str, default=None, help="Tunnel host")
@click.option("--tcp-port", type=int, default=None, help="Tunnel TCP port")
@click.option(
    "--timeout",
    type=float,
    default=None,
    help="Read/write timeout in seconds (default: 5)",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.version_option(version=__version__, prog_name="bricklink")
@pass_context
def main(
    ctx: Context,
    transport: Optional[str],
    family: Optional[str],
    port: Optional[str],
    host: Optional[str],
    tcp_port: Optional[int],
    timeout: Optional[float],
    verbose: bool,
) -> None:
    """
    Manage files on a LEGO Mindstorms NXT or EV3 brick.

    Connect over Bluetooth (serial port), USB, or a TCP tunnel.
    Use 'bricklink ports' to list available serial ports.
    """
    ctx.config = BrickConfig.from_env().merged(
        transport=transport,
        family=family,
        port=port,
        host=host,
        tcp_port=tcp_port,
        timeout=timeout,
    )
    ctx.verbose = verbose
    ctx.setup_logging()


# =============================================================================
# Ports Command
# =============================================================================

@main.command()
@click.option("--detailed", "-d", is_flag=True, help="Show detailed port information")
def ports(detailed: bool) -> None:
    """
    List serial ports and attached USB bricks.

    Paired Bluetooth bricks appear as serial ports (rfcomm on Linux).
    """
    port_list = list_serial_ports()
    click.echo("Available serial ports:")
    click.echo(format_port_list(port_list, verbose=detailed))

    for profile in (NXT_USB, EV3_USB):
        location = find_usb_brick(profile)
        if location:
            click.echo(f"\nUSB {profile.name} brick at {location}")


# =============================================================================
# Listing Commands
# =============================================================================

@main.command("ls")
@click.argument("path", required=False)
@pass_context
def list_files(ctx: Context, path: Optional[str]) -> None:
    """
    List files on the brick.

    On the NXT, PATH is a wildcard pattern (default: *.*). On the EV3,
    PATH is a directory (default: the projects folder).
    """
    try:
        with open_file_system(ctx) as fs:
            if isinstance(fs, Ev3FileSystem):
                directory = path or PROJECTS_PATH
                listing = parse_listing(fs.list_files(directory))
                click.echo(f"\n{directory}")
                for folder in sorted(listing.folders):
                    click.echo(f"  {folder}/")
                for name, size in sorted(listing.files):
                    click.echo(f"  {name:<32} {size:>8}")
                count = len(listing.files)
            else:
                files = fs.file_list(path or "*.*")
                click.echo("")
                for remote_file in files:
                    click.echo(f"  {remote_file.name:<20} {remote_file.size:>8}")
                count = len(files)
            click.echo(f"{count} file(s)")
    except Exception as e:
        handle_cli_exception(e, ctx.verbose)


@main.command()
@click.argument("path", required=False)
@pass_context
def tree(ctx: Context, path: Optional[str]) -> None:
    """
    Show the folder tree below PATH (EV3 only).

    Folders that cannot be read are marked as not browsable.
    """
    try:
        require_ev3(ctx, "tree")
        with open_file_system(ctx) as fs:
            root = DirectoryWalker(fs).walk(path or PROJECTS_PATH)
        for line in root.tree_lines():
            click.echo(line)
    except Exception as e:
        handle_cli_exception(e, ctx.verbose)


# =============================================================================
# Transfer Commands
# =============================================================================

@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.argument("name", required=False)
@pass_context
def upload(ctx: Context, file: str, name: Optional[str]) -> None:
    """
    Upload FILE to the brick.

    NAME is the remote name (default: the local file name). On the EV3 a
    bare name is placed in the projects folder.
    """
    try:
        target = remote_name(ctx, name or Path(file).name)
        with open_file_system(ctx) as fs:
            TransferSession(fs).upload_file(file, target, progress=progress_bar)
        click.echo(f"Uploaded {file} as {target}")
    except Exception as e:
        handle_cli_exception(e, ctx.verbose)


@main.command()
@click.argument("name")
@click.argument("output", type=click.Path(dir_okay=False), required=False)
@pass_context
def download(ctx: Context, name: str, output: Optional[str]) -> None:
    """
    Download NAME from the brick.

    OUTPUT is the local file (default: the remote file name).
    """
    try:
        source = remote_name(ctx, name)
        output_path = Path(output or Path(name).name)
        with open_file_system(ctx) as fs:
            size = TransferSession(fs).download_file(
                source, output_path, progress=progress_bar
            )
        click.echo(f"Saved {size} bytes to {output_path}")
    except Exception as e:
        handle_cli_exception(e, ctx.verbose)


# =============================================================================
# Management Commands
# =============================================================================

@main.command("rm")
@click.argument("name")
@pass_context
def remove(ctx: Context, name: str) -> None:
    """Delete NAME from the brick."""
    try:
        target = remote_name(ctx, name)
        with open_file_system(ctx) as fs:
            fs.delete_file(target)
        click.echo(f"Deleted {target}")
    except Exception as e:
        handle_cli_exception(e, ctx.verbose)


@main.command()
@click.argument("path")
@pass_context
def mkdir(ctx: Context, path: str) -> None:
    """Create directory PATH (EV3 only)."""
    try:
        require_ev3(ctx, "mkdir")
        target = remote_name(ctx, path)
        with open_file_system(ctx) as fs:
            fs.create_directory(target)
        click.echo(f"Created {target}")
    except Exception as e:
        handle_cli_exception(e, ctx.verbose)


@main.command()
@pass_context
def free(ctx: Context) -> None:
    """Show free user flash (NXT only)."""
    try:
        require_nxt(ctx, "free")
        with open_file_system(ctx) as fs:
            click.echo(f"{fs.get_free_flash()} bytes free")
    except Exception as e:
        handle_cli_exception(e, ctx.verbose)


# =============================================================================
# Entry Point
# =============================================================================

if __name__ == "__main__":
    main()
