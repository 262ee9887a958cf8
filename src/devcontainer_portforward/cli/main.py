"""
devcontainer-portforward client CLI entry point.

Usage:
    devcontainer-portforward [OPTIONS]

Runs inside the container: waits for the server side to publish its socket
and host key in the shared data directory, then forwards every TCP port
bound in the container until terminated.
"""

import asyncio
import signal
from typing import Annotated

import typer

from devcontainer_portforward.agent import main_async
from devcontainer_portforward.cli.output import print_error, print_success
from devcontainer_portforward.config import config
from devcontainer_portforward.exceptions import PortForwardError
from devcontainer_portforward.models.enums import LogLevel
from devcontainer_portforward.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)

app = typer.Typer(
    name="devcontainer-portforward",
    help="Forward ports bound in the container to the host",
    rich_markup_mode="rich",
)

STOP_SIGNALS = (signal.SIGTERM, signal.SIGINT, signal.SIGHUP)


async def _run_until_signalled() -> None:
    """Run the agent; a stop signal ends it cleanly."""
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def request_stop(signame: str) -> None:
        logger.info(f"Received {signame}, shutting down.")
        stop_event.set()

    for sig in STOP_SIGNALS:
        loop.add_signal_handler(sig, request_stop, sig.name)
    try:
        await main_async(stop_event)
    finally:
        for sig in STOP_SIGNALS:
            loop.remove_signal_handler(sig)


@app.command()
def run(
    datadir: Annotated[
        str,
        typer.Option(
            "--datadir",
            "-d",
            help="Directory where the volume shared with the server is mounted.",
            envvar="DEVCONTAINER_PORTFORWARD_DATADIR",
        ),
    ] = config.DATADIR,
    poll_interval: Annotated[
        float,
        typer.Option(
            "--poll-interval",
            help="Seconds between scans of the listening sockets.",
            envvar="DEVCONTAINER_PORTFORWARD_POLL_INTERVAL",
            min=0.1,
        ),
    ] = config.POLL_INTERVAL_SECONDS,
    user: Annotated[
        str,
        typer.Option(
            "--user",
            "-u",
            help="SSH username presented to the server.",
            envvar="DEVCONTAINER_PORTFORWARD_USER",
        ),
    ] = config.SSH_USER,
    log_level: Annotated[
        LogLevel,
        typer.Option(
            "--log-level",
            "-l",
            help="Logging verbosity.",
            envvar="DEVCONTAINER_PORTFORWARD_LOG_LEVEL",
            case_sensitive=False,
        ),
    ] = config.LOG_LEVEL,
):
    """
    Start the port forward client.

    Exits with status 1 when the server cannot be reached, the SSH
    connection is lost, or listening sockets cannot be enumerated.
    """
    config.DATADIR = datadir
    config.POLL_INTERVAL_SECONDS = poll_interval
    config.SSH_USER = user
    config.LOG_LEVEL = log_level

    configure_logging(config.LOG_LEVEL)
    logger.info("Starting devcontainer-portforward client.")

    try:
        asyncio.run(_run_until_signalled())
    except PortForwardError as e:
        logger.error(str(e))
        print_error(str(e))
        raise typer.Exit(1)
    except KeyboardInterrupt:
        pass
    print_success("Stopped.")


def main():
    """Console script entry point."""
    app()


if __name__ == "__main__":
    main()
