import argparse
import asyncio
import ipaddress
import logging
import os
import signal
import sys
from pathlib import Path
from urllib.parse import urlparse

from .server import main_loop
from .errors import DataDirError
from .session import DEFAULT_QUEUE_SIZE, MIN_QUEUE_SIZE

DEFAULT_LISTEN = "0.0.0.0:9001"
DEFAULT_PORT = 9001
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _parse_listen(listen: str) -> tuple[str, int]:
    # Accept ws://host:port, host:port, :port or just port
    if listen.startswith("ws://") or listen.startswith("wss://"):
        p = urlparse(listen)
        host = p.hostname or "0.0.0.0"
        port = p.port or DEFAULT_PORT
        return host, int(port)
    if ":" in listen:
        host, port = listen.rsplit(":", 1)
        host = host.strip("[]") or "0.0.0.0"
        return host, int(port)
    return "0.0.0.0", int(listen)


def _listen_arg(value: str) -> tuple[str, int]:
    try:
        host, port = _parse_listen(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid listen address: {value!r}")
    if not 0 <= port <= 65535:
        raise argparse.ArgumentTypeError(f"port out of range: {port}")
    return host, port


def _log_level_arg(value: str) -> str:
    level = value.upper()
    if level not in LOG_LEVELS:
        raise argparse.ArgumentTypeError(
            f"invalid log level {value!r} (choose from {', '.join(LOG_LEVELS)})"
        )
    return level


def _ipv4_arg(value: str) -> ipaddress.IPv4Address:
    try:
        return ipaddress.IPv4Address(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an IPv4 address: {value!r}")


def _queue_size_arg(value: str) -> int:
    try:
        size = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {value!r}")
    if size < MIN_QUEUE_SIZE:
        raise argparse.ArgumentTypeError(f"queue size must be at least {MIN_QUEUE_SIZE}")
    return size


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Heartsock WebSocket server: relays heart rate and battery from one tracker to every other client"
    )
    parser.add_argument(
        "-l",
        "--listen",
        type=_listen_arg,
        default=os.getenv("HEARTSOCK_LISTEN", DEFAULT_LISTEN),
        help="Socket address to listen on (host:port)",
    )
    parser.add_argument(
        "-d",
        "--disable-mdns",
        action="store_true",
        help="Disables mDNS advertisement",
    )
    parser.add_argument(
        "-a",
        "--advertise-ip",
        type=_ipv4_arg,
        default=os.getenv("HEARTSOCK_ADVERTISE_IP") or None,
        help="IPv4 address to advertise (via mDNS) for connecting to",
    )
    parser.add_argument(
        "-D",
        "--data-dir",
        type=Path,
        default=os.getenv("HEARTSOCK_DATA_DIR") or None,
        help="Directory to write plain text files in for each data type (bpm, battery)",
    )
    parser.add_argument(
        "-o",
        "--log-level",
        type=_log_level_arg,
        default=os.getenv("HEARTSOCK_LOG_LEVEL", "INFO"),
        help="Max log level to output",
    )
    parser.add_argument(
        "--queue-size",
        type=_queue_size_arg,
        default=os.getenv("HEARTSOCK_QUEUE_SIZE", str(DEFAULT_QUEUE_SIZE)),
        help="Outbound messages buffered per client before it is dropped as too slow",
    )
    return parser


async def _run(args: argparse.Namespace) -> None:
    host, port = args.listen
    task = asyncio.create_task(
        main_loop(
            host,
            port,
            data_dir=args.data_dir,
            advertise=not args.disable_mdns,
            advertise_ip=args.advertise_ip,
            queue_size=args.queue_size,
        )
    )

    stop = asyncio.Event()

    # Install signal handlers when supported
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows may not support SIGTERM
            pass

    stop_task = asyncio.create_task(stop.wait())
    try:
        await asyncio.wait({task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stop_task.cancel()
        if not task.done():
            task.cancel()
        try:
            # Re-raises startup failures such as a bind error
            await task
        except asyncio.CancelledError:
            pass
    logging.info("Server shutdown complete")


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(message)s",
    )

    try:
        asyncio.run(_run(args))
    except DataDirError as e:
        logging.error("%s", e)
        sys.exit(1)
    except OSError as e:
        host, port = args.listen
        logging.error("Failed to run WebSocket server on %s:%s: %s", host, port, e)
        sys.exit(1)
    except KeyboardInterrupt:
        logging.info("Shutting down")


if __name__ == "__main__":
    main()
