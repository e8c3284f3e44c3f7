import argparse
import asyncio
import os
from urllib.parse import urlparse

from .client import Client

DEFAULT_PORT = 9001


def _parse_server(uri_or_host: str | None, port: int | None) -> str:
    if uri_or_host and uri_or_host.startswith(("ws://", "wss://")):
        p = urlparse(uri_or_host)
        host = p.hostname or "127.0.0.1"
        return f"{p.scheme}://{host}:{int(p.port or (port or DEFAULT_PORT))}"
    host = uri_or_host or os.getenv("HEARTSOCK_HOST", "127.0.0.1")
    port = port or int(os.getenv("HEARTSOCK_PORT", str(DEFAULT_PORT)))
    return f"ws://{host}:{port}"


def main(argv=None):
    ap = argparse.ArgumentParser(description="Heartsock console client")
    ap.add_argument("--server", help="ws://host:port of server, or a host name")
    ap.add_argument("--port", type=int, help=f"Server port (default {DEFAULT_PORT})")
    args = ap.parse_args(argv)

    uri = _parse_server(args.server, args.port)
    try:
        asyncio.run(Client().run_client(uri))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
