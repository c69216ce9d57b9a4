"""Command that serves the service configuration API over HTTP."""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Iterable, Mapping
from typing import Any, Callable, Optional, Sequence
from wsgiref.simple_server import WSGIRequestHandler, make_server

from servicemanager.apiserver import ConfigServer
from servicemanager.config import ConfigError, load_and_validate_config

_log = logging.getLogger("servicemanager")

WSGIApp = Callable[[Mapping[str, Any], Callable[..., Any]], Iterable[bytes]]


class _RequestHandler(WSGIRequestHandler):
    timeout = 10

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        _log.debug("%s - %s", self.address_string(), format % args)


def build_parser() -> argparse.ArgumentParser:
    """Return the parser for the command's options."""
    parser = argparse.ArgumentParser(
        prog="servicemanager",
        description="Serve the resource configuration of services over HTTP.",
    )
    parser.add_argument(
        "--config",
        "-config",
        default="",
        help="Path to the master YAML configuration file (required)",
    )
    parser.add_argument(
        "--port",
        "-port",
        type=int,
        default=8080,
        help="Port for the configuration access server",
    )
    return parser


def create_app(config_server: ConfigServer) -> WSGIApp:
    """Route ``/config`` to the configuration server and answer ``/healthz``."""

    def app(environ: Mapping[str, Any], start_response: Callable[..., Any]) -> Iterable[bytes]:
        path = environ.get("PATH_INFO", "") or "/"
        if path == "/config":
            return config_server(environ, start_response)
        if path == "/healthz":
            body = b"ok\n"
            start_response(
                "200 OK",
                [("Content-Type", "text/plain; charset=utf-8"), ("Content-Length", str(len(body)))],
            )
            return [body]
        body = b"404 page not found\n"
        start_response(
            "404 Not Found",
            [
                ("Content-Type", "text/plain; charset=utf-8"),
                ("Content-Length", str(len(body))),
                ("X-Content-Type-Options", "nosniff"),
            ],
        )
        return [body]

    return app


def _configure_logging() -> None:
    logging.basicConfig(
        stream=sys.stderr,
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Load the configuration and serve it until interrupted; return the exit status."""
    _configure_logging()
    args = build_parser().parse_args(argv)
    if not args.config:
        _log.critical("-config flag is required")
        return 1

    try:
        cfg = load_and_validate_config(args.config)
    except ConfigError as exc:
        _log.critical("Failed to load or validate master configuration: %s", exc)
        return 1
    _log.info("Master configuration loaded successfully from %s", args.config)

    app = create_app(ConfigServer(cfg, _log))
    address = f":{args.port}"
    _log.info("Starting Service Manager API server on %s", address)
    try:
        httpd = make_server("", args.port, app, handler_class=_RequestHandler)
    except OSError as exc:
        _log.critical("Failed to start HTTP server: %s", exc)
        return 1

    with httpd:
        try:
            httpd.serve_forever()
        except KeyboardInterrupt:
            pass
    _log.info("Service Manager API server shut down gracefully")
    return 0


if __name__ == "__main__":
    sys.exit(main())