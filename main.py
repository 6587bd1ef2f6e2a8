"""Command-line interface for the TByte backend service."""

from __future__ import annotations
import argparse
import json
import logging
import sys
import time
from typing import Sequence

_PROCESS_STARTED = time.monotonic()

try:
    import httpx
except ImportError as exc:  # pragma: no cover - exercised in environments missing deps
    raise SystemExit(
        "The 'httpx' package is required. Install the project with "
        "`pip install -e .` to pull in its dependencies."
    ) from exc

from tbyte.config import Settings, load_settings
from tbyte.database import Database
from tbyte.schema import initialize_schema

logger = logging.getLogger("tbyte.main")

_DEFAULT_SERVICE_URL = "http://localhost:3000"
_PROBE_ENDPOINTS = ("/health", "/users", "/stats")


def _parse_args(argv: Sequence[str] | None, settings: Settings | None = None) -> argparse.Namespace:
    if settings is None:
        settings = Settings()

    parser = argparse.ArgumentParser(description="TByte backend utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Create the users table and insert the sample rows")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP API")
    serve_parser.add_argument("--host", default=settings.host, help="Bind address for the API")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=settings.port,
        help=f"Port for the HTTP API (default: {settings.port})",
    )

    probe_parser = subparsers.add_parser(
        "probe", help="Call a running service and print the JSON it returns"
    )
    probe_parser.add_argument(
        "--service-url",
        default=_DEFAULT_SERVICE_URL,
        help=f"Base URL of a running service (default: {_DEFAULT_SERVICE_URL})",
    )
    probe_parser.add_argument(
        "--endpoint",
        action="append",
        dest="endpoints",
        default=None,
        help="Endpoint to call; repeat for several (default: /health, /users and /stats)",
    )
    probe_parser.add_argument("--create-name", default=None, help="Create a user with this name first")
    probe_parser.add_argument("--create-email", default=None, help="Email address for --create-name")
    probe_parser.add_argument("--timeout", type=float, default=10.0, help="Request timeout in seconds")

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db", "probe"}

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    args = parser.parse_args(args_list)
    if args.command == "probe" and bool(args.create_name) ^ bool(args.create_email):
        parser.error("--create-name and --create-email must be provided together")
    return args


def _initialise_database(settings: Settings) -> int:
    database = Database(settings.sqlalchemy_url())
    try:
        status = initialize_schema(database)
    finally:
        database.dispose()

    if not status.ready:
        print(f"Database initialisation failed: {status.error}")
        return 1
    print("Database initialisation complete.")
    return 0


def _serve(*, settings: Settings, host: str, port: int) -> None:
    from tbyte.api import create_app
    import uvicorn

    logger.info("Starting TByte Backend API on http://%s:%s", host, port)

    app = create_app(settings=settings, started_at=_PROCESS_STARTED)
    # uvicorn finishes in-flight requests on SIGTERM before the lifespan
    # shutdown closes the pool.
    uvicorn.run(app, host=host, port=port, log_level=settings.log_level.lower())


def _print_result(title: str, response: httpx.Response) -> None:
    print(f"{title} -> {response.status_code}")
    try:
        payload = response.json()
    except ValueError:
        print(response.text.strip() or "<empty response>")
    else:
        print(json.dumps(payload, indent=2))
    print()


def _probe(
    base_url: str,
    endpoints: Sequence[str],
    *,
    create_name: str | None = None,
    create_email: str | None = None,
    timeout: float = 10.0,
    transport: httpx.BaseTransport | None = None,
) -> int:
    """Exercise the API the way the demo frontend does and print the results."""

    failures = 0
    with httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout, transport=transport) as client:
        try:
            if create_name and create_email:
                response = client.post("/users", json={"name": create_name, "email": create_email})
                _print_result("POST /users", response)
                failures += response.status_code >= 400

            for endpoint in endpoints:
                path = endpoint if endpoint.startswith("/") else "/" + endpoint
                response = client.get(path)
                _print_result(f"GET {path}", response)
                failures += response.status_code >= 400
        except httpx.HTTPError as exc:
            print(f"Failed to contact service at {base_url}: {exc}")
            return 1

    return 1 if failures else 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    settings = load_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    args = _parse_args(argv, settings)

    if args.command == "serve":
        _serve(settings=settings, host=args.host, port=args.port)
        return 0
    if args.command == "init-db":
        return _initialise_database(settings)
    if args.command == "probe":
        return _probe(
            args.service_url,
            args.endpoints or _PROBE_ENDPOINTS,
            create_name=args.create_name,
            create_email=args.create_email,
            timeout=args.timeout,
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())
