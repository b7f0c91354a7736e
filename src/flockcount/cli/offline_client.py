"""Offline client CLI: queue images while offline, sync them later.

Usage:
    python -m flockcount.cli [--user-id ID] [--cookie NAME=VALUE] COMMAND

Commands:
    queue IMAGE [IMAGE ...]   Add image files to the upload queue
    sync [--ignore-backoff] [--retry-dead]
                              Probe the server, then drain the queue
    status                    Show connection state and queue summary

Examples:
    # Capture in the field
    python -m flockcount.cli --user-id 7 queue coop1.jpg coop2.jpg

    # Back in range
    python -m flockcount.cli --user-id 7 --cookie connect.sid=abc sync
"""

import asyncio
import base64
import mimetypes
import sys
from argparse import ArgumentParser, Namespace
from pathlib import Path

import structlog

from flockcount.client.app import ClientApp
from flockcount.client.models import UploadStatus
from flockcount.core import timezone  # noqa: F401
from flockcount.core.config import ClientSettings, configure_logging

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="Offline-first FlockCount client",
        epilog="State is kept in FLOCKCOUNT_STATE_DIR between runs",
    )
    parser.add_argument("--user-id", type=int, help="Signed-in user id (omit for guest mode)")
    parser.add_argument(
        "--cookie",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Session cookie to send with API requests (repeatable)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging (DEBUG level)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    queue = subparsers.add_parser("queue", help="Queue image files for upload")
    queue.add_argument("images", nargs="+", type=Path, help="Image files")

    sync = subparsers.add_parser("sync", help="Upload queued images")
    sync.add_argument("--ignore-backoff", action="store_true", help="Retry uploads still in backoff")
    sync.add_argument("--retry-dead", action="store_true", help="Also retry uploads that gave up")

    subparsers.add_parser("status", help="Show connection and queue status")

    return parser.parse_args(argv)


def parse_cookies(values: list[str]) -> dict[str, str]:
    cookies = {}
    for value in values:
        name, sep, content = value.partition("=")
        if not sep or not name:
            raise ValueError(f"Invalid cookie {value!r}, expected NAME=VALUE")
        cookies[name] = content
    return cookies


def encode_image(path: Path) -> str:
    """Read an image file into a base64 data URL."""
    mime_type, _ = mimetypes.guess_type(path.name)
    if mime_type is None or not mime_type.startswith("image/"):
        raise ValueError(f"{path} is not a recognized image type")
    encoded = base64.b64encode(path.read_bytes()).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


async def queue_images(app: ClientApp, paths: list[Path]) -> int:
    failed = 0
    for path in paths:
        try:
            image = encode_image(path)
        except (OSError, ValueError) as e:
            print(f"Skipping {path}: {e}", file=sys.stderr)
            failed += 1
            continue
        upload = await app.store.queue_for_upload(image)
        print(f"Queued {path} as {upload.id}")

    if failed == len(paths):
        return 1
    return 2 if failed else 0


async def sync_queue(app: ClientApp, ignore_backoff: bool, retry_dead: bool) -> int:
    state = await app.monitor.probe()
    await app.store.set_connection(state)
    if not state.is_database_connected:
        print(f"Server not available: {state.last_error}", file=sys.stderr)
        return 1

    if retry_dead:
        report = await app.retry_now()
    else:
        report = await app.sync(respect_backoff=not ignore_backoff)

    if report is None:
        print("Sync skipped", file=sys.stderr)
        return 1

    print(f"Sync: {report.summary()}")
    if report.attempted == 0 and not report.auth_required:
        return 0
    if report.succeeded and (report.failed or report.dead or report.auth_required):
        return 2
    if report.succeeded:
        return 0
    return 1


def print_status(app: ClientApp) -> int:
    connection = app.store.connection
    by_status = app.store.count_by_status()

    print("\n" + "=" * 60)
    print("FlockCount Client Status")
    print("=" * 60)
    print(f"Mode: {'signed in as user ' + str(app.user_id) if app.is_authenticated else 'guest'}")
    print(f"Online: {connection.is_online}")
    print(f"Server reachable: {connection.is_server_reachable}")
    print(f"Database connected: {connection.is_database_connected}")
    if connection.checked_at:
        print(f"Last checked: {connection.checked_at.isoformat()}")
    if connection.last_error:
        print(f"Last error: {connection.last_error}")
    print(f"\nRecords: {len(app.store.counts)}")
    print(f"Queued uploads: {by_status[UploadStatus.QUEUED]}")
    print(f"In flight: {by_status[UploadStatus.IN_FLIGHT]}")
    print(f"Gave up: {by_status[UploadStatus.DEAD]}")
    for upload in app.store.pending_uploads:
        if upload.last_error:
            print(f"  - {upload.id} ({upload.status.value}, {upload.retry_count} attempts): {upload.last_error}")
    print("=" * 60 + "\n")
    return 0


async def async_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error), 2 (partial success)
    """
    args = parse_args(argv)

    settings = ClientSettings()
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    try:
        cookies = parse_cookies(args.cookie)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    app = ClientApp.from_settings(settings, user_id=args.user_id, cookies=cookies)
    logger.info("cli.started", command=args.command, authenticated=app.is_authenticated)

    try:
        await app.store.load()

        if args.command == "queue":
            if not app.is_authenticated:
                print("Error: queueing requires --user-id (guests analyze immediately)", file=sys.stderr)
                return 1
            return await queue_images(app, args.images)
        if args.command == "sync":
            return await sync_queue(app, args.ignore_backoff, args.retry_dead)
        return print_status(app)

    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        print("\nInterrupted by user", file=sys.stderr)
        return 130

    except Exception as e:
        logger.error(
            "cli.unexpected_error",
            error=str(e),
            error_type=type(e).__name__,
        )
        print(f"\nUnexpected error: {e}", file=sys.stderr)
        return 1


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
