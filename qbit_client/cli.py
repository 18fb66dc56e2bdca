"""
Command Line Interface for qbit-client.
Talks to a qBittorrent Web UI using settings from QBIT_* environment
variables, overridden by flags.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from .client import AddTorrentOptions, QBittorrentClient, TorrentsInfoParams
from .config import ClientSettings
from .exceptions import QBittorrentError
from .logging_config import LogContext, setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="qbit-client",
        description="qbit-client - command line access to the qBittorrent Web API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # List downloading torrents, newest first
  qbit-client list --filter downloading --sort added_on --reverse

  # Add a torrent into a category, paused
  qbit-client add ubuntu.torrent --category linux --paused

  # Tag two torrents
  qbit-client tags add HASH1 HASH2 --tags keep,linux

  # Save the .torrent file of a torrent
  qbit-client export HASH -o saved.torrent

Environment Variables:
  QBIT_HOST        - Web UI host (default: localhost)
  QBIT_PORT        - Web UI port (default: 8080)
  QBIT_USERNAME    - Web UI username (empty = no login)
  QBIT_PASSWORD    - Web UI password (empty = no login)
  QBIT_USE_HTTPS   - Use https (default: false)
  QBIT_VERIFY_SSL  - Verify TLS certificates (default: true)
  QBIT_TIMEOUT     - Request timeout in seconds (default: 30)
  QBIT_LOG_LEVEL   - Logging level (default: INFO)
  QBIT_LOG_FORMAT  - Log format: text or json (default: text)
  QBIT_LOG_FILE    - Log file path (enables rotation)
        """,
    )

    parser.add_argument("--host", "-H", help="Web UI host")
    parser.add_argument("--port", "-p", type=int, help="Web UI port")
    parser.add_argument("--username", "-u", help="Web UI username")
    parser.add_argument("--password", help="Web UI password")
    parser.add_argument(
        "--https", action="store_true", default=None, help="Connect with https"
    )
    parser.add_argument("--log-level", "-l", help="Log level")
    parser.add_argument(
        "--log-format", choices=["text", "json"], help="Log format: text or json"
    )
    parser.add_argument("--log-file", help="Also log to this file (rotated)")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # List command
    list_parser = subparsers.add_parser("list", help="List torrents")
    list_parser.add_argument(
        "--filter", "-f",
        help="State filter (all, downloading, seeding, completed, paused, active, ...)",
    )
    list_parser.add_argument("--category", "-c", help="Only this category")
    list_parser.add_argument("--tag", "-t", help="Only this tag")
    list_parser.add_argument("--sort", "-s", help="Sort by field, e.g. added_on")
    list_parser.add_argument("--reverse", "-r", action="store_true", help="Reverse sort")
    list_parser.add_argument("--limit", "-n", type=int, help="Maximum number of torrents")
    list_parser.add_argument("--offset", type=int, help="Skip this many torrents")
    list_parser.add_argument("hashes", nargs="*", help="Only these info hashes")

    # Add command
    add_parser = subparsers.add_parser("add", help="Add a .torrent file")
    add_parser.add_argument("file", help="Path to the .torrent file")
    add_parser.add_argument("--savepath", help="Download directory")
    add_parser.add_argument("--category", "-c", help="Category")
    add_parser.add_argument("--tags", help="Comma-separated tags")
    add_parser.add_argument("--paused", action="store_true", default=None, help="Add paused")
    add_parser.add_argument(
        "--auto-tmm", action="store_true", default=None,
        help="Enable automatic torrent management",
    )
    add_parser.add_argument(
        "--check", action="store_true", help="Hash-check existing data"
    )

    # Delete command
    delete_parser = subparsers.add_parser(
        "delete", help="Delete a torrent and its files"
    )
    delete_parser.add_argument("hash", help="Info hash")

    # Export / download commands
    for name, help_text in (
        ("export", "Save the .torrent file (torrents/export)"),
        ("download", "Save the .torrent file (torrents/file)"),
    ):
        file_parser = subparsers.add_parser(name, help=help_text)
        file_parser.add_argument("hash", help="Info hash")
        file_parser.add_argument("--output", "-o", required=True, help="Output file")

    # Trackers command
    trackers_parser = subparsers.add_parser("trackers", help="Show trackers of a torrent")
    trackers_parser.add_argument("hash", help="Info hash")

    # Force start command
    force_parser = subparsers.add_parser("force-start", help="Set force start")
    force_parser.add_argument("hash", help="Info hash")
    force_parser.add_argument("--off", action="store_true", help="Disable force start")

    # Tags command
    tags_parser = subparsers.add_parser("tags", help="Manage tags")
    tags_subparsers = tags_parser.add_subparsers(dest="tags_command")

    tags_list = tags_subparsers.add_parser("list", help="List tags")
    tags_list.add_argument("hashes", nargs="*", help="Only tags used by these torrents")

    for name, help_text in (("add", "Tag torrents"), ("remove", "Untag torrents")):
        tag_parser = tags_subparsers.add_parser(name, help=help_text)
        tag_parser.add_argument("hashes", nargs="+", help="Info hashes")
        tag_parser.add_argument("--tags", required=True, help="Comma-separated tags")

    for name, help_text in (("create", "Create tags"), ("delete", "Delete tags")):
        tag_parser = tags_subparsers.add_parser(name, help=help_text)
        tag_parser.add_argument("tags", nargs="+", help="Tag names")

    # Sync commands
    maindata_parser = subparsers.add_parser("maindata", help="Print a sync snapshot")
    maindata_parser.add_argument("--rid", type=int, default=0, help="Revision id")

    peers_parser = subparsers.add_parser("peers", help="Print peers of a torrent")
    peers_parser.add_argument("hash", help="Info hash")
    peers_parser.add_argument("--rid", type=int, default=0, help="Revision id")

    return parser


def load_settings(args: argparse.Namespace) -> ClientSettings:
    """Environment settings with command line flags applied on top."""
    overrides = {
        "host": args.host,
        "port": args.port,
        "username": args.username,
        "password": args.password,
        "use_https": args.https,
        "log_level": args.log_level,
        "log_format": args.log_format,
        "log_file": args.log_file,
    }
    return ClientSettings(**{k: v for k, v in overrides.items() if v is not None})


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)
    if args.command == "tags" and not args.tags_command:
        print("tags: choose one of list, add, remove, create, delete", file=sys.stderr)
        sys.exit(1)

    try:
        settings = load_settings(args)
    except ValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(
        log_level=settings.log_level,
        log_file=settings.log_file,
        log_format=settings.log_format,
    )

    try:
        asyncio.run(run_command(args, settings))
    except QBittorrentError as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


async def run_command(args: argparse.Namespace, settings: ClientSettings) -> None:
    with LogContext(operation=args.command):
        client = await QBittorrentClient.from_settings(settings)
        try:
            await COMMANDS[args.command](client, args)
        finally:
            await client.close()


async def run_list(client: QBittorrentClient, args):
    params = TorrentsInfoParams(
        filter=args.filter,
        category=args.category,
        tag=args.tag,
        sort=args.sort,
        reverse=args.reverse,
        limit=args.limit,
        offset=args.offset,
        hashes=args.hashes,
    )
    torrents = await client.torrents_info(params)

    if not torrents:
        print("No torrents found.")
        return

    print(f"\nFound {len(torrents)} torrent(s):\n")
    print(f"{'Hash':<12} {'Name':<40} {'Size':>10} {'Progress':>8} {'State':<14} {'Tags':<20}")
    print("-" * 110)

    for t in torrents:
        size_str = f"{t.size / 1e6:.1f}MB" if t.size < 1e9 else f"{t.size / 1e9:.2f}GB"
        progress_str = f"{t.progress * 100:.1f}%"
        name = t.name[:37] + "..." if len(t.name) > 40 else t.name
        print(
            f"{t.hash[:12]:<12} {name:<40} {size_str:>10} {progress_str:>8} "
            f"{t.state:<14} {','.join(t.tags):<20}"
        )


async def run_add(client: QBittorrentClient, args):
    path = Path(args.file)
    try:
        data = path.read_bytes()
    except OSError as e:
        print(f"Cannot read {path}: {e}", file=sys.stderr)
        sys.exit(1)

    options = AddTorrentOptions(
        save_path=args.savepath,
        category=args.category,
        tags=args.tags.split(",") if args.tags else None,
        start_paused=args.paused,
        auto_tmm=args.auto_tmm,
        skip_checking=not args.check,
    )
    await client.torrents_add(path.name, data, options)
    print(f"Added {path.name}")


async def run_delete(client: QBittorrentClient, args):
    await client.torrents_delete(args.hash)
    print(f"Deleted {args.hash}")


async def run_export(client: QBittorrentClient, args):
    data = await client.torrents_export(args.hash)
    Path(args.output).write_bytes(data)
    print(f"Saved {len(data)} bytes to {args.output}")


async def run_download(client: QBittorrentClient, args):
    data = await client.torrents_download(args.hash)
    Path(args.output).write_bytes(data)
    print(f"Saved {len(data)} bytes to {args.output}")


async def run_trackers(client: QBittorrentClient, args):
    trackers = await client.torrents_trackers(args.hash)
    print(f"{'Tier':>4} {'Status':>6} {'Peers':>6} {'URL':<60} Message")
    print("-" * 100)
    for tr in trackers:
        print(f"{tr.tier:>4} {tr.status:>6} {tr.num_peers:>6} {tr.url:<60} {tr.msg}")


async def run_force_start(client: QBittorrentClient, args):
    await client.set_force_start(args.hash, not args.off)
    print(f"Force start {'disabled' if args.off else 'enabled'} for {args.hash}")


async def run_tags(client: QBittorrentClient, args):
    if args.tags_command == "list":
        if args.hashes:
            tags = await client.torrents_get_tags(args.hashes)
        else:
            tags = await client.torrents_get_all_tags()
        for tag in tags:
            print(tag)
        if not tags:
            print("No tags found.")

    elif args.tags_command == "add":
        await client.torrents_add_tags(args.hashes, args.tags)
        print(f"Tagged {len(args.hashes)} torrent(s) with {args.tags}")

    elif args.tags_command == "remove":
        await client.torrents_remove_tags(args.hashes, args.tags)
        print(f"Removed {args.tags} from {len(args.hashes)} torrent(s)")

    elif args.tags_command == "create":
        await client.torrents_create_tags(args.tags)
        print(f"Created {len(args.tags)} tag(s)")

    elif args.tags_command == "delete":
        await client.torrents_delete_tags(args.tags)
        print(f"Deleted {len(args.tags)} tag(s)")


async def run_maindata(client: QBittorrentClient, args):
    data = await client.sync_maindata(args.rid)
    print(data.model_dump_json(indent=2))


async def run_peers(client: QBittorrentClient, args):
    peers = await client.sync_torrent_peers(args.hash, args.rid)
    print(peers.model_dump_json(indent=2))


COMMANDS = {
    "list": run_list,
    "add": run_add,
    "delete": run_delete,
    "export": run_export,
    "download": run_download,
    "trackers": run_trackers,
    "force-start": run_force_start,
    "tags": run_tags,
    "maindata": run_maindata,
    "peers": run_peers,
}


if __name__ == "__main__":
    main()
