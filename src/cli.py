#!/usr/bin/env python3
"""
CLI for starting the change hub and file watcher processes.

Usage:
    python -m src.cli hub --host 127.0.0.1 --port 9090
    python -m src.cli watcher --server http://localhost:9090 --db filewatcher.db
    python -m src.cli watch my-project /path/to/project --ignore-path "/target/*"
"""

import argparse
import logging
import os
import signal
import sys
import time
from pathlib import Path

import httpx
from dotenv import load_dotenv

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Load .env from project root
_env_file = Path(__file__).parent.parent / ".env"
if _env_file.exists():
    load_dotenv(_env_file)
else:
    load_dotenv()

from src.filewatcher import WatcherProcess, WatcherConfig, normalize
from src.watchhub import HubConfig, WatchHubService


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("cli")

DEFAULT_SERVER_URL = os.environ.get("WATCHFEED_SERVER_URL", "http://localhost:9090")
DEFAULT_DB = os.environ.get("WATCHFEED_DB", "filewatcher.db")


class GracefulShutdown:
    """Handle graceful shutdown on SIGINT/SIGTERM."""

    def __init__(self):
        self.should_exit = False
        signal.signal(signal.SIGINT, self._handler)
        signal.signal(signal.SIGTERM, self._handler)

    def _handler(self, signum, frame):
        logger.info("Received shutdown signal, stopping...")
        self.should_exit = True


def cmd_hub(args):
    """Run the change hub."""
    cfg = HubConfig(host=args.host, port=args.port, strict_violations=args.strict)
    service = WatchHubService(cfg)

    shutdown = GracefulShutdown()
    service.start()
    logger.info(f"Hub running on http://{cfg.host}:{cfg.port}")
    if cfg.strict_violations:
        logger.info("Strict mode: protocol violations are rejected with HTTP 409")
    logger.info("Press Ctrl+C to stop")

    try:
        while not shutdown.should_exit:
            time.sleep(1)
    finally:
        service.stop()
    logger.info("Hub stopped")


def cmd_watcher(args):
    """Run the file watcher process."""
    logger.info("Starting watcher process...")

    db_path = Path(args.db).resolve()
    db_path.parent.mkdir(parents=True, exist_ok=True)

    config = WatcherConfig(
        server_url=args.server,
        db_path=db_path,
        poll_interval_ms=args.poll_interval,
        retry_interval_ms=args.retry_interval,
        native_events=not args.no_native_events,
    )

    shutdown = GracefulShutdown()

    with WatcherProcess(config=config) as watcher:
        watcher.start_async()

        logger.info(f"Watcher {watcher.client_uuid} delivering to {config.server_url}")
        logger.info(f"Database: {db_path}")
        logger.info("Press Ctrl+C to stop")

        last_projects = None
        while not shutdown.should_exit:
            time.sleep(1)
            projects = watcher.get_project_ids()
            if projects != last_projects:
                logger.info(f"Watching {len(projects)} project(s): {', '.join(projects) or '-'}")
                last_projects = projects

    logger.info("Watcher stopped")


def _report_error(resp: httpx.Response, action: str) -> None:
    try:
        error = resp.json().get("error", resp.text)
    except ValueError:
        error = resp.text
    logger.error(f"Failed to {action}: {error}")
    sys.exit(1)


def cmd_watch(args):
    """Register a project with the hub, or update its ignore rules."""
    root = Path(args.root).resolve()
    if not root.is_dir():
        logger.error(f"Project root is not a directory: {root}")
        sys.exit(1)

    payload = {
        "projectID": args.project_id,
        "pathToMonitor": normalize(str(root)),
        "ignoredPaths": args.ignore_path or [],
        "ignoredFilenames": args.ignore_filename or [],
    }
    if args.ref:
        refs = []
        for ref in args.ref:
            source, sep, target = ref.partition("=")
            if not sep:
                logger.error(f"Ref path must look like SOURCE=TARGET: {ref}")
                sys.exit(1)
            refs.append({"from": normalize(str(Path(source).resolve())), "to": target})
        payload["refPaths"] = refs

    try:
        with httpx.Client(timeout=10.0) as client:
            resp = client.post(f"{args.server.rstrip('/')}/api/v1/projects/watchlist", json=payload)
    except httpx.HTTPError as exc:
        logger.error(f"Failed to reach hub at {args.server}: {exc}")
        sys.exit(1)
    if resp.status_code != 200:
        _report_error(resp, "register project")

    data = resp.json()
    print(f"{data['projectID']}: watch {data.get('projectWatchStateId')} at {data['pathToMonitor']}")


def cmd_unwatch(args):
    """Remove a project from the hub."""
    try:
        with httpx.Client(timeout=10.0) as client:
            resp = client.delete(f"{args.server.rstrip('/')}/api/v1/projects/{args.project_id}")
    except httpx.HTTPError as exc:
        logger.error(f"Failed to reach hub at {args.server}: {exc}")
        sys.exit(1)
    if resp.status_code != 200:
        _report_error(resp, "unregister project")
    print(f"{args.project_id}: no longer watched")


def cmd_list(args):
    """List the projects registered with the hub and their watch state."""
    base = args.server.rstrip("/")
    try:
        with httpx.Client(timeout=10.0) as client:
            resp = client.get(f"{base}/api/v1/projects/watchlist")
            if resp.status_code != 200:
                _report_error(resp, "list projects")
            projects = resp.json().get("projects", [])
            if not projects:
                print("No projects registered.")
                return
            for project in projects:
                status = client.get(f"{base}/api/v1/projects/{project['projectID']}/watch-status")
                state = status.json().get("state", "?") if status.status_code == 200 else "?"
                print(f"{project['projectID']:<24} {state:<12} {project['pathToMonitor']}")
    except httpx.HTTPError as exc:
        logger.error(f"Failed to reach hub at {args.server}: {exc}")
        sys.exit(1)


def main():
    parser = argparse.ArgumentParser(
        description="CLI for the change hub and file watcher processes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start the hub
  python -m src.cli hub --port 9090

  # Start a watcher delivering to the hub
  python -m src.cli watcher --server http://localhost:9090 --db ./data/filewatcher.db

  # Watch a project, ignoring build output and class files
  python -m src.cli watch my-app ./my-app --ignore-path "/target/*" --ignore-filename "*.class"

  # Show registered projects
  python -m src.cli list
        """,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # Hub command
    hub_parser = subparsers.add_parser("hub", help="Run the change hub")
    hub_parser.add_argument("--host", default="127.0.0.1", help="Server host (default: 127.0.0.1)")
    hub_parser.add_argument("--port", type=int, default=9090, help="Server port (default: 9090)")
    hub_parser.add_argument("--strict", action="store_true", help="Reject protocol violations with HTTP 409")
    hub_parser.set_defaults(func=cmd_hub)

    # Watcher command
    watcher_parser = subparsers.add_parser("watcher", help="Run the file watcher")
    watcher_parser.add_argument("--server", default=DEFAULT_SERVER_URL, help="Hub URL")
    watcher_parser.add_argument("--db", default=DEFAULT_DB, help="Snapshot database path")
    watcher_parser.add_argument("--poll-interval", type=int, default=500, help="Diff interval in ms")
    watcher_parser.add_argument("--retry-interval", type=int, default=100, help="Delivery retry interval in ms")
    watcher_parser.add_argument("--no-native-events", action="store_true", help="Poll only, ignore OS notifications")
    watcher_parser.set_defaults(func=cmd_watcher)

    # Watch command
    watch_parser = subparsers.add_parser("watch", help="Register or update a project")
    watch_parser.add_argument("project_id", help="Project id")
    watch_parser.add_argument("root", help="Project root directory")
    watch_parser.add_argument("--ignore-path", action="append", help="Ignored path glob (repeatable)")
    watch_parser.add_argument("--ignore-filename", action="append", help="Ignored filename glob (repeatable)")
    watch_parser.add_argument("--ref", action="append", help="External file mapping SOURCE=TARGET (repeatable)")
    watch_parser.add_argument("--server", default=DEFAULT_SERVER_URL, help="Hub URL")
    watch_parser.set_defaults(func=cmd_watch)

    # Unwatch command
    unwatch_parser = subparsers.add_parser("unwatch", help="Stop watching a project")
    unwatch_parser.add_argument("project_id", help="Project id")
    unwatch_parser.add_argument("--server", default=DEFAULT_SERVER_URL, help="Hub URL")
    unwatch_parser.set_defaults(func=cmd_unwatch)

    # List command
    list_parser = subparsers.add_parser("list", help="List registered projects")
    list_parser.add_argument("--server", default=DEFAULT_SERVER_URL, help="Hub URL")
    list_parser.set_defaults(func=cmd_list)

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    args.func(args)


if __name__ == "__main__":
    main()
