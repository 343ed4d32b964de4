from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import List, Optional, Tuple

from .engine import ReconciliationEngine
from .github_client import GitHubClient
from .scheduler import PollScheduler
from .settings import settings
from .sink import ConsoleSink, EventSink, FanoutSink, JsonlSink
from .storage import StateStore

log = logging.getLogger(__name__)


def parse_repo(value: str) -> Tuple[str, str]:
    parts = value.split("/")
    if len(parts) != 2 or not all(parts):
        raise ValueError("Invalid repository format. Use 'owner/repo'.")
    return parts[0], parts[1]


def build_sink(journal: Optional[str]) -> EventSink:
    sinks: List[EventSink] = [ConsoleSink()]
    if journal:
        sinks.append(JsonlSink(Path(journal)))
    return sinks[0] if len(sinks) == 1 else FanoutSink(sinks)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Live feed of GitHub Actions workflow run events")
    parser.add_argument("repo", help="Repository as owner/repo")
    parser.add_argument("--token", help="Access token (defaults to GITHUB_TOKEN)")
    parser.add_argument("--interval", type=float, help="Polling interval override in seconds")
    parser.add_argument("--state-dir", help="Directory for the persisted state file")
    parser.add_argument("--journal", help="Also append events as JSON lines to this file")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )

    try:
        owner, repo = parse_repo(args.repo)
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return 1

    token = args.token or settings.github_token()
    if not token:
        print("Missing access token: pass --token or set GITHUB_TOKEN", file=sys.stderr)
        return 1

    interval = args.interval or float(settings.monitor.get("poll_interval_s", 10))
    journal = args.journal or settings.journal.get("path")

    client = GitHubClient(owner, repo, token)
    store = StateStore(owner, repo, base_dir=Path(args.state_dir) if args.state_dir else None)
    engine = ReconciliationEngine(client, store, build_sink(journal))
    scheduler = PollScheduler(engine, interval, grace_s=float(settings.monitor.get("shutdown_grace_s", 5)))

    stop = threading.Event()

    def _request_stop(signum, _frame):
        log.info("Received signal %s, shutting down...", signum)
        stop.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    log.info("Watching %s/%s every %.0fs (state: %s)", owner, repo, interval, store.path)
    scheduler.start()
    while not stop.wait(1.0):
        pass
    scheduler.shutdown()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
