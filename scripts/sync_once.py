"""Run sync cycles from the command line, without the API server.

Usage:
  python scripts/sync_once.py
  python scripts/sync_once.py --cycles 5 --interval 10
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path


REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


def main() -> int:
    parser = argparse.ArgumentParser(description="Run SyncBridge sync cycles once")
    parser.add_argument(
        "--cycles",
        type=int,
        default=1,
        help="Number of cycles to run (default: 1)",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between cycles (default: POLL_INTERVAL_SECONDS)",
    )
    args = parser.parse_args()

    from syncbridge.cancellation import CancellationToken  # noqa: WPS433
    from syncbridge.config import settings  # noqa: WPS433
    from syncbridge.models.base import init_db  # noqa: WPS433
    from syncbridge.services.orchestrator import build_orchestrator  # noqa: WPS433

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    init_db()
    orchestrator = build_orchestrator(settings)
    interval = args.interval if args.interval is not None else settings.poll_interval_seconds

    token = CancellationToken()
    signal.signal(signal.SIGINT, lambda *_: token.cancel("Interrupted"))

    failures = 0
    for cycle in range(1, max(args.cycles, 1) + 1):
        results = orchestrator.run_cycle(token)
        for r in results:
            status = "ok" if r.success else ("cancelled" if r.cancelled else "failed")
            print(
                f"[cycle {cycle}] {r.source_system} <-> {r.target_system}: {status}, "
                f"{r.items_synced} items, {len(r.errors)} errors"
            )
            for error in r.errors:
                print(f"    {error}")
            failures += 0 if r.success else 1

        if token.cancelled or cycle >= args.cycles:
            break
        if token.wait(interval):
            break

    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
