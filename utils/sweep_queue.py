#!/usr/bin/env python3
"""
Maintenance script for the processing queue.

Runs the reaper against the queue database: fails processing entries past
the timeout (promoting waiters into the freed slots) and deletes old
completed/failed entries. Meant to be run from cron or a systemd timer.

Usage:
    python sweep_queue.py sweep          # Timeout sweep + garbage collection
    python sweep_queue.py reset          # Fail every active entry (asks first)
    python sweep_queue.py reset --yes    # Same, without the prompt

The database comes from QUEUE_DATABASE_URL.
"""

import logging
import sys

from watermark_queue import (
    Config,
    QueueStore,
    Reaper,
    StoreUnavailableError,
    create_queue_engine,
    create_session_factory,
    get_status_recorder,
    init_db,
)


def build_reaper() -> Reaper:
    engine = create_queue_engine()
    init_db(engine)
    session_factory = create_session_factory(engine)
    recorder = get_status_recorder(session_factory=session_factory)
    return Reaper(QueueStore(session_factory), recorder=recorder)


def run_sweep(reaper: Reaper) -> None:
    result = reaper.sweep()
    print("\n✓ Sweep complete!")
    print(f"  Timed out: {result.timed_out}")
    print(f"  Deleted:   {result.deleted}")


def run_reset(reaper: Reaper, confirmed: bool) -> None:
    if not confirmed:
        response = input(
            "\n⚠️  WARNING: This will fail ALL waiting and processing entries!\n"
            "Continue? (yes/no): "
        )
        if response.lower() != "yes":
            print("Cancelled.")
            sys.exit(0)

    reset = reaper.force_reset()
    print(f"\n✓ Force reset {reset} queue entries")


def main():
    """Main entry point."""
    if len(sys.argv) < 2 or sys.argv[1] not in ("sweep", "reset"):
        print("Usage: python sweep_queue.py <sweep|reset> [--yes]")
        print("\nExamples:")
        print("  python sweep_queue.py sweep")
        print("  python sweep_queue.py reset --yes  # WARNING: Fails ALL active entries")
        sys.exit(1)

    logging.basicConfig(level=Config.LOG_LEVEL)
    command = sys.argv[1]

    print("=" * 60)
    print("Processing Queue Maintenance")
    print("=" * 60)
    print(f"Database: {Config.QUEUE_DATABASE_URL}")
    print(f"Command:  {command}")
    print("=" * 60)

    try:
        reaper = build_reaper()
        if command == "sweep":
            run_sweep(reaper)
        else:
            run_reset(reaper, confirmed="--yes" in sys.argv[2:])
    except StoreUnavailableError as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
