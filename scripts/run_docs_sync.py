"""
Run a documentation sync from the command line.

One-shot mode sweeps every source once and writes the state file.
Serve mode starts the scheduler and the webhook server and runs until
interrupted.

Usage:
    uv run python scripts/run_docs_sync.py [--force] [--category compact]
    uv run python scripts/run_docs_sync.py --serve
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from docs_sync.config import SYNC_CONFIG, load_config
from docs_sync.exceptions import DocsSyncError
from docs_sync.sources import DEFAULT_SOURCES, SourceCategory, load_sources
from docs_sync.sync.manager import SyncManager


def parse_args():
    parser = argparse.ArgumentParser(description="Sync documentation sources from upstream")
    parser.add_argument("--config", type=Path, help="JSON configuration file")
    parser.add_argument("--sources", type=Path, help="JSON source catalog")
    parser.add_argument("--force", action="store_true", help="Skip the unchanged-collection shortcut")
    parser.add_argument("--category", action="append", choices=[c.value for c in SourceCategory])
    parser.add_argument("--min-priority", type=int)
    parser.add_argument("--max-priority", type=int)
    parser.add_argument("--serve", action="store_true", help="Run scheduler and webhook until interrupted")
    return parser.parse_args()


async def run_once(manager, args):
    await manager.start()
    try:
        result = await manager.sync_now(
            force=args.force,
            categories=[SourceCategory(c) for c in args.category] if args.category else None,
            min_priority=args.min_priority,
            max_priority=args.max_priority,
        )
    finally:
        await manager.stop()

    print(json.dumps(result.to_dict(), indent=2))
    report = manager.freshness_report()
    print(f"Freshness: {report.overall_status} ({report.stale_count}/{report.total} stale)", file=sys.stderr)
    return 1 if result.is_total_failure else 0


async def serve(manager):
    await manager.start()
    manager.scheduler.start()
    print("Serving (Ctrl+C to stop)", file=sys.stderr)
    try:
        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        pass
    finally:
        await manager.stop()
    return 0


def main():
    args = parse_args()
    try:
        config = load_config(args.config) if args.config else SYNC_CONFIG
        sources = load_sources(args.sources) if args.sources else DEFAULT_SOURCES
    except DocsSyncError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(2)

    manager = SyncManager(config, sources)
    try:
        code = asyncio.run(serve(manager) if args.serve else run_once(manager, args))
    except KeyboardInterrupt:
        code = 0
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        code = 2
    sys.exit(code)


if __name__ == "__main__":
    main()
