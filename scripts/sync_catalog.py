#!/usr/bin/env python3
"""
Run one catalog sync against the configured database and print the result.

  python scripts/sync_catalog.py                       # live feed (FEED_BASE_URL)
  python scripts/sync_catalog.py --snapshot data/feed_snapshot
  python scripts/sync_catalog.py --no-augment --env production

Exit status is non-zero when the sync fails; the diagnostic is printed as JSON.
"""
import argparse
import json
import logging
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from db import connect_db
from db_migrations import apply_migrations
from errors import DuplicatePreflightError, SyncInProgressError, SyncStageError
import swapi_client
import sync_service


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Sync the starship catalog from the reference feed.")
    parser.add_argument("--snapshot", metavar="DIR", help="read feed records from snapshot files instead of HTTP")
    parser.add_argument("--local-data", metavar="DIR", help="local dataset directory (default LOCAL_DATA_DIR)")
    parser.add_argument("--no-augment", action="store_true", help="skip the local dataset")
    parser.add_argument("--env", default=None, help="environment name (default APP_ENV)")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.snapshot:
        source = swapi_client.SnapshotFeedSource(Path(args.snapshot))
    else:
        source = swapi_client.build_feed_source()

    conn = connect_db()
    try:
        apply_migrations(conn)
        result = sync_service.run_sync(
            conn,
            source,
            augment=False if args.no_augment else None,
            environment=args.env,
            local_data_dir=Path(args.local_data) if args.local_data else None,
            triggered_by="cli",
        )
    except SyncInProgressError as e:
        print(json.dumps({"ok": False, "error": str(e)}, indent=2))
        return 2
    except SyncStageError as e:
        diagnostic = {"ok": False, "stage": e.stage, "error": str(e), "counts": e.counts}
        if isinstance(e.__cause__, DuplicatePreflightError):
            diagnostic["conflicts"] = e.__cause__.conflicts
        print(json.dumps(diagnostic, indent=2))
        return 1
    finally:
        conn.close()

    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
