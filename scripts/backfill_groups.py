#!/usr/bin/env python3
"""
Grouping Backfill Script

Replays the grouping engine over every post that has a configuration:
1. Optionally reset (delete) all topics, narratives and their memberships
2. Page through posts, newest first
3. Skip posts with neither topics nor keywords
4. Group each remaining post into a topic and a narrative

Tenants in a page are processed in parallel (bounded by --concurrency);
posts of the same tenant run sequentially so their creates do not race.

Usage:
    python scripts/backfill_groups.py                       # Reset + full replay
    python scripts/backfill_groups.py --no-reset            # Keep existing groups
    python scripts/backfill_groups.py --batch 500           # Page size
    python scripts/backfill_groups.py --tenant <config-id>  # Single configuration
    python scripts/backfill_groups.py --concurrency 8 --verbose
"""

import sys
import argparse
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Load environment variables
from dotenv import load_dotenv
load_dotenv(project_root / '.env')

from src.grouping.errors import SetupError
from src.grouping.orchestrator import GroupingService
from src.grouping.types import clean_terms
from src.storage.database import DatabaseManager
from src.utils.logger import get_logger, set_log_level

logger = get_logger(__name__)

DEFAULT_BATCH_SIZE = 100
DEFAULT_CONCURRENCY = 4


@dataclass
class BackfillStats:
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    pages: int = 0


def ensure_tables_exist(db: DatabaseManager) -> None:
    """Fail fast when the grouping schema has not been created."""
    missing = db.missing_grouping_tables()
    if missing:
        raise SetupError(
            f"Grouping tables are missing: {', '.join(missing)}. "
            f"Run with --init-schema (or DatabaseManager.init_db()) and rerun the backfill."
        )


def group_tenant_posts(grouping: GroupingService, configuration_id: str, post_ids: List[str]) -> Dict[str, int]:
    """Group one tenant's posts in order. Per-post failures are logged, not raised."""
    counts = {'processed': 0, 'failed': 0}
    for post_id in post_ids:
        try:
            grouping.group_post(post_id, configuration_id)
        except Exception as e:
            logger.error(f"Failed grouping post {post_id}: {e}")
            counts['failed'] += 1
        counts['processed'] += 1
    return counts


def run_backfill(
    db: DatabaseManager,
    grouping: GroupingService,
    reset: bool = True,
    batch_size: int = DEFAULT_BATCH_SIZE,
    concurrency: int = DEFAULT_CONCURRENCY,
    configuration_id: Optional[str] = None,
) -> BackfillStats:
    """
    Replay grouping for every eligible post.

    Raises:
        SetupError: grouping tables are missing
    """
    ensure_tables_exist(db)

    if reset:
        logger.info("Resetting existing groups...")
        db.reset_groups(configuration_id)
        logger.info("Reset complete.")

    stats = BackfillStats()
    offset = 0

    workers = max(1, concurrency)
    if workers > db.max_connections:
        # Each worker holds one pooled connection at a time
        logger.warning(
            f"Concurrency {workers} exceeds the connection pool size "
            f"({db.max_connections}), using {db.max_connections} workers"
        )
        workers = db.max_connections

    logger.info(f"Starting grouping backfill (batch_size={batch_size}, concurrency={workers})...")

    with ThreadPoolExecutor(max_workers=workers) as executor:
        while True:
            posts = db.get_posts_page(offset, batch_size, configuration_id)
            if not posts:
                break

            by_tenant: Dict[str, List[str]] = OrderedDict()
            for post in posts:
                if not (clean_terms(post.get('topics')) or clean_terms(post.get('keywords'))):
                    stats.skipped += 1
                    continue
                by_tenant.setdefault(str(post['configuration_id']), []).append(str(post['id']))

            futures = [
                executor.submit(group_tenant_posts, grouping, tenant, post_ids)
                for tenant, post_ids in by_tenant.items()
            ]
            for future in as_completed(futures):
                counts = future.result()
                stats.processed += counts['processed']
                stats.failed += counts['failed']

            stats.pages += 1
            offset += batch_size
            logger.info(f"Processed {stats.processed} posts...")

    logger.info(f"Done. Grouped {stats.processed} posts ({stats.failed} failed, {stats.skipped} skipped).")
    return stats


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description='Rebuild topic and narrative groups from existing posts',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    parser.add_argument(
        '--no-reset',
        dest='reset',
        action='store_false',
        help='Keep existing topics/narratives instead of deleting them first'
    )

    parser.add_argument(
        '--batch', '-b',
        type=int,
        default=DEFAULT_BATCH_SIZE,
        help=f'Posts per page (default: {DEFAULT_BATCH_SIZE})'
    )

    parser.add_argument(
        '--tenant', '-t',
        default=None,
        help='Only backfill (and reset) this configuration ID'
    )

    parser.add_argument(
        '--concurrency', '-c',
        type=int,
        default=DEFAULT_CONCURRENCY,
        help=f'Tenants grouped in parallel (default: {DEFAULT_CONCURRENCY})'
    )

    parser.add_argument(
        '--init-schema',
        action='store_true',
        help='Create grouping tables before running'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Show detailed grouping information'
    )

    args = parser.parse_args(argv)

    if args.batch < 1:
        parser.error('--batch must be at least 1')

    if args.verbose:
        set_log_level('DEBUG')
        logger.setLevel('DEBUG')

    print("=" * 60)
    print("GROUPING BACKFILL")
    print("=" * 60)
    print(f"Parameters:")
    print(f"  Reset:       {args.reset}")
    print(f"  Batch size:  {args.batch}")
    print(f"  Tenant:      {args.tenant or 'all'}")
    print(f"  Concurrency: {args.concurrency}")
    print()

    # Initialize
    try:
        db = DatabaseManager()
        if args.init_schema:
            db.init_db()
        grouping = GroupingService(db)
    except Exception as e:
        print(f"ERROR: Failed to initialize: {e}")
        return 1

    try:
        result = run_backfill(
            db,
            grouping,
            reset=args.reset,
            batch_size=args.batch,
            concurrency=args.concurrency,
            configuration_id=args.tenant,
        )
    except SetupError as e:
        print(f"ERROR: {e}")
        return 1
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1
    finally:
        db.close()

    print("\n" + "=" * 60)
    print("RESULTS")
    print("=" * 60)
    print(f"Posts processed:  {result.processed}")
    print(f"Posts failed:     {result.failed}")
    print(f"Posts skipped:    {result.skipped}")
    print(f"Pages scanned:    {result.pages}")
    print("\nDone!")
    return 0


if __name__ == '__main__':
    sys.exit(main())
