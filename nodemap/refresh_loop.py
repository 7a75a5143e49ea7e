#!/usr/bin/env python3

import argparse
import asyncio
import logging
import sys
import time
from typing import List, Optional

from nodemap.cache import SQLiteStore
from nodemap.config import BITNODES_API_URL, DEFAULT_CACHE_PATH, DEFAULT_OUTPUT_DIR, REFRESH_INTERVAL
from nodemap.dashboard import NodeDashboard
from nodemap.main import configure_logging
from nodemap.visualization import create_dashboard

logger = logging.getLogger(__name__)


async def refresh_once(dashboard: NodeDashboard, output_dir: str) -> bool:
    ok = await dashboard.refresh(force=True)
    create_dashboard(dashboard.snapshot(), output_dir)
    if ok:
        logger.info(f"Dashboard updated with {dashboard.statistics.total_nodes} nodes")
    else:
        logger.warning(f"Dashboard shows fallback data: {dashboard.error}")
    return ok


async def refresh_forever(dashboard: NodeDashboard, output_dir: str, interval: float):
    iteration = 0
    while True:
        iteration += 1
        logger.info(f"--- Refresh #{iteration} ---")

        start_time = time.time()
        try:
            await refresh_once(dashboard, output_dir)
        except OSError as e:
            logger.error(f"Error writing dashboard: {e}")
        elapsed = time.time() - start_time

        wait_time = max(0, interval - elapsed)
        logger.info(f"Next refresh in {wait_time:.0f} seconds")
        await asyncio.sleep(wait_time)


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(description='Periodically refresh the Bitcoin node map dashboard')
    parser.add_argument('--url', type=str, default=BITNODES_API_URL, help='Snapshot endpoint')
    parser.add_argument('--cache-path', type=str, default=DEFAULT_CACHE_PATH, help='SQLite cache file')
    parser.add_argument('--output-dir', type=str, default=DEFAULT_OUTPUT_DIR, help='Dashboard output directory')
    parser.add_argument(
        '--interval',
        type=float,
        default=REFRESH_INTERVAL,
        help=f'Seconds between refreshes (default: {REFRESH_INTERVAL})'
    )
    parser.add_argument('--verbose', action='store_true', help='Enable debug logging')
    args = parser.parse_args(argv)

    configure_logging(args.verbose)

    dashboard = NodeDashboard(store=SQLiteStore(args.cache_path), url=args.url)

    logger.info(f"Starting dashboard refresh loop (every {args.interval:.0f} seconds)")
    logger.info("Press Ctrl+C to stop")

    try:
        asyncio.run(refresh_forever(dashboard, args.output_dir, args.interval))
    except KeyboardInterrupt:
        logger.info("Refresh loop stopped")
        sys.exit(0)


if __name__ == "__main__":
    main()
