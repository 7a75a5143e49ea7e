#!/usr/bin/env python3

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from nodemap.cache import KeyValueStore, MemoryStore, SQLiteStore
from nodemap.config import BITNODES_API_URL, DEFAULT_CACHE_PATH, DEFAULT_OUTPUT_DIR
from nodemap.dashboard import NodeDashboard
from nodemap.visualization import create_dashboard

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(verbose: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Bitcoin Node Map: fetch a Bitnodes snapshot and render the heatmap dashboard',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  nodemap
  nodemap --force --output-dir public
  nodemap --no-cache --verbose
        """
    )

    parser.add_argument(
        '--url',
        type=str,
        default=BITNODES_API_URL,
        help=f'Snapshot endpoint (default: {BITNODES_API_URL})'
    )

    parser.add_argument(
        '--cache-path',
        type=str,
        default=DEFAULT_CACHE_PATH,
        help=f'SQLite file holding the last fetched result (default: {DEFAULT_CACHE_PATH})'
    )

    parser.add_argument(
        '--no-cache',
        action='store_true',
        help='Keep the cache in memory only for this run'
    )

    parser.add_argument(
        '--force',
        action='store_true',
        help='Fetch even if the cached result is still fresh'
    )

    parser.add_argument(
        '--output-dir',
        type=str,
        default=DEFAULT_OUTPUT_DIR,
        help=f'Output directory for the dashboard (default: {DEFAULT_OUTPUT_DIR})'
    )

    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable debug logging'
    )

    return parser


def open_store(args: argparse.Namespace) -> KeyValueStore:
    if args.no_cache:
        return MemoryStore()
    return SQLiteStore(args.cache_path)


def log_statistics(dashboard: NodeDashboard):
    stats = dashboard.statistics
    logger.info("Snapshot Statistics:")
    logger.info(f"  Total nodes: {stats.total_nodes}")
    logger.info(f"  Unique countries: {stats.unique_countries}")
    if stats.top_user_agents:
        agents = ', '.join(f"{agent} ({count})" for agent, count in stats.top_user_agents)
        logger.info(f"  Top user agents: {agents}")
    if stats.top_organizations:
        orgs = ', '.join(f"{org} ({count})" for org, count in stats.top_organizations)
        logger.info(f"  Top organizations: {orgs}")
    if stats.protocol_versions is not None:
        logger.info(f"  Protocol versions: {len(stats.protocol_versions)} unique")
    if stats.average_uptime:
        logger.info(f"  Average uptime: {stats.average_uptime:.1f} days")
    if stats.decentralization_score is not None:
        logger.info(f"  Decentralization (HHI): {stats.decentralization_score:.4f}")


async def main(argv: Optional[List[str]] = None):
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    store = open_store(args)
    dashboard = NodeDashboard(store=store, url=args.url)

    logger.info("=" * 60)
    logger.info("Step 1: Loading Bitcoin Network Snapshot")
    logger.info("=" * 60)

    if await dashboard.refresh(force=args.force):
        source = "cache" if dashboard.from_cache else "network"
        logger.info(f"Loaded snapshot from {source}")
    else:
        logger.warning(f"Showing fallback data: {dashboard.error}")

    log_statistics(dashboard)

    logger.info("=" * 60)
    logger.info("Step 2: Writing Dashboard")
    logger.info("=" * 60)

    output_file = create_dashboard(dashboard.snapshot(), args.output_dir)

    logger.info(f"Done! Open {output_file} or run `nodemap-serve --directory {args.output_dir}`")
    return dashboard


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    run()
