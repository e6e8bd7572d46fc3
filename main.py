#!/usr/bin/env python3
"""
Main entry point for the SiteSearch crawler and search API.
"""

import asyncio
import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from aiohttp import web

from sitesearch.api.app import create_app
from sitesearch.crawler.scheduler import CrawlerScheduler
from sitesearch.utils.config import Config, load_config
from sitesearch.utils.logger import setup_logging


class CrawlerApp:
    """Main application class: API server and/or frontier workers."""

    def __init__(self):
        self.scheduler: Optional[CrawlerScheduler] = None
        self.runner: Optional[web.AppRunner] = None
        self.logger = logging.getLogger(__name__)
        self._shutdown_event = asyncio.Event()

    def setup_logging(self, config: Config):
        setup_logging(config.logging)

    def setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum):
            self.logger.info(f"Received signal {signum}, initiating shutdown...")
            self._shutdown_event.set()

        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, signal_handler, signum)

    async def run(self, config_path: str, role: str = 'all', workers: Optional[int] = None,
                  dry_run: bool = False) -> int:
        """Run the API and/or the workers until a shutdown signal arrives."""
        try:
            config = load_config(config_path)
            self.setup_logging(config)
            self.setup_signal_handlers()

            self.logger.info("=== SITESEARCH STARTING ===")
            self.logger.info(f"Configuration loaded from: {config_path}")
            self.logger.info(f"Role: {role}")
            self.logger.info(f"Redis: {config.redis.host}:{config.redis.port}/{config.redis.db}")
            self.logger.info(f"Search index: {config.elasticsearch.base_url}/{config.elasticsearch.index}")

            if dry_run:
                self.logger.info("DRY RUN MODE: No crawling will be performed")
                await self._dry_run(config)
                return 0

            self.scheduler = CrawlerScheduler(config)
            await self.scheduler.initialize()

            if config.monitoring.metrics_enabled:
                self.scheduler.monitor.start_prometheus_server(config.monitoring.prometheus_port)

            if role in ('all', 'worker'):
                await self.scheduler.start_workers(workers)

            if role in ('all', 'api'):
                self.runner = web.AppRunner(create_app(self.scheduler))
                await self.runner.setup()
                site = web.TCPSite(self.runner, config.api.host, config.api.port)
                await site.start()
                self.logger.info(f"API listening on {config.api.host}:{config.api.port}")

            await self._shutdown_event.wait()
            self.logger.info("Shutdown requested, stopping...")

        except Exception as e:
            self.logger.error(f"Fatal error: {e}", exc_info=True)
            return 1

        finally:
            if self.runner:
                await self.runner.cleanup()
            if self.scheduler:
                await self.scheduler.close()
            self.logger.info("=== SITESEARCH FINISHED ===")

        return 0

    async def _dry_run(self, config: Config):
        """Check Redis, the search index and the fetcher without crawling."""
        self.logger.info("Testing Redis connection...")
        try:
            import redis.asyncio as redis
            redis_client = redis.Redis(
                host=config.redis.host,
                port=config.redis.port,
                db=config.redis.db,
                password=config.redis.password
            )
            await redis_client.ping()
            await redis_client.aclose()
            self.logger.info("Redis connection successful")
        except Exception as e:
            self.logger.error(f"Redis connection failed: {e}")

        self.logger.info("Testing search index connection...")
        try:
            from sitesearch.storage.search_index import ElasticSearchIndex
            es = config.elasticsearch
            async with ElasticSearchIndex(es.base_url, es.api_key, es.index,
                                          request_timeout=es.request_timeout) as index:
                if await index.ping():
                    self.logger.info("Search index reachable")
                else:
                    self.logger.warning("Search index answered with an error status")
        except Exception as e:
            self.logger.error(f"Search index check failed: {e}")

        self.logger.info("Testing fetcher configuration...")
        try:
            from sitesearch.crawler.fetcher import WebFetcher
            async with WebFetcher(
                user_agent=config.crawler.user_agent,
                accessibility_timeout=config.crawler.accessibility_timeout
            ) as fetcher:
                result = await fetcher.check_accessibility("https://www.example.com")
                if result.accessible:
                    self.logger.info("Test fetch successful")
                else:
                    self.logger.warning(f"Test fetch failed: {result.reason}")
        except Exception as e:
            self.logger.error(f"Fetcher test failed: {e}")

        self.logger.info("Dry run completed")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="SiteSearch crawler and search API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                           # API + workers with config.yaml
  python main.py --role worker --workers 8 # Worker-only process
  python main.py --role api                # API-only process
  python main.py --dry-run                 # Test configuration only
        """
    )

    parser.add_argument(
        '--config',
        default='config.yaml',
        help='Path to configuration file (default: config.yaml)'
    )

    parser.add_argument(
        '--role',
        choices=['all', 'api', 'worker'],
        default='all',
        help='Run the API, the frontier workers, or both (default: all)'
    )

    parser.add_argument(
        '--workers',
        type=int,
        help='Number of frontier workers (default: crawler.num_workers)'
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Test configuration without crawling'
    )

    parser.add_argument(
        '--version',
        action='version',
        version='SiteSearch 1.0.0'
    )

    args = parser.parse_args()

    if not Path(args.config).exists():
        print(f"Error: Configuration file '{args.config}' not found.")
        print("Please create a config.yaml file or specify a different path with --config")
        return 1

    app = CrawlerApp()
    try:
        return asyncio.run(app.run(
            config_path=args.config,
            role=args.role,
            workers=args.workers,
            dry_run=args.dry_run
        ))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 1


if __name__ == '__main__':
    sys.exit(main())
