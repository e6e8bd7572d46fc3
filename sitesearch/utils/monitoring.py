"""
Monitoring and metrics collection for the crawler and search service.
"""

import logging
import time
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, start_http_server


RECORD_OUTCOMES = (
    'stopped', 'inaccessible', 'robots_blocked', 'fetch_failed',
    'unsupported_content', 'dead_end', 'indexed', 'expanded_only', 'error'
)


class CrawlerMonitor:
    """
    Prometheus metrics for crawl workers, the indexing pool and the search endpoint.

    Each monitor owns its registry so several can coexist in one process.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.logger = logging.getLogger(__name__)
        self.registry = registry or CollectorRegistry()
        self.start_time = time.time()

        self.records_processed = Counter(
            'crawler_records_processed_total',
            'Frontier records processed, by outcome',
            ['outcome'],
            registry=self.registry
        )
        self.fetch_failures = Counter(
            'crawler_fetch_failures_total',
            'Fetches that failed after all retries',
            registry=self.registry
        )
        self.fetch_duration = Histogram(
            'crawler_fetch_duration_seconds',
            'Time spent fetching a page, retries included',
            registry=self.registry
        )
        self.children_dispatched = Counter(
            'crawler_children_dispatched_total',
            'Child records pushed to the frontier',
            registry=self.registry
        )
        self.documents_indexed = Counter(
            'crawler_documents_indexed_total',
            'Documents accepted by the search index',
            registry=self.registry
        )
        self.index_failures = Counter(
            'crawler_index_failures_total',
            'Documents the search index rejected or that failed in transit',
            registry=self.registry
        )
        self.submissions_rejected = Counter(
            'crawler_index_submissions_rejected_total',
            'Documents dropped because the indexing pool was full or stopped',
            registry=self.registry
        )
        self.searches = Counter(
            'search_queries_total',
            'Search queries served',
            registry=self.registry
        )

    def start_prometheus_server(self, port: int):
        """Start Prometheus metrics HTTP server."""
        try:
            start_http_server(port, registry=self.registry)
            self.logger.info(f"Prometheus metrics server started on port {port}")
        except OSError as e:
            self.logger.error(f"Failed to start Prometheus server: {e}")

    def record_outcome(self, outcome: str):
        self.records_processed.labels(outcome=outcome).inc()

    def record_fetch(self, duration: float, failed: bool = False):
        self.fetch_duration.observe(duration)
        if failed:
            self.fetch_failures.inc()

    def record_dispatched(self, count: int):
        if count:
            self.children_dispatched.inc(count)

    def record_document_indexed(self):
        self.documents_indexed.inc()

    def record_index_failure(self):
        self.index_failures.inc()

    def record_submission_rejected(self):
        self.submissions_rejected.inc()

    def record_search(self):
        self.searches.inc()

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of the current counter values."""
        runtime = time.time() - self.start_time
        outcomes = {
            outcome: self.registry.get_sample_value(
                'crawler_records_processed_total', {'outcome': outcome}
            ) or 0.0
            for outcome in RECORD_OUTCOMES
        }
        return {
            'runtime_seconds': runtime,
            'records_processed': outcomes,
            'documents_indexed': self.registry.get_sample_value('crawler_documents_indexed_total') or 0.0,
            'index_failures': self.registry.get_sample_value('crawler_index_failures_total') or 0.0,
            'searches': self.registry.get_sample_value('search_queries_total') or 0.0
        }
