"""
Configuration management for the crawler and search service.
"""

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


class ConfigError(ValueError):
    """Raised for invalid configuration values."""
    pass


@dataclass
class CrawlerConfig:
    """Configuration for fetching and parsing."""
    user_agent: str = "Mozilla/5.0 (compatible; SiteSearchBot/1.0)"
    request_timeout: float = 60
    accessibility_timeout: float = 10
    robots_timeout: float = 10
    max_retries: int = 3
    retry_backoff_base: float = 1.0
    max_content_bytes: int = 10 * 1024 * 1024
    min_content_length: int = 50
    respect_robots_txt: bool = False
    num_workers: int = 4


@dataclass
class RedisConfig:
    """Configuration for Redis (crawl state and frontier)."""
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    frontier_key: str = "sitesearch:frontier"


@dataclass
class ElasticsearchConfig:
    """Configuration for the search index."""
    base_url: str = "http://localhost:9200"
    api_key: str = ""
    index: str = "sitesearch"
    refresh: bool = False
    request_timeout: float = 30


@dataclass
class IndexingConfig:
    pool_size: int = 4
    queue_size: int = 1000


@dataclass
class SearchConfig:
    max_results: int = 50
    candidate_size: int = 100


@dataclass
class ApiConfig:
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"
    file: str = "logs/sitesearch.log"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    json: bool = False


@dataclass
class MonitoringConfig:
    """Configuration for monitoring."""
    prometheus_port: int = 8000
    metrics_enabled: bool = False


@dataclass
class Config:
    """Main configuration class."""
    crawler: CrawlerConfig = field(default_factory=CrawlerConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    elasticsearch: ElasticsearchConfig = field(default_factory=ElasticsearchConfig)
    indexing: IndexingConfig = field(default_factory=IndexingConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)


def _build_section(section_cls, data: Optional[Dict[str, Any]], name: str):
    data = data or {}
    known = {f.name for f in fields(section_cls)}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"Unknown keys in '{name}' section: {', '.join(sorted(unknown))}")
    return section_cls(**data)


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_path: str = "config.yaml"):
        self.config_path = Path(config_path)
        self._config: Optional[Config] = None

    def load_config(self) -> Config:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        with open(self.config_path, 'r') as file:
            config_data = yaml.safe_load(file) or {}

        self._config = self.from_dict(config_data)
        self._validate_config()
        return self._config

    @staticmethod
    def from_dict(config_data: Dict[str, Any]) -> Config:
        sections = {f.name: f.type for f in fields(Config)}
        unknown = set(config_data) - set(sections)
        if unknown:
            raise ConfigError(f"Unknown configuration sections: {', '.join(sorted(unknown))}")

        return Config(
            crawler=_build_section(CrawlerConfig, config_data.get('crawler'), 'crawler'),
            redis=_build_section(RedisConfig, config_data.get('redis'), 'redis'),
            elasticsearch=_build_section(ElasticsearchConfig, config_data.get('elasticsearch'), 'elasticsearch'),
            indexing=_build_section(IndexingConfig, config_data.get('indexing'), 'indexing'),
            search=_build_section(SearchConfig, config_data.get('search'), 'search'),
            api=_build_section(ApiConfig, config_data.get('api'), 'api'),
            logging=_build_section(LoggingConfig, config_data.get('logging'), 'logging'),
            monitoring=_build_section(MonitoringConfig, config_data.get('monitoring'), 'monitoring')
        )

    def _validate_config(self):
        """Validate configuration values."""
        if not self._config:
            raise ConfigError("Configuration not loaded")

        crawler = self._config.crawler
        if crawler.max_retries < 1:
            raise ConfigError("max_retries must be at least 1")
        if crawler.request_timeout <= 0 or crawler.accessibility_timeout <= 0:
            raise ConfigError("timeouts must be positive")
        if crawler.retry_backoff_base < 0:
            raise ConfigError("retry_backoff_base must be non-negative")
        if crawler.max_content_bytes < 1:
            raise ConfigError("max_content_bytes must be positive")
        if crawler.num_workers < 1:
            raise ConfigError("num_workers must be at least 1")

        if self._config.indexing.pool_size < 1:
            raise ConfigError("indexing pool_size must be at least 1")
        if self._config.indexing.queue_size < 1:
            raise ConfigError("indexing queue_size must be at least 1")

        search = self._config.search
        if search.max_results < 1 or search.candidate_size < search.max_results:
            raise ConfigError("search candidate_size must be >= max_results >= 1")

        logging.getLogger(__name__).info("Configuration validation passed")

    @property
    def config(self) -> Config:
        """Get the loaded configuration."""
        if not self._config:
            raise ConfigError("Configuration not loaded. Call load_config() first.")
        return self._config


def load_config(config_path: str = "config.yaml") -> Config:
    """Load and validate configuration from file."""
    return ConfigManager(config_path).load_config()
