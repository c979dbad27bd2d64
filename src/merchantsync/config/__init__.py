"""Application configuration helpers."""

from __future__ import annotations

from .cache import CacheConfig, get_cache_config
from .env import optional_env_var, require_env_vars, require_non_blank
from .errors import ConfigurationError, MissingConfigurationError
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy
from .record_store import CollectionIds, RecordStoreConfig, get_record_store_config
from .storage import DatabaseConfig, StorageConfig, get_database_config, get_storage_config
from .sync import SyncConfig, get_sync_config
from .workflow import WorkflowConfig, get_workflow_config

__all__ = [
    "CacheConfig",
    "CollectionIds",
    "ConfigurationError",
    "DatabaseConfig",
    "MissingConfigurationError",
    "RateLimit",
    "RecordStoreConfig",
    "ResilienceConfig",
    "RetryPolicy",
    "StorageConfig",
    "SyncConfig",
    "WorkflowConfig",
    "get_cache_config",
    "get_database_config",
    "get_record_store_config",
    "get_storage_config",
    "get_sync_config",
    "get_workflow_config",
    "optional_env_var",
    "require_env_vars",
    "require_non_blank",
]
