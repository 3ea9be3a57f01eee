"""Configuration package"""
from .settings import (
    Settings,
    RpcConfig,
    ContractsConfig,
    CacheConfig,
    RefreshConfig,
    AggregatorConfig,
    RouteConfig,
    LoggingConfig,
    get_settings,
)
from .ttl_config import CacheOptions, CacheTTL, CACHE_CONFIGS

__all__ = [
    'Settings',
    'RpcConfig',
    'ContractsConfig',
    'CacheConfig',
    'RefreshConfig',
    'AggregatorConfig',
    'RouteConfig',
    'LoggingConfig',
    'get_settings',
    'CacheOptions',
    'CacheTTL',
    'CACHE_CONFIGS',
]
