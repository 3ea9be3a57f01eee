#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Configuration Settings - Centralisation avec Pydantic

Ce module centralise toute la configuration du routeur LUSD/UUSD avec:
- Validation des types avec Pydantic
- Variables d'environnement (préfixe par section)
- Configuration par environnement (dev/prod)
- Validation des contraintes
"""

from typing import Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings
from pathlib import Path


class RpcConfig(BaseSettings):
    """Configuration endpoint JSON-RPC"""
    url: str = Field(default="https://rpc.ubq.fi/1", description="URL JSON-RPC")
    timeout_sec: float = Field(default=10.0, gt=0, le=120, description="Timeout requête HTTP")
    circuit_failure_threshold: int = Field(default=5, ge=1, description="Échecs avant ouverture du circuit")
    circuit_recovery_sec: float = Field(default=30.0, gt=0, description="Délai avant HALF_OPEN")

    @field_validator('url')
    @classmethod
    def validate_url(cls, v):
        if not v.startswith(('http://', 'https://')):
            raise ValueError('URL RPC doit commencer par http:// ou https://')
        return v

    model_config = {
        'env_prefix': 'RPC_'
    }


class ContractsConfig(BaseSettings):
    """Adresses des contrats et layout de stockage"""
    diamond: str = Field(default="0xED3084c98148e2528DaDCB53C56352e549C488fA", description="Diamond Ubiquity")
    dollar_token: str = Field(default="0xb6919Ef2ee4aFC163BC954C5678e2BB570c2D103", description="Token UUSD")
    governance_token: str = Field(default="0x4e38D89362f7e5db0096CE44ebD021c3962aA9a0", description="Token UBQ")
    collateral_token: str = Field(default="0x5f98805A4E8be255a32880FDeC7F6728C6568bA0", description="Collatéral LUSD")
    curve_pool: str = Field(default="0xcc68509f9ca0e1ed119eac7c468ec1b1c42f384f", description="Pool Curve LUSD/UUSD")
    curve_collateral_index: int = Field(default=0, ge=0, description="Index LUSD dans le pool")
    curve_dollar_index: int = Field(default=1, ge=0, description="Index UUSD dans le pool")
    pool_storage_base_slot: int = Field(default=0, ge=0, description="Slot de base UbiquityPoolStorage")
    mint_threshold_slot_offset: int = Field(default=12, ge=0, description="Offset mintPriceThreshold")
    redeem_threshold_slot_offset: int = Field(default=13, ge=0, description="Offset redeemPriceThreshold")

    @field_validator('diamond', 'dollar_token', 'governance_token', 'collateral_token', 'curve_pool')
    @classmethod
    def validate_address(cls, v):
        if not (v.startswith('0x') and len(v) == 42):
            raise ValueError(f'Adresse invalide: {v}')
        return v

    @property
    def mint_threshold_slot(self) -> int:
        return self.pool_storage_base_slot + self.mint_threshold_slot_offset

    @property
    def redeem_threshold_slot(self) -> int:
        return self.pool_storage_base_slot + self.redeem_threshold_slot_offset

    model_config = {
        'env_prefix': 'CONTRACTS_'
    }


class CacheConfig(BaseSettings):
    """Configuration du cache TTL et de sa persistance"""
    max_entries: int = Field(default=1000, ge=1, description="Nombre max d'entrées en mémoire")
    sweep_age_sec: float = Field(default=60 * 60, gt=0, description="Age absolu purgé lors de l'éviction")
    persist_enabled: bool = Field(default=True, description="Activer le miroir persistant")
    persist_path: Path = Field(default=Path("data/route_cache.json"), description="Fichier du miroir")
    persist_max_bytes: int = Field(default=5 * 1024 * 1024, ge=1024, description="Quota du miroir")
    persist_max_age_sec: float = Field(default=7 * 24 * 60 * 60, gt=0, description="Age max au chargement")

    model_config = {
        'env_prefix': 'CACHE_'
    }


class RefreshConfig(BaseSettings):
    """Configuration du rafraîchissement centralisé"""
    enabled: bool = Field(default=True, description="Démarrer le poller au lancement")
    interval_sec: float = Field(default=15.0, ge=1.0, le=600.0, description="Intervalle (aligné sur les blocs)")
    prime_cache: bool = Field(default=True, description="Alimenter le cache avec chaque snapshot")

    model_config = {
        'env_prefix': 'REFRESH_'
    }


class AggregatorConfig(BaseSettings):
    """Configuration de l'agrégateur de requêtes batch"""
    debounce_sec: float = Field(default=0.05, gt=0, le=1.0, description="Fenêtre de coalescence")

    model_config = {
        'env_prefix': 'AGGREGATOR_'
    }


class RouteConfig(BaseSettings):
    """Politique par défaut du moteur de routage"""
    use_bonus_discount: bool = Field(default=True, description="Utiliser la remise UBQ en mode fractionnaire")
    accept_fractional_redemption: bool = Field(default=False, description="Accepter un rachat partiellement en UBQ")

    model_config = {
        'env_prefix': 'ROUTE_'
    }


class LoggingConfig(BaseSettings):
    """Configuration logging"""
    log_level: str = Field(default="INFO", description="Niveau log")
    log_format: str = Field(default="json", description="Format log fichier (json/text)")
    log_file_path: Optional[Path] = Field(None, description="Chemin fichier log")
    log_max_size_mb: int = Field(default=100, description="Taille max log MB")
    log_backup_count: int = Field(default=5, description="Nombre backups log")

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'Log level doit être: {", ".join(valid_levels)}')
        return v.upper()

    @field_validator('log_format')
    @classmethod
    def validate_log_format(cls, v):
        if v not in ['json', 'text']:
            raise ValueError('Format log doit être: json ou text')
        return v

    model_config = {
        'env_prefix': 'LOG_'
    }


class Settings(BaseSettings):
    """Configuration principale de l'application"""

    # Environnement
    environment: str = Field(default="development", description="Environnement")
    debug: bool = Field(default=False, description="Mode debug")

    # Sous-configurations
    rpc: RpcConfig = Field(default_factory=RpcConfig)
    contracts: ContractsConfig = Field(default_factory=ContractsConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    refresh: RefreshConfig = Field(default_factory=RefreshConfig)
    aggregator: AggregatorConfig = Field(default_factory=AggregatorConfig)
    route: RouteConfig = Field(default_factory=RouteConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    # Configuration serveur
    host: str = Field(default="127.0.0.1", description="Host serveur")
    port: int = Field(default=8000, ge=1, le=65535, description="Port serveur")
    cors_origins: str = Field(default="http://localhost:3000,http://127.0.0.1:8000", description="Origines CORS (séparées par des virgules)")

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v):
        valid_envs = ['development', 'staging', 'production']
        if v not in valid_envs:
            raise ValueError(f'Environment doit être: {", ".join(valid_envs)}')
        return v

    def model_post_init(self, __context):
        """Validation post-initialisation"""
        if self.environment == 'production' and self.debug:
            raise ValueError('Debug ne peut pas être activé en production')

    def is_production(self) -> bool:
        return self.environment == 'production'

    def is_debug_enabled(self) -> bool:
        return self.debug and not self.is_production()

    def get_cors_origins(self) -> list:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    model_config = {
        'env_file': '.env',
        'env_file_encoding': 'utf-8',
        'case_sensitive': False,
        'populate_by_name': True,
        'extra': 'ignore'
    }


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Obtenir l'instance de configuration (construite au premier appel)"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
