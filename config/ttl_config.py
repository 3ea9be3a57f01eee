"""
Configuration centralisée des TTL (Time To Live) pour le cache.

Source de vérité unique pour les politiques de cache par catégorie de
donnée on-chain. Chaque catégorie déclare sa fenêtre de fraîcheur, si
une donnée périmée peut être resservie après un échec, et l'âge maximal
au-delà duquel elle ne doit plus l'être.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict


class CacheTTL:
    """TTL en secondes pour le cache."""

    # === Prix oracle ===
    ORACLE_PRICE = 15               # 15 secondes - Prix oracle collatéral / dollar
    GOVERNANCE_PRICE = 15           # 15 secondes - Prix UBQ
    DOLLAR_MARKET_PRICE = 10        # 10 secondes - Prix marché UUSD (Curve)

    # === Paramètres protocole ===
    COLLATERAL_RATIO = 30           # 30 secondes
    PROTOCOL_SETTINGS = 60          # 1 minute - Frais, pauses
    COLLATERAL_OPTIONS = 5 * 60     # 5 minutes - Liste des collatéraux
    PRICE_THRESHOLDS = 2 * 60       # 2 minutes - Seuils mint/redeem

    # === Données utilisateur ===
    USER_BALANCES = 10              # 10 secondes

    # === AMM ===
    AMM_QUOTE = 10                  # 10 secondes - Cotation get_dy

    # === Historique ===
    PRICE_POINTS = 30 * 60          # 30 minutes - Point de prix par bloc
    BLOCK_NUMBER = 12               # 1 bloc


@dataclass(frozen=True)
class CacheOptions:
    """Politique immuable d'une catégorie de cache (durées en secondes)."""
    ttl: float
    allow_stale_fallback: bool = False
    max_stale_age: float = 600.0
    persist: bool = False


CACHE_CONFIGS: Dict[str, CacheOptions] = {
    # Prix oracle: données volatiles mais resservables périmées
    "ORACLE_PRICE": CacheOptions(CacheTTL.ORACLE_PRICE, True, 5 * 60, persist=True),
    "GOVERNANCE_PRICE": CacheOptions(CacheTTL.GOVERNANCE_PRICE, True, 5 * 60, persist=True),
    "DOLLAR_MARKET_PRICE": CacheOptions(CacheTTL.DOLLAR_MARKET_PRICE, True, 3 * 60, persist=True),

    # Paramètres protocole (changent rarement)
    "COLLATERAL_RATIO": CacheOptions(CacheTTL.COLLATERAL_RATIO, True, 10 * 60, persist=True),
    "PROTOCOL_SETTINGS": CacheOptions(CacheTTL.PROTOCOL_SETTINGS, True, 10 * 60),
    "COLLATERAL_OPTIONS": CacheOptions(CacheTTL.COLLATERAL_OPTIONS, True, 60 * 60, persist=True),
    "PRICE_THRESHOLDS": CacheOptions(CacheTTL.PRICE_THRESHOLDS, True, 10 * 60, persist=True),

    # Données utilisateur: jamais resservies périmées
    "USER_BALANCES": CacheOptions(CacheTTL.USER_BALANCES, False, 60),

    # Cotations dépendantes du montant: jamais resservies périmées
    "AMM_QUOTE": CacheOptions(CacheTTL.AMM_QUOTE, False, 60),

    "PRICE_POINTS": CacheOptions(CacheTTL.PRICE_POINTS, True, 24 * 60 * 60, persist=True),
    "BLOCK_NUMBER": CacheOptions(CacheTTL.BLOCK_NUMBER, True, 60),
}


# Alias pour import simple
TTL = CacheTTL
