"""
Module constants pour centraliser les constantes du projet.
"""

from .app_constants import (
    PRICE_PRECISION,
    TOKEN_DECIMALS,
    ONE_TOKEN,
    PEG_PRICE,
    BLOCK_TIME_SECONDS,
    BLOCKS_PER_HOUR,
    HISTORY_QUANTIZE_BLOCKS,
    DEFAULT_HISTORY_HOURS,
    DEFAULT_HISTORY_POINTS,
    MIN_VALID_THRESHOLD,
    MAX_VALID_THRESHOLD,
    PERSIST_KEY_PREFIX,
)

from .tokens import (
    TokenMetadata,
    COLLATERAL_SYMBOL,
    DOLLAR_SYMBOL,
    GOVERNANCE_SYMBOL,
    tracked_tokens,
)

__all__ = [
    # Application constants
    "PRICE_PRECISION",
    "TOKEN_DECIMALS",
    "ONE_TOKEN",
    "PEG_PRICE",
    "BLOCK_TIME_SECONDS",
    "BLOCKS_PER_HOUR",
    "HISTORY_QUANTIZE_BLOCKS",
    "DEFAULT_HISTORY_HOURS",
    "DEFAULT_HISTORY_POINTS",
    "MIN_VALID_THRESHOLD",
    "MAX_VALID_THRESHOLD",
    "PERSIST_KEY_PREFIX",
    # Tokens
    "TokenMetadata",
    "COLLATERAL_SYMBOL",
    "DOLLAR_SYMBOL",
    "GOVERNANCE_SYMBOL",
    "tracked_tokens",
]
