"""
Application-wide constants
"""

# Fixed-point precision
PRICE_PRECISION = 1_000_000          # 1e6: prices, collateral ratio and fees (1_000_000 = 100%)
TOKEN_DECIMALS = 18
ONE_TOKEN = 10 ** TOKEN_DECIMALS
PEG_PRICE = PRICE_PRECISION          # $1.000000

# Chain cadence
BLOCK_TIME_SECONDS = 12
BLOCKS_PER_HOUR = 3600 // BLOCK_TIME_SECONDS

# Price history sampling
HISTORY_QUANTIZE_BLOCKS = 300        # one point per hour boundary
DEFAULT_HISTORY_HOURS = 168
DEFAULT_HISTORY_POINTS = 168

# Price threshold sanity range (6 decimals): $0.50 .. $2.00
MIN_VALID_THRESHOLD = 500_000
MAX_VALID_THRESHOLD = 2_000_000

# Durable cache mirror
PERSIST_KEY_PREFIX = "cache:"
