"""
Application-wide constants for Card Price Sync.

Centralizes magic numbers and configuration defaults to improve maintainability.
"""

# =============================================================================
# Remote Service
# =============================================================================

# Scryfall REST API
SCRYFALL_BASE_URL = "https://api.scryfall.com"

# Maximum identifiers accepted by one /cards/collection call
MAX_PER_COLLECTION = 75

# Default User-Agent sent with every request
USER_AGENT_DEFAULT = "CardPriceSync/1.0"


# =============================================================================
# Network Timeouts (seconds)
# =============================================================================

# Default timeout for API requests
API_TIMEOUT_DEFAULT = 10

# Upper bound accepted from configuration
API_TIMEOUT_MAX = 60

# Timeout for thread/worker joins
THREAD_JOIN_TIMEOUT = 2.0


# =============================================================================
# Rate Limiting
# =============================================================================

# Spacing between the end of one remote call and the start of the next
RATE_LIMIT_COOLDOWN = 0.1

# Default retry delay when a 429 carries no Retry-After header (seconds)
RETRY_DELAY_DEFAULT = 60


# =============================================================================
# Batching
# =============================================================================

# Quiet period after the last enqueue before a batch is flushed
BATCH_DEBOUNCE = 0.02

# Periodic flush interval, so a steady trickle cannot postpone a batch forever
BATCH_TICK_INTERVAL = 1.0


# =============================================================================
# Price Staleness (seconds)
# =============================================================================

# A snapshot carrying a real price stays authoritative for 24 hours
CACHE_TTL_PRICED = 86400

# A failed / zero snapshot is retried after 5 minutes
CACHE_TTL_FAILED = 300


# =============================================================================
# Currencies & Price Kinds
# =============================================================================

CURRENCY_EUR = "eur"
CURRENCY_USD = "usd"
SUPPORTED_CURRENCIES = (CURRENCY_EUR, CURRENCY_USD)

# Keys of a price snapshot, as named by Scryfall's "prices" object
PRICE_KINDS = ("eur", "eur_foil", "usd", "usd_foil", "tix")
