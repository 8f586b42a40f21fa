"""
Configuration management for Card Price Sync.
Handles pricing, remote API and batching settings, and persistence.
"""

import json
import logging
import copy
from pathlib import Path
from typing import Optional, Dict, Any

from core.constants import (
    API_TIMEOUT_DEFAULT,
    API_TIMEOUT_MAX,
    BATCH_DEBOUNCE,
    BATCH_TICK_INTERVAL,
    CACHE_TTL_FAILED,
    CACHE_TTL_PRICED,
    CURRENCY_EUR,
    MAX_PER_COLLECTION,
    RATE_LIMIT_COOLDOWN,
    SCRYFALL_BASE_URL,
    SUPPORTED_CURRENCIES,
    USER_AGENT_DEFAULT,
)

logger = logging.getLogger(__name__)


def get_config_dir() -> Path:
    """
    Get the application config directory.

    Returns:
        Path to the config directory (~/.card_price_sync/)
    """
    config_dir = Path.home() / ".card_price_sync"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


class Config:
    """
    Application configuration with JSON persistence.

    Key ideas:
    - "pricing" holds read-side choices (currency) and staleness windows.
    - "api" describes the remote service and how politely to call it.
    - "batching" tunes how lookups are merged into collection calls.
    - The backing store is a JSON file on disk (user config file).
    """

    # NOTE: This structure is treated as immutable. Always use
    # _default_config_deepcopy() when you need a fresh copy of defaults.
    DEFAULT_CONFIG: Dict[str, Any] = {
        "pricing": {
            # "eur" or "usd"; foil/non-foil is chosen per lookup
            "currency": CURRENCY_EUR,
            # How long a snapshot with a real price is trusted (min 1h, max 7 days)
            "priced_ttl_seconds": CACHE_TTL_PRICED,
            # How long a failed / zero snapshot is trusted (min 30s, max 1 day)
            "failed_ttl_seconds": CACHE_TTL_FAILED,
        },
        "api": {
            "base_url": SCRYFALL_BASE_URL,
            "user_agent": USER_AGENT_DEFAULT,
            "timeout_seconds": API_TIMEOUT_DEFAULT,
            # Pause between consecutive requests.
            # GUARDRAIL: Min 50ms; Scryfall asks for 50-100ms between calls
            "cooldown_ms": int(RATE_LIMIT_COOLDOWN * 1000),
            # Identifiers per /cards/collection call (service maximum is 75)
            "max_batch_size": MAX_PER_COLLECTION,
        },
        "batching": {
            # Quiet period after the last lookup before a batch is sent
            "debounce_ms": int(BATCH_DEBOUNCE * 1000),
            # Periodic flush so a steady stream still gets sent
            "tick_seconds": BATCH_TICK_INTERVAL,
        },
    }

    def __init__(self, config_file: Optional[Path] = None) -> None:
        """
        Initialize configuration.

        Args:
            config_file: Optional path to config JSON file. When omitted,
                         the default path under ~/.card_price_sync/config.json
                         is used.
        """
        self.config_file: Path = self._resolve_config_path(config_file)
        self.config_file.parent.mkdir(parents=True, exist_ok=True)

        # Load data from disk (or defaults)
        self.data: Dict[str, Any] = self._load()
        logger.info(f"Config loaded from {self.config_file}")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _resolve_config_path(config_file: Optional[Path]) -> Path:
        """Resolve the config file path, applying the default location when None."""
        if config_file is not None:
            return Path(config_file)
        return Path.home() / ".card_price_sync" / "config.json"

    def _load(self) -> Dict[str, Any]:
        """Load configuration from JSON file, merging with defaults."""
        if self.config_file.exists():
            try:
                with self.config_file.open("r", encoding="utf-8") as f:
                    raw = json.load(f)

                # Merge with defaults (in case new keys were added)
                merged = self._merge_with_defaults(raw)
                logger.info("Configuration loaded successfully")
                return merged
            except (OSError, ValueError) as exc:
                logger.error(f"Failed to load config: {exc}. Using defaults.")
                return self._default_config_deepcopy()
        else:
            logger.info("No config file found, using defaults")
            return self._default_config_deepcopy()

    @classmethod
    def _default_config_deepcopy(cls) -> Dict[str, Any]:
        """
        Return a deep copy of the DEFAULT_CONFIG to avoid state leakage
        between instances or tests.
        """
        return copy.deepcopy(cls.DEFAULT_CONFIG)

    def _merge_with_defaults(self, user_config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge user config with defaults to handle new keys.

        Nested dictionaries are merged so new keys under e.g. "api" appear
        without discarding user-provided values.
        """
        merged = self._default_config_deepcopy()

        if not isinstance(user_config, dict):
            return merged

        for key, value in user_config.items():
            if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
                merged[key].update(value)
            else:
                merged[key] = value

        return merged

    def _section(self, name: str) -> Dict[str, Any]:
        return self.data.setdefault(name, {})

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self) -> None:
        """Persist the current configuration to the config file."""
        try:
            with self.config_file.open("w", encoding="utf-8") as f:
                json.dump(self.data, f, indent=2, ensure_ascii=False)
            logger.info("Configuration saved")
        except OSError as exc:
            logger.error(f"Failed to save config: {exc}")

    # ------------------------------------------------------------------
    # Pricing
    # ------------------------------------------------------------------

    @property
    def currency(self) -> str:
        """Currency used for default price lookups ("eur" or "usd")."""
        value = str(self._section("pricing").get("currency", CURRENCY_EUR)).lower()
        return value if value in SUPPORTED_CURRENCIES else CURRENCY_EUR

    @currency.setter
    def currency(self, value: str) -> None:
        value = str(value).lower()
        if value not in SUPPORTED_CURRENCIES:
            raise ValueError(f"Unsupported currency: {value!r}")
        self._section("pricing")["currency"] = value
        self.save()

    @property
    def priced_ttl_seconds(self) -> int:
        """
        Freshness window for snapshots carrying a price.

        Guardrails: Min 3600 (1 hour), Max 604800 (7 days).
        """
        value = self._section("pricing").get("priced_ttl_seconds", CACHE_TTL_PRICED)
        return max(3600, min(604800, int(value)))

    @priced_ttl_seconds.setter
    def priced_ttl_seconds(self, value: int) -> None:
        """Set priced TTL with guardrails (3600 to 604800 seconds)."""
        self._section("pricing")["priced_ttl_seconds"] = max(3600, min(604800, int(value)))
        self.save()

    @property
    def failed_ttl_seconds(self) -> int:
        """
        Freshness window for failed / zero snapshots.

        Guardrails: Min 30s, Max 86400 (1 day). Too short a window hammers
        the API with lookups for cards that simply have no price.
        """
        value = self._section("pricing").get("failed_ttl_seconds", CACHE_TTL_FAILED)
        return max(30, min(86400, int(value)))

    @failed_ttl_seconds.setter
    def failed_ttl_seconds(self, value: int) -> None:
        """Set failed TTL with guardrails (30 to 86400 seconds)."""
        self._section("pricing")["failed_ttl_seconds"] = max(30, min(86400, int(value)))
        self.save()

    # ------------------------------------------------------------------
    # API Settings
    # ------------------------------------------------------------------

    @property
    def api_base_url(self) -> str:
        return str(self._section("api").get("base_url") or SCRYFALL_BASE_URL)

    @property
    def user_agent(self) -> str:
        return str(self._section("api").get("user_agent") or USER_AGENT_DEFAULT)

    @property
    def request_timeout(self) -> float:
        """Per-request timeout in seconds (1 to API_TIMEOUT_MAX)."""
        value = self._section("api").get("timeout_seconds", API_TIMEOUT_DEFAULT)
        return max(1.0, min(float(API_TIMEOUT_MAX), float(value)))

    @request_timeout.setter
    def request_timeout(self, value: float) -> None:
        self._section("api")["timeout_seconds"] = max(1.0, min(float(API_TIMEOUT_MAX), float(value)))
        self.save()

    @property
    def request_cooldown(self) -> float:
        """
        Seconds between consecutive requests.

        Guardrails: Min 50ms, Max 5s.
        """
        value = self._section("api").get("cooldown_ms", int(RATE_LIMIT_COOLDOWN * 1000))
        return max(50, min(5000, int(value))) / 1000.0

    @request_cooldown.setter
    def request_cooldown(self, seconds: float) -> None:
        """
        Set request cooldown with guardrails.

        IMPORTANT: Values below 50ms are clamped to stay within the
        service's published rate limits.
        """
        self._section("api")["cooldown_ms"] = max(50, min(5000, int(round(float(seconds) * 1000))))
        self.save()

    @property
    def max_batch_size(self) -> int:
        """Identifiers per collection call (1 to MAX_PER_COLLECTION)."""
        value = self._section("api").get("max_batch_size", MAX_PER_COLLECTION)
        return max(1, min(MAX_PER_COLLECTION, int(value)))

    @max_batch_size.setter
    def max_batch_size(self, value: int) -> None:
        self._section("api")["max_batch_size"] = max(1, min(MAX_PER_COLLECTION, int(value)))
        self.save()

    # ------------------------------------------------------------------
    # Batching
    # ------------------------------------------------------------------

    @property
    def batch_debounce(self) -> float:
        """Debounce window in seconds (0 to 1s)."""
        value = self._section("batching").get("debounce_ms", int(BATCH_DEBOUNCE * 1000))
        return max(0, min(1000, int(value))) / 1000.0

    @batch_debounce.setter
    def batch_debounce(self, seconds: float) -> None:
        self._section("batching")["debounce_ms"] = max(0, min(1000, int(round(float(seconds) * 1000))))
        self.save()

    @property
    def batch_tick_interval(self) -> float:
        """Periodic flush interval in seconds (0.1 to 60)."""
        value = self._section("batching").get("tick_seconds", BATCH_TICK_INTERVAL)
        return max(0.1, min(60.0, float(value)))

    @batch_tick_interval.setter
    def batch_tick_interval(self, seconds: float) -> None:
        self._section("batching")["tick_seconds"] = max(0.1, min(60.0, float(seconds)))
        self.save()

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def reset_to_defaults(self) -> None:
        """Reset all settings to defaults and persist."""
        self.data = self._default_config_deepcopy()
        self.save()
        logger.warning("Configuration reset to defaults")

    def __repr__(self) -> str:
        """Readable representation for debugging/logging."""
        return f"Config(currency={self.currency}, base_url={self.api_base_url})"
