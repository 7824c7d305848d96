import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from linguaroute.core.pii_utils import PII_COMPLIANCE_PATTERNS
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_MODEL_ALLOW_LIST: list[dict[str, Any]] = [
    {
        "id": "azureOpenAI:gpt-4o",
        "kind": "llm",
        "cost_per_char_usd": 0.00002,
        "latency_target_ms": 1800,
        "regions": ["eu", "global"],
        "certifications": ["ISO27001", "SOC2", "ISMAP"],
    },
    {
        "id": "anthropic:claude-3",
        "kind": "llm",
        "cost_per_char_usd": 0.000018,
        "latency_target_ms": 2200,
        "regions": ["us", "global"],
        "certifications": ["SOC2"],
    },
    {
        "id": "ollama:llama3",
        "kind": "llm",
        "cost_per_char_usd": 0.000005,
        "latency_target_ms": 2500,
        "regions": ["onprem"],
        "certifications": ["ISO27001"],
    },
]


def _split_csv(v: str | list[str]) -> list[str]:
    """Normalize a comma-separated string or list into a clean list of strings."""
    if isinstance(v, list):
        return [item.strip() for item in v if isinstance(item, str) and item.strip()]
    if isinstance(v, str):
        return [item.strip() for item in v.split(",") if item.strip()]
    return []


class Settings(BaseSettings):
    # Service settings
    DEBUG: bool = False
    PROJECT_NAME: str = "linguaroute"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Directory settings
    DATA_DIR: str = "service/data"

    # Request limits
    MAX_CHARACTERS_PER_REQUEST: int = 50000
    DEFAULT_TARGET_LANGUAGE: str = "ja"
    DEFAULT_TONE: str = "polite"

    # Budget (admission control)
    DAILY_BUDGET_USD: float = 10.0

    # Routing / failover
    ROUTER_RETRY_COUNT: int = 0  # Retries per provider after the first attempt
    ROUTER_BACKOFF_MS: int = 120
    ENFORCE_PROVIDER_LATENCY_TIMEOUT: bool = True
    ROUTING_QUALITY_WEIGHT: float = 0.6
    ROUTING_LATENCY_WEIGHT: float = 0.2
    ROUTING_COST_WEIGHT: float = 0.2
    MODEL_ALLOW_LIST: list[dict[str, Any]] = Field(
        default_factory=lambda: [dict(m) for m in DEFAULT_MODEL_ALLOW_LIST]
    )

    # Compliance policy
    COMPLIANCE_POLICY_VERSION: str = "2024-05-01"
    REQUIRED_REGION_TAGS: str | list[str] = "eu"
    ALLOWED_REGION_FALLBACKS: str | list[str] = "global"
    REQUIRED_CERTIFICATIONS: str | list[str] = "SOC2"
    BANNED_PHRASES: str | list[str] = [
        "Internal Use Only",
        "仅限内部",
        "机密",
        "Do Not Translate",
    ]
    PII_PATTERNS: dict[str, str] = Field(
        default_factory=lambda: dict(PII_COMPLIANCE_PATTERNS)
    )

    # Glossary
    GLOSSARY_HIERARCHY: str | list[str] = "user,channel,tenant"  # Most specific first

    # Language detection
    LID_BACKEND: str = "langdetect"
    DETECTION_MIN_CONFIDENCE: float = 0.0  # 0.0 disables the low-confidence gate

    # Offline drafts
    DRAFT_MAX_ENTRIES_PER_USER: int = 20
    DRAFT_RETENTION_HOURS: int = 72
    DRAFT_REPLAY_INTERVAL_SECONDS: float = 5.0
    DRAFT_REPLAY_MAX_ATTEMPTS: int = 3
    DRAFT_REPLAY_BATCH_SIZE: int = 10
    DRAFT_STORE_BACKEND: str = "memory"  # "memory" or "sqlite"

    # Audit
    AUDIT_STORE_FINGERPRINT_ONLY: bool = True

    # Throttle
    MAX_CONCURRENT_TRANSLATIONS: int = 4
    REQUESTS_PER_MINUTE_PER_TENANT: int = 0  # 0 disables the per-tenant limit

    # Translation cache
    TRANSLATION_CACHE_ENABLED: bool = False
    TRANSLATION_CACHE_L1_SIZE: int = 1000
    TRANSLATION_CACHE_TTL_SECONDS: int = 86400

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        validate_default=True,  # Normalize comma-separated defaults to lists
    )

    @property
    def DRAFT_DB_PATH(self) -> str:
        """Complete path to the SQLite offline draft database"""
        return os.path.join(self.DATA_DIR, "offline_drafts.db")

    @property
    def TRANSLATION_CACHE_DB_PATH(self) -> str:
        """Complete path to the SQLite translation cache database"""
        return os.path.join(self.DATA_DIR, "translation_cache.db")

    @field_validator(
        "REQUIRED_REGION_TAGS",
        "ALLOWED_REGION_FALLBACKS",
        "REQUIRED_CERTIFICATIONS",
        "BANNED_PHRASES",
        "GLOSSARY_HIERARCHY",
        mode="before",
    )
    @classmethod
    def parse_csv_lists(cls, v: str | list[str]) -> list[str]:
        """Accept either a comma-separated string or a list of strings."""
        return _split_csv(v)

    @field_validator("GLOSSARY_HIERARCHY")
    @classmethod
    def validate_glossary_hierarchy(cls, v: list[str]) -> list[str]:
        """Validate the glossary scope tiers.

        Args:
            v: Scope names ordered from most to least specific

        Returns:
            Lower-cased scope names

        Raises:
            ValueError: If the tiers are not exactly user, channel and tenant
        """
        normalized = [scope.lower() for scope in v]
        if sorted(normalized) != ["channel", "tenant", "user"]:
            raise ValueError(
                f"GLOSSARY_HIERARCHY must list user, channel and tenant exactly once, got {v}"
            )
        return normalized

    @field_validator("DAILY_BUDGET_USD")
    @classmethod
    def validate_daily_budget(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"DAILY_BUDGET_USD must be non-negative, got {v}")
        return v

    @field_validator("MAX_CHARACTERS_PER_REQUEST", "DRAFT_REPLAY_MAX_ATTEMPTS")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"Value must be at least 1, got {v}")
        return v

    @field_validator("ROUTER_RETRY_COUNT", "ROUTER_BACKOFF_MS")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"Value must be non-negative, got {v}")
        return v

    @field_validator("DETECTION_MIN_CONFIDENCE")
    @classmethod
    def validate_detection_confidence(cls, v: float) -> float:
        """Validate detection confidence threshold is within valid range.

        Args:
            v: Threshold value

        Returns:
            Validated threshold value

        Raises:
            ValueError: If threshold is outside valid range
        """
        if not 0.0 <= v <= 1.0:
            raise ValueError(
                f"DETECTION_MIN_CONFIDENCE must be between 0.0 and 1.0, got {v}"
            )
        return v

    @field_validator("DRAFT_STORE_BACKEND")
    @classmethod
    def validate_draft_store_backend(cls, v: str) -> str:
        normalized = v.strip().lower()
        if normalized not in {"memory", "sqlite"}:
            raise ValueError(
                f"DRAFT_STORE_BACKEND must be 'memory' or 'sqlite', got {v!r}"
            )
        return normalized

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Make paths absolute
        self.DATA_DIR = os.path.abspath(self.DATA_DIR)

    def ensure_data_dirs(self) -> None:
        """Create the data directory if it doesn't exist.

        Called by whoever wires the service, to avoid import-time I/O.
        """
        Path(self.DATA_DIR).mkdir(parents=True, exist_ok=True)


# Thread-safe lazy initialization using lru_cache
@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance with lazy initialization.

    Returns:
        Settings: Service settings object
    """
    return Settings()


def reset_settings() -> None:
    """Reset the cached settings instance.

    Useful for testing when you need to reload settings with different values.
    """
    get_settings.cache_clear()
