"""
Configuration management.
"""

import os
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class Config:
    """
    Application configuration.

    Loads from environment variables with sensible defaults.
    """

    # Server
    host: str = field(default_factory=lambda: os.getenv("HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "8000")))
    debug: bool = field(default_factory=lambda: os.getenv("DEBUG", "false").lower() == "true")
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())

    # Candidate source
    property_api_url: Optional[str] = field(
        default_factory=lambda: os.getenv("PROPERTY_API_URL") or None
    )
    request_timeout: int = field(default_factory=lambda: int(os.getenv("REQUEST_TIMEOUT", "30")))

    # Comparables
    search_radius_km: float = field(
        default_factory=lambda: float(os.getenv("SEARCH_RADIUS_KM", "10.0"))
    )
    display_count: int = field(default_factory=lambda: int(os.getenv("DISPLAY_COUNT", "12")))
    luxury_threshold: float = field(
        default_factory=lambda: float(os.getenv("LUXURY_THRESHOLD", "1000000"))
    )

    # Caches (seconds)
    intermediate_cache_ttl: int = field(
        default_factory=lambda: int(os.getenv("INTERMEDIATE_CACHE_TTL", str(30 * 60)))
    )
    result_cache_ttl: int = field(
        default_factory=lambda: int(os.getenv("RESULT_CACHE_TTL", str(24 * 60 * 60)))
    )
    decision_cache_ttl: int = field(
        default_factory=lambda: int(os.getenv("DECISION_CACHE_TTL", str(60 * 60)))
    )

    # Data
    data_dir: str = field(default_factory=lambda: os.getenv("DATA_DIR", "./data"))

    @property
    def properties_file(self) -> str:
        """JSON export used by the in-memory candidate source."""
        return os.path.join(self.data_dir, "properties.json")

    @property
    def maturity_file(self) -> str:
        return os.path.join(self.data_dir, "area_maturity.json")

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from environment."""
        return cls()

    def to_dict(self) -> dict:
        """Convert config to dictionary."""
        return {
            "host": self.host,
            "port": self.port,
            "debug": self.debug,
            "log_level": self.log_level,
            "property_api_url": self.property_api_url,
            "request_timeout": self.request_timeout,
            "search_radius_km": self.search_radius_km,
            "display_count": self.display_count,
            "luxury_threshold": self.luxury_threshold,
            "intermediate_cache_ttl": self.intermediate_cache_ttl,
            "result_cache_ttl": self.result_cache_ttl,
            "decision_cache_ttl": self.decision_cache_ttl,
            "data_dir": self.data_dir,
        }
