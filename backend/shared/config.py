"""
Configuration management for the feature classifier studio.
Loads settings from environment variables and provides typed access.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

STORAGE_BACKENDS = ("memory", "file", "redis")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: str = Field(default="development", description="Runtime environment")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # Storage Configuration
    storage_backend: str = Field(
        default="file", description="Key-value backend (memory, file or redis)"
    )
    storage_dir: str = Field(
        default="backend/storage", description="Directory used by the file backend"
    )
    storage_quota_bytes: Optional[int] = Field(
        default=None, description="Total byte quota for the memory/file backends"
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0", description="Redis connection URL"
    )
    redis_key_prefix: str = Field(
        default="classifier", description="Namespace prepended to every redis key"
    )

    # Catalog Configuration
    catalog_retention_limit: int = Field(
        default=10, description="Entries kept when the catalog hits its quota"
    )

    # Training Configuration
    training_epochs: int = Field(default=100, description="Epochs per training run")
    training_max_batch_size: int = Field(
        default=32, description="Upper bound on the mini-batch size"
    )
    training_validation_split: float = Field(
        default=0.2, description="Fraction of samples held out for validation"
    )
    training_hidden_units: str = Field(
        default="16,8", description="Hidden layer widths (comma-separated, 1 or 2 layers)"
    )
    training_learning_rate: float = Field(
        default=0.001, description="Adam learning rate"
    )
    training_random_state: int = Field(
        default=42, description="Random seed for reproducibility"
    )

    # Inference Configuration
    confidence_threshold: float = Field(
        default=0.3, description="Minimum confidence for accepting a prediction"
    )
    debug_mode: bool = Field(
        default=False, description="Return raw predictions tagged instead of rejecting"
    )
    log_interval_seconds: float = Field(
        default=2.0, description="Minimum seconds between repeated diagnostic logs"
    )

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        """Validate storage backend name."""
        v = v.strip().lower()
        if v not in STORAGE_BACKENDS:
            raise ValueError(
                f"Invalid storage backend: {v} (expected one of {', '.join(STORAGE_BACKENDS)})"
            )
        return v

    @field_validator("training_hidden_units")
    @classmethod
    def parse_hidden_units(cls, v: str) -> str:
        """Validate hidden layer widths format."""
        parts = [p.strip() for p in v.split(",") if p.strip()]
        if not 1 <= len(parts) <= 2:
            raise ValueError(f"Expected 1 or 2 hidden layers, got: {v}")
        for part in parts:
            if not part.isdigit() or int(part) <= 0:
                raise ValueError(f"Invalid hidden layer width: {part}")
        return v

    @field_validator("training_validation_split")
    @classmethod
    def validate_split(cls, v: float) -> float:
        """Validate validation split range."""
        if not 0.0 <= v < 1.0:
            raise ValueError(f"Validation split must be in [0, 1): {v}")
        return v

    @field_validator("confidence_threshold")
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        """Validate confidence threshold range."""
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"Confidence threshold must be in [0, 1]: {v}")
        return v

    def get_hidden_units_list(self) -> List[int]:
        """Get hidden layer widths as a list."""
        return [int(p.strip()) for p in self.training_hidden_units.split(",") if p.strip()]

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment.lower() == "development"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses LRU cache to ensure singleton pattern.
    """
    return Settings()


# Convenience instance for direct import
settings = get_settings()
