"""
Record Linkage Engine - Configuration

Loads settings from environment variables with sensible defaults.
"""

from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings

# Load .env file
load_dotenv()

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    @property
    def project_root(self) -> Path:
        """Return project root directory."""
        return PROJECT_ROOT

    # Application
    DEBUG: bool = Field(default=False)
    LOG_LEVEL: str = Field(default="INFO")
    LOG_TO_FILE: bool = Field(default=False)

    # Batch comparison worker pool
    MATCH_WORKERS: int = Field(default=4, ge=1)

    # Confidence tiers (must be descending)
    MATCH_THRESHOLD_HIGH: float = Field(default=0.90)
    MATCH_THRESHOLD_MEDIUM: float = Field(default=0.70)
    MATCH_THRESHOLD_LOW: float = Field(default=0.50)
    MATCH_THRESHOLD_MINIMUM: float = Field(default=0.30)

    # Merge gate and clustering
    MERGE_MIN_CONFIDENCE: float = Field(default=0.90)
    CLUSTER_THRESHOLD: float = Field(default=0.70)

    # Geospatial comparison
    GEO_MAX_DISTANCE_KM: float = Field(default=5.0)
    GEO_DECAY: str = Field(default="linear")

    # Free-text comparison: token cosine instead of edit distance
    TEXT_COSINE: bool = Field(default=False)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
