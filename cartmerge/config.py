from __future__ import annotations
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import List
from dotenv import load_dotenv

from cartmerge.core.models import AUTO_MERGE_MIN_CONFIDENCE, MergeConfig, MergeStrategy

load_dotenv()  # populates os.environ from .env


class Settings(BaseSettings):
    # Field names map to env vars case-insensitively (DATA_DIR, ORDERS_DIR, ...)
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Storage
    data_dir: str = "data"
    orders_dir: str = "data/orders"
    events_file: str = "data/cart_events.jsonl"
    metrics_file: str = "latency_log.jsonl"

    # Upper bound on a single persist call
    persist_timeout_seconds: float = Field(10.0, gt=0)

    # Auto-merge policy
    enable_auto_merge: bool = True
    auto_merge_threshold: int = Field(3, ge=0)
    auto_merge_min_confidence: int = Field(AUTO_MERGE_MIN_CONFIDENCE, ge=0, le=100)
    merge_strategy: MergeStrategy = MergeStrategy.BY_PRODUCT

    # Used when a request carries no acting user
    default_user: str = "Unknown User"

    # Logging / tracing
    log_level: str = "INFO"
    enable_tracing: bool = False
    otlp_endpoint: str = "http://127.0.0.1:6006/v1/traces"

    # CORS (narrow it down in .env via CORS_ALLOW_ORIGINS)
    cors_allow_origins: List[str] = Field(default_factory=lambda: ["http://127.0.0.1:8001"])

    def merge_config(self) -> MergeConfig:
        return MergeConfig(
            enable_auto_merge=self.enable_auto_merge,
            auto_merge_threshold=self.auto_merge_threshold,
            min_confidence=self.auto_merge_min_confidence,
            merge_strategy=self.merge_strategy,
        )
