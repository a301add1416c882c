from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_out_dir() -> str:
    # Keep generated graphs out of the source tree by default.
    return str(Path(__file__).resolve().parents[1] / "out")


class Settings(BaseSettings):
    """Env-driven settings for graph extraction."""

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    out_dir: str = Field(default_factory=_default_out_dir, alias="OUT_DIR")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_to_file: bool = Field(default=False, alias="LOG_TO_FILE")

    srtm_dir: str = Field(default="", alias="SRTM_DIR")
    # One SRTM1 tile is ~25MB once decoded.
    elevation_cache_slots: int = Field(default=8, ge=1, le=512, alias="ELEVATION_CACHE_SLOTS")
    elevation_workers: int = Field(default=1, ge=1, le=64, alias="ELEVATION_WORKERS")
    elevation_fallback_m: float = Field(default=0.0, alias="ELEVATION_FALLBACK_M")

    oneway_reverse_policy: Literal["suppress", "downgrade"] = Field(
        default="suppress",
        alias="ONEWAY_REVERSE_POLICY",
    )
    keep_forbidden_ways: bool = Field(default=False, alias="KEEP_FORBIDDEN_WAYS")

    # 0 keeps the reader on the calling thread.
    reader_prefetch_queue: int = Field(default=0, ge=0, le=1_000_000, alias="READER_PREFETCH_QUEUE")
    graph_compress: bool = Field(default=False, alias="GRAPH_COMPRESS")

    @field_validator("oneway_reverse_policy", mode="before")
    @classmethod
    def _normalize_policy(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_level(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper() or "INFO"
        return value


settings = Settings()
