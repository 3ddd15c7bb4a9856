# epubclean/config.py
from __future__ import annotations

import os

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

APP_VERSION = os.getenv("APP_VERSION", "1.0.0")

MIB = 1024 * 1024


class Settings(BaseSettings):
    # --- Identity / Build ---
    APP_NAME: str = Field(default="EPUB Image Sanitizer")
    VERSION: str = Field(default=APP_VERSION)

    # --- Output normalization ---
    TARGET_DPI: int = Field(default=96, ge=1, le=65535)
    MAX_IMAGE_LONG_SIDE: int = Field(default=2500, ge=1)
    JPEG_QUALITY: int = Field(default=95, ge=1, le=100)

    # --- Decode limits (pixel / decompression bomb defense) ---
    MAX_IMAGE_DIMENSION: int = Field(default=50000, ge=1)
    MAX_PIXEL_COUNT: int = Field(default=500_000_000, ge=1)
    MAX_DECOMPRESSED_SIZE: int = Field(default=500 * MIB, ge=1)

    # --- Alpha sampling ---
    # Images up to this area are scanned pixel by pixel; larger ones on a grid.
    ALPHA_FULL_SCAN_AREA: int = Field(default=1_000_000, ge=1)
    ALPHA_SAMPLE_STRIDE: int = Field(default=10, ge=1)

    # --- Worker pool / progress ---
    MAX_WORKERS: int = Field(default=8, ge=1)
    PROGRESS_EVERY: int = Field(default=50, ge=1)
    PROGRESS_QUEUE_SIZE: int = Field(default=1024, ge=1)
    MAX_LOG_LINES: int = Field(default=10000, ge=5)

    # --- Container I/O ---
    STREAM_BUFFER_SIZE: int = Field(default=64 * 1024, ge=512)
    MAX_UPLOAD_BYTES: int = Field(default=512 * MIB, ge=1)

    # --- Logging ---
    LOG_JSON: bool = Field(default=True)
    LOG_LEVEL: str = Field(default="INFO")

    model_config = SettingsConfigDict(
        env_prefix="EPUBCLEAN_",
        extra="ignore",
        env_file=".env",
        env_file_encoding="utf-8",
    )


def get_settings() -> Settings:
    return Settings()
