"""Pydantic Settings — typed configuration with .env auto-loading."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment / .env file."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ── Service ──────────────────────────────────────────────
    service_port: int = 5000
    cors_origins: list[str] = ["*"]
    debug: bool = False
    log_level: str = "INFO"

    # ── Submission store (Supabase / PostgREST) ──────────────
    store_base_url: str = "http://localhost:54321"
    store_api_prefix: str = "/rest/v1"
    store_service_key: str = ""
    store_timeout: int = 15  # seconds
    store_page_size: int = 500
    store_submissions_table: str = "assignment_submissions"
    store_students_table: str = "students"
    store_assignments_table: str = "assignments"
    use_memory_store: bool = False  # serve from InMemorySubmissionRepository
    # JSON list of store-shaped rows loaded into the in-memory repository
    memory_seed_file: str = ""

    # ── Digest service ───────────────────────────────────────
    digest_algorithm: str = "sha256"
    digest_timeout: float = 30.0  # seconds per file
    digest_max_concurrency: int = 8
    digest_max_bytes: int = 50 * 1024 * 1024

    # ── Detection ────────────────────────────────────────────
    detection_default_min_confidence: int = 80
    detection_metadata_window_hours: int = 24
    detection_tight_window_minutes: int = 60
    # Force hash-only detection when every submission in scope has a digest
    detection_auto_upgrade: bool = True
    detection_max_concurrent_runs: int = 4  # per worker, overflow gets 503


@lru_cache
def get_settings() -> Settings:
    """Singleton accessor for application settings."""
    return Settings()
