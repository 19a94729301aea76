# copyflow/config.py
"""
Process-wide settings, read once at startup and passed to the services.

Env vars:
- DATABASE_URL (default: sqlite:///./copyflow.db)
- LLM_PROVIDER=openai|anthropic (default: auto-detect from available keys)
- OPENAI_API_KEY / ANTHROPIC_API_KEY
- LLM_MODEL, VISION_LLM_MODEL (default: depends on provider)
- MOCK_LLM (default: true): deterministic offline responses
- LLM_TIMEOUT_SECONDS (default: 60)
- RATE_LIMIT_BACKEND=memory|redis|ledger (default: memory)
- REDIS_URL: required for the redis backend
- JOB_BACKEND=thread|celery (default: thread)
- JOB_WORKERS (default: 2)
- CELERY_BROKER_URL (default: redis://localhost:6379/0)
- SCRAPE_TIMEOUT_SECONDS (default: 30)
- MAX_IMAGE_BYTES (default: 10 MiB)
- SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASS, SMTP_FROM
- ADMIN_API_KEYS: comma-separated keys for /api/v1/admin/*
- RESUME_JOBS_ON_STARTUP (default: true)
- JOB_LEASE_SECONDS (default: 300): a processing job whose worker has not
  checkpointed for this long may be taken over
"""

import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

_ANTHROPIC_DEFAULT = "claude-sonnet-4-20250514"
_OPENAI_DEFAULT = "gpt-4o-mini"
_OPENAI_VISION_DEFAULT = "gpt-4o"


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _csv(name: str) -> List[str]:
    return [v.strip() for v in os.getenv(name, "").split(",") if v.strip()]


def _detect_provider(explicit: str, anthropic_key: str, openai_key: str) -> str:
    # explicit > anthropic if key present > openai
    if explicit in ("anthropic", "claude"):
        return "anthropic"
    if explicit in ("openai", "gpt"):
        return "openai"
    if anthropic_key:
        return "anthropic"
    return "openai"


class Settings(BaseModel):
    database_url: str = "sqlite:///./copyflow.db"

    llm_provider: str = "openai"
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    llm_model: str = _OPENAI_DEFAULT
    vision_model: str = _OPENAI_VISION_DEFAULT
    mock_llm: bool = True
    llm_timeout_seconds: float = 60.0

    rate_limit_backend: str = "memory"
    redis_url: Optional[str] = None

    job_backend: str = "thread"
    job_workers: int = 2
    celery_broker_url: str = "redis://localhost:6379/0"
    resume_jobs_on_startup: bool = True
    job_lease_seconds: int = 300

    scrape_timeout_seconds: float = 30.0
    max_image_bytes: int = 10 * 1024 * 1024

    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_from: str = "noreply@copyflow.com"

    admin_api_keys: List[str] = Field(default_factory=list)

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        if dotenv:
            load_dotenv(override=False)

        openai_key = os.getenv("OPENAI_API_KEY", "").strip()
        anthropic_key = os.getenv("ANTHROPIC_API_KEY", "").strip()
        provider = _detect_provider(
            os.getenv("LLM_PROVIDER", "").strip().lower(), anthropic_key, openai_key
        )
        default_model = _ANTHROPIC_DEFAULT if provider == "anthropic" else _OPENAI_DEFAULT
        default_vision = _ANTHROPIC_DEFAULT if provider == "anthropic" else _OPENAI_VISION_DEFAULT

        return cls(
            database_url=os.getenv("DATABASE_URL", "sqlite:///./copyflow.db"),
            llm_provider=provider,
            openai_api_key=openai_key,
            anthropic_api_key=anthropic_key,
            llm_model=os.getenv("LLM_MODEL", default_model),
            vision_model=os.getenv("VISION_LLM_MODEL", default_vision),
            mock_llm=_flag("MOCK_LLM", "true"),
            llm_timeout_seconds=float(os.getenv("LLM_TIMEOUT_SECONDS", "60")),
            rate_limit_backend=os.getenv("RATE_LIMIT_BACKEND", "memory").strip().lower(),
            redis_url=os.getenv("REDIS_URL") or None,
            job_backend=os.getenv("JOB_BACKEND", "thread").strip().lower(),
            job_workers=int(os.getenv("JOB_WORKERS", "2")),
            celery_broker_url=os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0"),
            resume_jobs_on_startup=_flag("RESUME_JOBS_ON_STARTUP", "true"),
            job_lease_seconds=int(os.getenv("JOB_LEASE_SECONDS", "300")),
            scrape_timeout_seconds=float(os.getenv("SCRAPE_TIMEOUT_SECONDS", "30")),
            max_image_bytes=int(os.getenv("MAX_IMAGE_BYTES", str(10 * 1024 * 1024))),
            smtp_host=os.getenv("SMTP_HOST") or None,
            smtp_port=int(os.getenv("SMTP_PORT", "587")),
            smtp_user=os.getenv("SMTP_USER") or None,
            smtp_password=os.getenv("SMTP_PASS") or None,
            smtp_from=os.getenv("SMTP_FROM", "noreply@copyflow.com"),
            admin_api_keys=_csv("ADMIN_API_KEYS"),
        )
