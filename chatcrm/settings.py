"""Runtime configuration for the messaging pipeline.

All values come from environment variables (``load_dotenv`` is called by
:mod:`chatcrm.main` before :func:`load_settings`). Defaults mirror the
providers' documented behaviour: a 24 hour free-form session window and one
fallback attempt after the primary delivery.
"""

from __future__ import annotations

import os
import uuid
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from exc


def _env_uuid(name: str) -> uuid.UUID | None:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        return uuid.UUID(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a UUID, got {raw!r}") from exc


@dataclass(frozen=True)
class Settings:
    """Resolved pipeline configuration."""

    database_url: str | None = None
    db_statement_timeout_ms: int = 50

    session_window_hours: int = 24
    context_ttl_hours: int = 24
    max_delivery_attempts: int = 2
    routing_refresh_seconds: int = 60

    default_channel_account_id: uuid.UUID | None = None

    delegated_provider: str = "none"
    delegated_url: str | None = None
    delegated_timeout_seconds: float = 8.0
    openai_model: str = "gpt-4o-mini"

    transport_timeout_seconds: float = 10.0
    outbound_mode: str = "dry_run"

    processing_mode: str = "async"
    processing_workers: int = 8

    meta_app_secret: str | None = None
    meta_verify_token: str | None = None
    twilio_validate_signatures: bool = False

    order_confirmation_required: bool = False
    document_service_url: str | None = None
    currency_label: str = "FCFA"

    @property
    def inline_processing(self) -> bool:
        return self.processing_mode == "inline"

    @property
    def dry_run(self) -> bool:
        return self.outbound_mode != "live"


def load_settings() -> Settings:
    """Build :class:`Settings` from the current environment."""

    processing_mode = os.getenv("PROCESSING_MODE", "async").strip().lower()
    if processing_mode not in {"async", "inline"}:
        raise RuntimeError(
            f"PROCESSING_MODE must be 'async' or 'inline', got {processing_mode!r}"
        )
    delegated_provider = os.getenv("DELEGATED_PROVIDER", "none").strip().lower()
    if delegated_provider not in {"none", "http", "openai"}:
        raise RuntimeError(
            "DELEGATED_PROVIDER must be one of none, http, openai; "
            f"got {delegated_provider!r}"
        )

    return Settings(
        database_url=os.getenv("DATABASE_URL") or None,
        db_statement_timeout_ms=_env_int("DB_STATEMENT_TIMEOUT_MS", 50),
        session_window_hours=_env_int("SESSION_WINDOW_HOURS", 24),
        context_ttl_hours=_env_int("CONTEXT_TTL_HOURS", 24),
        max_delivery_attempts=max(1, _env_int("MAX_DELIVERY_ATTEMPTS", 2)),
        routing_refresh_seconds=_env_int("ROUTING_REFRESH_SECONDS", 60),
        default_channel_account_id=_env_uuid("DEFAULT_CHANNEL_ACCOUNT_ID"),
        delegated_provider=delegated_provider,
        delegated_url=os.getenv("DELEGATED_URL") or None,
        delegated_timeout_seconds=_env_float("DELEGATED_TIMEOUT_SECONDS", 8.0),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        transport_timeout_seconds=_env_float("TRANSPORT_TIMEOUT_SECONDS", 10.0),
        outbound_mode=os.getenv("OUTBOUND_MODE", "dry_run").strip().lower(),
        processing_mode=processing_mode,
        processing_workers=max(1, _env_int("PROCESSING_WORKERS", 8)),
        meta_app_secret=os.getenv("META_APP_SECRET") or None,
        meta_verify_token=os.getenv("META_VERIFY_TOKEN") or None,
        twilio_validate_signatures=_env_bool("TWILIO_VALIDATE_SIGNATURES"),
        order_confirmation_required=_env_bool("ORDER_CONFIRMATION_REQUIRED"),
        document_service_url=os.getenv("DOCUMENT_SERVICE_URL") or None,
        currency_label=os.getenv("CURRENCY_LABEL", "FCFA"),
    )


__all__ = ["Settings", "load_settings"]
