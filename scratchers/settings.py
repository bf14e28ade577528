from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone

from cryptography.fernet import Fernet, InvalidToken

from scratchers.models import AppSettings

logger = logging.getLogger(__name__)
_FERNET: Fernet | None = None

MIN_BATCH_SIZE = 1
MAX_BATCH_SIZE = 500
MIN_CHUNK_SIZE = 10
MAX_CHUNK_SIZE = 5000


@dataclass(frozen=True)
class SettingsSnapshot:
    id: int
    source_auth_token_enc: str | None
    import_batch_size: int
    import_chunk_size: int


def _default_settings() -> AppSettings:
    return AppSettings(
        id=1,
        source_auth_token_enc=None,
        import_batch_size=10,
        import_chunk_size=200,
        updated_at_utc=datetime.now(timezone.utc),
    )


def get_or_create_settings(db) -> AppSettings:
    settings = db.query(AppSettings).filter(AppSettings.id == 1).one_or_none()
    if settings:
        return settings
    settings = _default_settings()
    db.add(settings)
    db.commit()
    db.refresh(settings)
    return settings


def snapshot_settings(settings: AppSettings) -> SettingsSnapshot:
    return SettingsSnapshot(
        id=settings.id,
        source_auth_token_enc=settings.source_auth_token_enc,
        import_batch_size=settings.import_batch_size,
        import_chunk_size=settings.import_chunk_size,
    )


def apply_settings_update(settings: AppSettings, payload: dict) -> None:
    """Apply a partial settings payload. Raises ValueError on bad input."""

    if "import_batch_size" in payload:
        settings.import_batch_size = _bounded_int(
            payload["import_batch_size"], "import_batch_size", MIN_BATCH_SIZE, MAX_BATCH_SIZE
        )
    if "import_chunk_size" in payload:
        settings.import_chunk_size = _bounded_int(
            payload["import_chunk_size"], "import_chunk_size", MIN_CHUNK_SIZE, MAX_CHUNK_SIZE
        )
    if "source_auth_token" in payload:
        token = (payload.get("source_auth_token") or "").strip()
        settings.source_auth_token_enc = encrypt_secret(token) if token else None
    settings.updated_at_utc = datetime.now(timezone.utc)


def _bounded_int(value, name: str, low: int, high: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if not low <= number <= high:
        raise ValueError(f"{name} must be between {low} and {high}")
    return number


def get_fernet() -> Fernet:
    global _FERNET
    if _FERNET is not None:
        return _FERNET
    secret = (os.getenv("APP_SECRET_KEY") or "").strip()
    if not secret:
        secret = Fernet.generate_key().decode("utf-8")
        logger.warning(
            "APP_SECRET_KEY missing. Generated a temporary key: %s. "
            "Set APP_SECRET_KEY to this value to persist decryption.",
            secret,
        )
    _FERNET = Fernet(secret.encode("utf-8"))
    return _FERNET


def encrypt_secret(value: str | None) -> str | None:
    if not value:
        return None
    fernet = get_fernet()
    return fernet.encrypt(value.encode("utf-8")).decode("utf-8")


def decrypt_secret(encrypted: str | None) -> str | None:
    if not encrypted:
        return None
    fernet = get_fernet()
    try:
        return fernet.decrypt(encrypted.encode("utf-8")).decode("utf-8")
    except InvalidToken:
        logger.error("Failed to decrypt CSV source token. Check APP_SECRET_KEY.")
        return None
