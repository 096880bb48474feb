from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


DEFAULT_CONFLICT_GRACE_SECONDS = 5.0


@dataclass(frozen=True, slots=True)
class StorageSettings:
    storage_type: str = "local"
    # Cloud endpoint (a redis:// URL for the bundled backend) and its access key.
    remote_url: str | None = None
    remote_key: str | None = None
    local_path: Path = Path(".gamestore")
    # When set, local saves go to redis strings instead of files.
    local_redis_url: str | None = None
    key_prefix: str = "gamestore"
    conflict_grace_seconds: float = DEFAULT_CONFLICT_GRACE_SECONDS

    @property
    def cloud_configured(self) -> bool:
        return bool(self.remote_url and self.remote_key)


def _float_from_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e
    if value < 0:
        raise ValueError(f"{name} must not be negative")
    return value


def settings_from_env(*, env_file: Path | None = None) -> StorageSettings:
    """Build settings from GAMESTORE_* environment variables.

    If `env_file` exists it is loaded first; variables already set in the
    environment win.
    """

    if env_file is not None and env_file.exists():
        from dotenv import load_dotenv

        load_dotenv(dotenv_path=env_file, override=False)

    return StorageSettings(
        storage_type=os.environ.get("GAMESTORE_STORAGE_TYPE", "local"),
        remote_url=os.environ.get("GAMESTORE_REMOTE_URL") or None,
        remote_key=os.environ.get("GAMESTORE_REMOTE_KEY") or None,
        local_path=Path(os.environ.get("GAMESTORE_LOCAL_PATH", ".gamestore")),
        local_redis_url=os.environ.get("GAMESTORE_LOCAL_REDIS_URL") or None,
        key_prefix=os.environ.get("GAMESTORE_KEY_PREFIX", "gamestore"),
        conflict_grace_seconds=_float_from_env("GAMESTORE_CONFLICT_GRACE_SECONDS", DEFAULT_CONFLICT_GRACE_SECONDS),
    )


def validate_storage_config(settings: StorageSettings) -> tuple[bool, str | None]:
    if settings.storage_type.strip().casefold() in {"cloud", "remote", "supabase"}:
        if not settings.remote_url:
            return False, "GAMESTORE_REMOTE_URL is required for cloud storage"
        if not settings.remote_key:
            return False, "GAMESTORE_REMOTE_KEY is required for cloud storage"
    return True, None
