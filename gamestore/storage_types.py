from __future__ import annotations

import logging
from enum import StrEnum

logger = logging.getLogger(__name__)


class StorageType(StrEnum):
    local = "local"
    cloud = "cloud"


_ALIASES = {
    "local": StorageType.local,
    "localstorage": StorageType.local,
    "cloud": StorageType.cloud,
    "remote": StorageType.cloud,
    "supabase": StorageType.cloud,
}


def normalize_storage_type(value: str | StorageType | None) -> StorageType:
    if isinstance(value, StorageType):
        return value
    if value is None or not str(value).strip():
        return StorageType.local
    resolved = _ALIASES.get(str(value).strip().casefold())
    if resolved is None:
        logger.warning("unknown storage type %r; using local storage", value)
        return StorageType.local
    return resolved
