"""
Record stores for reference data and imported characters.
"""

from ..config import ArchiveConfig
from .base import (
    AuthError,
    AuthSession,
    AuthUser,
    Query,
    RecordStore,
    StaticAuthSession,
    StoreError,
    StoreResult,
)
from .memory import InMemoryStore, JsonFileStore
from .rest import RestAuthSession, RestStore


def build_store(config: ArchiveConfig) -> RecordStore:
    """Hosted store when ``store_url`` is configured, else a local JSON store."""
    if config.store_url:
        return RestStore(
            config.store_url,
            config.store_key or "",
            access_token=config.access_token,
            timeout=config.http_timeout,
        )
    return JsonFileStore(config.data_dir)


def build_auth(config: ArchiveConfig, user_id: str | None = None) -> AuthSession:
    """Auth session for ``user_id`` if given, else the configured hosted session."""
    if user_id or not config.store_url:
        return StaticAuthSession(user_id)
    return RestAuthSession(config.store_url, config.store_key or "", config.access_token)


__all__ = [
    "AuthError",
    "AuthSession",
    "AuthUser",
    "InMemoryStore",
    "JsonFileStore",
    "Query",
    "RecordStore",
    "RestAuthSession",
    "RestStore",
    "StaticAuthSession",
    "StoreError",
    "StoreResult",
    "build_auth",
    "build_store",
]
