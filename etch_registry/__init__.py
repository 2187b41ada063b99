from __future__ import annotations

from .capabilities import DEFAULT_ADMIN_ROLE, MINTER_ROLE, CapabilityStore
from .config import config_sha256, load_config, resolve_caller
from .config_schema import AppConfig
from .errors import (
    ConfigError,
    DuplicateToken,
    NotFound,
    RegistryError,
    StorageError,
    Unauthorized,
)
from .event import PubEvent, SignedEvent, signed_event_from_nostr
from .post import PostState
from .service import PostRegistry, open_registry

__all__ = [
    "AppConfig",
    "CapabilityStore",
    "ConfigError",
    "DEFAULT_ADMIN_ROLE",
    "DuplicateToken",
    "MINTER_ROLE",
    "NotFound",
    "PostRegistry",
    "PostState",
    "PubEvent",
    "RegistryError",
    "SignedEvent",
    "StorageError",
    "Unauthorized",
    "config_sha256",
    "load_config",
    "open_registry",
    "resolve_caller",
    "signed_event_from_nostr",
]
