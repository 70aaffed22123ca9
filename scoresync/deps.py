import os
from typing import Optional

from fastapi import Header

from .registry import RegistryClient, normalize_registry_config
from .storage import LocalStore

_STORE: Optional[LocalStore] = None


def get_store() -> LocalStore:
    # one store per process so per-file cache stats accumulate
    global _STORE
    if _STORE is None:
        _STORE = LocalStore()
    return _STORE


def get_registry(
    x_registry_url: Optional[str] = Header(None),
    x_registry_key: Optional[str] = Header(None),
) -> Optional[RegistryClient]:
    """Registry client from request headers, else env; None disables remote sync."""
    config = normalize_registry_config(
        x_registry_url or os.getenv("REGISTRY_URL"),
        x_registry_key or os.getenv("REGISTRY_API_KEY"),
    )
    if config is None:
        return None
    return RegistryClient(config)
