"""Persisted configuration store.

Exposes the async ConfigStoreClient and its JSON file backend.
"""

from config_store.backend import JsonConfigFile
from config_store.client import ConfigStoreClient

__all__ = ["ConfigStoreClient", "JsonConfigFile"]
