"""
phiguard Storage Module
"""

from phiguard.storage.kv import InMemoryStore, KeyValueStore, RedisStore, SealedMapStore

__all__ = ["InMemoryStore", "KeyValueStore", "RedisStore", "SealedMapStore"]
