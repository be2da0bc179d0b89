"""Record stores.

Key Exports:
    Store: Abstract CRUD + watch contract.
    InMemoryStore: Dict-backed store with push notifications.
    JsonFileStore: One JSON file per record, polling watch feed.
"""

from release_rocket.store.base import Store, new_record_id
from release_rocket.store.json_file import JsonFileStore
from release_rocket.store.memory import InMemoryStore

__all__ = ["InMemoryStore", "JsonFileStore", "Store", "new_record_id"]
