from .token_store_base import TokenStoreBase
from .tokens import InMemoryTokenStore
from .tokens_sqlite import SQLiteTokenStore

__all__ = ["TokenStoreBase", "InMemoryTokenStore", "SQLiteTokenStore"]
