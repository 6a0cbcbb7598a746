"""
In-memory credential store (for tests and local demos).
"""
import copy
from typing import Dict, Optional

from .token_store_base import TokenStoreBase


class InMemoryTokenStore(TokenStoreBase):
    def __init__(self):
        self._tokens: Dict[str, dict] = {}

    def get(self, provider: str) -> Optional[dict]:
        """Get a copy of the stored credential"""
        token = self._tokens.get(provider)
        return copy.deepcopy(token) if token is not None else None

    def save(self, provider: str, token_data: dict) -> None:
        self._tokens[provider] = copy.deepcopy(token_data)

    def delete(self, provider: str) -> bool:
        return self._tokens.pop(provider, None) is not None
