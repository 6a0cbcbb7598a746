"""
Abstract base class for credential storage implementations.

Defines the interface every token store implements, so the auth provider
can be handed an in-memory store in tests and SQLite in deployment.
"""

from abc import ABC, abstractmethod
from typing import Optional


class TokenStoreBase(ABC):
    """
    Key-value store for OAuth credentials, keyed by provider name
    (e.g. "google").

    Implementations can use:
    - In-memory storage (for testing/demo)
    - SQLite (for single-instance deployments)
    """

    @abstractmethod
    def get(self, provider: str) -> Optional[dict]:
        """
        Get the stored credential payload for a provider.

        Args:
            provider: Provider key, e.g. "google"

        Returns:
            Credential dictionary as last saved, or None if nothing is stored.
        """
        pass

    @abstractmethod
    def save(self, provider: str, token_data: dict) -> None:
        """
        Insert or replace the credential payload for a provider.

        Args:
            provider: Provider key
            token_data: JSON-serializable credential dictionary
        """
        pass

    @abstractmethod
    def delete(self, provider: str) -> bool:
        """
        Remove a provider's credential.

        Returns:
            True if something was deleted, False if nothing was stored
        """
        pass
