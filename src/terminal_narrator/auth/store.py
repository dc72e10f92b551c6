"""
Secret Store
============

Capability interface for persisting long-lived credentials.

The real secret storage (OS keychain, vault) lives outside this project;
only the interface and an in-memory implementation ship here.
"""

from typing import Dict, Optional, Protocol


class SecretStore(Protocol):
    """Save/load/delete string secrets by key."""

    def save(self, key: str, value: str) -> None:
        ...

    def load(self, key: str) -> Optional[str]:
        ...

    def delete(self, key: str) -> None:
        ...


class MemorySecretStore:
    """Process-local SecretStore. Secrets are lost on exit."""

    def __init__(self) -> None:
        self._secrets: Dict[str, str] = {}

    def save(self, key: str, value: str) -> None:
        self._secrets[key] = value

    def load(self, key: str) -> Optional[str]:
        return self._secrets.get(key)

    def delete(self, key: str) -> None:
        self._secrets.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._secrets
