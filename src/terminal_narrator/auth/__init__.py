"""
Auth Module
===========

Bearer token lifecycle against the terminal server.

Components:
    - AuthNetworkClient: HTTP calls to the auth endpoints
    - AuthService: Token TTL, silent refresh, rejection policy
    - SecretStore / MemorySecretStore: Credential persistence interface
"""

from terminal_narrator.auth.client import AuthNetworkClient
from terminal_narrator.auth.service import CREDENTIALS_KEY, AuthService
from terminal_narrator.auth.store import MemorySecretStore, SecretStore


__all__ = [
    "AuthNetworkClient",
    "AuthService",
    "CREDENTIALS_KEY",
    "MemorySecretStore",
    "SecretStore",
]
