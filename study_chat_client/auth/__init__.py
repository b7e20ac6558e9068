"""Authentication subsystem.

- credentials: Credential value type and the CredentialStore interface
- refresh: SingleFlightRefresher shared by every authenticated request path
"""

from __future__ import annotations

from .credentials import Credential, CredentialStore, InMemoryCredentialStore
from .refresh import SingleFlightRefresher

__all__ = [
    "Credential",
    "CredentialStore",
    "InMemoryCredentialStore",
    "SingleFlightRefresher",
]
