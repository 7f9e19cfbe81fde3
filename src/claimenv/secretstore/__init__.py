"""Secret stores: where the credential values of each slot live."""

from .base import SecretStore
from .memory import InMemorySecretStore

__all__ = ["InMemorySecretStore", "SecretStore"]
