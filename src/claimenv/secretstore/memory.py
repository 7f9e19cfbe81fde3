"""Process-local secret store; use only in tests and local development."""

import threading

from ..errors import SecretNotFoundError
from .base import SecretStore


class InMemorySecretStore(SecretStore):
    def __init__(self) -> None:
        self._secrets: dict[str, str] = {}
        self._lock = threading.Lock()

    def seed(self, secret_name: str, value: str) -> None:
        """Pre-populate a secret (handy in tests)."""
        with self._lock:
            self._secrets[secret_name] = value

    async def read(self, secret_name: str) -> str:
        with self._lock:
            try:
                return self._secrets[secret_name]
            except KeyError:
                raise SecretNotFoundError(secret_name) from None

    async def write(self, secret_name: str, value: str) -> None:
        with self._lock:
            self._secrets[secret_name] = value

    async def close(self) -> None:
        return None
