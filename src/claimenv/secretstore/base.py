"""Secret store contract."""

from abc import ABC, abstractmethod


class SecretStore(ABC):
    """
    Key/value backend holding the credential values of each slot.

    One secret holds one value; a slot owns one secret per declared key.
    The store does no cross-caller coordination: only the current
    lease-holder reaches it, because the engine validates the lease first.
    """

    @abstractmethod
    async def read(self, secret_name: str) -> str:
        """
        Return the current value of secret_name.

        Raises:
            SecretNotFoundError: If the secret has no value
        """

    @abstractmethod
    async def write(self, secret_name: str, value: str) -> None:
        """Set secret_name to value, creating the secret if needed."""

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
