"""Secret store backed by Google Cloud Secret Manager."""

from typing import Any, Optional

from google.api_core import exceptions as google_exceptions
from google.cloud import secretmanager
from loguru import logger

from ..errors import BackendError, SecretNotFoundError
from .base import SecretStore


class GCPSecretStore(SecretStore):
    """
    One Secret Manager secret per (slot, key), holding a single string.

    Reads access the "latest" version. Writes add a new version; when the
    secret does not exist yet it is created (automatic replication) and the
    write is retried once.
    """

    def __init__(self, project: str, client: Optional[Any] = None):
        """
        Args:
            project: GCP project id owning the secrets
            client: SecretManagerServiceAsyncClient to use (created lazily
                from application default credentials when omitted)
        """
        if not project:
            raise ValueError("project must not be empty")
        self._project = project
        self._client = client

    def _get_client(self):
        if self._client is None:
            self._client = secretmanager.SecretManagerServiceAsyncClient()
            logger.debug(f"Secret Manager client initialized for project {self._project}")
        return self._client

    def _project_resource(self) -> str:
        return f"projects/{self._project}"

    def _secret_resource(self, secret_name: str) -> str:
        return f"projects/{self._project}/secrets/{secret_name}"

    def _latest_version(self, secret_name: str) -> str:
        return f"{self._secret_resource(secret_name)}/versions/latest"

    async def read(self, secret_name: str) -> str:
        client = self._get_client()
        try:
            response = await client.access_secret_version(
                request={"name": self._latest_version(secret_name)}
            )
        except google_exceptions.NotFound:
            raise SecretNotFoundError(secret_name) from None
        except google_exceptions.GoogleAPICallError as e:
            logger.error(f"Failed to access secret {secret_name}: {e}")
            raise BackendError(f"failed to access secret '{secret_name}': {e}") from e
        return response.payload.data.decode("UTF-8")

    async def _add_version(self, secret_name: str, value: str) -> None:
        await self._get_client().add_secret_version(
            request={
                "parent": self._secret_resource(secret_name),
                "payload": {"data": value.encode("UTF-8")},
            }
        )

    async def _ensure_secret(self, secret_name: str) -> None:
        try:
            await self._get_client().create_secret(
                request={
                    "parent": self._project_resource(),
                    "secret_id": secret_name,
                    "secret": {"replication": {"automatic": {}}},
                }
            )
            logger.info(f"Created secret {secret_name} in project {self._project}")
        except google_exceptions.AlreadyExists:
            pass
        except google_exceptions.GoogleAPICallError as e:
            raise BackendError(f"failed to create secret '{secret_name}': {e}") from e

    async def write(self, secret_name: str, value: str) -> None:
        try:
            await self._add_version(secret_name, value)
            return
        except google_exceptions.NotFound:
            logger.debug(f"Secret {secret_name} does not exist yet, creating it")
        except google_exceptions.GoogleAPICallError as e:
            logger.error(f"Failed to write secret {secret_name}: {e}")
            raise BackendError(f"failed to write secret version for '{secret_name}': {e}") from e

        await self._ensure_secret(secret_name)
        try:
            await self._add_version(secret_name, value)
        except google_exceptions.GoogleAPICallError as e:
            raise BackendError(
                f"failed to write secret version for '{secret_name}' after creating: {e}"
            ) from e

    async def close(self) -> None:
        if self._client is None:
            return
        client, self._client = self._client, None
        try:
            await client.transport.close()
        except google_exceptions.GoogleAPICallError as e:
            raise BackendError(f"failed to close Secret Manager client: {e}") from e
