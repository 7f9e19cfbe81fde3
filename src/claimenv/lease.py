"""Caller-facing lease record and local lease file persistence."""

import json
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from .errors import KeyNotDefinedError, LeaseFileError, NoActiveLeaseError
from .lockstore.base import Claim, utcnow

LEASE_FILE_MODE = 0o600


@dataclass(frozen=True)
class Lease:
    """
    A Claim plus the resolved secret names for its slot.

    This is the only state carried between CLI invocations; it is written
    to the caller's lease file after claim/renew and read back for every
    later operation.
    """

    pool: str
    slot_name: str
    lease_id: str
    holder: str
    claimed_at: datetime
    expires_at: datetime
    secrets: dict[str, str] = field(default_factory=dict)  # env var key -> secret name

    @classmethod
    def from_claim(cls, claim: Claim, secrets: dict[str, str]) -> "Lease":
        return cls(
            pool=claim.pool,
            slot_name=claim.slot_name,
            lease_id=claim.lease_id,
            holder=claim.holder,
            claimed_at=claim.claimed_at,
            expires_at=claim.expires_at,
            secrets=dict(secrets),
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) > self.expires_at

    def secret_name(self, key: str) -> str:
        """
        Secret name bound to key.

        Raises:
            KeyNotDefinedError: If key is not one of the slot's keys
        """
        try:
            return self.secrets[key]
        except KeyError:
            raise KeyNotDefinedError(key) from None

    def to_dict(self) -> dict[str, Any]:
        return {
            "pool": self.pool,
            "slot_name": self.slot_name,
            "lease_id": self.lease_id,
            "secrets": dict(self.secrets),
            "holder": self.holder,
            "claimed_at": self.claimed_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Lease":
        return cls(
            pool=data["pool"],
            slot_name=data["slot_name"],
            lease_id=data["lease_id"],
            holder=data["holder"],
            claimed_at=datetime.fromisoformat(data["claimed_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
            secrets=dict(data.get("secrets") or {}),
        )


def load_lease(path) -> Lease:
    """
    Read the lease file.

    Raises:
        NoActiveLeaseError: If the file does not exist
        LeaseFileError: If it cannot be read or parsed
    """
    lease_path = Path(path)
    try:
        raw = lease_path.read_text()
    except FileNotFoundError:
        raise NoActiveLeaseError(str(lease_path)) from None
    except OSError as e:
        raise LeaseFileError(f"failed to read lease file {lease_path}: {e}") from e

    try:
        return Lease.from_dict(json.loads(raw))
    except (ValueError, KeyError, TypeError) as e:
        raise LeaseFileError(f"failed to parse lease file {lease_path}: {e}") from e


def save_lease(path, lease: Lease) -> None:
    """
    Write the lease file as indented JSON, readable only by the owner.

    Raises:
        LeaseFileError: If the file cannot be written
    """
    lease_path = Path(path)
    data = json.dumps(lease.to_dict(), indent=2)
    try:
        fd = os.open(lease_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, LEASE_FILE_MODE)
        with os.fdopen(fd, "w") as f:
            f.write(data)
        os.chmod(lease_path, LEASE_FILE_MODE)
    except OSError as e:
        raise LeaseFileError(f"failed to write lease file {lease_path}: {e}") from e
    logger.debug(f"Saved lease {lease.lease_id} to {lease_path}")


def delete_lease(path) -> None:
    """Remove the lease file; missing files are ignored."""
    try:
        Path(path).unlink()
    except FileNotFoundError:
        return
    except OSError as e:
        raise LeaseFileError(f"failed to delete lease file {path}: {e}") from e
