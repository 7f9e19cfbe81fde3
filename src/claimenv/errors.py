"""claimenv exception classes.

Each error kind carries a distinct ``exit_code`` so the CLI can map failures
to process exit statuses without inspecting messages.
"""


class ClaimenvError(Exception):
    """Base exception for all claimenv errors."""

    exit_code = 1


class ConfigError(ClaimenvError):
    """Raised when the pool/backend configuration is missing or invalid."""

    exit_code = 2


class PoolExhaustedError(ClaimenvError):
    """Raised when every slot in a pool is actively claimed."""

    exit_code = 3

    def __init__(self, pool: str):
        super().__init__(f"all slots in pool '{pool}' are currently claimed")
        self.pool = pool


class LeaseNotFoundError(ClaimenvError):
    """Raised when no claim matches the given lease id or holder."""

    exit_code = 4

    def __init__(self, pool: str, lease_id: str = None, holder: str = None):
        if holder is not None:
            message = f"no active claim for holder '{holder}' in pool '{pool}'"
        else:
            message = f"lease '{lease_id}' not found in pool '{pool}'"
        super().__init__(message)
        self.pool = pool
        self.lease_id = lease_id
        self.holder = holder


class LeaseExpiredError(ClaimenvError):
    """Raised when a claim exists but its TTL has passed."""

    exit_code = 5

    def __init__(self, pool: str, lease_id: str, expires_at=None):
        message = f"lease '{lease_id}' in pool '{pool}' has expired"
        if expires_at is not None:
            message += f" (at {expires_at.isoformat()})"
        super().__init__(message)
        self.pool = pool
        self.lease_id = lease_id
        self.expires_at = expires_at


class PoolNotFoundError(ClaimenvError):
    """Raised when a pool name is not present in the configuration."""

    exit_code = 6

    def __init__(self, pool: str):
        super().__init__(f"pool '{pool}' not found in config")
        self.pool = pool


class KeyNotDefinedError(ClaimenvError):
    """Raised when a key is outside the slot's declared key set."""

    exit_code = 7

    def __init__(self, key: str):
        super().__init__(f"key '{key}' is not defined in this slot's secrets")
        self.key = key


class NoActiveLeaseError(ClaimenvError):
    """Raised when the local lease file does not exist."""

    exit_code = 8

    def __init__(self, path: str):
        super().__init__(f"no active lease (file not found: {path})")
        self.path = path


class LeaseFileError(ClaimenvError):
    """Raised when the local lease file cannot be read or written."""

    exit_code = 8


class BackendError(ClaimenvError):
    """Raised when a lock or secret backend call fails (network, auth, ...)."""

    exit_code = 9


class TransactionConflictError(BackendError):
    """Raised when an optimistic transaction keeps losing to concurrent writers."""


class SecretNotFoundError(ClaimenvError):
    """Raised when a secret has no readable value in the secret backend."""

    def __init__(self, secret_name: str):
        super().__init__(f"secret '{secret_name}' not found")
        self.secret_name = secret_name


class CloseError(ClaimenvError):
    """Raised when one or more stores fail to close; holds every failure."""

    def __init__(self, errors: list):
        details = "; ".join(f"{type(e).__name__}: {e}" for e in errors)
        super().__init__(f"close errors: {details}")
        self.errors = list(errors)
