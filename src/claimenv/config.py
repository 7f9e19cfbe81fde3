"""Centralized process settings for claimenv."""

import os


class Config:
    """
    claimenv process configuration with environment variable overrides.

    Pool and backend definitions live in the YAML config file (see pools.py).
    This class only carries per-process knobs: Redis connection tuning,
    transaction retry limits, timeouts and logging.
    """

    @staticmethod
    def _parse_positive_int(name: str, raw: str) -> int:
        """Parse a positive integer setting from its string form."""
        try:
            value = int(raw)
        except ValueError as e:
            raise ValueError(f"Invalid {name} environment variable: {e}")
        if value <= 0:
            raise ValueError(f"Invalid {name} environment variable: must be > 0, got {value}")
        return value

    # ========================================================================
    # Files
    # ========================================================================
    CONFIG_PATH: str = os.getenv("CLAIMENV_CONFIG", "")
    LEASE_FILE: str = os.getenv("CLAIMENV_LEASE_FILE", ".claimenv")

    # ========================================================================
    # Redis Configuration
    # ========================================================================
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379")
    REDIS_MAX_CONNECTIONS: int = int(os.getenv("REDIS_MAX_CONNECTIONS", "10"))
    REDIS_SOCKET_CONNECT_TIMEOUT: float = float(
        os.getenv("REDIS_SOCKET_CONNECT_TIMEOUT", "2")
    )
    REDIS_SOCKET_TIMEOUT: float = float(os.getenv("REDIS_SOCKET_TIMEOUT", "2"))
    REDIS_CONNECT_RETRIES: int = _parse_positive_int.__func__(
        "REDIS_CONNECT_RETRIES", os.getenv("REDIS_CONNECT_RETRIES", "3")
    )
    REDIS_CONNECT_RETRY_DELAY: float = float(os.getenv("REDIS_CONNECT_RETRY_DELAY", "0.2"))
    REDIS_CONNECT_RETRY_MAX_DELAY: float = float(
        os.getenv("REDIS_CONNECT_RETRY_MAX_DELAY", "2")
    )

    # ========================================================================
    # Lock Store Configuration
    # ========================================================================
    LOCK_KEY_PREFIX: str = os.getenv("CLAIMENV_LOCK_PREFIX", "claimenv")
    LOCK_TRANSACTION_RETRIES: int = _parse_positive_int.__func__(
        "CLAIMENV_TRANSACTION_RETRIES", os.getenv("CLAIMENV_TRANSACTION_RETRIES", "16")
    )

    # ========================================================================
    # CLI Configuration
    # ========================================================================
    OPERATION_TIMEOUT: float = float(os.getenv("CLAIMENV_TIMEOUT", "30"))
    LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")
    LOG_LEVEL: str = os.getenv("CLAIMENV_LOG_LEVEL", "WARNING").upper()

    @classmethod
    def validate(cls) -> bool:
        """
        Validate configuration consistency.

        Returns:
            True if validation passes

        Raises:
            ValueError: If validation fails
        """
        errors = []

        if not cls.LEASE_FILE:
            errors.append("LEASE_FILE must not be empty")

        if not cls.LOCK_KEY_PREFIX or ":" in cls.LOCK_KEY_PREFIX:
            errors.append(
                f"LOCK_KEY_PREFIX must be non-empty and contain no ':', got {cls.LOCK_KEY_PREFIX!r}"
            )

        if cls.LOCK_TRANSACTION_RETRIES <= 0:
            errors.append(
                f"LOCK_TRANSACTION_RETRIES must be > 0, got {cls.LOCK_TRANSACTION_RETRIES}"
            )

        if cls.OPERATION_TIMEOUT <= 0:
            errors.append(f"OPERATION_TIMEOUT must be > 0, got {cls.OPERATION_TIMEOUT}")

        # Validate Redis settings
        if cls.REDIS_MAX_CONNECTIONS <= 0:
            errors.append(
                f"REDIS_MAX_CONNECTIONS must be > 0, got {cls.REDIS_MAX_CONNECTIONS}"
            )
        if cls.REDIS_SOCKET_CONNECT_TIMEOUT <= 0:
            errors.append(
                "REDIS_SOCKET_CONNECT_TIMEOUT must be > 0, "
                f"got {cls.REDIS_SOCKET_CONNECT_TIMEOUT}"
            )
        if cls.REDIS_SOCKET_TIMEOUT <= 0:
            errors.append(
                f"REDIS_SOCKET_TIMEOUT must be > 0, got {cls.REDIS_SOCKET_TIMEOUT}"
            )
        if cls.REDIS_CONNECT_RETRY_DELAY < 0:
            errors.append(
                f"REDIS_CONNECT_RETRY_DELAY must be >= 0, got {cls.REDIS_CONNECT_RETRY_DELAY}"
            )

        if cls.LOG_LEVEL not in cls.LOG_LEVELS:
            errors.append(f"LOG_LEVEL is not a loguru level: {cls.LOG_LEVEL}")

        if errors:
            raise ValueError(f"Config validation failed: {'; '.join(errors)}")

        return True
