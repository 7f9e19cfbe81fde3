"""Resolve the holder identity of the current process."""

import os
import socket
from typing import Mapping, Optional

# (environment variable, prefix), checked in order
IDENTITY_SOURCES = (
    ("CLAIMENV_HOLDER", ""),
    ("CI_JOB_ID", "gitlab-job-"),
    ("CI_MERGE_REQUEST_IID", "gitlab-mr-"),
    ("GITHUB_RUN_ID", "github-run-"),
    ("BUILD_ID", "jenkins-"),
)


def resolve_identity(environ: Optional[Mapping[str, str]] = None) -> str:
    """
    Identify the claimant from CI environment variables.

    Falls back to "host-{hostname}", then "unknown".
    """
    environ = os.environ if environ is None else environ

    for name, prefix in IDENTITY_SOURCES:
        value = environ.get(name)
        if value:
            return f"{prefix}{value}"

    try:
        hostname = socket.gethostname()
    except OSError:
        hostname = ""
    return f"host-{hostname}" if hostname else "unknown"
