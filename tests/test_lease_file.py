"""
Lease Record and Lease File Tests

- Lease built from a Claim
- JSON round trip through the lease file
- owner-only file permissions
- missing / corrupt file handling
"""

import json
import os
import stat
from datetime import datetime, timedelta, timezone

import pytest

from claimenv.errors import KeyNotDefinedError, LeaseFileError, NoActiveLeaseError
from claimenv.lease import Lease, delete_lease, load_lease, save_lease
from claimenv.lockstore.base import Claim

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def lease():
    claim = Claim.create("testpool", "alpha", "ci-job-1", timedelta(hours=1), now=NOW)
    return Lease.from_claim(
        claim,
        {"SHOPIFY_API_KEY": "alpha-shopify-api-key", "APP_URL": "alpha-app-url"},
    )


@pytest.mark.unit
def test_lease_from_claim_copies_fields(lease):
    assert lease.pool == "testpool"
    assert lease.slot_name == "alpha"
    assert lease.holder == "ci-job-1"
    assert lease.claimed_at == NOW
    assert lease.expires_at == NOW + timedelta(hours=1)
    assert lease.is_expired(NOW + timedelta(hours=2))
    assert not lease.is_expired(NOW)


@pytest.mark.unit
def test_lease_secret_name(lease):
    assert lease.secret_name("APP_URL") == "alpha-app-url"
    with pytest.raises(KeyNotDefinedError) as excinfo:
        lease.secret_name("DATABASE_URL")
    assert excinfo.value.key == "DATABASE_URL"


@pytest.mark.unit
def test_save_and_load_round_trip(tmp_path, lease):
    """
    Verify a saved lease loads back identical.
    """
    path = tmp_path / ".claimenv"

    save_lease(path, lease)

    assert load_lease(path) == lease
    data = json.loads(path.read_text())
    assert data["lease_id"] == lease.lease_id
    assert data["secrets"]["APP_URL"] == "alpha-app-url"


@pytest.mark.unit
def test_saved_lease_is_owner_only(tmp_path, lease):
    path = tmp_path / ".claimenv"
    path.write_text("{}")
    os.chmod(path, 0o644)

    save_lease(path, lease)

    assert stat.S_IMODE(path.stat().st_mode) == 0o600


@pytest.mark.unit
def test_load_missing_lease_file(tmp_path):
    with pytest.raises(NoActiveLeaseError) as excinfo:
        load_lease(tmp_path / ".claimenv")
    assert excinfo.value.exit_code == 8


@pytest.mark.unit
@pytest.mark.parametrize(
    "content",
    [
        "not json",
        "[]",
        '{"pool": "testpool"}',
        '{"pool": "p", "slot_name": "s", "lease_id": "l", "holder": "h",'
        ' "claimed_at": "yesterday", "expires_at": "tomorrow"}',
    ],
)
def test_load_corrupt_lease_file(tmp_path, content):
    path = tmp_path / ".claimenv"
    path.write_text(content)

    with pytest.raises(LeaseFileError):
        load_lease(path)


@pytest.mark.unit
def test_save_into_missing_directory_fails(tmp_path, lease):
    with pytest.raises(LeaseFileError):
        save_lease(tmp_path / "missing" / ".claimenv", lease)


@pytest.mark.unit
def test_delete_lease(tmp_path, lease):
    path = tmp_path / ".claimenv"
    save_lease(path, lease)

    delete_lease(path)
    assert not path.exists()

    # Deleting again is harmless
    delete_lease(path)
