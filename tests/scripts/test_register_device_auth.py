import pytest

from esports_ingest.services.credential_store import DeviceCredentialStore
from scripts.register_device_auth import parse_args, register


@pytest.mark.asyncio
async def test_register_stores_credential(session_factory):
    store = DeviceCredentialStore(session_factory)
    args = parse_args(["--account-id", "acc-1", "--device-id", "dev-1", "--secret", "s3cret"])

    assert await register(args, store) == 0

    credential = await store.find_active_most_recently_used()
    assert credential.subject_id == "acc-1"
    assert credential.device_id == "dev-1"


@pytest.mark.asyncio
async def test_verify_rejects_bad_credential(session_factory, fake_exchanger):
    store = DeviceCredentialStore(session_factory)
    fake_exchanger.rejected_subjects = {"acc-1"}
    args = parse_args(["--account-id", "acc-1", "--device-id", "dev-1", "--secret", "bad", "--verify"])

    assert await register(args, store, auth=fake_exchanger) == 1
    assert await store.find_active_most_recently_used() is None
