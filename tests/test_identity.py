import re

import pytest

from src.portfolio.domain.errors import ValidationError
from src.portfolio.domain.identity import (
    GUEST_STORAGE_KEY,
    CallerIdentity,
    GuestIdentityProvider,
    MemoryIdentityStorage,
    generate_guest_identifier,
)


def test_from_request_prefers_account_id():
    identity = CallerIdentity.from_request(" acct ", "g1")
    assert identity.account_id == "acct"
    assert identity.column == "user_id"
    assert identity.kind == "account"
    assert identity.value == "acct"


def test_from_request_guest():
    identity = CallerIdentity.from_request(None, "g1")
    assert identity.is_guest
    assert identity.column == "user_identifier"
    assert identity.value == "g1"


@pytest.mark.parametrize("user_id,user_identifier", [(None, None), ("", "  "), ("   ", None)])
def test_from_request_requires_one_identity(user_id, user_identifier):
    with pytest.raises(ValidationError):
        CallerIdentity.from_request(user_id, user_identifier)


def test_exactly_one_identity_enforced():
    with pytest.raises(ValueError):
        CallerIdentity(account_id="a", guest_id="g")
    with pytest.raises(ValueError):
        CallerIdentity()


def test_generated_identifier_format():
    value = generate_guest_identifier(now_ms=1700000000000)
    assert re.fullmatch(r"guest_1700000000000_[0-9a-z]{9}", value)


def test_provider_creates_once_and_resets():
    storage = MemoryIdentityStorage()
    ids = iter(["guest_1_aaaaaaaaa", "guest_2_bbbbbbbbb"])
    provider = GuestIdentityProvider(storage, generator=lambda: next(ids))

    first = provider.get_or_create()
    assert first == "guest_1_aaaaaaaaa"
    assert provider.get_or_create() == first
    assert storage.get(GUEST_STORAGE_KEY) == first

    provider.reset()
    assert storage.get(GUEST_STORAGE_KEY) is None
    assert provider.get_or_create() == "guest_2_bbbbbbbbb"


def test_provider_reuses_existing_storage_value():
    storage = MemoryIdentityStorage({GUEST_STORAGE_KEY: "guest_saved"})
    assert GuestIdentityProvider(storage).get_or_create() == "guest_saved"
