import copy
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine, update
from sqlalchemy.orm import Session, sessionmaker

from config import get_settings
from database import Base
from models import KeyValueEntry
from schemas import CredentialsIn
from secure_storage import CREDENTIALS_KEY, SecureStorage


def _storage(secret_key="test-secret") -> SecureStorage:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    settings = copy.copy(get_settings())
    settings.secret_key = secret_key
    settings.default_pay_day = 25
    return SecureStorage(sessionmaker(bind=engine), settings)


def test_credentials_round_trip_and_delete() -> None:
    storage = _storage()
    assert not storage.is_authenticated()

    storage.save_credentials(
        CredentialsIn(clientId="client", clientSecret="secret", apiKey="key")
    )
    storage.save_access_token("tok", datetime(2030, 1, 1, tzinfo=timezone.utc))

    creds = storage.get_credentials()
    assert storage.is_authenticated()
    assert (creds.client_id, creds.client_secret, creds.api_key) == ("client", "secret", "key")

    storage.delete_credentials()
    assert storage.get_credentials() is None
    assert storage.get_access_token() is None


def test_stored_values_are_signed_not_plain() -> None:
    storage = _storage()
    storage.save_credentials(
        CredentialsIn(client_id="client", client_secret="secret", api_key="key")
    )

    with storage.session_factory() as session:
        raw = session.get(KeyValueEntry, CREDENTIALS_KEY).value
    assert "." in raw


def test_tampered_entry_reads_as_missing() -> None:
    storage = _storage()
    storage.set("openai_api_key", "sk-test")

    with storage.session_factory() as session:
        session.execute(
            update(KeyValueEntry)
            .where(KeyValueEntry.key == "openai_api_key")
            .values(value="InNrLWV2aWwi.bogus")
        )
        session.commit()

    assert storage.get_openai_key() is None


def test_access_token_expiry_is_timezone_aware() -> None:
    storage = _storage()
    expires = datetime(2030, 5, 1, 12, 0, tzinfo=timezone.utc)

    storage.save_access_token("tok", expires)

    assert storage.get_access_token() == ("tok", expires)


def test_pay_day_defaults_and_validates() -> None:
    storage = _storage()
    assert storage.get_pay_day() == 25

    storage.save_pay_day(1)
    assert storage.get_pay_day() == 1

    with pytest.raises(ValueError):
        storage.save_pay_day(32)


def test_last_sync_time_round_trip() -> None:
    storage = _storage()
    when = datetime(2025, 3, 1, 8, 30, tzinfo=timezone.utc)

    storage.save_last_sync_time(when)

    assert storage.get_last_sync_time() == when
