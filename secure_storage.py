from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from itsdangerous import BadSignature, URLSafeSerializer
from sqlalchemy import delete
from sqlalchemy.orm import Session, sessionmaker

from config import Settings, get_settings
from models import KeyValueEntry
from schemas import CredentialsIn


logger = logging.getLogger(__name__)

CREDENTIALS_KEY = "investec_credentials"
ACCESS_TOKEN_KEY = "investec_access_token"
TOKEN_EXPIRY_KEY = "investec_token_expiry"
LAST_SYNC_KEY = "last_sync_time"
OPENAI_KEY = "openai_api_key"
PAY_DAY_KEY = "pay_day"


class SecureStorage:
    """Signed key/value entries kept in the local database.

    Values are JSON-serialized and signed; an entry whose signature does not
    verify is treated as absent.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        settings: Optional[Settings] = None,
    ) -> None:
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self._serializer = URLSafeSerializer(
            self.settings.secret_key, salt="zebra-secure-storage"
        )

    def get(self, key: str) -> Any:
        with self.session_factory() as session:
            entry = session.get(KeyValueEntry, key)
            if entry is None:
                return None
            raw = entry.value
        try:
            return self._serializer.loads(raw)
        except BadSignature:
            logger.warning(f"secure_storage_bad_signature: key={key}")
            return None

    def set(self, key: str, value: Any) -> None:
        signed = self._serializer.dumps(value)
        with self.session_factory() as session:
            entry = session.get(KeyValueEntry, key)
            if entry is None:
                session.add(KeyValueEntry(key=key, value=signed))
            else:
                entry.value = signed
            session.commit()

    def delete(self, *keys: str) -> None:
        with self.session_factory() as session:
            session.execute(delete(KeyValueEntry).where(KeyValueEntry.key.in_(keys)))
            session.commit()

    def save_credentials(self, credentials: CredentialsIn) -> None:
        self.set(CREDENTIALS_KEY, credentials.model_dump())

    def get_credentials(self) -> Optional[CredentialsIn]:
        data = self.get(CREDENTIALS_KEY)
        return CredentialsIn(**data) if data else None

    def delete_credentials(self) -> None:
        self.delete(CREDENTIALS_KEY, ACCESS_TOKEN_KEY, TOKEN_EXPIRY_KEY)

    def is_authenticated(self) -> bool:
        return self.get_credentials() is not None

    def save_access_token(self, token: str, expires_at: datetime) -> None:
        self.set(ACCESS_TOKEN_KEY, token)
        self.set(TOKEN_EXPIRY_KEY, expires_at.timestamp())

    def get_access_token(self) -> Optional[tuple[str, datetime]]:
        """Return the stored token and its expiry without judging validity."""
        token = self.get(ACCESS_TOKEN_KEY)
        expiry = self.get(TOKEN_EXPIRY_KEY)
        if not token or expiry is None:
            return None
        return token, datetime.fromtimestamp(float(expiry), tz=timezone.utc)

    def save_last_sync_time(self, when: datetime) -> None:
        self.set(LAST_SYNC_KEY, when.timestamp())

    def get_last_sync_time(self) -> Optional[datetime]:
        value = self.get(LAST_SYNC_KEY)
        if value is None:
            return None
        return datetime.fromtimestamp(float(value), tz=timezone.utc)

    def save_openai_key(self, api_key: str) -> None:
        self.set(OPENAI_KEY, api_key.strip())

    def get_openai_key(self) -> Optional[str]:
        return self.get(OPENAI_KEY)

    def save_pay_day(self, pay_day: int) -> None:
        if not 1 <= pay_day <= 31:
            raise ValueError("Pay day must be between 1 and 31")
        self.set(PAY_DAY_KEY, pay_day)

    def get_pay_day(self) -> int:
        value = self.get(PAY_DAY_KEY)
        return int(value) if value is not None else self.settings.default_pay_day
