"""Column types that keep report text and analysis payloads encrypted at rest."""
import base64
import hashlib
import json
import logging
import os
from typing import Any

from cryptography.fernet import Fernet, InvalidToken, MultiFernet
from sqlalchemy.types import TypeDecorator, Text

logger = logging.getLogger("medisync")


def _fernet_for(secret: str) -> Fernet:
    # Fernet wants a urlsafe-base64 32-byte key; derive one from the secret
    key = base64.urlsafe_b64encode(hashlib.sha256(secret.encode("utf-8")).digest())
    return Fernet(key)


def _build_cipher() -> MultiFernet:
    """Encrypt with ENCRYPTION_SECRET; also accept tokens from ENCRYPTION_SECRET_PREVIOUS.

    The previous secret is only used for decryption so a key can be rotated
    without rewriting every stored report first.
    """
    current = os.getenv("ENCRYPTION_SECRET", "dev-secret-key-change-me")
    ciphers = [_fernet_for(current)]
    previous = (os.getenv("ENCRYPTION_SECRET_PREVIOUS") or "").strip()
    if previous:
        ciphers.append(_fernet_for(previous))
    return MultiFernet(ciphers)


_CIPHER = _build_cipher()


def _decrypt(value: str) -> str | None:
    try:
        return _CIPHER.decrypt(value.encode("utf-8")).decode("utf-8")
    except InvalidToken:
        logger.warning({"function": "decrypt_column", "status": "invalid_token"})
        return None


class EncryptedText(TypeDecorator):
    """Encrypts/decrypts text values transparently using Fernet."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: Any, dialect) -> Any:  # type: ignore[override]
        if value is None:
            return None
        if not isinstance(value, str):
            value = str(value)
        return _CIPHER.encrypt(value.encode("utf-8")).decode("utf-8")

    def process_result_value(self, value: Any, dialect) -> Any:  # type: ignore[override]
        if value is None:
            return None
        return _decrypt(value)


class EncryptedJSON(TypeDecorator):
    """Encrypts/decrypts JSON-serializable values (lists of table rows) transparently."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: Any, dialect) -> Any:  # type: ignore[override]
        if value is None:
            return None
        payload = json.dumps(value, ensure_ascii=False, default=str)
        return _CIPHER.encrypt(payload.encode("utf-8")).decode("utf-8")

    def process_result_value(self, value: Any, dialect) -> Any:  # type: ignore[override]
        if value is None:
            return None
        raw = _decrypt(value)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning({"function": "decrypt_column", "status": "invalid_json"})
            return None
