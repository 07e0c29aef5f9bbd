import hashlib
import json
import logging
import secrets
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken

from leadsignal.core.config import settings
from leadsignal.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "sk_live_"


class PayloadCipher:
    """Symmetric encryption for data kept at rest.

    Used for the raw lead payload (email, phone, IP, user agent) and for
    integration credential bundles.  Values are JSON-encoded dicts wrapped
    in a Fernet token, so they are authenticated as well as encrypted.
    """

    def __init__(self, key: Optional[str] = None) -> None:
        key = key if key is not None else settings.ENCRYPTION_KEY
        if not key:
            raise ConfigurationError("ENCRYPTION_KEY is not configured")
        try:
            self._fernet = Fernet(key.encode() if isinstance(key, str) else key)
        except (ValueError, TypeError) as exc:
            raise ConfigurationError(f"ENCRYPTION_KEY is invalid: {exc}") from exc

    def encrypt(self, data: Dict[str, Any]) -> bytes:
        """Serialise *data* to JSON and encrypt it."""
        return self._fernet.encrypt(json.dumps(data, default=str).encode("utf-8"))

    def decrypt(self, token: bytes) -> Dict[str, Any]:
        """Decrypt a blob produced by :meth:`encrypt`.

        Raises ``ValueError`` when the blob was tampered with or was
        encrypted under a different key.
        """
        try:
            plaintext = self._fernet.decrypt(bytes(token))
        except InvalidToken as exc:
            raise ValueError("Encrypted payload could not be decrypted") from exc
        return json.loads(plaintext.decode("utf-8"))

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode("ascii")


def hash_api_key(key: str) -> str:
    """Hash an API key for storage and lookup."""
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def generate_api_key() -> str:
    """Generate a random API key of the form ``sk_live_<32 hex chars>``."""
    return f"{API_KEY_PREFIX}{secrets.token_hex(16)}"
