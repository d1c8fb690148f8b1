import json
import logging

from cryptography.fernet import Fernet, InvalidToken

from app.config import settings

logger = logging.getLogger(__name__)


class SecretsError(Exception):
    pass


def _fernet(key: str | None = None) -> Fernet:
    key = key or settings.secrets_key
    if not key:
        raise SecretsError("SECRETS_KEY is not configured")
    try:
        return Fernet(key.encode())
    except ValueError as exc:
        raise SecretsError("SECRETS_KEY is not a valid Fernet key") from exc


def encrypt_secret(value: str, key: str | None = None) -> str:
    return _fernet(key).encrypt(value.encode()).decode()


def decrypt_secret(ciphertext: str, key: str | None = None) -> str:
    try:
        return _fernet(key).decrypt(ciphertext.encode()).decode()
    except InvalidToken as exc:
        raise SecretsError("Secret could not be decrypted") from exc


def encrypt_secrets(values: dict, key: str | None = None) -> str:
    return encrypt_secret(json.dumps(values), key)


def decrypt_secrets(ciphertext: str, key: str | None = None) -> dict:
    data = json.loads(decrypt_secret(ciphertext, key))
    if not isinstance(data, dict):
        raise SecretsError("Decrypted secrets are not an object")
    return data
