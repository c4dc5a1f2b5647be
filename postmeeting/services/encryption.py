"""
Encryption helpers for credentials stored at rest.
"""
import json
from typing import Any, Dict, Optional

from cryptography.fernet import InvalidToken

from postmeeting.config import settings
from postmeeting.exceptions import TokenDecryptionError


def encrypt_token(token: Optional[str]) -> Optional[str]:
    """
    Encrypt a token for storage.

    Args:
        token: Plain text token

    Returns:
        Encrypted token as string
    """
    if token is None:
        return None
    if token == "":
        return ""
    return settings.cipher.encrypt(token.encode()).decode()


def decrypt_token(encrypted_token: Optional[str]) -> Optional[str]:
    """
    Decrypt a token from storage.

    Raises:
        TokenDecryptionError: If the ciphertext was not produced with the current key
    """
    if encrypted_token is None:
        return None
    if encrypted_token == "":
        return ""
    try:
        return settings.cipher.decrypt(encrypted_token.encode()).decode()
    except InvalidToken as e:
        raise TokenDecryptionError("Stored token could not be decrypted") from e


def encrypt_json(payload: Dict[str, Any]) -> str:
    """Encrypt a JSON-serializable credential bundle (e.g. Google OAuth tokens)."""
    return encrypt_token(json.dumps(payload))


def decrypt_json(encrypted: Optional[str]) -> Dict[str, Any]:
    """Decrypt a bundle written by encrypt_json; empty input yields an empty dict."""
    if not encrypted:
        return {}
    return json.loads(decrypt_token(encrypted))
