"""
PII Vault
Encrypted, append-only token → original value store scoped per user
"""
import base64
import binascii
import logging
import os
from typing import Dict, Optional

from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from supabase import Client

from emergent_sync.core.config import settings
from emergent_sync.core.errors import DlpConfigMissingError, DlpScanFailedError
from emergent_sync.services.dlp.nightfall import VaultEntry

logger = logging.getLogger(__name__)

NONCE_BYTES = 12


def load_vault_key(key_b64: Optional[str] = None) -> bytes:
    """
    Decode and validate the AES-256 vault key.

    Raises:
        DlpConfigMissingError: key absent or not 32 bytes
    """
    key_b64 = key_b64 if key_b64 is not None else settings.pii_vault_key_base64
    if not key_b64:
        raise DlpConfigMissingError("Missing PII_VAULT_KEY_BASE64 (PII vault key required)")
    try:
        key = base64.b64decode(key_b64, validate=True)
    except (ValueError, binascii.Error) as e:
        raise DlpConfigMissingError("PII_VAULT_KEY_BASE64 is not valid base64") from e
    if len(key) != 32:
        raise DlpConfigMissingError("PII_VAULT_KEY_BASE64 must decode to 32 bytes (AES-256 key)")
    return key


def encrypt_for_vault(plaintext: str, key: bytes) -> str:
    """Format: base64(nonce || ciphertext+tag)."""
    nonce = os.urandom(NONCE_BYTES)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    return base64.b64encode(nonce + ciphertext).decode("ascii")


def decrypt_from_vault(blob_b64: str, key: bytes) -> str:
    raw = base64.b64decode(blob_b64)
    nonce, ciphertext = raw[:NONCE_BYTES], raw[NONCE_BYTES:]
    return AESGCM(key).decrypt(nonce, ciphertext, None).decode("utf-8")


class PiiVault:
    """
    Write side of the vault used by the sync pipeline.

    Tokens are inserted with ignore-duplicates so an existing (user, token)
    mapping is never overwritten.
    """

    def __init__(self, supabase: Client, key_b64: Optional[str] = None):
        self.supabase = supabase
        self._key_b64 = key_b64

    def require_configured(self) -> bytes:
        return load_vault_key(self._key_b64)

    def upsert_tokens(self, user_id: str, token_to_value: Dict[str, VaultEntry]) -> int:
        if not token_to_value:
            return 0

        key = self.require_configured()
        rows = [
            {
                "user_id": user_id,
                "token": token,
                "original_value": encrypt_for_vault(entry.original, key),
                "entity_type": entry.entity_type,
            }
            for token, entry in token_to_value.items()
        ]

        try:
            self.supabase.table("pii_vault").upsert(
                rows,
                on_conflict="user_id,token",
                ignore_duplicates=True
            ).execute()
        except Exception as e:
            logger.error(f"❌ PII vault write failed for user {user_id}: {e}")
            raise DlpScanFailedError(f"PII vault write failed: {e}") from e

        logger.info(f"🔐 Stored {len(rows)} vault token(s) for user {user_id}")
        return len(rows)
