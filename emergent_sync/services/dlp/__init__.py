"""
DLP Gate
Nightfall scanning, PII vault, and the field-level redaction gate
"""
from emergent_sync.services.dlp.nightfall import NightfallClient, ScanResult, VaultEntry, apply_findings
from emergent_sync.services.dlp.redaction import (
    EVENT_FIELDS,
    MESSAGE_FIELDS,
    RedactionGate,
    RedactionOutcome,
    pack_fields,
    unpack_fields,
)
from emergent_sync.services.dlp.vault import PiiVault, decrypt_from_vault, encrypt_for_vault, load_vault_key

__all__ = [
    "NightfallClient",
    "ScanResult",
    "VaultEntry",
    "apply_findings",
    "EVENT_FIELDS",
    "MESSAGE_FIELDS",
    "RedactionGate",
    "RedactionOutcome",
    "pack_fields",
    "unpack_fields",
    "PiiVault",
    "decrypt_from_vault",
    "encrypt_for_vault",
    "load_vault_key",
]
