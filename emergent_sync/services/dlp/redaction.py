"""
Redaction Gate
Packs the free-text fields of each item into one string, scans them through
Nightfall, writes the resulting tokens to the PII vault, and unpacks the
redacted slices back onto the item.

When the gate cannot run (missing config, scan or vault failure) the caller's
DlpFailurePolicy decides:
- FAIL_OPEN: the original items come back tagged security_verified=False
- FAIL_CLOSED: DlpBlockedError, nothing may be persisted
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, TypeVar

import httpx
from pydantic import BaseModel
from supabase import Client

from emergent_sync.core.config import DlpFailurePolicy
from emergent_sync.core.errors import DlpBlockedError, DlpConfigMissingError, DlpScanFailedError
from emergent_sync.services.dlp.nightfall import NightfallClient, VaultEntry
from emergent_sync.services.dlp.vault import PiiVault

logger = logging.getLogger(__name__)

EVENT_FIELDS = ("title", "description", "location")
MESSAGE_FIELDS = ("sender", "subject", "snippet")

FIELD_DELIMITER = "\n"
_NEWLINES = re.compile(r"[\r\n]+")

ItemT = TypeVar("ItemT", bound=BaseModel)


# ============================================================================
# FIELD PACKING
# ============================================================================

def pack_fields(values: Sequence[Optional[str]]) -> str:
    """Join fields with the delimiter. Newlines inside a field become spaces so slices stay aligned."""
    return FIELD_DELIMITER.join(_NEWLINES.sub(" ", value or "") for value in values)


def unpack_fields(redacted: str, originals: Sequence[Optional[str]]) -> List[Optional[str]]:
    """Split a redacted payload back into fields. An empty or missing slice keeps the original value."""
    slices = redacted.split(FIELD_DELIMITER)
    unpacked = []
    for index, original in enumerate(originals):
        piece = slices[index] if index < len(slices) else ""
        unpacked.append(piece if piece.strip() else original)
    return unpacked


@dataclass
class RedactionOutcome:
    items: List
    verified: bool
    error: Optional[str] = None
    tokens_stored: int = 0


# ============================================================================
# GATE
# ============================================================================

class RedactionGate:
    """
    DLP gate in front of every durable write of provider free text.

    Usage:
        gate = RedactionGate(supabase, http_client)
        outcome = await gate.redact_events(user_id, events, settings.dlp_bulk_sync_policy)
        if not outcome.verified:
            ...  # stored unredacted, flagged
    """

    def __init__(
        self,
        supabase: Client,
        http_client: httpx.AsyncClient,
        api_key: Optional[str] = None,
        vault_key_b64: Optional[str] = None,
        scan_url: Optional[str] = None,
    ):
        self.http_client = http_client
        self.vault = PiiVault(supabase, vault_key_b64)
        self._api_key = api_key
        self._scan_url = scan_url

    def _scanner(self) -> NightfallClient:
        """Both keys are checked here, before any network call."""
        vault_key = self.vault.require_configured()
        scanner = NightfallClient(
            self.http_client, api_key=self._api_key, scan_url=self._scan_url, token_key=vault_key
        )
        scanner.require_configured()
        return scanner

    async def redact_fields(
        self,
        user_id: str,
        records: List[Dict[str, Optional[str]]],
        fields: Sequence[str],
        policy: DlpFailurePolicy,
    ) -> RedactionOutcome:
        """
        Redact `fields` of each record dict.

        Returns:
            RedactionOutcome whose items are new dicts (inputs are not mutated)

        Raises:
            DlpBlockedError: gate failed under FAIL_CLOSED
        """
        if not records:
            return RedactionOutcome(items=[], verified=True)

        try:
            scanner = self._scanner()
            payloads = [pack_fields([record.get(name) for name in fields]) for record in records]
            results = await scanner.scan_chunked(payloads)

            token_to_value: Dict[str, VaultEntry] = {}
            redacted_records = []
            for record, result in zip(records, results):
                token_to_value.update(result.token_to_value)
                values = unpack_fields(result.redacted, [record.get(name) for name in fields])
                redacted_records.append({**record, **dict(zip(fields, values))})

            stored = self.vault.upsert_tokens(user_id, token_to_value)

        except (DlpConfigMissingError, DlpScanFailedError) as e:
            if policy == DlpFailurePolicy.FAIL_CLOSED:
                logger.error(f"🛑 DLP gate failed for user {user_id}, write blocked: {e}")
                raise DlpBlockedError(f"DLP gate unavailable, write blocked: {e}") from e

            logger.warning(f"⚠️  DLP gate failed for user {user_id}, storing {len(records)} item(s) unverified: {e}")
            return RedactionOutcome(items=[dict(record) for record in records], verified=False, error=str(e))

        logger.info(f"🛡️  Redacted {len(records)} item(s) for user {user_id} ({stored} vault token(s))")
        return RedactionOutcome(items=redacted_records, verified=True, tokens_stored=stored)

    async def redact_items(
        self,
        user_id: str,
        items: List[ItemT],
        fields: Sequence[str],
        policy: DlpFailurePolicy,
    ) -> RedactionOutcome:
        """Model-level wrapper: returns copies with redacted fields and security_verified set."""
        records = [{name: getattr(item, name) for name in fields} for item in items]
        outcome = await self.redact_fields(user_id, records, fields, policy)
        outcome.items = [
            item.model_copy(update={**record, "security_verified": outcome.verified})
            for item, record in zip(items, outcome.items)
        ]
        return outcome

    async def redact_events(self, user_id: str, events: List[ItemT], policy: DlpFailurePolicy) -> RedactionOutcome:
        return await self.redact_items(user_id, events, EVENT_FIELDS, policy)

    async def redact_messages(self, user_id: str, messages: List[ItemT], policy: DlpFailurePolicy) -> RedactionOutcome:
        return await self.redact_items(user_id, messages, MESSAGE_FIELDS, policy)
