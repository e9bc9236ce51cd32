"""
Nightfall DLP client
Batch-scans strings and replaces findings with stable vault tokens
"""
import asyncio
import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from emergent_sync.core.circuit_breakers import with_nightfall_retry
from emergent_sync.core.config import settings
from emergent_sync.core.errors import DlpConfigMissingError, DlpScanFailedError

logger = logging.getLogger(__name__)

NIGHTFALL_POLICY = {
    "detectionRules": [
        {
            "name": "EmergentOS Default DLP (Inline)",
            "logicalOp": "ANY",
            "detectors": [
                {
                    "detectorType": "NIGHTFALL_DETECTOR",
                    "nightfallDetector": detector,
                    "minConfidence": "LIKELY",
                    "minNumFindings": 1,
                }
                for detector in ("PERSON_NAME", "EMAIL_ADDRESS", "PHONE_NUMBER", "CREDIT_CARD_NUMBER")
            ],
        }
    ]
}


@dataclass
class VaultEntry:
    original: str
    entity_type: str


@dataclass
class ScanResult:
    redacted: str
    token_to_value: Dict[str, VaultEntry] = field(default_factory=dict)


def detector_to_token_prefix(detector: str) -> str:
    d = detector.upper()
    if "PERSON" in d:
        return "PERSON"
    if "EMAIL" in d:
        return "EMAIL"
    if "PHONE" in d:
        return "PHONE"
    if "CREDIT" in d:
        return "CREDIT_CARD"
    return "SENSITIVE"


def _detector_name(finding: Dict[str, Any]) -> str:
    detector = finding.get("detector") or {}
    return detector.get("nightfallDetector") or detector.get("name") or "SENSITIVE"


def make_token(prefix: str, original: str, counter: int, token_key: Optional[bytes] = None) -> str:
    """
    [EMAIL_001] style tokens when unkeyed; with a key, a keyed digest of the
    value ([EMAIL_3F9A0C21B7D4]) so the same value maps to the same token
    across items and cycles and the vault's (user, token) key never collides.
    """
    if token_key is None:
        return f"[{prefix}_{counter:03d}]"
    digest = hmac.new(token_key, original.encode("utf-8"), hashlib.sha256).hexdigest()
    return f"[{prefix}_{digest[:12].upper()}]"


def apply_findings(content: str, findings: List[Dict[str, Any]], token_key: Optional[bytes] = None) -> ScanResult:
    """Replace every occurrence of each finding with its token."""
    counters: Dict[str, int] = {}
    token_to_value: Dict[str, VaultEntry] = {}
    value_to_token: Dict[str, str] = {}
    redacted = content

    # Longest first so a finding that contains another is replaced whole
    for finding in sorted(findings, key=lambda f: len(f.get("finding") or ""), reverse=True):
        original = finding.get("finding")
        if not original or original in value_to_token:
            continue
        prefix = detector_to_token_prefix(_detector_name(finding))
        counters[prefix] = counters.get(prefix, 0) + 1
        token = make_token(prefix, original, counters[prefix], token_key)

        value_to_token[original] = token
        token_to_value[token] = VaultEntry(original=original, entity_type=prefix.lower())
        redacted = redacted.replace(original, token)

    return ScanResult(redacted=redacted, token_to_value=token_to_value)


class NightfallClient:
    """Thin async client for the Nightfall v3 scan API."""

    def __init__(self, http_client: httpx.AsyncClient, api_key: str = None, scan_url: str = None,
                 token_key: Optional[bytes] = None):
        self.http_client = http_client
        self.api_key = api_key if api_key is not None else settings.nightfall_api_key
        self.scan_url = scan_url or settings.nightfall_scan_url
        self.token_key = token_key

    def require_configured(self):
        if not self.api_key:
            raise DlpConfigMissingError("Missing NIGHTFALL_API_KEY (DLP gate required)")

    @with_nightfall_retry
    async def _post_scan(self, contents: List[str]) -> Dict[str, Any]:
        response = await self.http_client.post(
            self.scan_url,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.api_key}",
            },
            json={"policy": NIGHTFALL_POLICY, "payload": contents},
        )
        response.raise_for_status()
        return response.json() if response.content else {}

    async def scan_batch(self, contents: List[str]) -> List[ScanResult]:
        """Scan strings in one API call. Results are in input order."""
        if not contents:
            return []
        self.require_configured()

        try:
            body = await self._post_scan(contents)
        except httpx.HTTPStatusError as e:
            raise DlpScanFailedError(
                f"Nightfall scan failed ({e.response.status_code}): {e.response.text[:200]}"
            ) from e
        except httpx.TransportError as e:
            raise DlpScanFailedError(f"Nightfall unreachable: {e}") from e

        # One entry per payload string; each is either a list of findings or {"findings": [...]}
        all_findings = body.get("findings") or []
        results = []
        for index, content in enumerate(contents):
            entry = all_findings[index] if index < len(all_findings) else []
            if isinstance(entry, dict):
                entry = entry.get("findings") or []
            results.append(apply_findings(content, entry or [], self.token_key))
        return results

    async def scan_chunked(self, contents: List[str], chunk_size: int = None) -> List[ScanResult]:
        """Scan any number of strings, `chunk_size` per call, pausing between chunks."""
        chunk_size = chunk_size or settings.nightfall_chunk_size
        results: List[ScanResult] = []
        total_chunks = (len(contents) + chunk_size - 1) // chunk_size

        for i in range(0, len(contents), chunk_size):
            chunk = contents[i:i + chunk_size]
            logger.info(f"🛡️  Nightfall chunk {i // chunk_size + 1}/{total_chunks} ({len(chunk)} items)")
            results.extend(await self.scan_batch(chunk))

            if i + chunk_size < len(contents) and settings.nightfall_chunk_delay_seconds:
                await asyncio.sleep(settings.nightfall_chunk_delay_seconds)

        return results
