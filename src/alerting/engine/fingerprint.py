from __future__ import annotations

import hashlib
import json
from typing import Optional

from src.alerting.schemas.alerts import AlertCreate


# PUBLIC_INTERFACE
def compute_fingerprint(
    tenant_id: str,
    source: str,
    source_id: Optional[str],
    name: str,
    message: str,
) -> str:
    """
    Deterministic identity of an alert for deduplication.

    The tuple is JSON-encoded before hashing so field boundaries cannot blur
    ("a:b" + "c" vs "a" + "b:c"). The digest is truncated to 16 hex chars; a
    collision would merge two unrelated issues into one alert's count.
    """
    parts = [tenant_id or "", source or "", source_id or "", name or "", message or ""]
    raw = json.dumps(parts, ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


def fingerprint_for(attrs: AlertCreate) -> str:
    return compute_fingerprint(attrs.tenant_id, attrs.source, attrs.source_id, attrs.name, attrs.message)
