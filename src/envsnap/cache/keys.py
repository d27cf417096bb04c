"""Cache key derivation."""

from __future__ import annotations

import hashlib
import json
from typing import Any

from envsnap.models import SourceLocator


def locator_key(locator: SourceLocator) -> str:
    canonical = json.dumps(_to_payload(locator), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _to_payload(locator: SourceLocator) -> dict[str, Any]:
    return {
        "url": locator.resolved_url,
        "revision": locator.revision,
    }
