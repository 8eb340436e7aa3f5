# ─────────────────────────────────────────────────────────────────────────────
# Fingerprint: deterministic cache key for an improvement request
# ─────────────────────────────────────────────────────────────────────────────
# The digest covers the three input fields in a fixed order. Absent hints
# are normalized to the empty string, so "absent" and "present but empty"
# produce the same fingerprint.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import hashlib

SCHEMA_VERSION = 2


def _as_bytes(value: bytes | str | None) -> bytes:
    if value is None:
        return b""
    if isinstance(value, bytes):
        return value
    return value.encode("utf-8")


def compute_fingerprint(
    artifact: bytes | str,
    structural_hint: str | None = None,
    hint: str | None = None,
    schema_version: int = SCHEMA_VERSION,
) -> str:
    """SHA-256 over (artifact, structural_hint, hint), version-prefixed.

    Each field is framed with its byte length so that moving bytes from
    one field into the next changes the digest.

    Returns:
        ``"v<schema_version>:<64 hex chars>"``
    """
    digest = hashlib.sha256()
    for field in (artifact, structural_hint, hint):
        data = _as_bytes(field)
        digest.update(len(data).to_bytes(8, "big"))
        digest.update(data)
    return f"v{schema_version}:{digest.hexdigest()}"
