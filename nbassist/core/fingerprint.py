"""Content fingerprints for cell sources."""

import hashlib


def fingerprint(text: str) -> str:
    """Return the SHA-256 hex digest of ``text`` (UTF-8)."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
