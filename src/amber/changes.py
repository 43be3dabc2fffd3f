"""Change detection for encrypt operations."""

import enum
import hashlib


class EncryptOutcome(enum.Enum):
    """What an encrypt call did to the document."""

    ADDED = "added"
    UNCHANGED = "unchanged"
    OVERWRITTEN = "overwritten"


def compute_hash(plaintext) -> bytes:
    """SHA-256 of the plaintext. Used for change detection, not authentication."""
    if isinstance(plaintext, str):
        plaintext = plaintext.encode("utf-8")
    return hashlib.sha256(plaintext).digest()


def detect_change(record, digest: bytes) -> EncryptOutcome:
    """
    Classify an encrypt of a value with hash ``digest``.

    ``record`` is the existing SecretRecord with that name, or None.
    """
    if record is None:
        return EncryptOutcome.ADDED
    if record.sha256 == digest:
        return EncryptOutcome.UNCHANGED
    return EncryptOutcome.OVERWRITTEN
