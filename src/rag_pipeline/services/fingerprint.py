"""Content fingerprints used as vector record identities."""

import hashlib
import uuid

# Stable namespace for deriving point ids from (namespace, fingerprint)
_POINT_ID_NAMESPACE = uuid.UUID("1f0c2a8e-5d3b-4e71-9a6c-7b2e4f9d0c13")


def fingerprint(text: str) -> str:
    """Return a 128-bit hex digest of ``text`` (SHA-256, truncated)."""
    if not isinstance(text, str):
        raise TypeError(f"fingerprint expects str, got {type(text).__name__}")
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:32]


def point_id(namespace: str, chunk_fingerprint: str) -> str:
    """
    Qdrant point id for a chunk inside a namespace.

    The same text stored under two documents gets two ids, the same text
    re-ingested into one document keeps its id.
    """
    return str(uuid.uuid5(_POINT_ID_NAMESPACE, f"{namespace}:{chunk_fingerprint}"))
