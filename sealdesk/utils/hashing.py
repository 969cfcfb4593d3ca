# sealdesk/utils/hashing.py

import hashlib
import hmac
import json
from typing import Any


def hash_document(data: bytes) -> str:
    """SHA-256 of a byte buffer as lowercase hex"""
    return hashlib.sha256(data).hexdigest()


def verify_hash(data: bytes, expected_hash: str) -> bool:
    """Check a buffer against an expected SHA-256 hex digest"""
    return hmac.compare_digest(hash_document(data), expected_hash or "")


def canonical_json(payload: Any) -> bytes:
    """
    Deterministic JSON encoding: sorted keys, no whitespace, UTF-8.
    Non-JSON values (datetimes, UUIDs) are rendered with str().
    """
    return json.dumps(
        payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str
    ).encode("utf-8")


def hash_payload(payload: Any) -> str:
    """SHA-256 over the canonical JSON encoding of a payload"""
    return hashlib.sha256(canonical_json(payload)).hexdigest()
