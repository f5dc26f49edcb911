"""
Cryptographic Hashing Utilities - keyed webhook digests and audit chain hashes.
"""
import hashlib
import hmac
import json


def hmac_sha512_hex(raw_body: bytes, secret: str) -> str:
    """HMAC-SHA512 over the exact bytes given, as lowercase hex."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()


def sha256_hex(raw: bytes) -> str:
    return hashlib.sha256(raw).hexdigest()


def generate_hash(data: dict) -> str:
    """Generate a SHA-256 hash of a dictionary (deterministic, sorted keys)."""
    canonical = json.dumps(data, sort_keys=True, default=str).encode("utf-8")
    return sha256_hex(canonical)


def generate_chain_hash(current_data: dict, previous_hash: str = "") -> str:
    """SHA-256(previous_hash + hash(current_payload)).
    Links each audit entry to the one before it for the same reference.
    """
    chain_input = f"{previous_hash}{generate_hash(current_data)}".encode("utf-8")
    return sha256_hex(chain_input)
