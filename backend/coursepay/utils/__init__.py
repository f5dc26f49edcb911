from coursepay.utils.hashing import hmac_sha512_hex, generate_hash, generate_chain_hash
from coursepay.utils.validators import validate_email, validate_content_id, validate_amount, to_minor_units

__all__ = [
    "hmac_sha512_hex", "generate_hash", "generate_chain_hash",
    "validate_email", "validate_content_id", "validate_amount", "to_minor_units",
]
